from storefront.models.user import RefreshToken, User
from storefront.models.checkout import CheckoutSession, CheckoutSessionItem, PaymentWebhookEvent
from storefront.models.purchase import Purchase
from storefront.models.cart import CartItem
from storefront.models.course import CourseProgress
