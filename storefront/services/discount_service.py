from dataclasses import dataclass
from decimal import Decimal

from storefront.core.money import ZERO_MONEY, to_money

DISCOUNT_KIND_PERCENTAGE = "percentage"
DISCOUNT_KIND_FIXED = "fixed"


@dataclass(frozen=True)
class DiscountRule:
    kind: str
    value: Decimal
    description: str


@dataclass(frozen=True)
class DiscountEvaluation:
    valid: bool
    code: str
    discount_amount: Decimal
    description: str | None = None
    percent_off: Decimal | None = None


# Codes are matched case-sensitively.
DISCOUNT_CODES: dict[str, DiscountRule] = {
    "DISCOUNT100": DiscountRule(
        kind=DISCOUNT_KIND_PERCENTAGE,
        value=Decimal("100"),
        description="100% Off Everything",
    ),
}


def evaluate_discount(code: str, subtotal: Decimal | int | float | str) -> DiscountEvaluation:
    """Amount a code takes off ``subtotal``, clamped to ``[0, subtotal]``.

    An unknown code is a normal ``valid=False`` result. A negative subtotal is a
    caller error and raises ``ValueError``.
    """
    amount = to_money(subtotal)
    if amount < ZERO_MONEY:
        raise ValueError("subtotal must be non-negative")

    rule = DISCOUNT_CODES.get(code)
    if rule is None:
        return DiscountEvaluation(valid=False, code=code, discount_amount=ZERO_MONEY)

    if rule.kind == DISCOUNT_KIND_FIXED:
        computed = to_money(rule.value)
    else:
        computed = to_money(amount * rule.value / Decimal(100))

    discount_amount = max(min(computed, amount), ZERO_MONEY)
    return DiscountEvaluation(
        valid=True,
        code=code,
        discount_amount=discount_amount,
        description=rule.description,
        percent_off=rule.value if rule.kind == DISCOUNT_KIND_PERCENTAGE else None,
    )


def coupon_percent_off(evaluation: DiscountEvaluation, subtotal: Decimal) -> Decimal:
    """Percent-off that reproduces ``evaluation`` on the gateway side."""
    if evaluation.percent_off is not None:
        return evaluation.percent_off
    if subtotal <= ZERO_MONEY:
        return Decimal("100")
    return (evaluation.discount_amount * Decimal(100) / subtotal).quantize(Decimal("0.01"))
