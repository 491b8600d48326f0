from dataclasses import dataclass
from decimal import Decimal

from storefront.core.config import settings

ACCESS_KIND_COURSE = "course"
ACCESS_KIND_DOWNLOAD = "download"

THEME_PAGE_MASTERCLASS = "theme-page-masterclass"

_DRIVE_DOWNLOAD = "https://drive.google.com/uc?export=download&id={file_id}"


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    title: str
    price: Decimal
    category: str
    image_path: str
    description: str
    access_kind: str
    download_file_id: str | None = None


@dataclass(frozen=True)
class Lesson:
    id: str
    title: str
    description: str
    duration_minutes: int
    resources: tuple[str, ...]
    video_path: str = "/placeholder-video.mp4"


PRODUCT_CATALOG: dict[str, CatalogProduct] = {
    product.id: product
    for product in (
        CatalogProduct(
            id="champions-mindset",
            title="Champion's Mindset",
            price=Decimal("9.99"),
            category="E-book",
            image_path="/images/champion-mindset-product.png",
            description="Complete e-book with bonus materials and 60-day roadmap",
            access_kind=ACCESS_KIND_DOWNLOAD,
            download_file_id="1-hXEHZ26npEmE9TioMBZNAQdlPeGBNIE",
        ),
        CatalogProduct(
            id=THEME_PAGE_MASTERCLASS,
            title="Theme Page Masterclass",
            price=Decimal("97.00"),
            category="Course",
            image_path="/images/theme-page-masterclass.png",
            description="Video course with templates and resources",
            access_kind=ACCESS_KIND_COURSE,
        ),
        CatalogProduct(
            id="theme-page-masterclass-ebook",
            title="Theme Page Masterclass E-Book Version",
            price=Decimal("29.00"),
            category="E-Book",
            image_path="/images/theme-page-ebook.png",
            description="E-book version with comprehensive guide and templates",
            access_kind=ACCESS_KIND_DOWNLOAD,
            download_file_id="1UEEeyznbNAlU2ryw-nPVxL6FNrEeiUjO",
        ),
        CatalogProduct(
            id="viral-clip-pack-bundle",
            title="Viral Clip Pack Bundle",
            price=Decimal("14.99"),
            category="Digital Product",
            image_path="/images/viral-clip-pack.png",
            description="Complete collection of viral video clips and templates",
            access_kind=ACCESS_KIND_DOWNLOAD,
            download_file_id="VIRAL_CLIP_PACK_FILE_ID",
        ),
    )
}

DEFAULT_PRODUCT_DESCRIPTION = "Digital product with instant access"

# Courses are keyed by the product that unlocks them.
COURSE_LESSONS: dict[str, tuple[Lesson, ...]] = {
    THEME_PAGE_MASTERCLASS: (
        Lesson(
            id="1",
            title="Introduction to Faceless Theme Pages",
            description="Learn the fundamentals of creating engaging faceless content that resonates with your audience.",
            duration_minutes=15,
            resources=("Theme Page Strategy Guide.pdf", "Content Calendar Template.xlsx"),
        ),
        Lesson(
            id="2",
            title="Niche Selection & Market Research",
            description="Discover how to identify profitable niches and understand your target audience.",
            duration_minutes=25,
            resources=("Niche Research Worksheet.pdf", "Market Analysis Template.xlsx"),
        ),
        Lesson(
            id="3",
            title="Profile Setup & Optimization",
            description="Create a compelling Instagram profile that converts visitors into followers.",
            duration_minutes=20,
            resources=("Profile Optimization Checklist.pdf", "Bio Templates.txt"),
        ),
        Lesson(
            id="4",
            title="Content Creation Strategies",
            description="Master the art of creating viral-worthy content that drives engagement.",
            duration_minutes=35,
            resources=("Content Creation Guide.pdf", "Viral Content Examples.zip"),
        ),
        Lesson(
            id="5",
            title="Growth & Engagement Tactics",
            description="Learn proven strategies to grow your following and increase engagement rates.",
            duration_minutes=30,
            resources=("Growth Strategy Playbook.pdf", "Engagement Templates.txt"),
        ),
        Lesson(
            id="6",
            title="Monetization & Scaling",
            description="Turn your theme page into a profitable business with multiple revenue streams.",
            duration_minutes=40,
            resources=("Monetization Guide.pdf", "Revenue Tracking Sheet.xlsx"),
        ),
    ),
}


def get_product(product_id: str) -> CatalogProduct | None:
    return PRODUCT_CATALOG.get(product_id)


def product_description(product_id: str) -> str:
    product = PRODUCT_CATALOG.get(product_id)
    return product.description if product else DEFAULT_PRODUCT_DESCRIPTION


def product_access_kind(product_id: str) -> str:
    product = PRODUCT_CATALOG.get(product_id)
    return product.access_kind if product else ACCESS_KIND_DOWNLOAD


def product_access_url(product_id: str) -> str:
    """Where a buyer goes to use a product they own."""
    base_url = settings.public_base_url
    product = PRODUCT_CATALOG.get(product_id)
    if product is None:
        return f"{base_url}/downloads/{product_id}.pdf"
    if product.access_kind == ACCESS_KIND_COURSE:
        return f"{base_url}/course/{product.id}"
    if product.download_file_id:
        return _DRIVE_DOWNLOAD.format(file_id=product.download_file_id)
    return f"{base_url}/downloads/{product.id}.pdf"


def absolute_url(path_or_url: str | None) -> str | None:
    if not path_or_url:
        return None
    if path_or_url.startswith(("http://", "https://")):
        return path_or_url
    if not path_or_url.startswith("/"):
        path_or_url = f"/{path_or_url}"
    return f"{settings.public_base_url}{path_or_url}"


def course_lessons(course_id: str) -> tuple[Lesson, ...] | None:
    return COURSE_LESSONS.get(course_id)
