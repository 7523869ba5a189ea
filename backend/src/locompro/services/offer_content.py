"""Validation and column mapping for seller-supplied offer content."""

from decimal import Decimal, InvalidOperation

from locompro.app.config import get_settings
from locompro.domain.schemas import OfferContent
from locompro.services.errors import OfferValidationError

# Offer.price is Numeric(12, 2)
CENT = Decimal("0.01")


def validate_offer_content(content: OfferContent) -> None:
    """Raise OfferValidationError unless title, price and images are usable."""
    if not content.title or not content.title.strip():
        raise OfferValidationError("title", "Offer title is required")

    try:
        price = Decimal(str(content.price))
    except (InvalidOperation, ValueError):
        raise OfferValidationError("price", "Offer price must be a number")
    if not price.is_finite() or price <= 0:
        raise OfferValidationError("price", "Offer price must be greater than 0")
    try:
        whole_cents = price == price.quantize(CENT)
    except InvalidOperation:
        raise OfferValidationError("price", "Offer price is too large")
    if not whole_cents:
        raise OfferValidationError("price", "Offer price can have at most 2 decimal places")

    validate_images(content.images)


def validate_images(images) -> None:
    max_images = get_settings().max_offer_images
    cleaned = [img for img in (images or []) if img and img.strip()]
    if not cleaned:
        raise OfferValidationError("images", "At least one image is required")
    if len(cleaned) > max_images:
        raise OfferValidationError("images", f"At most {max_images} images are allowed")


def normalize_price(value) -> Decimal:
    """Price as stored, rounded to cents."""
    return Decimal(str(value)).quantize(CENT)


def content_columns(content: OfferContent) -> dict:
    """Translate an OfferContent payload into Offer column values."""
    contact_info = None
    if content.zone or content.condition:
        contact_info = {
            "zone": content.zone,
            "condition": content.condition.value if content.condition else None,
        }
    return {
        "title": content.title.strip(),
        "description": content.description or None,
        "price": normalize_price(content.price),
        "delivery_term": content.delivery_term.value,
        "images": [img for img in content.images if img and img.strip()],
        "contact_info": contact_info,
    }
