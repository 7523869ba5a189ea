"""Pydantic v2 schemas for API request/response validation.

Business rules (positive price, 1..5 images, rejection reasons) live in the
services; these schemas only pin down shapes and types.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from locompro.domain.enums import DeliveryTerm, ItemCondition


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Schema for creating a new user."""

    email: str
    password: str
    full_name: str | None = None
    phone: str | None = None
    location: str | None = None


class UserLogin(BaseModel):
    """Schema for user login."""

    email: str
    password: str


class UserResponse(BaseModel):
    """Schema for user API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: str | None = None
    phone: str | None = None
    location: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    is_active: bool


class ProfileUpdate(BaseModel):
    """Partial edit of the caller's own profile. Email and password are not editable here."""

    full_name: str | None = None
    phone: str | None = None
    location: str | None = None
    bio: str | None = None
    avatar_url: str | None = None


class PublicProfile(BaseModel):
    """What anyone can see about a user: no email, no phone."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str | None = None
    location: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None
    average_rating: float | None = None
    review_count: int = 0


class TokenResponse(BaseModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


# ---------------------------------------------------------------------------
# Buy requests
# ---------------------------------------------------------------------------


class BuyRequestCreate(BaseModel):
    """Schema for posting a buy request."""

    title: str
    description: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    zone: str
    condition: ItemCondition = ItemCondition.ANY
    images: list[str] = []
    reference_url: str | None = None


class BuyRequestUpdate(BaseModel):
    """Partial update of a buy request by its owner."""

    title: str | None = None
    description: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    zone: str | None = None
    condition: ItemCondition | None = None
    images: list[str] | None = None
    reference_url: str | None = None


class BuyRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    description: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    zone: str
    condition: str
    status: str
    images: list[str] = []
    reference_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_serializer("min_price", "max_price")
    def _money(self, value: Decimal | None) -> float | None:
        return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


class OfferContent(BaseModel):
    """Seller-supplied offer body, used for create, edit and counteroffer."""

    title: str
    description: str | None = None
    price: Decimal
    delivery_term: DeliveryTerm
    images: list[str] = []
    zone: str | None = None
    condition: ItemCondition | None = None


class OfferEdit(BaseModel):
    """Partial content edit of an offer by its seller."""

    title: str | None = None
    description: str | None = None
    price: Decimal | None = None
    delivery_term: DeliveryTerm | None = None
    images: list[str] | None = None
    zone: str | None = None
    condition: ItemCondition | None = None


class RejectOfferRequest(BaseModel):
    reason: str
    custom_reason: Optional[str] = None


class PriceHistoryEntry(BaseModel):
    price: float
    timestamp: Optional[str] = None
    type: str


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    buy_request_id: str
    seller_id: str
    title: str
    description: str | None = None
    price: Decimal
    images: list[str] = []
    delivery_term: str
    contact_info: dict | None = None
    status: str
    rejection_reason: str | None = None
    price_history: list[PriceHistoryEntry] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_activity_at: datetime | None = None
    negotiation: list[PriceHistoryEntry] = []  # current price first, then older prices
    allowed_actions: list[str] = []

    @field_serializer("price")
    def _money(self, value: Decimal) -> float:
        return float(value)


class OfferEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    offer_id: str
    event_type: str
    actor: str
    actor_id: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    data: Optional[dict] = None
    created_at: Optional[datetime] = None


class AcceptOfferResponse(BaseModel):
    offer: OfferResponse
    finalized_offer_ids: list[str] = []
    buy_request_closed: bool = False
    chat_id: Optional[str] = None
    chat_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    buy_request_id: str
    buyer_id: str
    seller_id: str
    offer_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatMessageCreate(BaseModel):
    message: str


class ChatMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chat_id: str
    sender_id: str
    message: str
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewCreate(BaseModel):
    rating: int = Field(..., description="1 to 5 stars")
    review_text: str | None = None


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    offer_id: str | None = None
    buyer_id: str
    seller_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    review_text: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class PostCreate(BaseModel):
    """Schema for publishing an item for sale."""

    title: str
    description: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    zone: str
    condition: ItemCondition = ItemCondition.ANY
    images: list[str] = []
    characteristics: dict | None = None
    contact_info: dict | None = None
    reference_url: str | None = None


class PostUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    zone: str | None = None
    condition: ItemCondition | None = None
    images: list[str] | None = None
    characteristics: dict | None = None
    contact_info: dict | None = None
    reference_url: str | None = None


class PostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    description: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    zone: str
    condition: str
    images: list[str] = []
    characteristics: dict | None = None
    contact_info: dict | None = None
    reference_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_serializer("min_price", "max_price")
    def _money(self, value: Decimal | None) -> float | None:
        return float(value) if value is not None else None
