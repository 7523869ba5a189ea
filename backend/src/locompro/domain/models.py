"""SQLAlchemy ORM models for the LoCompro marketplace.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (no TIMESTAMPTZ)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from locompro.infra.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Auth / User
# ---------------------------------------------------------------------------


class User(Base):
    """Marketplace user. The same account can post buy requests and send offers."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Buyer Domain
# ---------------------------------------------------------------------------


class BuyRequest(Base):
    """A buyer's public post describing what they want to purchase."""

    __tablename__ = "buy_requests"
    __table_args__ = (
        CheckConstraint(
            "min_price IS NULL OR max_price IS NULL OR min_price <= max_price",
            name="ck_buy_requests_price_range",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    min_price = Column(Numeric(12, 2), nullable=True)
    max_price = Column(Numeric(12, 2), nullable=True)
    zone = Column(String(255), nullable=False)
    condition = Column(String(10), nullable=False, default="any")  # ItemCondition
    status = Column(String(10), nullable=False, default="active", index=True)  # BuyRequestStatus
    images = Column(JSON, default=list)  # first entry is the cover
    reference_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    offers = relationship(
        "Offer", back_populates="buy_request", cascade="all, delete-orphan", passive_deletes=True,
    )


# ---------------------------------------------------------------------------
# Seller Domain
# ---------------------------------------------------------------------------


class Post(Base):
    """A seller's public listing of something they have for sale.

    Independent of buy requests: nobody bids on a post, buyers contact the
    seller through ``contact_info``.
    """

    __tablename__ = "posts"
    __table_args__ = (
        CheckConstraint(
            "min_price IS NULL OR max_price IS NULL OR min_price <= max_price",
            name="ck_posts_price_range",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    min_price = Column(Numeric(12, 2), nullable=True)
    max_price = Column(Numeric(12, 2), nullable=True)
    zone = Column(String(255), nullable=False)
    condition = Column(String(10), nullable=False, default="any")  # ItemCondition
    images = Column(JSON, default=list)  # first entry is the cover
    characteristics = Column(JSON, nullable=True)  # free-form {"brand": ..., "size": ...}
    contact_info = Column(JSON, nullable=True)  # {"phone": ..., "email": ...}
    reference_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)



class Offer(Base):
    """A seller's bid against a buy request."""

    __tablename__ = "offers"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_offers_price_positive"),
        # At most one accepted offer per buy request
        Index(
            "uq_offers_one_accepted_per_request",
            "buy_request_id",
            unique=True,
            sqlite_where=text("status = 'accepted'"),
            postgresql_where=text("status = 'accepted'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    buy_request_id = Column(
        String(36), ForeignKey("buy_requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    seller_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    images = Column(JSON, default=list)  # first entry is the principal image
    delivery_term = Column(String(20), nullable=False)  # DeliveryTerm
    contact_info = Column(JSON, nullable=True)  # {"zone": ..., "condition": ...}
    status = Column(String(20), nullable=False, default="pending", index=True)  # OfferStatus
    rejection_reason = Column(Text, nullable=True)
    price_history = Column(JSON, default=list)  # [{price, timestamp, type}]
    # created_at is an audit fact and never rewritten; list ordering uses last_activity_at
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    last_activity_at = Column(DateTime, default=_utcnow)

    # Relationships
    buy_request = relationship("BuyRequest", back_populates="offers")
    events = relationship(
        "OfferEvent", back_populates="offer", cascade="all, delete-orphan", passive_deletes=True,
    )


class OfferEvent(Base):
    """Immutable audit trail entry for offer state transitions."""

    __tablename__ = "offer_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    offer_id = Column(String(36), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)  # OfferEventType
    actor = Column(String(20), nullable=False)  # OfferActor
    actor_id = Column(String(36), nullable=True)
    from_status = Column(String(20), nullable=True)  # OfferStatus
    to_status = Column(String(20), nullable=True)  # OfferStatus
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    # Relationships
    offer = relationship("Offer", back_populates="events")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class Chat(Base):
    """Private channel between a buyer and the seller whose offer they accepted."""

    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("buy_request_id", "buyer_id", "seller_id", name="uq_chats_participants"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    buy_request_id = Column(
        String(36), ForeignKey("buy_requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    buyer_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    seller_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    offer_id = Column(String(36), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    messages = relationship(
        "ChatMessage", back_populates="chat", cascade="all, delete-orphan", passive_deletes=True,
        order_by="ChatMessage.created_at",
    )


class ChatMessage(Base):
    """Append-only message inside a chat."""

    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    # Relationships
    chat = relationship("Chat", back_populates="messages")


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class Review(Base):
    """Star rating left by one party of an accepted offer about the other."""

    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
        UniqueConstraint("offer_id", "reviewer_id", name="uq_reviews_one_per_reviewer"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    offer_id = Column(String(36), ForeignKey("offers.id", ondelete="CASCADE"), nullable=True, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reviewer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reviewee_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    rating = Column(Integer, nullable=False)
    review_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
