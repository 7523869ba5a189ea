"""User profiles: public view with rating, self-service edit and account deletion."""

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.models import (
    BuyRequest,
    Chat,
    ChatMessage,
    Offer,
    OfferEvent,
    Post,
    Review,
    User,
)
from locompro.domain.schemas import ProfileUpdate, PublicProfile
from locompro.infra.offer_store import store_errors
from locompro.services import review_service
from locompro.services.errors import NotFoundError, OfferValidationError

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: str) -> User:
    async with store_errors(db, "get_user"):
        result = await db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise NotFoundError("User", user_id)
    return user


async def get_public_profile(db: AsyncSession, user_id: str) -> PublicProfile:
    user = await get_user(db, user_id)
    average, count = await review_service.rating_summary(db, user_id)
    profile = PublicProfile.model_validate(user)
    profile.average_rating = average
    profile.review_count = count
    return profile


async def update_profile(db: AsyncSession, user_id: str, changes: ProfileUpdate) -> User:
    """Apply the fields the caller sent. Blank strings clear a field."""
    fields = changes.model_dump(exclude_unset=True)
    if "avatar_url" in fields and fields["avatar_url"] and len(fields["avatar_url"]) > 500:
        raise OfferValidationError("avatar_url", "Avatar URL is too long")

    async with store_errors(db, "update_profile"):
        user = await get_user(db, user_id)
        for key, value in fields.items():
            setattr(user, key, (value or "").strip() or None)
        user.updated_at = datetime.now(timezone.utc)
        await db.commit()

    logger.info("Profile updated: user=%s fields=%s", user_id, sorted(fields))
    return user


async def delete_account(db: AsyncSession, user_id: str) -> dict[str, int]:
    """Delete the user and everything they own or took part in, in one transaction.

    Children go before parents so the order holds with or without database
    level cascades. Returns the number of rows removed per table.
    """
    own_requests = select(BuyRequest.id).where(BuyRequest.user_id == user_id)
    touched_offers = select(Offer.id).where(
        or_(Offer.seller_id == user_id, Offer.buy_request_id.in_(own_requests))
    )
    user_chats = select(Chat.id).where(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id))

    steps = [
        ("chat_messages", delete(ChatMessage).where(
            or_(ChatMessage.sender_id == user_id, ChatMessage.chat_id.in_(user_chats))
        )),
        ("chats", delete(Chat).where(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id))),
        ("reviews", delete(Review).where(
            or_(Review.buyer_id == user_id, Review.seller_id == user_id, Review.offer_id.in_(touched_offers))
        )),
        ("offer_events", delete(OfferEvent).where(OfferEvent.offer_id.in_(touched_offers))),
        ("offers", delete(Offer).where(
            or_(Offer.seller_id == user_id, Offer.buy_request_id.in_(own_requests))
        )),
        ("buy_requests", delete(BuyRequest).where(BuyRequest.user_id == user_id)),
        ("posts", delete(Post).where(Post.user_id == user_id)),
        ("users", delete(User).where(User.id == user_id)),
    ]

    removed: dict[str, int] = {}
    async with store_errors(db, "delete_account"):
        await get_user(db, user_id)
        for table, stmt in steps:
            result = await db.execute(stmt.execution_options(synchronize_session=False))
            removed[table] = result.rowcount
        await db.commit()

    db.expunge_all()
    logger.info("Account deleted: user=%s removed=%s", user_id, removed)
    return removed
