"""Ratings left by buyer and seller once an offer has been accepted.

Stored as-is; no aggregation beyond a simple average for profile display.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.enums import OfferStatus
from locompro.domain.models import Review
from locompro.infra import offer_store
from locompro.infra.offer_store import store_errors
from locompro.services.errors import (
    NotFoundError,
    OfferValidationError,
    StateConflictError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)


async def create_review(
    db: AsyncSession,
    offer_id: str,
    reviewer_id: str,
    rating: int,
    review_text: Optional[str] = None,
) -> Review:
    """Rate the other party of an accepted offer. One review per reviewer per offer."""
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise OfferValidationError("rating", "Rating must be between 1 and 5")

    async with store_errors(db, "create_review"):
        offer = await offer_store.get_offer(db, offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        buy_request = await offer_store.get_buy_request(db, offer.buy_request_id)
        if buy_request is None:
            raise NotFoundError("BuyRequest", offer.buy_request_id)

        buyer_id, seller_id = buy_request.user_id, offer.seller_id
        if reviewer_id == buyer_id:
            reviewee_id = seller_id
        elif reviewer_id == seller_id:
            reviewee_id = buyer_id
        else:
            raise UnauthorizedError("Only the buyer or the seller of this offer can review it")

        if offer.status != OfferStatus.ACCEPTED.value:
            raise StateConflictError(f"Only accepted offers can be reviewed (offer is {offer.status})")

        review = Review(
            id=str(uuid.uuid4()),
            offer_id=offer_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            rating=rating,
            review_text=(review_text or "").strip() or None,
            created_at=datetime.now(timezone.utc),
        )
        db.add(review)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise StateConflictError("You already reviewed this offer")

    logger.info("Review stored: offer=%s reviewer=%s rating=%d", offer_id, reviewer_id, rating)
    return review


async def list_reviews_for_user(db: AsyncSession, user_id: str) -> list[Review]:
    async with store_errors(db, "list_reviews"):
        result = await db.execute(
            select(Review)
            .where(Review.reviewee_id == user_id)
            .order_by(Review.created_at.desc())
        )
    return list(result.scalars().all())


async def rating_summary(db: AsyncSession, user_id: str) -> tuple[Optional[float], int]:
    """Average rating (2 decimals, None without reviews) and review count."""
    async with store_errors(db, "rating_summary"):
        row = (await db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.reviewee_id == user_id)
        )).one()
    value, count = row
    return (round(float(value), 2) if value is not None else None), count


async def average_rating(db: AsyncSession, user_id: str) -> Optional[float]:
    average, _ = await rating_summary(db, user_id)
    return average
