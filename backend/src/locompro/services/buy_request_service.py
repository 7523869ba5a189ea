"""Buy request CRUD for owners."""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.enums import BuyRequestStatus
from locompro.domain.models import BuyRequest
from locompro.domain.schemas import BuyRequestCreate, BuyRequestUpdate
from locompro.infra import offer_store
from locompro.infra.offer_store import store_errors
from locompro.services.errors import (
    NotFoundError,
    OfferValidationError,
    StateConflictError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

# Columns a partial update may change but never clear
REQUIRED_FIELDS = ("title", "zone", "condition")


def validate_price_range(min_price: Optional[Decimal], max_price: Optional[Decimal]) -> None:
    if min_price is not None and min_price < 0:
        raise OfferValidationError("min_price", "Minimum price cannot be negative")
    if max_price is not None and max_price < 0:
        raise OfferValidationError("max_price", "Maximum price cannot be negative")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise OfferValidationError("min_price", "Minimum price cannot exceed maximum price")


def _validate_text(title: Optional[str], zone: Optional[str]) -> None:
    if title is not None and not title.strip():
        raise OfferValidationError("title", "Title is required")
    if zone is not None and not zone.strip():
        raise OfferValidationError("zone", "Zone is required")


async def create_buy_request(db: AsyncSession, owner_id: str, data: BuyRequestCreate) -> BuyRequest:
    _validate_text(data.title, data.zone)
    validate_price_range(data.min_price, data.max_price)

    now = datetime.now(timezone.utc)
    buy_request = BuyRequest(
        id=str(uuid.uuid4()),
        user_id=owner_id,
        title=data.title.strip(),
        description=data.description or None,
        min_price=data.min_price,
        max_price=data.max_price,
        zone=data.zone.strip(),
        condition=data.condition.value,
        status=BuyRequestStatus.ACTIVE.value,
        images=[img for img in data.images if img],
        reference_url=data.reference_url,
        created_at=now,
        updated_at=now,
    )
    async with store_errors(db, "create_buy_request"):
        db.add(buy_request)
        await db.commit()

    logger.info("Buy request created: id=%s owner=%s", buy_request.id, owner_id)
    return buy_request


async def get_buy_request(db: AsyncSession, buy_request_id: str) -> BuyRequest:
    async with store_errors(db, "get_buy_request"):
        buy_request = await offer_store.get_buy_request(db, buy_request_id)
    if buy_request is None:
        raise NotFoundError("BuyRequest", buy_request_id)
    return buy_request


async def _owned(db: AsyncSession, buy_request_id: str, actor_id: str) -> BuyRequest:
    buy_request = await get_buy_request(db, buy_request_id)
    if buy_request.user_id != actor_id:
        raise UnauthorizedError("Only the owner can modify this buy request")
    return buy_request


async def update_buy_request(
    db: AsyncSession, buy_request_id: str, actor_id: str, changes: BuyRequestUpdate,
) -> BuyRequest:
    """Owner edit. A closed buy request is frozen."""
    async with store_errors(db, "update_buy_request"):
        buy_request = await _owned(db, buy_request_id, actor_id)
        if buy_request.status != BuyRequestStatus.ACTIVE.value:
            raise StateConflictError(f"Buy request {buy_request_id} is closed and cannot be edited")

        fields = changes.model_dump(exclude_unset=True)
        for key in REQUIRED_FIELDS:
            if key in fields and fields[key] is None:
                raise OfferValidationError(key, f"{key.capitalize()} cannot be cleared")
        if "images" in fields and fields["images"] is None:
            fields["images"] = []
        _validate_text(fields.get("title"), fields.get("zone"))
        validate_price_range(
            fields.get("min_price", buy_request.min_price),
            fields.get("max_price", buy_request.max_price),
        )

        for key, value in fields.items():
            if key == "condition":
                value = value.value
            if key in ("title", "zone"):
                value = value.strip()
            setattr(buy_request, key, value)
        buy_request.updated_at = datetime.now(timezone.utc)
        await db.commit()

    logger.info("Buy request updated: id=%s fields=%s", buy_request_id, sorted(fields))
    return buy_request


async def delete_buy_request(db: AsyncSession, buy_request_id: str, actor_id: str) -> None:
    """Owner delete. Offers, chats and messages go with it."""
    async with store_errors(db, "delete_buy_request"):
        buy_request = await _owned(db, buy_request_id, actor_id)
        await db.delete(buy_request)
        await db.commit()
    logger.info("Buy request deleted: id=%s by owner=%s", buy_request_id, actor_id)


async def list_buy_requests(
    db: AsyncSession,
    status: Optional[BuyRequestStatus] = BuyRequestStatus.ACTIVE,
    owner_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[BuyRequest]:
    stmt = select(BuyRequest)
    if status is not None:
        stmt = stmt.where(BuyRequest.status == status.value)
    if owner_id is not None:
        stmt = stmt.where(BuyRequest.user_id == owner_id)
    stmt = stmt.order_by(BuyRequest.created_at.desc()).limit(limit).offset(offset)
    async with store_errors(db, "list_buy_requests"):
        result = await db.execute(stmt)
    return list(result.scalars().all())
