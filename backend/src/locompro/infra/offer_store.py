"""Persistence operations the negotiation core relies on.

Every status change goes through a conditional UPDATE (``WHERE status =
:expected``) and reports whether a row matched, so two sessions racing on
the same offer or buy request cannot both win.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.enums import BuyRequestStatus, OfferActor, OfferEventType, OfferStatus
from locompro.domain.models import BuyRequest, Chat, Offer, OfferEvent
from locompro.services.errors import DependencyFailureError
from locompro.services.offer_state_machine import LIVE_STATES

logger = logging.getLogger(__name__)

# Sort keys accepted by list_offers_for_buy_request
OFFER_ORDERINGS = {
    "recent": (Offer.last_activity_at.desc(), Offer.created_at.desc()),
    "created": (Offer.created_at.asc(),),
    "price": (Offer.price.asc(), Offer.last_activity_at.desc()),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


@asynccontextmanager
async def store_errors(db: AsyncSession, operation: str):
    """Roll back and raise DependencyFailureError when the database call fails.

    IntegrityError is passed through untouched: callers treat constraint hits
    as lost races, not as infrastructure faults.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc)
        await db.rollback()
        raise DependencyFailureError(operation, exc) from exc


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_buy_request(db: AsyncSession, buy_request_id: str) -> Optional[BuyRequest]:
    result = await db.execute(
        select(BuyRequest)
        .where(BuyRequest.id == buy_request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_offer(db: AsyncSession, offer_id: str) -> Optional[Offer]:
    result = await db.execute(
        select(Offer).where(Offer.id == offer_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_offers_for_buy_request(
    db: AsyncSession,
    buy_request_id: str,
    order_by: str = "recent",
    status: Optional[OfferStatus] = None,
) -> list[Offer]:
    """All offers on a buy request, any status unless ``status`` is given."""
    stmt = select(Offer).where(Offer.buy_request_id == buy_request_id)
    if status is not None:
        stmt = stmt.where(Offer.status == _value(status))
    stmt = stmt.order_by(*OFFER_ORDERINGS.get(order_by, OFFER_ORDERINGS["recent"]))
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def find_live_offer(db: AsyncSession, buy_request_id: str, seller_id: str) -> Optional[Offer]:
    """The seller's pending or rejected offer on this buy request, if any."""
    result = await db.execute(
        select(Offer).where(
            Offer.buy_request_id == buy_request_id,
            Offer.seller_id == seller_id,
            Offer.status.in_([s.value for s in LIVE_STATES]),
        )
    )
    return result.scalars().first()


async def find_chat(
    db: AsyncSession, buy_request_id: str, buyer_id: str, seller_id: str,
) -> Optional[Chat]:
    result = await db.execute(
        select(Chat).where(
            Chat.buy_request_id == buy_request_id,
            Chat.buyer_id == buyer_id,
            Chat.seller_id == seller_id,
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Writes (caller owns the transaction unless noted)
# ---------------------------------------------------------------------------


async def create_offer(
    db: AsyncSession, buy_request_id: str, seller_id: str, fields: dict,
) -> Offer:
    """Insert a pending offer. Flushes, does not commit."""
    now = _now()
    offer = Offer(
        id=str(uuid.uuid4()),
        buy_request_id=buy_request_id,
        seller_id=seller_id,
        status=OfferStatus.PENDING.value,
        rejection_reason=None,
        price_history=[],
        created_at=now,
        updated_at=now,
        last_activity_at=now,
        **fields,
    )
    db.add(offer)
    await db.flush()
    return offer


async def update_offer_status(
    db: AsyncSession,
    offer_id: str,
    status: OfferStatus,
    expected: OfferStatus,
    **fields,
) -> bool:
    """Compare-and-swap the offer status. Returns False if the row was not ``expected``."""
    values = {"status": _value(status), "updated_at": _now(), **fields}
    result = await db.execute(
        update(Offer)
        .where(Offer.id == offer_id, Offer.status == _value(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def update_offer_fields(
    db: AsyncSession, offer_id: str, expected_statuses: set[OfferStatus], **fields,
) -> bool:
    """Content edit guarded on the offer still being in one of ``expected_statuses``."""
    values = {"updated_at": _now(), **fields}
    result = await db.execute(
        update(Offer)
        .where(Offer.id == offer_id, Offer.status.in_([_value(s) for s in expected_statuses]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def finalize_pending_siblings(
    db: AsyncSession, buy_request_id: str, accepted_offer_id: str,
) -> list[str]:
    """Move every other pending offer on the buy request to finalized.

    Idempotent: a second run finds nothing pending and returns [].
    """
    result = await db.execute(
        update(Offer)
        .where(
            Offer.buy_request_id == buy_request_id,
            Offer.id != accepted_offer_id,
            Offer.status == OfferStatus.PENDING.value,
        )
        .values(status=OfferStatus.FINALIZED.value, updated_at=_now())
        .returning(Offer.id)
        .execution_options(synchronize_session=False)
    )
    return list(result.scalars().all())


async def update_buy_request_status(
    db: AsyncSession,
    buy_request_id: str,
    status: BuyRequestStatus,
    expected: Optional[BuyRequestStatus] = None,
) -> bool:
    """Set the buy request status, optionally guarded on its current status."""
    stmt = update(BuyRequest).where(BuyRequest.id == buy_request_id)
    if expected is not None:
        stmt = stmt.where(BuyRequest.status == _value(expected))
    result = await db.execute(
        stmt.values(status=_value(status), updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_event(
    db: AsyncSession,
    offer_id: str,
    event_type: OfferEventType,
    actor: OfferActor,
    actor_id: Optional[str],
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    data: Optional[dict] = None,
) -> OfferEvent:
    event = OfferEvent(
        id=str(uuid.uuid4()),
        offer_id=offer_id,
        event_type=event_type.value,
        actor=actor.value,
        actor_id=actor_id,
        from_status=from_status,
        to_status=to_status,
        data=data,
        created_at=_now(),
    )
    db.add(event)
    return event


async def find_or_create_chat(
    db: AsyncSession,
    buy_request_id: str,
    buyer_id: str,
    seller_id: str,
    offer_id: str,
) -> tuple[Chat, bool]:
    """Return the chat for the (buy request, buyer, seller) triple, creating it once.

    Commits on its own. Returns ``(chat, created)``. If a concurrent session
    inserts the same triple first, the unique constraint fires and the
    existing row is returned instead.
    """
    existing = await find_chat(db, buy_request_id, buyer_id, seller_id)
    if existing:
        return existing, False

    chat = Chat(
        id=str(uuid.uuid4()),
        buy_request_id=buy_request_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        offer_id=offer_id,
    )
    db.add(chat)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(
            "Chat for buy_request=%s buyer=%s seller=%s created concurrently, reusing",
            buy_request_id, buyer_id, seller_id,
        )
        existing = await find_chat(db, buy_request_id, buyer_id, seller_id)
        if existing is None:
            raise
        return existing, False

    return chat, True
