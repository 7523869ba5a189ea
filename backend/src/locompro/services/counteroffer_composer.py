"""Reopens a rejected offer as a fresh pending bid.

The offer record is reused: the seller's revised terms overwrite the old
ones, the rejection reason is cleared, and the replaced price goes into the
price history ledger if (and only if) the price actually moved.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.enums import (
    BuyRequestStatus,
    OfferAction,
    OfferActor,
    OfferEventType,
    OfferStatus,
)
from locompro.domain.models import BuyRequest, Offer
from locompro.domain.schemas import OfferContent
from locompro.infra import offer_store
from locompro.infra.offer_store import store_errors
from locompro.services.errors import NotFoundError, StateConflictError
from locompro.services.offer_content import content_columns, validate_offer_content
from locompro.services.offer_state_machine import OfferStateMachine, resolve_actor
from locompro.services.price_history import append_if_changed, price_changed

logger = logging.getLogger(__name__)

state_machine = OfferStateMachine()


def compose_counteroffer(offer: Offer, content: OfferContent, now: datetime) -> dict:
    """Build the column values that turn ``offer`` back into a pending bid.

    Pure: reads ``offer`` and returns a dict, nothing is written.
    """
    values = content_columns(content)
    values["price_history"] = append_if_changed(
        offer.price_history, offer.price, values["price"], timestamp=now,
    )
    values["rejection_reason"] = None
    values["last_activity_at"] = now
    values["updated_at"] = now
    return values


async def counteroffer(
    db: AsyncSession, offer_id: str, actor_id: str, content: OfferContent,
) -> Offer:
    """Resubmit a rejected offer with revised terms on behalf of its seller."""
    validate_offer_content(content)

    async with store_errors(db, "counteroffer"):
        offer = await offer_store.get_offer(db, offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        buy_request = await offer_store.get_buy_request(db, offer.buy_request_id)
        if buy_request is None:
            raise NotFoundError("BuyRequest", offer.buy_request_id)

        actor = resolve_actor(actor_id, offer.seller_id, buy_request.user_id)
        state_machine.validate(OfferAction.COUNTEROFFER, offer.status, actor)
        if buy_request.status != BuyRequestStatus.ACTIVE.value:
            raise StateConflictError(
                f"Buy request {buy_request.id} is {buy_request.status}; it no longer takes counteroffers",
                current_status=offer.status,
                target_status=OfferStatus.PENDING.value,
            )

        request_id = buy_request.id
        now = datetime.now(timezone.utc)
        previous_price = float(offer.price)
        values = compose_counteroffer(offer, content, now)
        history_appended = price_changed(offer.price, values["price"])

        # status guard re-checked by the UPDATE itself
        swapped = await offer_store.update_offer_status(
            db, offer.id, OfferStatus.PENDING, expected=OfferStatus.REJECTED, **values,
        )
        if not swapped:
            await db.rollback()
            raise StateConflictError(
                f"Offer {offer_id} is no longer rejected",
                current_status=None,
                target_status=OfferStatus.PENDING.value,
            )

        # An acceptance committed in between closes the request
        status_now = await db.scalar(
            select(BuyRequest.status).where(BuyRequest.id == request_id)
        )
        if status_now != BuyRequestStatus.ACTIVE.value:
            await db.rollback()
            raise StateConflictError(f"Buy request {request_id} was closed while the counteroffer was sent")

        offer_store.record_event(
            db, offer_id, OfferEventType.COUNTEROFFERED, OfferActor.SELLER, actor_id,
            from_status=OfferStatus.REJECTED.value,
            to_status=OfferStatus.PENDING.value,
            data={
                "previous_price": previous_price,
                "new_price": float(values["price"]),
                "history_appended": history_appended,
            },
        )
        await db.commit()

    await db.refresh(offer)
    logger.info(
        "Counteroffer submitted: offer=%s price %.2f -> %.2f (history %s)",
        offer_id, previous_price, float(offer.price),
        "appended" if history_appended else "unchanged",
    )
    return offer
