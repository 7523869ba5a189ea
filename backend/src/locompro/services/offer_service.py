"""Offer operations other than acceptance and counteroffer.

Covers submitting, editing, rejecting and deleting offers, plus the read
helpers the routes use. Acceptance lives in ``acceptance_orchestrator`` and
counteroffers in ``counteroffer_composer``; all of them validate through
OfferStateMachine.
"""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.enums import (
    BuyRequestStatus,
    OfferAction,
    OfferActor,
    OfferEventType,
    OfferStatus,
    RejectionReason,
)
from locompro.domain.models import BuyRequest, Offer, OfferEvent
from locompro.domain.schemas import OfferContent, OfferEdit
from locompro.infra import offer_store
from locompro.infra.offer_store import store_errors
from locompro.services.errors import (
    NotFoundError,
    OfferValidationError,
    StateConflictError,
    UnauthorizedError,
)
from locompro.services.offer_content import content_columns, validate_offer_content
from locompro.services.offer_state_machine import (
    DELETABLE_STATES,
    OfferStateMachine,
    resolve_actor,
)
from locompro.services.price_history import price_changed

logger = logging.getLogger(__name__)

state_machine = OfferStateMachine()

REJECTION_REASONS: list[str] = [r.value for r in RejectionReason]


def resolve_rejection_reason(reason: Optional[str], custom_reason: Optional[str] = None) -> str:
    """Return the text to store as rejection_reason, or raise OfferValidationError.

    ``reason`` is one of REJECTION_REASONS or free text. Choosing "Other"
    requires ``custom_reason``, which is what gets stored.
    """
    chosen = (reason or "").strip()
    if not chosen:
        raise OfferValidationError("reason", "A rejection reason is required")
    if chosen == RejectionReason.OTHER.value:
        custom = (custom_reason or "").strip()
        if not custom:
            raise OfferValidationError("custom_reason", "Describe the reason when choosing 'Other'")
        return custom
    return chosen


async def _load(db: AsyncSession, offer_id: str) -> tuple[Offer, BuyRequest]:
    offer = await offer_store.get_offer(db, offer_id)
    if offer is None:
        raise NotFoundError("Offer", offer_id)
    buy_request = await offer_store.get_buy_request(db, offer.buy_request_id)
    if buy_request is None:
        raise NotFoundError("BuyRequest", offer.buy_request_id)
    return offer, buy_request


# ---------------------------------------------------------------------------
# Create / edit
# ---------------------------------------------------------------------------


async def create_offer(
    db: AsyncSession, buy_request_id: str, seller_id: str, content: OfferContent,
) -> Offer:
    """Submit a new pending offer against an active buy request."""
    validate_offer_content(content)

    async with store_errors(db, "create_offer"):
        buy_request = await offer_store.get_buy_request(db, buy_request_id)
        if buy_request is None:
            raise NotFoundError("BuyRequest", buy_request_id)
        if buy_request.user_id == seller_id:
            raise UnauthorizedError("You cannot send an offer to your own buy request")
        state_machine.validate(OfferAction.CREATE, None, OfferActor.SELLER)
        if buy_request.status != BuyRequestStatus.ACTIVE.value:
            raise StateConflictError(f"Buy request {buy_request_id} is {buy_request.status}")

        existing = await offer_store.find_live_offer(db, buy_request_id, seller_id)
        if existing is not None:
            raise StateConflictError(
                f"You already have a {existing.status} offer on this buy request; "
                "edit it or send a counteroffer instead",
            )

        offer = await offer_store.create_offer(db, buy_request_id, seller_id, content_columns(content))

        # Re-read after our write: an acceptance committed in between closes the request
        status_now = await db.scalar(
            select(BuyRequest.status).where(BuyRequest.id == buy_request_id)
        )
        if status_now != BuyRequestStatus.ACTIVE.value:
            await db.rollback()
            raise StateConflictError(f"Buy request {buy_request_id} was closed while the offer was sent")

        offer_store.record_event(
            db, offer.id, OfferEventType.CREATED, OfferActor.SELLER, seller_id,
            to_status=OfferStatus.PENDING.value,
            data={"price": float(offer.price)},
        )
        await db.commit()

    logger.info("Offer created: offer=%s buy_request=%s seller=%s", offer.id, buy_request_id, seller_id)
    return offer


async def edit_offer(db: AsyncSession, offer_id: str, actor_id: str, changes: OfferEdit) -> Offer:
    """Seller content edit. Status and ordering timestamps are left alone.

    A rejected offer cannot change price here: a new price on a rejected
    offer is a counteroffer, which is what records the old price.
    """
    async with store_errors(db, "edit_offer"):
        offer, buy_request = await _load(db, offer_id)
        actor = resolve_actor(actor_id, offer.seller_id, buy_request.user_id)
        current = state_machine.validate(OfferAction.EDIT, offer.status, actor)

        contact = offer.contact_info or {}
        merged = OfferContent(
            title=changes.title if changes.title is not None else offer.title,
            description=changes.description if changes.description is not None else offer.description,
            price=changes.price if changes.price is not None else offer.price,
            delivery_term=changes.delivery_term or offer.delivery_term,
            images=changes.images if changes.images is not None else list(offer.images or []),
            zone=changes.zone if changes.zone is not None else contact.get("zone"),
            condition=changes.condition or contact.get("condition"),
        )
        validate_offer_content(merged)

        if current == OfferStatus.REJECTED and price_changed(offer.price, merged.price):
            raise StateConflictError(
                "Changing the price of a rejected offer must go through a counteroffer",
                current_status=OfferStatus.REJECTED.value,
                target_status=OfferStatus.PENDING.value,
            )

        updated = await offer_store.update_offer_fields(
            db, offer.id, {current}, **content_columns(merged),
        )
        if not updated:
            await db.rollback()
            raise StateConflictError(f"Offer {offer_id} changed status while being edited")

        offer_store.record_event(
            db, offer_id, OfferEventType.EDITED, OfferActor.SELLER, actor_id,
            from_status=current.value, to_status=current.value,
            data={"fields": sorted(changes.model_dump(exclude_none=True).keys())},
        )
        await db.commit()

    await db.refresh(offer)
    logger.info("Offer edited: offer=%s", offer_id)
    return offer


# ---------------------------------------------------------------------------
# Reject / delete
# ---------------------------------------------------------------------------


async def reject(
    db: AsyncSession,
    offer_id: str,
    actor_id: str,
    reason: Optional[str],
    custom_reason: Optional[str] = None,
) -> Offer:
    """Buy request owner rejects a pending offer. Price history is not touched."""
    rejection_reason = resolve_rejection_reason(reason, custom_reason)

    async with store_errors(db, "reject_offer"):
        offer, buy_request = await _load(db, offer_id)
        actor = resolve_actor(actor_id, offer.seller_id, buy_request.user_id)
        state_machine.validate(OfferAction.REJECT, offer.status, actor)

        swapped = await offer_store.update_offer_status(
            db, offer.id, OfferStatus.REJECTED, expected=OfferStatus.PENDING,
            rejection_reason=rejection_reason,
        )
        if not swapped:
            await db.rollback()
            raise StateConflictError(
                f"Offer {offer_id} is no longer pending",
                target_status=OfferStatus.REJECTED.value,
            )

        offer_store.record_event(
            db, offer_id, OfferEventType.REJECTED, OfferActor.OWNER, actor_id,
            from_status=OfferStatus.PENDING.value,
            to_status=OfferStatus.REJECTED.value,
            data={"reason": rejection_reason},
        )
        await db.commit()

    await db.refresh(offer)
    logger.info("Offer rejected: offer=%s reason=%r", offer_id, rejection_reason)
    return offer


async def delete_offer(db: AsyncSession, offer_id: str, actor_id: str) -> None:
    """Seller withdraws a pending or rejected offer."""
    async with store_errors(db, "delete_offer"):
        offer, buy_request = await _load(db, offer_id)
        actor = resolve_actor(actor_id, offer.seller_id, buy_request.user_id)
        previous = state_machine.validate(OfferAction.DELETE, offer.status, actor)

        result = await db.execute(
            delete(Offer)
            .where(Offer.id == offer_id, Offer.status.in_([s.value for s in DELETABLE_STATES]))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise StateConflictError(f"Offer {offer_id} can no longer be deleted")
        await db.commit()

    db.expunge(offer)
    logger.info("Offer deleted: offer=%s was=%s by seller=%s", offer_id, previous.value, actor_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_offer(db: AsyncSession, offer_id: str) -> Offer:
    async with store_errors(db, "get_offer"):
        offer = await offer_store.get_offer(db, offer_id)
    if offer is None:
        raise NotFoundError("Offer", offer_id)
    return offer


def allowed_actions(offer: Offer, buy_request: BuyRequest, viewer_id: Optional[str]) -> list[str]:
    """Actions the viewer can take on this offer right now, for the UI to render."""
    if viewer_id is None:
        return []
    actor = resolve_actor(viewer_id, offer.seller_id, buy_request.user_id)
    actions = state_machine.get_allowed_actions(offer.status, actor)
    if (
        OfferAction.ACCEPT in actions
        and buy_request.status != BuyRequestStatus.ACTIVE.value
    ):
        actions.remove(OfferAction.ACCEPT)
    return [a.value for a in actions]


async def list_offers_for_buy_request(
    db: AsyncSession, buy_request_id: str, order_by: str = "recent",
) -> list[Offer]:
    async with store_errors(db, "list_offers"):
        buy_request = await offer_store.get_buy_request(db, buy_request_id)
        if buy_request is None:
            raise NotFoundError("BuyRequest", buy_request_id)
        return await offer_store.list_offers_for_buy_request(db, buy_request_id, order_by=order_by)


async def list_offers_by_seller(db: AsyncSession, seller_id: str) -> list[Offer]:
    async with store_errors(db, "list_offers_by_seller"):
        result = await db.execute(
            select(Offer)
            .where(Offer.seller_id == seller_id)
            .order_by(Offer.last_activity_at.desc())
            .execution_options(populate_existing=True)
        )
    return list(result.scalars().all())


async def list_offer_events(db: AsyncSession, offer_id: str, actor_id: str) -> list[OfferEvent]:
    """Audit trail of an offer, visible to its seller and the buy request owner."""
    async with store_errors(db, "list_offer_events"):
        offer, buy_request = await _load(db, offer_id)
        if resolve_actor(actor_id, offer.seller_id, buy_request.user_id) is None:
            raise UnauthorizedError("Only the buyer or the seller can see this offer's history")
        result = await db.execute(
            select(OfferEvent)
            .where(OfferEvent.offer_id == offer_id)
            .order_by(OfferEvent.created_at.asc())
        )
    return list(result.scalars().all())
