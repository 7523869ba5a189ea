"""Everything that happens when a buyer accepts an offer.

Steps 1-3 run in one transaction so nobody ever observes two accepted offers
on a buy request, or an accepted offer next to still-pending siblings:

1. offer pending -> accepted (conditional update)
2. every other pending offer on the buy request -> finalized
3. buy request active -> closed (conditional update)

Step 4, opening the buyer/seller chat, runs after the commit. If it fails the
acceptance still stands; the error is logged and handed back so the caller
can retry with ``open_chat``.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.domain.enums import (
    BuyRequestStatus,
    OfferAction,
    OfferActor,
    OfferEventType,
    OfferStatus,
)
from locompro.domain.models import Chat, Offer
from locompro.infra import offer_store
from locompro.infra.offer_store import store_errors
from locompro.services.errors import NotFoundError, StateConflictError, UnauthorizedError
from locompro.services.offer_state_machine import OfferStateMachine, resolve_actor

logger = logging.getLogger(__name__)

state_machine = OfferStateMachine()


@dataclass
class AcceptanceResult:
    """Outcome of a successful acceptance."""

    offer: Offer
    finalized_offer_ids: list[str] = field(default_factory=list)
    buy_request_closed: bool = False
    chat: Optional[Chat] = None
    chat_error: Optional[str] = None


async def accept(db: AsyncSession, offer_id: str, actor_id: str) -> AcceptanceResult:
    """Accept ``offer_id`` on behalf of ``actor_id``, who must own the buy request.

    Raises NotFoundError, UnauthorizedError or StateConflictError before any
    write when a guard fails. Raises DependencyFailureError if the database
    errors; the transaction is rolled back so nothing is half-applied.
    """
    async with store_errors(db, "accept_offer"):
        offer = await offer_store.get_offer(db, offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        buy_request = await offer_store.get_buy_request(db, offer.buy_request_id)
        if buy_request is None:
            raise NotFoundError("BuyRequest", offer.buy_request_id)

        actor = resolve_actor(actor_id, offer.seller_id, buy_request.user_id)
        state_machine.validate(OfferAction.ACCEPT, offer.status, actor)

        if buy_request.status != BuyRequestStatus.ACTIVE.value:
            raise StateConflictError(
                f"Buy request {buy_request.id} is {buy_request.status}; it no longer takes acceptances",
                current_status=offer.status,
                target_status=OfferStatus.ACCEPTED.value,
            )

        # Rollback expires loaded rows, so keep plain copies of the keys
        accepted_id = offer.id
        request_id = buy_request.id
        buyer_id = buy_request.user_id

        try:
            accepted = await offer_store.update_offer_status(
                db, accepted_id, OfferStatus.ACCEPTED, expected=OfferStatus.PENDING,
            )
            if not accepted:
                await db.rollback()
                raise StateConflictError(
                    f"Offer {accepted_id} changed status while being accepted",
                    current_status=None,
                    target_status=OfferStatus.ACCEPTED.value,
                )

            finalized_ids = await offer_store.finalize_pending_siblings(db, request_id, accepted_id)

            closed = await offer_store.update_buy_request_status(
                db, request_id, BuyRequestStatus.CLOSED, expected=BuyRequestStatus.ACTIVE,
            )
            if not closed:
                await db.rollback()
                raise StateConflictError(
                    f"Buy request {request_id} was closed by a concurrent acceptance",
                    current_status=OfferStatus.PENDING.value,
                    target_status=OfferStatus.ACCEPTED.value,
                )

            offer_store.record_event(
                db, accepted_id, OfferEventType.ACCEPTED, OfferActor.OWNER, actor_id,
                from_status=OfferStatus.PENDING.value,
                to_status=OfferStatus.ACCEPTED.value,
                data={"finalized_offer_ids": finalized_ids, "buy_request_closed": True},
            )
            for sibling_id in finalized_ids:
                offer_store.record_event(
                    db, sibling_id, OfferEventType.FINALIZED, OfferActor.SYSTEM, None,
                    from_status=OfferStatus.PENDING.value,
                    to_status=OfferStatus.FINALIZED.value,
                    data={"accepted_offer_id": accepted_id},
                )

            await db.commit()
        except IntegrityError:
            # uq_offers_one_accepted_per_request: another offer won the race
            await db.rollback()
            raise StateConflictError(
                f"Another offer on buy request {request_id} is already accepted",
                current_status=OfferStatus.PENDING.value,
                target_status=OfferStatus.ACCEPTED.value,
            )

    logger.info(
        "Offer accepted: offer=%s buy_request=%s finalized=%d",
        accepted_id, request_id, len(finalized_ids),
    )

    await db.refresh(offer)
    result = AcceptanceResult(
        offer=offer,
        finalized_offer_ids=finalized_ids,
        buy_request_closed=True,
    )

    try:
        result.chat = await _open_chat_for(db, offer, buyer_id, actor_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Chat creation failed after accepting offer %s: %s", accepted_id, exc)
        result.chat_error = "Offer accepted, but the chat could not be opened. Please retry."
        await db.refresh(offer)

    return result


async def _open_chat_for(db: AsyncSession, offer: Offer, buyer_id: str, actor_id: str) -> Chat:
    chat, created = await offer_store.find_or_create_chat(
        db, offer.buy_request_id, buyer_id, offer.seller_id, offer.id,
    )
    if created:
        actor = OfferActor.OWNER if actor_id == buyer_id else OfferActor.SELLER
        offer_store.record_event(
            db, offer.id, OfferEventType.CHAT_OPENED, actor, actor_id,
            from_status=OfferStatus.ACCEPTED.value,
            to_status=OfferStatus.ACCEPTED.value,
            data={"chat_id": chat.id},
        )
        await db.commit()
        logger.info("Chat %s opened for offer %s", chat.id, offer.id)
    return chat


async def open_chat(db: AsyncSession, offer_id: str, actor_id: str) -> Chat:
    """Find or create the chat for an accepted offer. Safe to call repeatedly.

    Either party of the accepted offer may call it, e.g. to retry after
    ``accept`` reported a ``chat_error``.
    """
    async with store_errors(db, "open_chat"):
        offer = await offer_store.get_offer(db, offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        buy_request = await offer_store.get_buy_request(db, offer.buy_request_id)
        if buy_request is None:
            raise NotFoundError("BuyRequest", offer.buy_request_id)

        if resolve_actor(actor_id, offer.seller_id, buy_request.user_id) is None:
            raise UnauthorizedError("Only the buyer or the seller of this offer can open its chat")
        if offer.status != OfferStatus.ACCEPTED.value:
            raise StateConflictError(
                f"Chat is only available for accepted offers (offer is {offer.status})",
            )

        return await _open_chat_for(db, offer, buy_request.user_id, actor_id)


async def finalize_siblings(db: AsyncSession, buy_request_id: str) -> list[str]:
    """Re-run the finalize sweep for a buy request that has an accepted offer.

    Returns the ids moved to finalized (empty when already consistent).
    """
    async with store_errors(db, "finalize_siblings"):
        accepted = await offer_store.list_offers_for_buy_request(
            db, buy_request_id, status=OfferStatus.ACCEPTED,
        )
        if not accepted:
            raise StateConflictError(f"Buy request {buy_request_id} has no accepted offer")

        accepted_id = accepted[0].id
        finalized_ids = await offer_store.finalize_pending_siblings(db, buy_request_id, accepted_id)
        for sibling_id in finalized_ids:
            offer_store.record_event(
                db, sibling_id, OfferEventType.FINALIZED, OfferActor.SYSTEM, None,
                from_status=OfferStatus.PENDING.value,
                to_status=OfferStatus.FINALIZED.value,
                data={"accepted_offer_id": accepted_id, "sweep": "retry"},
            )
        await db.commit()

    if finalized_ids:
        logger.warning(
            "Finalize sweep on buy_request=%s caught %d stray pending offers",
            buy_request_id, len(finalized_ids),
        )
    return finalized_ids
