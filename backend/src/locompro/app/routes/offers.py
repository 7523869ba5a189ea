"""Offer negotiation API endpoints.

Every mutation goes through the offer services, which share one
OfferStateMachine; this module only maps HTTP to those calls and
core errors back to HTTP.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.routes.auth import get_current_user_dep, get_optional_user_dep
from locompro.app.routes.errors import http_error
from locompro.domain.models import BuyRequest, Offer, User
from locompro.domain.schemas import (
    AcceptOfferResponse,
    ChatResponse,
    OfferContent,
    OfferEdit,
    OfferEventOut,
    OfferResponse,
    PriceHistoryEntry,
    RejectOfferRequest,
)
from locompro.infra.database import get_db
from locompro.services import (
    acceptance_orchestrator,
    buy_request_service,
    counteroffer_composer,
    offer_service,
)
from locompro.services.errors import MarketplaceError
from locompro.services.price_history import negotiation_trail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/offers", tags=["offers"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def serialize_offer(offer: Offer, buy_request: BuyRequest, viewer_id: Optional[str]) -> OfferResponse:
    """Serialize an offer with the actions the viewer may take on it."""
    response = OfferResponse.model_validate(offer)
    response.allowed_actions = offer_service.allowed_actions(offer, buy_request, viewer_id)
    response.negotiation = [
        PriceHistoryEntry(**entry) for entry in negotiation_trail(offer.price_history, offer.price)
    ]
    return response


async def _serialize(db: AsyncSession, offer: Offer, viewer_id: Optional[str]) -> OfferResponse:
    try:
        buy_request = await buy_request_service.get_buy_request(db, offer.buy_request_id)
    except MarketplaceError as e:
        raise http_error(e)
    return serialize_offer(offer, buy_request, viewer_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/rejection-reasons", response_model=list[str])
async def list_rejection_reasons():
    """Fixed reasons a buyer picks from; "Other" takes free text."""
    return offer_service.REJECTION_REASONS


@router.get("/mine", response_model=list[OfferResponse])
async def list_my_offers(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        offers = await offer_service.list_offers_by_seller(db, user.id)
    except MarketplaceError as e:
        raise http_error(e)
    return [await _serialize(db, offer, user.id) for offer in offers]


@router.get("/{offer_id}", response_model=OfferResponse)
async def get_offer(
    offer_id: str,
    user: Optional[User] = Depends(get_optional_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        offer = await offer_service.get_offer(db, offer_id)
    except MarketplaceError as e:
        raise http_error(e)
    return await _serialize(db, offer, user.id if user else None)


@router.get("/{offer_id}/events", response_model=list[OfferEventOut])
async def list_offer_events(
    offer_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        events = await offer_service.list_offer_events(db, offer_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)
    return [OfferEventOut.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Seller actions
# ---------------------------------------------------------------------------


@router.patch("/{offer_id}", response_model=OfferResponse)
async def edit_offer(
    offer_id: str,
    body: OfferEdit,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        offer = await offer_service.edit_offer(db, offer_id, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return await _serialize(db, offer, user.id)


@router.post("/{offer_id}/counteroffer", response_model=OfferResponse)
async def counteroffer(
    offer_id: str,
    body: OfferContent,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        offer = await counteroffer_composer.counteroffer(db, offer_id, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return await _serialize(db, offer, user.id)


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        await offer_service.delete_offer(db, offer_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)


# ---------------------------------------------------------------------------
# Buyer actions
# ---------------------------------------------------------------------------


@router.post("/{offer_id}/accept", response_model=AcceptOfferResponse)
async def accept_offer(
    offer_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await acceptance_orchestrator.accept(db, offer_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)

    if result.chat_error:
        logger.warning("Offer %s accepted without chat: %s", offer_id, result.chat_error)

    return AcceptOfferResponse(
        offer=await _serialize(db, result.offer, user.id),
        finalized_offer_ids=result.finalized_offer_ids,
        buy_request_closed=result.buy_request_closed,
        chat_id=result.chat.id if result.chat else None,
        chat_error=result.chat_error,
    )


@router.post("/{offer_id}/reject", response_model=OfferResponse)
async def reject_offer(
    offer_id: str,
    body: RejectOfferRequest,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        offer = await offer_service.reject(db, offer_id, user.id, body.reason, body.custom_reason)
    except MarketplaceError as e:
        raise http_error(e)
    return await _serialize(db, offer, user.id)


@router.post("/{offer_id}/chat", response_model=ChatResponse)
async def open_offer_chat(
    offer_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Find or create the chat of an accepted offer (retry path after accept)."""
    try:
        chat = await acceptance_orchestrator.open_chat(db, offer_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)
    return ChatResponse.model_validate(chat)
