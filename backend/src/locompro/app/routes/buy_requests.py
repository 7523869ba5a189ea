"""Buy request API endpoints, including offer submission and listing."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.routes.auth import get_current_user_dep, get_optional_user_dep
from locompro.app.routes.errors import http_error
from locompro.app.routes.offers import serialize_offer
from locompro.domain.enums import BuyRequestStatus
from locompro.domain.models import User
from locompro.domain.schemas import (
    BuyRequestCreate,
    BuyRequestResponse,
    BuyRequestUpdate,
    OfferContent,
    OfferResponse,
)
from locompro.infra.database import get_db
from locompro.services import buy_request_service, offer_service
from locompro.services.errors import MarketplaceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/buy-requests", tags=["buy-requests"])


@router.post("", response_model=BuyRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_buy_request(
    body: BuyRequestCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        buy_request = await buy_request_service.create_buy_request(db, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return BuyRequestResponse.model_validate(buy_request)


@router.get("", response_model=list[BuyRequestResponse])
async def list_buy_requests(
    status_filter: Optional[BuyRequestStatus] = Query(BuyRequestStatus.ACTIVE, alias="status"),
    mine: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: Optional[User] = Depends(get_optional_user_dep),
    db: AsyncSession = Depends(get_db),
):
    owner_id = None
    if mine:
        if user is None:
            raise HTTPException(status_code=401, detail="Log in to see your buy requests")
        owner_id = user.id
        status_filter = None
    try:
        buy_requests = await buy_request_service.list_buy_requests(
            db, status=status_filter, owner_id=owner_id, limit=limit, offset=offset,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return [BuyRequestResponse.model_validate(br) for br in buy_requests]


@router.get("/{buy_request_id}", response_model=BuyRequestResponse)
async def get_buy_request(buy_request_id: str, db: AsyncSession = Depends(get_db)):
    try:
        buy_request = await buy_request_service.get_buy_request(db, buy_request_id)
    except MarketplaceError as e:
        raise http_error(e)
    return BuyRequestResponse.model_validate(buy_request)


@router.patch("/{buy_request_id}", response_model=BuyRequestResponse)
async def update_buy_request(
    buy_request_id: str,
    body: BuyRequestUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        buy_request = await buy_request_service.update_buy_request(db, buy_request_id, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return BuyRequestResponse.model_validate(buy_request)


@router.delete("/{buy_request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_buy_request(
    buy_request_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        await buy_request_service.delete_buy_request(db, buy_request_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)


# ---------------------------------------------------------------------------
# Offers on a buy request
# ---------------------------------------------------------------------------


@router.post(
    "/{buy_request_id}/offers",
    response_model=OfferResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_offer(
    buy_request_id: str,
    body: OfferContent,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        offer = await offer_service.create_offer(db, buy_request_id, user.id, body)
        buy_request = await buy_request_service.get_buy_request(db, buy_request_id)
    except MarketplaceError as e:
        raise http_error(e)
    return serialize_offer(offer, buy_request, user.id)


@router.get("/{buy_request_id}/offers", response_model=list[OfferResponse])
async def list_offers(
    buy_request_id: str,
    order_by: str = Query("recent", pattern="^(recent|created|price)$"),
    user: Optional[User] = Depends(get_optional_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        buy_request = await buy_request_service.get_buy_request(db, buy_request_id)
        offers = await offer_service.list_offers_for_buy_request(db, buy_request_id, order_by=order_by)
    except MarketplaceError as e:
        raise http_error(e)
    viewer_id = user.id if user else None
    return [serialize_offer(offer, buy_request, viewer_id) for offer in offers]
