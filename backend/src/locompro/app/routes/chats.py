"""Chat endpoints for buyers and sellers of accepted offers."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.routes.auth import get_current_user_dep
from locompro.app.routes.errors import http_error
from locompro.domain.models import User
from locompro.domain.schemas import ChatMessageCreate, ChatMessageResponse, ChatResponse
from locompro.infra.database import get_db
from locompro.services import chat_service
from locompro.services.errors import MarketplaceError

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.get("", response_model=list[ChatResponse])
async def list_chats(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        chats = await chat_service.list_chats_for_user(db, user.id)
    except MarketplaceError as e:
        raise http_error(e)
    return [ChatResponse.model_validate(c) for c in chats]


@router.get("/{chat_id}/messages", response_model=list[ChatMessageResponse])
async def list_messages(
    chat_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        messages = await chat_service.list_messages(db, chat_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)
    return [ChatMessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{chat_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    chat_id: str,
    body: ChatMessageCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        message = await chat_service.send_message(db, chat_id, user.id, body.message)
    except MarketplaceError as e:
        raise http_error(e)
    return ChatMessageResponse.model_validate(message)
