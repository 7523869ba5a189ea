"""Chat access for the two parties of an accepted offer."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.config import get_settings
from locompro.domain.models import Chat, ChatMessage
from locompro.infra.offer_store import store_errors
from locompro.services.errors import NotFoundError, OfferValidationError, UnauthorizedError

logger = logging.getLogger(__name__)


async def get_chat_for_participant(db: AsyncSession, chat_id: str, user_id: str) -> Chat:
    async with store_errors(db, "get_chat"):
        result = await db.execute(select(Chat).where(Chat.id == chat_id))
    chat = result.scalar_one_or_none()
    if chat is None:
        raise NotFoundError("Chat", chat_id)
    if user_id not in (chat.buyer_id, chat.seller_id):
        raise UnauthorizedError("Only the buyer and the seller can access this chat")
    return chat


async def list_chats_for_user(db: AsyncSession, user_id: str) -> list[Chat]:
    async with store_errors(db, "list_chats"):
        result = await db.execute(
            select(Chat)
            .where(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id))
            .order_by(Chat.updated_at.desc())
        )
    return list(result.scalars().all())


async def list_messages(db: AsyncSession, chat_id: str, user_id: str) -> list[ChatMessage]:
    await get_chat_for_participant(db, chat_id, user_id)
    async with store_errors(db, "list_messages"):
        result = await db.execute(
            select(ChatMessage)
            .where(ChatMessage.chat_id == chat_id)
            .order_by(ChatMessage.created_at.asc())
        )
    return list(result.scalars().all())


async def send_message(db: AsyncSession, chat_id: str, sender_id: str, text: str) -> ChatMessage:
    body = (text or "").strip()
    if not body:
        raise OfferValidationError("message", "Message cannot be empty")
    max_length = get_settings().chat_message_max_length
    if len(body) > max_length:
        raise OfferValidationError("message", f"Message is longer than {max_length} characters")

    async with store_errors(db, "send_message"):
        chat = await get_chat_for_participant(db, chat_id, sender_id)
        now = datetime.now(timezone.utc)
        message = ChatMessage(
            id=str(uuid.uuid4()),
            chat_id=chat.id,
            sender_id=sender_id,
            message=body,
            created_at=now,
        )
        db.add(message)
        chat.updated_at = now
        await db.commit()

    logger.info("Chat message sent: chat=%s sender=%s", chat_id, sender_id)
    return message
