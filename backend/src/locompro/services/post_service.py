"""Sale listings published by sellers, independent of buy requests."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.config import get_settings
from locompro.domain.models import Post
from locompro.domain.schemas import PostCreate, PostUpdate
from locompro.infra.offer_store import store_errors
from locompro.services.buy_request_service import validate_price_range
from locompro.services.errors import NotFoundError, OfferValidationError, UnauthorizedError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "zone", "condition")


def _clean_images(images: Optional[list[str]]) -> list[str]:
    cleaned = [img.strip() for img in (images or []) if img and img.strip()]
    max_images = get_settings().max_post_images
    if len(cleaned) > max_images:
        raise OfferValidationError("images", f"At most {max_images} images are allowed")
    return cleaned


def _required_text(field: str, value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise OfferValidationError(field, f"{field.capitalize()} is required")
    return value.strip()


async def create_post(db: AsyncSession, owner_id: str, data: PostCreate) -> Post:
    validate_price_range(data.min_price, data.max_price)
    now = datetime.now(timezone.utc)
    post = Post(
        id=str(uuid.uuid4()),
        user_id=owner_id,
        title=_required_text("title", data.title),
        description=(data.description or "").strip() or None,
        min_price=data.min_price,
        max_price=data.max_price,
        zone=_required_text("zone", data.zone),
        condition=data.condition.value,
        images=_clean_images(data.images),
        characteristics=data.characteristics or None,
        contact_info=data.contact_info or None,
        reference_url=(data.reference_url or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    async with store_errors(db, "create_post"):
        db.add(post)
        await db.commit()

    logger.info("Post created: id=%s owner=%s", post.id, owner_id)
    return post


async def get_post(db: AsyncSession, post_id: str) -> Post:
    async with store_errors(db, "get_post"):
        result = await db.execute(
            select(Post).where(Post.id == post_id).execution_options(populate_existing=True)
        )
    post = result.scalar_one_or_none()
    if post is None:
        raise NotFoundError("Post", post_id)
    return post


async def _owned(db: AsyncSession, post_id: str, actor_id: str) -> Post:
    post = await get_post(db, post_id)
    if post.user_id != actor_id:
        raise UnauthorizedError("Only the author can modify this post")
    return post


async def update_post(db: AsyncSession, post_id: str, actor_id: str, changes: PostUpdate) -> Post:
    fields = changes.model_dump(exclude_unset=True)
    for key in REQUIRED_FIELDS:
        if key in fields:
            if fields[key] is None:
                raise OfferValidationError(key, f"{key.capitalize()} cannot be cleared")
            if key != "condition":
                fields[key] = _required_text(key, fields[key])
    if "condition" in fields:
        fields["condition"] = fields["condition"].value
    if "images" in fields:
        fields["images"] = _clean_images(fields["images"])

    async with store_errors(db, "update_post"):
        post = await _owned(db, post_id, actor_id)
        validate_price_range(
            fields.get("min_price", post.min_price),
            fields.get("max_price", post.max_price),
        )
        for key, value in fields.items():
            setattr(post, key, value)
        post.updated_at = datetime.now(timezone.utc)
        await db.commit()

    logger.info("Post updated: id=%s fields=%s", post_id, sorted(fields))
    return post


async def delete_post(db: AsyncSession, post_id: str, actor_id: str) -> None:
    async with store_errors(db, "delete_post"):
        post = await _owned(db, post_id, actor_id)
        await db.delete(post)
        await db.commit()
    logger.info("Post deleted: id=%s by owner=%s", post_id, actor_id)


async def list_posts(
    db: AsyncSession,
    owner_id: Optional[str] = None,
    zone: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Post]:
    """Newest first, optionally narrowed to one author or one zone."""
    stmt = select(Post)
    if owner_id is not None:
        stmt = stmt.where(Post.user_id == owner_id)
    if zone:
        stmt = stmt.where(Post.zone == zone.strip())
    stmt = stmt.order_by(Post.created_at.desc()).limit(limit).offset(offset)
    async with store_errors(db, "list_posts"):
        result = await db.execute(stmt)
    return list(result.scalars().all())
