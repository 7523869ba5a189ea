"""Sale listing endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.routes.auth import get_current_user_dep
from locompro.app.routes.errors import http_error
from locompro.domain.models import User
from locompro.domain.schemas import PostCreate, PostResponse, PostUpdate
from locompro.infra.database import get_db
from locompro.services import post_service
from locompro.services.errors import MarketplaceError

router = APIRouter(prefix="/api/posts", tags=["posts"])


@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        post = await post_service.create_post(db, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return PostResponse.model_validate(post)


@router.get("", response_model=list[PostResponse])
async def list_posts(
    zone: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    try:
        posts = await post_service.list_posts(db, owner_id=user_id, zone=zone, limit=limit, offset=offset)
    except MarketplaceError as e:
        raise http_error(e)
    return [PostResponse.model_validate(p) for p in posts]


@router.get("/mine", response_model=list[PostResponse])
async def list_my_posts(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        posts = await post_service.list_posts(db, owner_id=user.id)
    except MarketplaceError as e:
        raise http_error(e)
    return [PostResponse.model_validate(p) for p in posts]


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: str, db: AsyncSession = Depends(get_db)):
    try:
        post = await post_service.get_post(db, post_id)
    except MarketplaceError as e:
        raise http_error(e)
    return PostResponse.model_validate(post)


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: str,
    body: PostUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        post = await post_service.update_post(db, post_id, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return PostResponse.model_validate(post)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        await post_service.delete_post(db, post_id, user.id)
    except MarketplaceError as e:
        raise http_error(e)
