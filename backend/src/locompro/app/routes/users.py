"""Profile endpoints: public profile, self-service edit and account deletion."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.routes.auth import get_current_user_dep
from locompro.app.routes.errors import http_error
from locompro.domain.models import User
from locompro.domain.schemas import ProfileUpdate, PublicProfile, UserResponse
from locompro.infra.database import get_db
from locompro.services import profile_service
from locompro.services.errors import MarketplaceError

router = APIRouter(prefix="/api/users", tags=["users"])


@router.patch("/me", response_model=UserResponse)
async def update_my_profile(
    body: ProfileUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        updated = await profile_service.update_profile(db, user.id, body)
    except MarketplaceError as e:
        raise http_error(e)
    return UserResponse.model_validate(updated)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
async def delete_my_account(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Remove the account with its buy requests, offers, chats, reviews and posts."""
    try:
        await profile_service.delete_account(db, user.id)
    except MarketplaceError as e:
        raise http_error(e)


@router.get("/{user_id}", response_model=PublicProfile)
async def get_profile(user_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await profile_service.get_public_profile(db, user_id)
    except MarketplaceError as e:
        raise http_error(e)
