"""Review endpoints: rate the other party of an accepted offer."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from locompro.app.routes.auth import get_current_user_dep
from locompro.app.routes.errors import http_error
from locompro.domain.models import User
from locompro.domain.schemas import ReviewCreate, ReviewResponse
from locompro.infra.database import get_db
from locompro.services import review_service
from locompro.services.errors import MarketplaceError

router = APIRouter(tags=["reviews"])


@router.post(
    "/api/offers/{offer_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_review(
    offer_id: str,
    body: ReviewCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        review = await review_service.create_review(
            db, offer_id, user.id, body.rating, body.review_text,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return ReviewResponse.model_validate(review)


@router.get("/api/users/{user_id}/reviews")
async def list_user_reviews(user_id: str, db: AsyncSession = Depends(get_db)):
    try:
        reviews = await review_service.list_reviews_for_user(db, user_id)
        average = await review_service.average_rating(db, user_id)
    except MarketplaceError as e:
        raise http_error(e)
    return {
        "user_id": user_id,
        "average_rating": average,
        "reviews": [ReviewResponse.model_validate(r).model_dump(mode="json") for r in reviews],
    }
