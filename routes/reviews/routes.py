from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.auth import login_required
from applications.reviews import services
from applications.reviews.schemas import ReviewIn, ReviewReportIn, ReviewResponseIn
from applications.user.models import User

router = APIRouter(tags=["Reviews"])


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_review(payload: ReviewIn, user: User = Depends(login_required)):
    review = await services.create_review(
        payload.order_id,
        user,
        payload.rating,
        payload.comment,
        payload.categories.model_dump(exclude_none=True),
    )
    return {"message": "Review created successfully", "review": review.to_dict(reviewer=user)}


@router.get("/gig/{gig_id}/")
async def gig_reviews(
    gig_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    rating: Optional[int] = Query(None, ge=1, le=5),
):
    result = await services.gig_reviews(gig_id, page, limit, rating)
    return {**result, "reviews": [r.to_dict(reviewer=r.reviewer) for r in result["reviews"]]}


@router.get("/user/{user_id}/")
async def user_reviews(
    user_id: str,
    kind: str = Query("received", pattern="^(received|given)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
):
    result = await services.user_reviews(user_id, kind, page, limit)
    return {**result, "reviews": [r.to_dict(reviewer=r.reviewer) for r in result["reviews"]]}


@router.get("/analytics/gig/{gig_id}/")
async def gig_analytics(gig_id: str, user: User = Depends(login_required)):
    return await services.gig_review_analytics(gig_id, user)


@router.post("/{review_id}/respond/")
async def respond(review_id: str, payload: ReviewResponseIn, user: User = Depends(login_required)):
    review = await services.respond_to_review(review_id, user, payload.content)
    return review.to_dict()


@router.post("/{review_id}/report/")
async def report(review_id: str, payload: ReviewReportIn, user: User = Depends(login_required)):
    await services.report_review(review_id, user, payload.reason)
    return {"message": "Review reported successfully"}
