import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, TypeVar

from tortoise.exceptions import IntegrityError

from app.exceptions import Conflict, Forbidden, InvalidTransition, NotFound
from app.utils.services import get_or_404, paginate
from applications.communication.notifications import NotificationType
from applications.communication.services import notify
from applications.gigs.models import Gig
from applications.orders.models import Order, OrderStatus
from applications.reviews.models import Review
from applications.user.models import User

logger = logging.getLogger(__name__)

CATEGORY_KEYS = ("communication", "service_as_described", "buy_again")

T = TypeVar("T", Gig, User)


def recompute_rating(target: T, ratings: Iterable[int]) -> T:
    """Set ``rating`` to the mean of ``ratings`` and ``total_reviews`` to their count, zero when empty."""
    ratings = list(ratings)
    target.total_reviews = len(ratings)
    target.rating = sum(ratings) / len(ratings) if ratings else 0
    return target


async def refresh_gig_rating(gig_id) -> Optional[Gig]:
    gig = await Gig.get_or_none(id=gig_id)
    if gig is None:
        return None
    ratings = await Review.filter(gig_id=gig_id).values_list("rating", flat=True)
    recompute_rating(gig, ratings)
    await gig.save(update_fields=["rating", "total_reviews", "updated_at"])
    return gig


async def refresh_user_rating(user_id: str) -> Optional[User]:
    user = await User.get_or_none(id=user_id)
    if user is None:
        return None
    ratings = await Review.filter(reviewee_id=user_id).values_list("rating", flat=True)
    recompute_rating(user, ratings)
    await user.save(update_fields=["rating", "total_reviews", "updated_at"])
    return user


async def create_review(order_id: str, reviewer: User, rating: int, comment: str,
                        categories: Optional[dict] = None) -> Review:
    order = await get_or_404(Order, id=order_id)
    if order.status != OrderStatus.COMPLETED:
        raise InvalidTransition("Can only review completed orders")

    is_buyer = order.buyer_id == reviewer.id
    if not is_buyer and order.seller_id != reviewer.id:
        raise Forbidden("Not authorized to review this order")

    if await Review.exists(order_id=order.id, reviewer_id=reviewer.id):
        raise Conflict("You have already reviewed this order")

    try:
        review = await Review.create(
            order_id=order.id,
            gig_id=order.gig_id,
            reviewer_id=reviewer.id,
            reviewee_id=order.counterparty_of(reviewer.id),
            rating=rating,
            comment=comment,
            categories={k: v for k, v in (categories or {}).items() if k in CATEGORY_KEYS and v is not None},
        )
    except IntegrityError:
        raise Conflict("You have already reviewed this order")

    if is_buyer:
        order.buyer_reviewed = True
        await order.save(update_fields=["buyer_reviewed", "updated_at"])
    else:
        order.seller_reviewed = True
        await order.save(update_fields=["seller_reviewed", "updated_at"])

    logger.info("Review %s: %s rated %s %d*", review.id, reviewer.id, review.reviewee_id, rating)
    await notify(
        review.reviewee_id,
        NotificationType.REVIEW_RECEIVED,
        "New Review Received",
        f"You received a {rating}-star review",
        data={"order_id": order.id, "review_id": review.id, "rating": rating},
        sender_id=reviewer.id,
    )
    return review


async def respond_to_review(review_id: str, user: User, content: str) -> Review:
    review = await get_or_404(Review, id=review_id)
    if review.reviewee_id != user.id:
        raise Forbidden("Only the reviewee can respond to this review")
    if review.response:
        raise Conflict("Review already has a response")
    review.response = {"content": content, "responded_at": datetime.now(timezone.utc).isoformat()}
    await review.save(update_fields=["response", "updated_at"])
    return review


async def report_review(review_id: str, user: User, reason: str) -> Review:
    review = await get_or_404(Review, id=review_id)
    review.is_reported = True
    review.report_reason = reason
    await review.save(update_fields=["is_reported", "report_reason", "updated_at"])
    logger.info("Review %s reported by %s", review.id, user.id)
    return review


async def gig_reviews(gig_id: str, page: int = 1, limit: int = 10, rating: Optional[int] = None) -> dict:
    await get_or_404(Gig, id=gig_id)
    query = Review.filter(gig_id=gig_id, is_public=True)
    if rating:
        query = query.filter(rating=rating)
    items, pagination = await paginate(query.order_by("-created_at").prefetch_related("reviewer"), page, limit)

    distribution = {score: 0 for score in range(1, 6)}
    for score in await Review.filter(gig_id=gig_id, is_public=True).values_list("rating", flat=True):
        distribution[score] += 1
    return {"reviews": items, "pagination": pagination, "rating_distribution": distribution}


async def user_reviews(user_id: str, kind: str = "received", page: int = 1, limit: int = 10) -> dict:
    await get_or_404(User, id=user_id)
    if kind == "given":
        query = Review.filter(reviewer_id=user_id)
    else:
        query = Review.filter(reviewee_id=user_id, is_public=True)
    items, pagination = await paginate(query.order_by("-created_at").prefetch_related("reviewer", "gig"), page, limit)
    return {"reviews": items, "pagination": pagination}


def _average(values: list) -> float:
    return round(sum(values) / len(values), 2) if values else 0


async def gig_review_analytics(gig_id: str, user: User) -> dict:
    gig = await get_or_404(Gig, id=gig_id)
    if gig.freelancer_id != user.id:
        raise Forbidden("Not authorized")

    reviews = await Review.filter(gig_id=gig_id, is_public=True).values("rating", "categories")
    if not reviews:
        raise NotFound("No reviews for this gig yet")

    result = {
        "total_reviews": len(reviews),
        "average_rating": _average([r["rating"] for r in reviews]),
    }
    for key in CATEGORY_KEYS:
        scores = [r["categories"][key] for r in reviews if (r["categories"] or {}).get(key)]
        result[f"average_{key}"] = _average(scores)
    return result
