from typing import Optional, Type

from tortoise.signals import post_delete, post_save

from applications.reviews.models import Review
from applications.reviews.services import refresh_gig_rating, refresh_user_rating


async def _refresh(review: Review) -> None:
    if review.gig_id:
        await refresh_gig_rating(review.gig_id)
    await refresh_user_rating(review.reviewee_id)


@post_save(Review)
async def review_saved(
    sender: Type[Review], instance: Review, created: bool, using_db, update_fields: Optional[list]
) -> None:
    if created:
        await _refresh(instance)


@post_delete(Review)
async def review_deleted(sender: Type[Review], instance: Review, using_db) -> None:
    await _refresh(instance)
