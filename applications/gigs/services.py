import logging
from decimal import Decimal
from typing import Optional

from tortoise.expressions import F, Q

from app.exceptions import Forbidden
from app.utils.services import get_or_404, paginate
from applications.gigs.models import Gig, GigCategory
from applications.gigs.schemas import GigIn, GigUpdate
from applications.user.models import User

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "newest": "-created_at",
    "rating": "-rating",
    "orders": "-total_orders",
    "price_asc": "starting_price",
    "price_desc": "-starting_price",
}


async def create_gig(freelancer: User, data: GigIn) -> Gig:
    gig = await Gig.create(freelancer=freelancer, **data.model_dump())
    logger.info("Gig %s created by %s", gig.id, freelancer.id)
    return gig


async def get_owned_gig(gig_id: str, user: User) -> Gig:
    gig = await get_or_404(Gig, id=gig_id)
    if gig.freelancer_id != user.id:
        raise Forbidden("Not authorized to modify this gig")
    return gig


async def update_gig(gig_id: str, user: User, data: GigUpdate) -> Gig:
    gig = await get_owned_gig(gig_id, user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(gig, field, value)
    await gig.save()
    return gig


async def delete_gig(gig_id: str, user: User) -> None:
    gig = await get_owned_gig(gig_id, user)
    await gig.delete()
    logger.info("Gig %s deleted by %s", gig_id, user.id)


async def list_gigs(
    category: Optional[GigCategory] = None,
    search: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 12,
):
    query = Gig.filter(is_active=True, is_paused=False)
    if category:
        query = query.filter(category=category)
    if search:
        query = query.filter(Q(title__icontains=search) | Q(description__icontains=search))
    if min_price is not None:
        query = query.filter(starting_price__gte=min_price)
    if max_price is not None:
        query = query.filter(starting_price__lte=max_price)

    query = query.order_by(SORT_FIELDS.get(sort, "-created_at")).prefetch_related("freelancer")
    return await paginate(query, page, limit)


async def get_gig(gig_id: str) -> Gig:
    gig = await get_or_404(Gig, id=gig_id)
    await Gig.filter(id=gig.id).update(impressions=F("impressions") + 1)
    await gig.fetch_related("freelancer")
    return gig


async def my_gigs(user: User) -> list[Gig]:
    return await Gig.filter(freelancer_id=user.id).order_by("-created_at")
