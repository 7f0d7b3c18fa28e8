from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.auth import role_required
from applications.gigs import services
from applications.gigs.models import GigCategory
from applications.gigs.schemas import GigIn, GigUpdate
from applications.user.models import User, UserRole

router = APIRouter(tags=["Gigs"])

freelancer_only = role_required(UserRole.FREELANCER)


@router.get("/")
async def list_gigs(
    category: Optional[GigCategory] = None,
    search: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    sort: str = Query("newest", pattern="^(newest|rating|orders|price_asc|price_desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    gigs, pagination = await services.list_gigs(category, search, min_price, max_price, sort, page, limit)
    return {
        "gigs": [gig.to_dict(freelancer=gig.freelancer) for gig in gigs],
        "pagination": pagination,
    }


@router.get("/my/")
async def my_gigs(user: User = Depends(freelancer_only)):
    return {"gigs": [gig.to_dict() for gig in await services.my_gigs(user)]}


@router.get("/{gig_id}/")
async def gig_detail(gig_id: str):
    gig = await services.get_gig(gig_id)
    return gig.to_dict(freelancer=gig.freelancer)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_gig(payload: GigIn, user: User = Depends(freelancer_only)):
    gig = await services.create_gig(user, payload)
    return gig.to_dict()


@router.patch("/{gig_id}/")
async def update_gig(gig_id: str, payload: GigUpdate, user: User = Depends(freelancer_only)):
    gig = await services.update_gig(gig_id, user, payload)
    return gig.to_dict()


@router.delete("/{gig_id}/")
async def delete_gig(gig_id: str, user: User = Depends(freelancer_only)):
    await services.delete_gig(gig_id, user)
    return {"message": "Gig deleted successfully"}
