from fastapi import APIRouter, Depends, Query

from app.auth import login_required
from applications.communication import services
from applications.user.models import User

router = APIRouter(tags=["Notifications"])


@router.get("/")
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    user: User = Depends(login_required),
):
    items, pagination = await services.list_notifications(user, page, limit, unread_only)
    return {
        "notifications": [n.to_dict() for n in items],
        "pagination": pagination,
        "unread_count": await services.unread_count(user),
    }


@router.get("/unread-count/")
async def unread_count(user: User = Depends(login_required)):
    return {"unread_count": await services.unread_count(user)}


@router.patch("/read-all/")
async def mark_all_read(user: User = Depends(login_required)):
    return {"marked_read": await services.mark_all_read(user)}


@router.patch("/{notification_id}/read/")
async def mark_read(notification_id: str, user: User = Depends(login_required)):
    notification = await services.mark_read(notification_id, user)
    return {"updated": notification is not None}
