from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.auth import login_required, role_required
from applications.orders import services
from applications.orders.models import OrderStatus, order_to_dict
from applications.user.models import User, UserRole

router = APIRouter(tags=["Orders"])


class StatusIn(BaseModel):
    status: OrderStatus


class FileIn(BaseModel):
    name: str
    url: str
    size: Optional[int] = None
    type: Optional[str] = None


class DeliveryIn(BaseModel):
    message: str = Field("", max_length=2000)
    files: list[FileIn] = []


class MessageIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class CancelIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class DisputeIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)


class RevisionResponseIn(BaseModel):
    response: str = Field(..., min_length=1, max_length=2000)


async def _detail(order) -> dict:
    await order.fetch_related("buyer", "seller", "gig")
    data = order_to_dict(order, buyer=order.buyer, seller=order.seller, gig=order.gig)
    history = await services.order_history(order)
    data["deliveries"] = [
        {"id": d.id, "message": d.message, "files": d.files, "delivered_at": d.delivered_at}
        for d in history["deliveries"]
    ]
    data["revisions"] = [
        {
            "id": r.id,
            "message": r.message,
            "requested_at": r.requested_at,
            "response": r.response,
            "responded_at": r.responded_at,
        }
        for r in history["revisions"]
    ]
    return data


@router.get("/")
async def list_orders(
    role: str = Query("buyer", pattern="^(buyer|seller)$"),
    status: Optional[OrderStatus] = None,
    user: User = Depends(login_required),
):
    orders = await services.list_orders(user, role, status)
    return {
        "orders": [order_to_dict(o, buyer=o.buyer, seller=o.seller, gig=o.gig) for o in orders],
    }


@router.get("/dashboard/")
async def seller_dashboard(user: User = Depends(role_required(UserRole.FREELANCER))):
    return await services.seller_dashboard(user)


@router.get("/{order_id}/")
async def order_detail(order_id: str, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    return await _detail(order)


@router.patch("/{order_id}/status/")
async def update_status(order_id: str, payload: StatusIn, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    await services.transition(order, payload.status, user)
    return await _detail(order)


@router.post("/{order_id}/deliver/")
async def deliver(order_id: str, payload: DeliveryIn, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    await services.deliver(order, payload.message, [f.model_dump() for f in payload.files], user)
    return await _detail(order)


@router.post("/{order_id}/revision/")
async def request_revision(order_id: str, payload: MessageIn, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    await services.request_revision(order, payload.message, user)
    return await _detail(order)


@router.post("/{order_id}/revision/{revision_id}/respond/")
async def respond_revision(
    order_id: str, revision_id: int, payload: RevisionResponseIn, user: User = Depends(login_required)
):
    order = await services.get_order_for(order_id, user)
    await services.respond_revision(order, revision_id, payload.response, user)
    return await _detail(order)


@router.post("/{order_id}/accept/")
async def accept(order_id: str, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    await services.accept(order, user)
    return await _detail(order)


@router.post("/{order_id}/cancel/")
async def cancel(order_id: str, payload: CancelIn, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    await services.cancel(order, payload.reason, user)
    return await _detail(order)


@router.post("/{order_id}/dispute/")
async def dispute(order_id: str, payload: DisputeIn, user: User = Depends(login_required)):
    order = await services.get_order_for(order_id, user)
    await services.open_dispute(order, payload.reason, payload.description, user)
    return await _detail(order)
