from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.auth import login_required, role_required
from applications.gigs.models import PackageTier
from applications.orders.models import order_to_dict
from applications.payments import services
from applications.user.models import User, UserRole

router = APIRouter(tags=["Payments"])


class CheckoutIn(BaseModel):
    gig_id: str
    package: PackageTier = PackageTier.BASIC
    custom_requirements: list[dict] = []


class CustomOfferCheckoutIn(BaseModel):
    receiver_id: str
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1200)
    price: float = Field(..., gt=0)
    delivery_time: int = Field(..., ge=1)
    revisions: int = Field(0, ge=0)


@router.post("/create-checkout-session/")
async def create_checkout_session(payload: CheckoutIn, user: User = Depends(login_required)):
    return await services.create_gig_checkout(user, payload.gig_id, payload.package, payload.custom_requirements)


@router.post("/create-custom-offer-payment/")
async def create_custom_offer_payment(
    payload: CustomOfferCheckoutIn, user: User = Depends(role_required(UserRole.FREELANCER))
):
    return await services.create_custom_offer_checkout(
        user,
        payload.receiver_id,
        payload.title,
        payload.description,
        payload.price,
        payload.delivery_time,
        payload.revisions,
    )


@router.get("/success/{session_id}/")
async def payment_success(session_id: str, user: User = Depends(login_required)):
    order = await services.confirm_session(session_id, user)
    return {"message": "Payment successful", "order": order_to_dict(order)}


@router.post("/webhook/")
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature: Optional[str] = request.headers.get("stripe-signature")
    return await services.handle_webhook(payload, signature)


@router.get("/analytics/")
async def analytics(
    period: str = Query("30d", pattern="^(7d|30d|90d|1y|all)$"),
    user: User = Depends(role_required(UserRole.FREELANCER)),
):
    return await services.payment_analytics(user, period)
