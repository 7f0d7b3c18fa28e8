"""
Stripe checkout and reconciliation of provider events into order state.

Both the webhook and the buyer's success redirect end in ``complete_checkout``;
whichever arrives first applies the payment, the other finds the order already
paid and does nothing.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import stripe
from tortoise.functions import Avg, Count, Sum

from app.config import settings
from app.exceptions import (
    Forbidden,
    LimitExceeded,
    NotFound,
    PaymentUnavailable,
    ValidationError,
    WebhookRejected,
)
from app.utils.services import get_or_404
from applications.communication.chat import OfferStatus
from applications.communication.notifications import NotificationType
from applications.communication.services import get_pending_offer, notify, push, set_offer_status
from applications.gigs.models import Gig, PackageTier
from applications.orders.models import Order, OrderStatus, PaymentStatus
from applications.orders.services import CENT, create_order
from applications.payments.models import PaymentEvent
from applications.user.models import User

logger = logging.getLogger(__name__)

MIN_CUSTOM_PRICE = Decimal("5")
CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"

ANALYTICS_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
    "all": None,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stripe_ready() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentUnavailable("Payment provider is not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def _cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value())


def _line_item(name: str, description: str, amount) -> dict:
    return {
        "price_data": {
            "currency": "usd",
            "product_data": {"name": name, "description": description or name},
            "unit_amount": _cents(amount),
        },
        "quantity": 1,
    }


def _field(obj: Any, key: str):
    """Read a key from a stripe object or a plain dict."""
    try:
        return obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, None)


async def _open_session(order: Order, product_name: str, product_description: str,
                        cancel_path: str, metadata: dict) -> dict:
    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        line_items=[
            _line_item(product_name, product_description, order.subtotal),
            _line_item("Service Fee", "Platform service fee", order.service_fee),
        ],
        mode="payment",
        success_url=f"{settings.CLIENT_URL}/order-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.CLIENT_URL}{cancel_path}",
        metadata={"orderId": str(order.id), **metadata},
    )
    session_id = _field(session, "id")
    order.stripe_session_id = session_id
    order.payment_intent_id = _field(session, "payment_intent") or session_id
    await order.save(update_fields=["stripe_session_id", "payment_intent_id", "updated_at"])

    logger.info("Checkout session %s opened for order %s", session_id, order.id)
    return {"session_id": session_id, "order_id": str(order.id), "url": _field(session, "url")}


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

async def create_gig_checkout(buyer: User, gig_id: str, package: PackageTier,
                              custom_requirements: Optional[list[dict]] = None) -> dict:
    _stripe_ready()
    gig = await get_or_404(Gig, id=gig_id)
    if not gig.is_active or gig.is_paused:
        raise NotFound("Gig not found or inactive")
    if gig.freelancer_id == buyer.id:
        raise Forbidden("Cannot purchase your own gig")

    package = PackageTier(package)
    details = gig.package(package)
    if not details:
        raise ValidationError(
            "Invalid package selected",
            errors=[{"field": "package", "message": f"{package.value} is not offered by this gig"}],
        )

    order = await create_order(
        buyer=buyer,
        seller_id=gig.freelancer_id,
        package=package,
        package_details=details,
        gig=gig,
        custom_requirements=custom_requirements,
    )
    return await _open_session(
        order,
        product_name=f"{gig.title} - {package.value.title()} Package",
        product_description=details.get("description", ""),
        cancel_path=f"/gig/{gig.id}",
        metadata={
            "gigId": str(gig.id),
            "buyerId": buyer.id,
            "sellerId": gig.freelancer_id,
            "package": package.value,
        },
    )


async def _custom_order_checkout(buyer_id: str, seller_id: str, title: str, description: str,
                                 price, delivery_time: int, revisions: int = 0) -> dict:
    _stripe_ready()
    if Decimal(str(price)) < MIN_CUSTOM_PRICE:
        raise LimitExceeded(f"Minimum price is ${MIN_CUSTOM_PRICE}")
    buyer = await get_or_404(User, "Buyer", id=buyer_id)
    if buyer.id == seller_id:
        raise ValidationError("Cannot create an offer for yourself")

    order = await create_order(
        buyer=buyer,
        seller_id=seller_id,
        package=PackageTier.CUSTOM,
        package_details={
            "title": title,
            "description": description,
            "price": price,
            "delivery_time": delivery_time,
            "revisions": revisions,
            "features": [],
        },
    )
    return await _open_session(
        order,
        product_name=title,
        product_description=description,
        cancel_path="/messages",
        metadata={"buyerId": buyer.id, "sellerId": seller_id, "isCustomOffer": "true"},
    )


async def create_custom_offer_checkout(seller: User, buyer_id: str, title: str, description: str,
                                       price, delivery_time: int, revisions: int = 0) -> dict:
    return await _custom_order_checkout(buyer_id, seller.id, title, description, price, delivery_time, revisions)


async def accept_offer(message_id: str, user: User) -> dict:
    """The receiver of a pending custom offer accepts it and gets a checkout for it."""
    message = await get_pending_offer(message_id, user)
    offer = message.custom_offer
    checkout = await _custom_order_checkout(
        buyer_id=user.id,
        seller_id=message.sender_id,
        title=offer["title"],
        description=offer.get("description", ""),
        price=offer["price"],
        delivery_time=int(offer["delivery_time"]),
        revisions=int(offer.get("revisions") or 0),
    )
    await set_offer_status(message, OfferStatus.ACCEPTED, order_id=checkout["order_id"])
    await push(message.sender_id, "offer_accepted", {"message_id": str(message.id), "order_id": checkout["order_id"]})
    logger.info("Offer %s accepted by %s, order %s", message.id, user.id, checkout["order_id"])
    return checkout


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

async def complete_checkout(session_id: str, payment_intent_id: Optional[str] = None) -> Optional[Order]:
    """
    Apply a paid checkout session to its order.

    Returns the order when this call applied the payment, ``None`` when the
    session is unknown or the order was already paid.
    """
    order = await Order.get_or_none(stripe_session_id=session_id)
    if order is None:
        logger.warning("Checkout %s does not match any order", session_id)
        return None

    now = _now()
    delivery_days = int((order.package_details or {}).get("delivery_time") or 0)
    # the payment_status guard is the only thing separating webhook and redirect
    applied = await Order.filter(id=order.id).exclude(payment_status=PaymentStatus.PAID).update(
        payment_status=PaymentStatus.PAID,
        status=OrderStatus.REQUIREMENTS_PENDING,
        payment_intent_id=payment_intent_id or order.payment_intent_id,
        paid_at=now,
        due_at=now + timedelta(days=delivery_days),
    )
    if not applied:
        logger.info("Checkout %s already applied to order %s", session_id, order.id)
        return None

    await order.refresh_from_db()
    title = order.package_details.get("title", "your order")
    logger.info("Order %s paid (session %s)", order.id, session_id)
    await notify(
        order.seller_id,
        NotificationType.NEW_ORDER,
        "New Order Received",
        f"You have a new order for {title}",
        data={"order_id": order.id},
        sender_id=order.buyer_id,
    )
    await notify(
        order.buyer_id,
        NotificationType.PAYMENT_RECEIVED,
        "Payment Successful",
        f"Your payment for {title} was successful",
        data={"order_id": order.id, "amount": order.total_amount},
    )
    return order


async def fail_payment(payment_intent_id: str) -> Optional[Order]:
    order = await Order.get_or_none(payment_intent_id=payment_intent_id)
    if order is None:
        logger.warning("Failed payment %s does not match any order", payment_intent_id)
        return None

    applied = await Order.filter(id=order.id).exclude(payment_status=PaymentStatus.FAILED).update(
        payment_status=PaymentStatus.FAILED,
        status=OrderStatus.CANCELLED,
    )
    await order.refresh_from_db()
    if not applied:
        return order

    logger.info("Payment %s failed, order %s cancelled", payment_intent_id, order.id)
    await notify(
        order.buyer_id,
        NotificationType.SYSTEM,
        "Payment Failed",
        "Your payment could not be processed. Please try again.",
        data={"order_id": order.id},
    )
    return order


async def confirm_session(session_id: str, actor: User) -> Order:
    """Success redirect: check the session with stripe, then apply it like the webhook would."""
    _stripe_ready()
    session = stripe.checkout.Session.retrieve(session_id)
    if _field(session, "payment_status") != "paid":
        raise ValidationError("Payment not completed")

    order = await get_or_404(Order, stripe_session_id=session_id)
    if order.buyer_id != actor.id:
        raise Forbidden("Not authorized to view this order")

    await complete_checkout(session_id, _field(session, "payment_intent"))
    await order.refresh_from_db()
    return order


async def handle_webhook(payload: bytes, signature: Optional[str]) -> dict:
    """
    Verify and dispatch a stripe webhook.

    Raises ``WebhookRejected`` when the payload is not a genuine stripe event.
    Errors while applying a verified event propagate unchanged.
    """
    try:
        event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected stripe webhook: %s", e)
        raise WebhookRejected("Webhook signature verification failed")
    event_type = _field(event, "type")
    obj = _field(_field(event, "data"), "object")

    order: Optional[Order] = None
    session_id = intent_id = None
    if event_type == CHECKOUT_COMPLETED:
        session_id = _field(obj, "id")
        intent_id = _field(obj, "payment_intent")
        order = await complete_checkout(session_id, intent_id)
        outcome = "applied" if order else "duplicate"
    elif event_type == PAYMENT_FAILED:
        intent_id = _field(obj, "id")
        order = await fail_payment(intent_id)
        outcome = "applied" if order else "unmatched"
    else:
        logger.info("Ignoring stripe event %s", event_type)
        outcome = "ignored"

    await PaymentEvent.create(
        stripe_event_id=_field(event, "id"),
        type=event_type or "",
        session_id=session_id,
        payment_intent_id=intent_id,
        order_id=order.id if order else None,
        outcome=outcome,
    )
    return {"received": True}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

async def _net_totals(query) -> dict:
    rows = await query.annotate(
        revenue=Sum("net_amount"), average=Avg("net_amount"), orders=Count("id")
    ).values("revenue", "average", "orders")
    row = rows[0] if rows else {}
    return {
        "revenue": Decimal(str(row["revenue"])) if row.get("revenue") is not None else Decimal("0"),
        "average": (
            Decimal(str(row["average"])).quantize(CENT, rounding=ROUND_HALF_UP)
            if row.get("average") is not None else Decimal("0")
        ),
        "orders": row.get("orders") or 0,
    }


def _month_windows(since: datetime, until: datetime):
    start = since.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    while start <= until:
        if start.month == 12:
            following = start.replace(year=start.year + 1, month=1)
        else:
            following = start.replace(month=start.month + 1)
        yield start.year, start.month, max(start, since), following
        start = following


async def payment_analytics(seller: User, period: str = "30d") -> dict:
    if period not in ANALYTICS_PERIODS:
        raise ValidationError(
            "Invalid period",
            errors=[{"field": "period", "message": f"one of {', '.join(ANALYTICS_PERIODS)}"}],
        )
    now = _now()
    paid = Order.filter(seller_id=seller.id, payment_status=PaymentStatus.PAID)

    window = ANALYTICS_PERIODS[period]
    totals = await _net_totals(paid.filter(created_at__gte=now - window) if window else paid)

    monthly = []
    for year, month, start, end in _month_windows(now - timedelta(days=365), now):
        bucket = await _net_totals(paid.filter(created_at__gte=start, created_at__lt=end))
        if bucket["orders"]:
            monthly.append({"year": year, "month": month, "revenue": bucket["revenue"], "orders": bucket["orders"]})

    return {
        "analytics": {
            "total_revenue": totals["revenue"],
            "total_orders": totals["orders"],
            "average_order_value": totals["average"],
        },
        "monthly_revenue": monthly,
    }
