"""
Order lifecycle: fees, the status state machine and the operations that move
an order through it.

Every operation takes the acting user explicitly. Guards run in this order:
party/role check (``Forbidden``), then state check (``InvalidTransition``),
then business limits (``LimitExceeded``).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from tortoise.expressions import F
from tortoise.functions import Count, Sum
from tortoise.transactions import in_transaction

from app.exceptions import Forbidden, InvalidTransition, LimitExceeded, NotFound, ValidationError
from app.utils.services import get_or_404
from applications.communication.notifications import NotificationType
from applications.communication.services import notify
from applications.gigs.models import Gig, PackageTier
from applications.orders.models import (
    DisputeStatus,
    Order,
    OrderDelivery,
    OrderRevision,
    OrderStatus,
    PaymentStatus,
)
from applications.user.models import User

logger = logging.getLogger(__name__)

SERVICE_FEE_RATE = Decimal("0.05")
MIN_SERVICE_FEE = Decimal("2.00")
PLATFORM_FEE_RATE = Decimal("0.20")
AUTO_COMPLETE_AFTER = timedelta(days=3)
CENT = Decimal("0.01")

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.REQUIREMENTS_PENDING,
        OrderStatus.IN_PROGRESS,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.REQUIREMENTS_PENDING: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({
        OrderStatus.COMPLETED,
        OrderStatus.REVISION_REQUESTED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.REVISION_REQUESTED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.DISPUTED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.DISPUTED})
DISPUTABLE_STATUSES = frozenset({
    OrderStatus.IN_PROGRESS,
    OrderStatus.DELIVERED,
    OrderStatus.REVISION_REQUESTED,
})
ACTIVE_STATUSES = (OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED, OrderStatus.REVISION_REQUESTED)
# reachable only through request_revision
EXPLICIT_ONLY = frozenset({OrderStatus.REVISION_REQUESTED})
# statuses an unpaid order may not enter
REQUIRES_PAYMENT = frozenset({OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED, OrderStatus.COMPLETED})

# status reached through the generic update -> (notification kind, title)
STATUS_NOTIFICATIONS: dict[OrderStatus, tuple[NotificationType, str]] = {
    OrderStatus.DELIVERED: (NotificationType.ORDER_DELIVERED, "Order Delivered"),
    OrderStatus.COMPLETED: (NotificationType.ORDER_COMPLETED, "Order Completed"),
    OrderStatus.CANCELLED: (NotificationType.ORDER_CANCELLED, "Order Cancelled"),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in TRANSITIONS.get(OrderStatus(current), frozenset())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Fees:
    subtotal: Decimal
    service_fee: Decimal
    net_amount: Decimal
    total_amount: Decimal


def _to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_fees(subtotal) -> Fees:
    """Buyer pays ``subtotal + service_fee``; the seller is credited ``net_amount`` on completion."""
    subtotal = _to_cents(Decimal(str(subtotal)))
    if subtotal <= 0:
        raise ValidationError("Price must be positive", errors=[{"field": "price", "message": "must be > 0"}])
    service_fee = max(MIN_SERVICE_FEE, _to_cents(subtotal * SERVICE_FEE_RATE))
    net_amount = subtotal - _to_cents(subtotal * PLATFORM_FEE_RATE)
    return Fees(
        subtotal=subtotal,
        service_fee=service_fee,
        net_amount=net_amount,
        total_amount=subtotal + service_fee,
    )


# ---------------------------------------------------------------------------
# Creation & lookup
# ---------------------------------------------------------------------------

async def create_order(
    buyer: User,
    seller_id: str,
    package: PackageTier,
    package_details: dict,
    gig: Optional[Gig] = None,
    custom_requirements: Optional[list[dict]] = None,
) -> Order:
    fees = compute_fees(package_details["price"])
    order = await Order.create(
        buyer_id=buyer.id,
        seller_id=seller_id,
        gig_id=gig.id if gig else None,
        package=package,
        package_details={
            "title": package_details.get("title", ""),
            "description": package_details.get("description", ""),
            "price": float(fees.subtotal),
            "delivery_time": int(package_details.get("delivery_time") or 0),
            "revisions": int(package_details.get("revisions") or 0),
            "features": list(package_details.get("features") or []),
        },
        custom_requirements=custom_requirements or [],
        subtotal=fees.subtotal,
        service_fee=fees.service_fee,
        net_amount=fees.net_amount,
        total_amount=fees.total_amount,
    )
    logger.info(
        "Order %s created: buyer=%s seller=%s package=%s total=%s",
        order.id, buyer.id, seller_id, package.value, fees.total_amount,
    )
    return order


async def get_order_for(order_id: str, user: User) -> Order:
    order = await get_or_404(Order, id=order_id)
    if not order.is_party(user.id):
        raise Forbidden("Not authorized to view this order")
    return order


async def list_orders(user: User, role: str = "buyer", status: Optional[OrderStatus] = None) -> list[Order]:
    query = Order.filter(buyer_id=user.id) if role == "buyer" else Order.filter(seller_id=user.id)
    if status:
        query = query.filter(status=status)
    return await query.order_by("-created_at").prefetch_related("buyer", "seller", "gig")


async def order_history(order: Order) -> dict:
    deliveries = await OrderDelivery.filter(order_id=order.id).order_by("delivered_at", "id")
    revisions = await OrderRevision.filter(order_id=order.id).order_by("requested_at", "id")
    return {"deliveries": deliveries, "revisions": revisions}


# ---------------------------------------------------------------------------
# State changes
# ---------------------------------------------------------------------------

def _require_seller(order: Order, actor: User, action: str) -> None:
    if order.seller_id != actor.id:
        raise Forbidden(f"Only seller can {action}")


def _require_buyer(order: Order, actor: User, action: str) -> None:
    if order.buyer_id != actor.id:
        raise Forbidden(f"Only buyer can {action}")


def _require_paid(order: Order) -> None:
    if order.payment_status != PaymentStatus.PAID:
        raise InvalidTransition("Order has not been paid")


def _mark_delivered(order: Order) -> None:
    now = _now()
    order.status = OrderStatus.DELIVERED
    order.delivery_date = now
    if not order.auto_complete_at:
        order.auto_complete_at = now + AUTO_COMPLETE_AFTER


async def _complete(order: Order) -> None:
    """Move to ``completed`` and credit the seller, all in one transaction."""
    async with in_transaction() as connection:
        claimed = await Order.filter(
            id=order.id, status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PAID
        ).using_db(connection).update(
            status=OrderStatus.COMPLETED, completed_at=_now()
        )
        if not claimed:
            raise InvalidTransition("Order is no longer awaiting acceptance")

        seller = await User.filter(id=order.seller_id).using_db(connection).select_for_update().get()
        seller.total_earnings = Decimal(str(seller.total_earnings)) + Decimal(str(order.net_amount))
        seller.completed_orders += 1
        await seller.save(using_db=connection, update_fields=["total_earnings", "completed_orders", "updated_at"])

        if order.gig_id:
            await Gig.filter(id=order.gig_id).using_db(connection).update(total_orders=F("total_orders") + 1)

    await order.refresh_from_db()
    logger.info("Order %s completed, seller %s credited %s", order.id, order.seller_id, order.net_amount)


async def transition(order: Order, requested_status: OrderStatus, actor: User) -> Order:
    """Generic seller-driven status update, gated by ``TRANSITIONS``."""
    _require_seller(order, actor, "update order status")
    requested_status = OrderStatus(requested_status)
    if not can_transition(order.status, requested_status):
        raise InvalidTransition(f"Cannot transition from {order.status.value} to {requested_status.value}")
    if requested_status in EXPLICIT_ONLY:
        raise InvalidTransition(f"Use a revision request to move an order to {requested_status.value}")
    if requested_status in REQUIRES_PAYMENT:
        _require_paid(order)

    previous = order.status
    if requested_status == OrderStatus.COMPLETED:
        await _complete(order)
    else:
        if requested_status == OrderStatus.DELIVERED:
            _mark_delivered(order)
        else:
            order.status = requested_status
        if requested_status == OrderStatus.CANCELLED:
            order.cancellation = {
                "reason": "Cancelled by seller",
                "requested_by": actor.id,
                "requested_at": _now().isoformat(),
                "approved": True,
                "approved_at": _now().isoformat(),
            }
        await order.save()

    logger.info("Order %s: %s -> %s by %s", order.id, previous.value, requested_status.value, actor.id)

    if requested_status in STATUS_NOTIFICATIONS:
        kind, title = STATUS_NOTIFICATIONS[requested_status]
        await notify(
            order.buyer_id,
            kind,
            title,
            f"Your order has been {requested_status.value.replace('_', ' ')}",
            data={"order_id": order.id},
            sender_id=actor.id,
        )
    return order


async def deliver(order: Order, message: str, files: list[dict], actor: User) -> Order:
    _require_seller(order, actor, "deliver order")
    if order.status != OrderStatus.IN_PROGRESS:
        raise InvalidTransition("Order must be in progress to deliver")
    _require_paid(order)

    async with in_transaction() as connection:
        await OrderDelivery.create(order_id=order.id, message=message or "", files=files or [], using_db=connection)
        _mark_delivered(order)
        await order.save(using_db=connection)

    logger.info("Order %s delivered by %s", order.id, actor.id)
    await notify(
        order.buyer_id,
        NotificationType.ORDER_DELIVERED,
        "Order Delivered",
        f"Your order has been delivered by {actor.username}",
        data={"order_id": order.id},
        sender_id=actor.id,
    )
    return order


async def request_revision(order: Order, message: str, actor: User) -> Order:
    _require_buyer(order, actor, "request revision")
    if order.status != OrderStatus.DELIVERED:
        raise InvalidTransition("Can only request revision for delivered orders")
    if order.revisions_used >= order.allowed_revisions:
        raise LimitExceeded("No more revisions available for this package")

    async with in_transaction() as connection:
        # check-and-increment in one statement so concurrent requests cannot both pass
        claimed = await Order.filter(
            id=order.id,
            status=OrderStatus.DELIVERED,
            revisions_used__lt=order.allowed_revisions,
        ).using_db(connection).update(
            revisions_used=F("revisions_used") + 1,
            status=OrderStatus.REVISION_REQUESTED,
        )
        if not claimed:
            raise LimitExceeded("No more revisions available for this package")
        await OrderRevision.create(order_id=order.id, message=message, using_db=connection)

    await order.refresh_from_db()
    logger.info("Order %s revision %d/%d requested", order.id, order.revisions_used, order.allowed_revisions)
    await notify(
        order.seller_id,
        NotificationType.REVISION_REQUESTED,
        "Revision Requested",
        f"{actor.username} requested a revision",
        data={"order_id": order.id},
        sender_id=actor.id,
    )
    return order


async def respond_revision(order: Order, revision_id: int, response: str, actor: User) -> OrderRevision:
    _require_seller(order, actor, "respond to revision")
    revision = await OrderRevision.get_or_none(id=revision_id, order_id=order.id)
    if revision is None:
        raise NotFound("Revision not found")
    revision.response = response
    revision.responded_at = _now()
    await revision.save()
    return revision


async def accept(order: Order, actor: User) -> Order:
    _require_buyer(order, actor, "accept order")
    if order.status != OrderStatus.DELIVERED:
        raise InvalidTransition("Can only accept delivered orders")
    _require_paid(order)

    await _complete(order)
    await notify(
        order.seller_id,
        NotificationType.ORDER_COMPLETED,
        "Order Completed",
        f"{actor.username} accepted your delivery",
        data={"order_id": order.id, "amount": order.net_amount},
        sender_id=actor.id,
    )
    return order


async def cancel(order: Order, reason: str, actor: User) -> Order:
    if not order.is_party(actor.id):
        raise Forbidden("Not authorized to cancel this order")
    if order.status in TERMINAL_STATUSES:
        raise InvalidTransition("Cannot cancel order in current status")

    now = _now().isoformat()
    order.status = OrderStatus.CANCELLED
    order.cancellation = {
        "reason": reason,
        "requested_by": actor.id,
        "requested_at": now,
        "approved": True,
        "approved_at": now,
    }
    await order.save()

    logger.info("Order %s cancelled by %s", order.id, actor.id)
    await notify(
        order.counterparty_of(actor.id),
        NotificationType.ORDER_CANCELLED,
        "Order Cancelled",
        f"Order has been cancelled by {actor.username}",
        data={"order_id": order.id},
        sender_id=actor.id,
    )
    return order


async def open_dispute(order: Order, reason: str, description: str, actor: User) -> Order:
    if not order.is_party(actor.id):
        raise Forbidden("Not authorized to dispute this order")
    if order.status not in DISPUTABLE_STATUSES:
        raise InvalidTransition(f"Cannot dispute an order that is {order.status.value}")

    order.status = OrderStatus.DISPUTED
    order.dispute = {
        "reason": reason,
        "description": description,
        "raised_by": actor.id,
        "raised_at": _now().isoformat(),
        "status": DisputeStatus.OPEN.value,
    }
    await order.save()

    logger.info("Order %s disputed by %s", order.id, actor.id)
    await notify(
        order.counterparty_of(actor.id),
        NotificationType.SYSTEM,
        "Order Disputed",
        f"{actor.username} opened a dispute: {reason}",
        data={"order_id": order.id},
        sender_id=actor.id,
    )
    return order


# ---------------------------------------------------------------------------
# Seller dashboard
# ---------------------------------------------------------------------------

async def _sum_net(query) -> Decimal:
    rows = await query.annotate(total=Sum("net_amount")).values("total")
    total = rows[0]["total"] if rows else None
    return Decimal(str(total)) if total is not None else Decimal("0")


async def seller_dashboard(seller: User) -> dict:
    now = _now()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    completed = Order.filter(seller_id=seller.id, status=OrderStatus.COMPLETED)

    return {
        "total_orders": await Order.filter(seller_id=seller.id).count(),
        "active_orders": await Order.filter(seller_id=seller.id, status__in=ACTIVE_STATUSES).count(),
        "completed_orders": await completed.count(),
        "total_earnings": await _sum_net(completed),
        "this_month_orders": await Order.filter(seller_id=seller.id, created_at__gte=month_start).count(),
        "this_month_earnings": await _sum_net(completed.filter(created_at__gte=month_start)),
        "orders_by_status": {
            row["status"]: row["count"]
            for row in await Order.filter(seller_id=seller.id)
            .annotate(count=Count("id"))
            .group_by("status")
            .values("status", "count")
        },
        "unpaid_orders": await Order.filter(seller_id=seller.id, payment_status=PaymentStatus.PENDING).count(),
    }
