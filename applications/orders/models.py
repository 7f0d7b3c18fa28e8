import uuid
from enum import Enum

from tortoise import fields, models

from applications.gigs.models import PackageTier


class OrderStatus(str, Enum):
    PENDING = "pending"
    REQUIREMENTS_PENDING = "requirements_pending"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    REVISION_REQUESTED = "revision_requested"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class DisputeStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Order(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    buyer = fields.ForeignKeyField("models.User", related_name="purchases")
    seller = fields.ForeignKeyField("models.User", related_name="sales")
    gig = fields.ForeignKeyField("models.Gig", related_name="orders", null=True, on_delete=fields.SET_NULL)
    package = fields.CharEnumField(PackageTier, max_length=16)
    # snapshot of the package at purchase time: title, description, price,
    # delivery_time, revisions, features
    package_details = fields.JSONField()
    custom_requirements = fields.JSONField(default=list)

    # fixed at creation, never recomputed
    subtotal = fields.DecimalField(max_digits=10, decimal_places=2)
    service_fee = fields.DecimalField(max_digits=10, decimal_places=2)
    net_amount = fields.DecimalField(max_digits=10, decimal_places=2)
    total_amount = fields.DecimalField(max_digits=10, decimal_places=2)

    status = fields.CharEnumField(OrderStatus, max_length=32, default=OrderStatus.PENDING)
    payment_status = fields.CharEnumField(PaymentStatus, max_length=16, default=PaymentStatus.PENDING)
    payment_intent_id = fields.CharField(max_length=255, null=True, index=True)
    stripe_session_id = fields.CharField(max_length=255, null=True, unique=True)
    paid_at = fields.DatetimeField(null=True)
    due_at = fields.DatetimeField(null=True)

    revisions_used = fields.IntField(default=0)
    delivery_date = fields.DatetimeField(null=True)
    auto_complete_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)

    cancellation = fields.JSONField(null=True)
    dispute = fields.JSONField(null=True)

    buyer_reviewed = fields.BooleanField(default=False)
    seller_reviewed = fields.BooleanField(default=False)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    deliveries: fields.ReverseRelation["OrderDelivery"]
    revisions: fields.ReverseRelation["OrderRevision"]

    class Meta:
        table = "orders"
        ordering = ["-created_at"]
        indexes = [
            ["buyer_id", "status"],
            ["seller_id", "status"],
            ["payment_status"],
        ]

    def __str__(self):
        return f"Order {self.id} ({self.status})"

    @property
    def allowed_revisions(self) -> int:
        return int((self.package_details or {}).get("revisions") or 0)

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def counterparty_of(self, user_id: str) -> str:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id


class OrderDelivery(models.Model):
    id = fields.IntField(pk=True)
    order = fields.ForeignKeyField("models.Order", related_name="deliveries", on_delete=fields.CASCADE)
    message = fields.TextField(default="")
    # [{name, url, size, type}]
    files = fields.JSONField(default=list)
    delivered_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "order_deliveries"
        ordering = ["delivered_at", "id"]


class OrderRevision(models.Model):
    id = fields.IntField(pk=True)
    order = fields.ForeignKeyField("models.Order", related_name="revisions", on_delete=fields.CASCADE)
    message = fields.TextField()
    requested_at = fields.DatetimeField(auto_now_add=True)
    response = fields.TextField(null=True)
    responded_at = fields.DatetimeField(null=True)

    class Meta:
        table = "order_revisions"
        ordering = ["requested_at", "id"]


def _value(enum_or_str):
    return enum_or_str.value if isinstance(enum_or_str, Enum) else enum_or_str


def order_to_dict(order: Order, buyer=None, seller=None, gig=None) -> dict:
    data = {
        "id": str(order.id),
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "gig_id": str(order.gig_id) if order.gig_id else None,
        "package": _value(order.package),
        "package_details": order.package_details,
        "custom_requirements": order.custom_requirements,
        "subtotal": order.subtotal,
        "service_fee": order.service_fee,
        "net_amount": order.net_amount,
        "total_amount": order.total_amount,
        "status": _value(order.status),
        "payment_status": _value(order.payment_status),
        "paid_at": order.paid_at,
        "due_at": order.due_at,
        "revisions_used": order.revisions_used,
        "allowed_revisions": order.allowed_revisions,
        "delivery_date": order.delivery_date,
        "auto_complete_at": order.auto_complete_at,
        "completed_at": order.completed_at,
        "cancellation": order.cancellation,
        "dispute": order.dispute,
        "is_reviewed": {"buyer": order.buyer_reviewed, "seller": order.seller_reviewed},
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }
    if buyer is not None:
        data["buyer"] = buyer.to_public_dict()
    if seller is not None:
        data["seller"] = seller.to_public_dict()
    if gig is not None:
        data["gig"] = {"id": str(gig.id), "title": gig.title, "images": gig.images}
    return data
