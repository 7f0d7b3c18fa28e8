import uuid
from enum import Enum

from tortoise import models, fields


class NotificationType(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_DELIVERED = "order_delivered"
    ORDER_COMPLETED = "order_completed"
    ORDER_CANCELLED = "order_cancelled"
    REVISION_REQUESTED = "revision_requested"
    NEW_MESSAGE = "new_message"
    REVIEW_RECEIVED = "review_received"
    PAYMENT_RECEIVED = "payment_received"
    GIG_APPROVED = "gig_approved"
    GIG_REJECTED = "gig_rejected"
    CUSTOM_OFFER = "custom_offer"
    SYSTEM = "system"


class Notification(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    recipient = fields.ForeignKeyField("models.User", related_name="notifications")
    sender = fields.ForeignKeyField("models.User", related_name="sent_notifications", null=True)
    type = fields.CharEnumField(NotificationType, max_length=32)
    title = fields.CharField(max_length=255)
    message = fields.TextField()
    # context keys: order_id, gig_id, message_id, review_id, amount, url
    data = fields.JSONField(default=dict)
    is_read = fields.BooleanField(default=False)
    read_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "notifications"
        ordering = ["-created_at"]
        indexes = [
            ["recipient_id", "created_at"],
            ["recipient_id", "is_read"],
        ]

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "recipient_id": self.recipient_id,
            "sender_id": self.sender_id,
            "type": self.type.value if isinstance(self.type, Enum) else self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
