import uuid
from enum import Enum

from tortoise import fields
from tortoise.models import Model

from app.exceptions import ValidationError


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"
    ORDER_UPDATE = "order_update"
    CUSTOM_OFFER = "custom_offer"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class Conversation(Model):
    """A thread between exactly two users, optionally about a gig or an order."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)

    participant_one = fields.ForeignKeyField("models.User", related_name="conversations_started")
    participant_two = fields.ForeignKeyField("models.User", related_name="conversations_joined")

    gig = fields.ForeignKeyField("models.Gig", related_name="conversations", null=True, on_delete=fields.SET_NULL)
    order = fields.ForeignKeyField("models.Order", related_name="conversations", null=True, on_delete=fields.SET_NULL)

    # {id, sender_id, content, message_type, created_at} of the newest message
    last_message = fields.JSONField(null=True)
    last_activity = fields.DatetimeField(auto_now_add=True)

    # per-participant state keyed by user id
    unread_count = fields.JSONField(default=dict)
    is_archived = fields.JSONField(default=dict)
    is_blocked = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "conversations"
        ordering = ["-last_activity"]
        indexes = [
            ["participant_one_id", "last_activity"],
            ["participant_two_id", "last_activity"],
        ]

    @property
    def participants(self) -> list[str]:
        return [self.participant_one_id, self.participant_two_id]

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> str:
        return self.participant_two_id if user_id == self.participant_one_id else self.participant_one_id

    def unread_for(self, user_id: str) -> int:
        return int((self.unread_count or {}).get(user_id, 0))

    async def save(self, *args, **kwargs):
        one, two = self.participant_one_id, self.participant_two_id
        if not one or not two or one == two:
            raise ValidationError(
                "Conversation must have exactly 2 participants",
                errors=[{"field": "participants", "message": "two distinct users required"}],
            )
        await super().save(*args, **kwargs)


class Message(Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    conversation = fields.ForeignKeyField("models.Conversation", related_name="messages", on_delete=fields.CASCADE)
    sender = fields.ForeignKeyField("models.User", related_name="sent_messages")
    receiver = fields.ForeignKeyField("models.User", related_name="received_messages")

    content = fields.TextField()
    message_type = fields.CharEnumField(MessageType, max_length=16, default=MessageType.TEXT)
    # [{name, url, size, type}]
    attachments = fields.JSONField(default=list)
    # {title, description, price, delivery_time, revisions, expires_at, status, order_id}
    custom_offer = fields.JSONField(null=True)
    # mirrors custom_offer status and expires_at so the expiry sweep can filter on them
    offer_status = fields.CharEnumField(OfferStatus, max_length=16, null=True)
    offer_expires_at = fields.DatetimeField(null=True)

    is_read = fields.BooleanField(default=False)
    read_at = fields.DatetimeField(null=True)
    is_edited = fields.BooleanField(default=False)
    edited_at = fields.DatetimeField(null=True)
    is_deleted = fields.BooleanField(default=False)
    deleted_at = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "messages"
        ordering = ["created_at"]
        indexes = [
            ["conversation_id", "created_at"],
            ["receiver_id", "is_read"],
            ["offer_status", "offer_expires_at"],
        ]

    def __str__(self):
        return f"{self.sender_id} -> {self.receiver_id}: {self.content[:50]}"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "conversation_id": str(self.conversation_id),
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "content": "This message was deleted" if self.is_deleted else self.content,
            "message_type": self.message_type.value if isinstance(self.message_type, Enum) else self.message_type,
            "attachments": self.attachments,
            "custom_offer": self.custom_offer,
            "is_read": self.is_read,
            "is_edited": self.is_edited,
            "is_deleted": self.is_deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
