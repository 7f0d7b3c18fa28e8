"""
Notifications, conversations and messages.

Persistence always comes first; realtime delivery through the channel is an
optimisation layered on top and never fails the calling operation.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from app.exceptions import Forbidden, NotFound, ValidationError, Conflict
from app.utils.services import get_or_404, paginate
from app.utils.websocket_manager import RealtimeChannel, get_channel
from applications.communication.chat import Conversation, Message, MessageType, OfferStatus
from applications.communication.notifications import Notification, NotificationType
from applications.user.models import User

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def push(user_id: str, event: str, payload: Any, channel: Optional[RealtimeChannel] = None) -> bool:
    """Best-effort realtime delivery; failures are logged and reported as ``False``."""
    try:
        await (channel or get_channel()).send_to_user(user_id, event, payload)
        return True
    except Exception as e:
        logger.warning("Realtime push of %s to %s failed: %s", event, user_id, e)
        return False


# ============================================================================
# NOTIFICATIONS
# ============================================================================

async def notify(
    recipient_id: str,
    type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None,
    sender_id: Optional[str] = None,
    channel: Optional[RealtimeChannel] = None,
) -> Notification:
    notification = await Notification.create(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=type,
        title=title,
        message=message,
        data=jsonable_encoder(data or {}),
    )
    logger.info("Notification %s (%s) -> %s", notification.id, type.value, recipient_id)
    await push(recipient_id, "new_notification", notification.to_dict(), channel)
    return notification


async def mark_read(notification_id: str, user: User) -> Optional[Notification]:
    """Flag one notification as read; ids that are unknown or not owned by ``user`` are a no-op."""
    try:
        updated = await Notification.filter(id=notification_id, recipient_id=user.id).update(
            is_read=True, read_at=_now()
        )
    except ValueError:
        return None
    if not updated:
        return None
    return await Notification.get(id=notification_id)


async def mark_all_read(user: User) -> int:
    return await Notification.filter(recipient_id=user.id, is_read=False).update(is_read=True, read_at=_now())


async def unread_count(user: User) -> int:
    return await Notification.filter(recipient_id=user.id, is_read=False).count()


async def list_notifications(user: User, page: int = 1, limit: int = 20, unread_only: bool = False):
    query = Notification.filter(recipient_id=user.id)
    if unread_only:
        query = query.filter(is_read=False)
    return await paginate(query.order_by("-created_at"), page, limit)


# ============================================================================
# CONVERSATIONS
# ============================================================================

async def start_conversation(
    participants: list[str],
    gig_id: Optional[str] = None,
    order_id: Optional[str] = None,
) -> Conversation:
    unique = list(dict.fromkeys(str(p) for p in participants if p))
    if len(participants) != 2 or len(unique) != 2:
        raise ValidationError(
            "Conversation must have exactly 2 participants",
            errors=[{"field": "participants", "message": "two distinct users required"}],
        )
    one, two = unique
    return await Conversation.create(
        participant_one_id=one,
        participant_two_id=two,
        gig_id=gig_id,
        order_id=order_id,
        unread_count={one: 0, two: 0},
    )


async def find_conversation(user_a: str, user_b: str) -> Optional[Conversation]:
    return await Conversation.filter(
        Q(participant_one_id=user_a, participant_two_id=user_b)
        | Q(participant_one_id=user_b, participant_two_id=user_a)
    ).first()


async def get_or_create_conversation(
    user: User,
    participant_id: str,
    gig_id: Optional[str] = None,
    order_id: Optional[str] = None,
) -> Conversation:
    if participant_id == user.id:
        raise ValidationError("Cannot create conversation with yourself")
    await get_or_404(User, label="User", id=participant_id)

    conversation = await find_conversation(user.id, participant_id)
    if conversation:
        return conversation
    return await start_conversation([user.id, participant_id], gig_id=gig_id, order_id=order_id)


async def get_conversation_for(conversation_id: str, user: User) -> Conversation:
    conversation = await get_or_404(Conversation, id=conversation_id)
    if not conversation.has_participant(user.id):
        raise Forbidden("Not authorized to access this conversation")
    return conversation


async def list_conversations(user: User, include_archived: bool = False) -> list[dict]:
    conversations = await Conversation.filter(
        Q(participant_one_id=user.id) | Q(participant_two_id=user.id)
    ).order_by("-last_activity").prefetch_related("participant_one", "participant_two")

    result = []
    for conv in conversations:
        if not include_archived and (conv.is_archived or {}).get(user.id):
            continue
        other = conv.participant_two if conv.participant_one_id == user.id else conv.participant_one
        result.append({
            "id": str(conv.id),
            "participant": {
                "id": other.id,
                "username": other.username,
                "full_name": other.full_name,
                "avatar": other.avatar,
                "is_online": other.is_online,
                "last_seen": other.last_seen,
            },
            "gig_id": str(conv.gig_id) if conv.gig_id else None,
            "order_id": str(conv.order_id) if conv.order_id else None,
            "last_message": conv.last_message,
            "last_activity": conv.last_activity,
            "unread_count": conv.unread_for(user.id),
        })
    return result


async def total_unread(user: User) -> int:
    conversations = await Conversation.filter(
        Q(participant_one_id=user.id) | Q(participant_two_id=user.id)
    )
    return sum(conv.unread_for(user.id) for conv in conversations)


async def set_archived(conversation_id: str, user: User, archived: bool) -> Conversation:
    conversation = await get_conversation_for(conversation_id, user)
    conversation.is_archived = {**(conversation.is_archived or {}), user.id: archived}
    await conversation.save(update_fields=["is_archived", "updated_at"])
    return conversation


async def set_blocked(conversation_id: str, user: User, blocked: bool) -> Conversation:
    conversation = await get_conversation_for(conversation_id, user)
    conversation.is_blocked = {**(conversation.is_blocked or {}), user.id: blocked}
    await conversation.save(update_fields=["is_blocked", "updated_at"])
    return conversation


# ============================================================================
# MESSAGES
# ============================================================================

def _parse_expiry(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            value = None
    if not isinstance(value, datetime):
        raise ValidationError(
            "Invalid offer expiry",
            errors=[{"field": "custom_offer.expires_at", "message": "expected an ISO 8601 datetime"}],
        )
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _offer_payload(custom_offer: dict) -> dict:
    required = ("title", "price", "delivery_time")
    missing = [key for key in required if custom_offer.get(key) in (None, "")]
    if missing:
        raise ValidationError(
            "Incomplete custom offer",
            errors=[{"field": f"custom_offer.{key}", "message": "required"} for key in missing],
        )
    offer = dict(custom_offer)
    offer.setdefault("description", "")
    offer.setdefault("revisions", 0)
    expires_at = _parse_expiry(offer.get("expires_at"))
    offer["expires_at"] = expires_at.isoformat() if expires_at else None
    offer["status"] = OfferStatus.PENDING.value
    return offer


async def send_message(
    conversation_id: str,
    sender: User,
    content: str,
    message_type: MessageType = MessageType.TEXT,
    attachments: Optional[list[dict]] = None,
    custom_offer: Optional[dict] = None,
    channel: Optional[RealtimeChannel] = None,
) -> Message:
    conversation = await get_or_404(Conversation, id=conversation_id)
    if not conversation.has_participant(sender.id):
        raise Forbidden("Not authorized to send message to this conversation")
    if any((conversation.is_blocked or {}).values()):
        raise Forbidden("This conversation is blocked")
    if not content or not content.strip():
        raise ValidationError("Message content is required", errors=[{"field": "content", "message": "required"}])

    offer_columns = {}
    if message_type == MessageType.CUSTOM_OFFER:
        if custom_offer is None:
            raise ValidationError("Custom offer details are required")
        custom_offer = _offer_payload(custom_offer)
        offer_columns = {
            "offer_status": OfferStatus.PENDING,
            "offer_expires_at": _parse_expiry(custom_offer["expires_at"]),
        }
    else:
        custom_offer = None

    receiver_id = conversation.other_participant(sender.id)
    message = await Message.create(
        conversation_id=conversation.id,
        sender_id=sender.id,
        receiver_id=receiver_id,
        content=content,
        message_type=message_type,
        attachments=attachments or [],
        custom_offer=custom_offer,
        **offer_columns,
    )

    conversation.last_message = {
        "id": str(message.id),
        "sender_id": sender.id,
        "content": content[:200],
        "message_type": message_type.value,
        "created_at": message.created_at.isoformat(),
    }
    conversation.last_activity = message.created_at
    unread = dict(conversation.unread_count or {})
    unread[receiver_id] = int(unread.get(receiver_id, 0)) + 1
    conversation.unread_count = unread
    await conversation.save(update_fields=["last_message", "last_activity", "unread_count", "updated_at"])

    await push(
        receiver_id,
        "new_message",
        {"message": message.to_dict(), "conversation_id": str(conversation.id)},
        channel,
    )
    return message


async def mark_thread_read(conversation_id: str, reader: User) -> int:
    conversation = await get_conversation_for(conversation_id, reader)
    async with in_transaction() as connection:
        updated = await Message.filter(
            conversation_id=conversation.id, receiver_id=reader.id, is_read=False
        ).using_db(connection).update(is_read=True, read_at=_now())
        conversation.unread_count = {**(conversation.unread_count or {}), reader.id: 0}
        await conversation.save(using_db=connection, update_fields=["unread_count", "updated_at"])
    return updated


async def list_messages(conversation_id: str, user: User, page: int = 1, limit: int = 50) -> list[Message]:
    conversation = await get_conversation_for(conversation_id, user)
    page = max(1, page)
    limit = max(1, limit)
    messages = await Message.filter(conversation_id=conversation.id, is_deleted=False).order_by(
        "-created_at"
    ).offset((page - 1) * limit).limit(limit)
    await mark_thread_read(conversation_id, user)
    return list(reversed(messages))


async def mark_message_read(message_id: str, user: User, channel: Optional[RealtimeChannel] = None) -> Message:
    message = await get_or_404(Message, id=message_id)
    if message.receiver_id != user.id or message.is_read:
        raise NotFound("Message not found or already read")

    async with in_transaction() as connection:
        message.is_read = True
        message.read_at = _now()
        await message.save(using_db=connection, update_fields=["is_read", "read_at", "updated_at"])

        conversation = await Conversation.get(id=message.conversation_id, using_db=connection)
        unread = dict(conversation.unread_count or {})
        unread[user.id] = max(0, int(unread.get(user.id, 0)) - 1)
        conversation.unread_count = unread
        await conversation.save(using_db=connection, update_fields=["unread_count", "updated_at"])

    await push(
        message.sender_id,
        "message_read",
        {"message_id": str(message.id), "read_at": message.read_at},
        channel,
    )
    return message


async def _own_message(message_id: str, user: User) -> Message:
    message = await get_or_404(Message, id=message_id)
    if message.sender_id != user.id:
        raise Forbidden("Only the sender can change this message")
    if message.is_deleted:
        raise NotFound("Message not found")
    return message


async def edit_message(message_id: str, user: User, content: str, channel: Optional[RealtimeChannel] = None) -> Message:
    if not content or not content.strip():
        raise ValidationError("Message content is required", errors=[{"field": "content", "message": "required"}])
    message = await _own_message(message_id, user)
    message.content = content
    message.is_edited = True
    message.edited_at = _now()
    await message.save(update_fields=["content", "is_edited", "edited_at", "updated_at"])
    await push(message.receiver_id, "message_edited", message.to_dict(), channel)
    return message


async def delete_message(message_id: str, user: User, channel: Optional[RealtimeChannel] = None) -> Message:
    message = await _own_message(message_id, user)
    message.is_deleted = True
    message.deleted_at = _now()
    await message.save(update_fields=["is_deleted", "deleted_at", "updated_at"])
    await push(message.receiver_id, "message_deleted", {"message_id": str(message.id)}, channel)
    return message


# ============================================================================
# CUSTOM OFFERS
# ============================================================================

def offer_is_expired(offer: dict, now: Optional[datetime] = None) -> bool:
    expires = _parse_expiry(offer.get("expires_at"))
    return expires is not None and expires <= (now or _now())


async def get_pending_offer(message_id: str, user: User) -> Message:
    """Return an offer message addressed to ``user`` that can still be answered."""
    message = await get_or_404(Message, id=message_id)
    if message.receiver_id != user.id:
        raise Forbidden("Not authorized")
    if message.message_type != MessageType.CUSTOM_OFFER or not message.custom_offer:
        raise ValidationError("Not a custom offer message")

    offer = message.custom_offer
    if offer.get("status") == OfferStatus.PENDING.value and offer_is_expired(offer):
        await set_offer_status(message, OfferStatus.EXPIRED)
    if message.custom_offer.get("status") != OfferStatus.PENDING.value:
        raise Conflict("Offer is no longer available")
    return message


async def set_offer_status(message: Message, status: OfferStatus, **extra) -> Message:
    message.custom_offer = {**message.custom_offer, "status": status.value, **extra}
    message.offer_status = status
    await message.save(update_fields=["custom_offer", "offer_status", "updated_at"])
    return message


async def decline_offer(message_id: str, user: User, channel: Optional[RealtimeChannel] = None) -> Message:
    message = await get_pending_offer(message_id, user)
    await set_offer_status(message, OfferStatus.DECLINED)
    await push(message.sender_id, "offer_declined", {"message_id": str(message.id)}, channel)
    return message


async def expire_offers(now: Optional[datetime] = None) -> int:
    """Flip every pending custom offer whose ``expires_at`` has passed to ``expired``."""
    now = now or _now()
    expired = 0
    due = Message.filter(
        offer_status=OfferStatus.PENDING, offer_expires_at__lte=now, is_deleted=False
    )
    for message in await due:
        await set_offer_status(message, OfferStatus.EXPIRED)
        expired += 1
    if expired:
        logger.info("Expired %d custom offers", expired)
    return expired
