from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.auth import login_required
from applications.communication import services
from applications.communication.chat import MessageType
from applications.payments.services import accept_offer
from applications.user.models import User

router = APIRouter(tags=["Messages"])


class ConversationIn(BaseModel):
    participant_id: str
    gig_id: Optional[str] = None
    order_id: Optional[str] = None


class AttachmentIn(BaseModel):
    name: str
    url: str
    size: Optional[int] = None
    type: Optional[str] = None


class CustomOfferIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1200)
    price: float = Field(..., ge=5)
    delivery_time: int = Field(..., ge=1)
    revisions: int = Field(0, ge=0)
    expires_at: Optional[datetime] = None


class MessageIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: MessageType = MessageType.TEXT
    attachments: list[AttachmentIn] = []
    custom_offer: Optional[CustomOfferIn] = None


class MessageEditIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class FlagIn(BaseModel):
    value: bool = True


def _conversation(conversation, user: User) -> dict:
    return {
        "id": str(conversation.id),
        "participants": conversation.participants,
        "gig_id": str(conversation.gig_id) if conversation.gig_id else None,
        "order_id": str(conversation.order_id) if conversation.order_id else None,
        "last_message": conversation.last_message,
        "last_activity": conversation.last_activity,
        "unread_count": conversation.unread_for(user.id),
        "is_archived": bool((conversation.is_archived or {}).get(user.id)),
        "is_blocked": bool((conversation.is_blocked or {}).get(user.id)),
    }


# ============================================================================
# CONVERSATIONS
# ============================================================================

@router.get("/conversations/")
async def list_conversations(archived: bool = False, user: User = Depends(login_required)):
    return {"conversations": await services.list_conversations(user, include_archived=archived)}


@router.post("/conversations/", status_code=status.HTTP_201_CREATED)
async def start_conversation(payload: ConversationIn, user: User = Depends(login_required)):
    conversation = await services.get_or_create_conversation(
        user, payload.participant_id, gig_id=payload.gig_id, order_id=payload.order_id
    )
    return _conversation(conversation, user)


@router.get("/conversations/{conversation_id}/messages/")
async def list_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(login_required),
):
    messages = await services.list_messages(conversation_id, user, page, limit)
    return {"messages": [m.to_dict() for m in messages], "page": page, "limit": limit}


@router.post("/conversations/{conversation_id}/messages/", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, payload: MessageIn, user: User = Depends(login_required)):
    message = await services.send_message(
        conversation_id,
        user,
        payload.content,
        message_type=payload.message_type,
        attachments=[a.model_dump() for a in payload.attachments],
        custom_offer=payload.custom_offer.model_dump() if payload.custom_offer else None,
    )
    return message.to_dict()


@router.post("/conversations/{conversation_id}/read/")
async def mark_conversation_read(conversation_id: str, user: User = Depends(login_required)):
    updated = await services.mark_thread_read(conversation_id, user)
    return {"marked_read": updated}


@router.patch("/conversations/{conversation_id}/archive/")
async def archive(conversation_id: str, payload: FlagIn, user: User = Depends(login_required)):
    conversation = await services.set_archived(conversation_id, user, payload.value)
    return _conversation(conversation, user)


@router.patch("/conversations/{conversation_id}/block/")
async def block(conversation_id: str, payload: FlagIn, user: User = Depends(login_required)):
    conversation = await services.set_blocked(conversation_id, user, payload.value)
    return _conversation(conversation, user)


# ============================================================================
# MESSAGES
# ============================================================================

@router.get("/unread-count/")
async def unread_count(user: User = Depends(login_required)):
    return {"unread_count": await services.total_unread(user)}


@router.patch("/{message_id}/read/")
async def mark_message_read(message_id: str, user: User = Depends(login_required)):
    message = await services.mark_message_read(message_id, user)
    return message.to_dict()


@router.patch("/{message_id}/")
async def edit_message(message_id: str, payload: MessageEditIn, user: User = Depends(login_required)):
    message = await services.edit_message(message_id, user, payload.content)
    return message.to_dict()


@router.delete("/{message_id}/")
async def delete_message(message_id: str, user: User = Depends(login_required)):
    await services.delete_message(message_id, user)
    return {"message": "Message deleted"}


@router.post("/{message_id}/accept-offer/")
async def accept_custom_offer(message_id: str, user: User = Depends(login_required)):
    checkout = await accept_offer(message_id, user)
    return {"message": "Offer accepted", **checkout}


@router.post("/{message_id}/decline-offer/")
async def decline_custom_offer(message_id: str, user: User = Depends(login_required)):
    await services.decline_offer(message_id, user)
    return {"message": "Offer declined"}
