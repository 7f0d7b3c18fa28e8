import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Query, WebSocket, status
from jose import JWTError
from starlette.websockets import WebSocketDisconnect

from app.exceptions import DomainError
from app.token import decode_access_token
from app.utils.websocket_manager import RealtimeChannel, get_channel
from applications.communication import services
from applications.user.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

TYPING_EVENTS = {"typing_start": "user_typing", "typing_stop": "user_stopped_typing"}


async def _authenticate(token: str) -> User | None:
    try:
        user_id = decode_access_token(token)
    except JWTError:
        return None
    user = await User.get_or_none(id=user_id)
    if user is None or not user.is_active:
        return None
    return user


async def _set_presence(user: User, online: bool) -> None:
    await User.filter(id=user.id).update(is_online=online, last_seen=datetime.now(timezone.utc))


async def _handle(channel: RealtimeChannel, user: User, event: str, data: dict) -> dict | None:
    if event == "ping":
        return {"event": "pong", "data": {}}

    if event in TYPING_EVENTS:
        conversation = await services.get_conversation_for(data.get("conversation_id", ""), user)
        await channel.send_to_user(
            conversation.other_participant(user.id),
            TYPING_EVENTS[event],
            {"user_id": user.id, "username": user.username, "conversation_id": str(conversation.id)},
        )
        return None

    if event == "mark_notification_read":
        notification = await services.mark_read(data.get("notification_id", ""), user)
        return {"event": "notification_read", "data": {"notification_id": data.get("notification_id"),
                                                        "updated": notification is not None}}

    return {"event": "error", "data": {"detail": f"Unknown event: {event}"}}


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, token: str = Query(...)):
    """
    Per-user event stream.

    Server -> client: ``{"event": ..., "data": ...}`` for new_notification,
    new_message, message_read, user_typing, user_stopped_typing and friends.

    Client -> server: ``{"event": "typing_start" | "typing_stop", "data": {"conversation_id"}}``,
    ``{"event": "mark_notification_read", "data": {"notification_id"}}``, ``{"event": "ping"}``.
    """
    user = await _authenticate(token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    channel = get_channel()
    conn = await channel.connect(websocket, user.id)
    await _set_presence(user, True)
    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await conn.send_json({"event": "error", "data": {"detail": "Expected a JSON object"}})
                continue
            try:
                reply = await _handle(channel, user, message.get("event", ""), message.get("data") or {})
            except DomainError as e:
                reply = {"event": "error", "data": {"detail": e.message}}
            if reply:
                await conn.send_json(reply)
    except WebSocketDisconnect:
        pass
    except ValueError:
        logger.warning("Malformed frame from %s, closing", user.id)
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        channel.disconnect(conn)
        if not channel.is_online(user.id):
            await _set_presence(user, False)
