import asyncio
import json
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.exceptions import ChannelUnavailable

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "realtime:user:"


class WSConnection:
    """A single websocket session of an authenticated user."""

    def __init__(self, websocket: WebSocket, user_id: str):
        self.websocket = websocket
        self.user_id = user_id
        self.connected_at = datetime.now(timezone.utc)
        self.last_message_at = self.connected_at
        self.message_count = 0
        self.is_active = True
        self.connection_id = str(uuid.uuid4())

    async def send_json(self, data: dict) -> bool:
        try:
            await self.websocket.send_json(data)
            self.last_message_at = datetime.now(timezone.utc)
            self.message_count += 1
            return True
        except Exception as e:
            logger.warning("Send to %s [%s] failed: %s", self.user_id, self.connection_id, e)
            self.is_active = False
            return False

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "connected_at": self.connected_at.isoformat(),
            "last_message_at": self.last_message_at.isoformat(),
            "message_count": self.message_count,
        }


class RealtimeChannel:
    """
    Fan-out of named events to the websocket sessions of a user.

    Without redis every event is delivered to the sessions held by this
    process. With redis, events are published on ``realtime:user:<id>`` and the
    listener of every worker delivers them to its own sessions, so a user
    connected to another worker still receives them.
    """

    def __init__(self, redis: Optional[Redis] = None, reconnect_delay: float = 1.0):
        self.redis = redis
        self.reconnect_delay = reconnect_delay
        # connections[user_id][connection_id] = WSConnection
        self.connections: Dict[str, Dict[str, WSConnection]] = defaultdict(dict)
        self._listener: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, user_id: str) -> WSConnection:
        await websocket.accept()
        conn = WSConnection(websocket, str(user_id))
        self.connections[conn.user_id][conn.connection_id] = conn
        logger.info("Connected %s [%s]", conn.user_id, conn.connection_id)
        return conn

    def disconnect(self, conn: WSConnection) -> None:
        sessions = self.connections.get(conn.user_id)
        if not sessions:
            return
        sessions.pop(conn.connection_id, None)
        if not sessions:
            del self.connections[conn.user_id]
        logger.info("Disconnected %s [%s]", conn.user_id, conn.connection_id)

    def is_online(self, user_id: str) -> bool:
        return bool(self.connections.get(str(user_id)))

    def session_count(self, user_id: str) -> int:
        return len(self.connections.get(str(user_id), {}))

    async def send_to_user(self, user_id: str, event: str, payload: Any) -> None:
        envelope = {"event": event, "data": jsonable_encoder(payload)}
        if self.redis is not None:
            await self.redis.publish(f"{CHANNEL_PREFIX}{user_id}", json.dumps(envelope))
            return
        await self.deliver_local(str(user_id), envelope)

    async def deliver_local(self, user_id: str, envelope: dict) -> int:
        delivered = 0
        for conn in list(self.connections.get(user_id, {}).values()):
            if await conn.send_json(envelope):
                delivered += 1
            else:
                self.disconnect(conn)
        return delivered

    async def _consume(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            async for item in pubsub.listen():
                if item.get("type") != "pmessage":
                    continue
                user_id = item["channel"][len(CHANNEL_PREFIX):]
                try:
                    envelope = json.loads(item["data"])
                except (TypeError, ValueError):
                    logger.warning("Dropping malformed realtime envelope on %s", item["channel"])
                    continue
                await self.deliver_local(user_id, envelope)
        finally:
            await pubsub.aclose()

    async def _listen(self) -> None:
        while True:
            try:
                await self._consume()
                logger.warning("Realtime subscription ended, resubscribing")
            except (RedisConnectionError, RedisTimeoutError) as e:
                logger.warning("Realtime listener lost redis (%s), resubscribing in %ss", e, self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Realtime listener died", exc_info=error)

    def start(self) -> None:
        if self.redis is not None and self._listener is None:
            self._listener = asyncio.create_task(self._listen())
            self._listener.add_done_callback(self._on_listener_done)

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Realtime listener had already failed: %s", e)
            self._listener = None


channel: RealtimeChannel | None = None


def init_channel(redis: Optional[Redis] = None) -> RealtimeChannel:
    global channel
    if channel is None:
        channel = RealtimeChannel(redis)
        channel.start()
    return channel


def get_channel() -> RealtimeChannel:
    if channel is None:
        raise ChannelUnavailable("Realtime channel not initialized")
    return channel


async def close_channel() -> None:
    global channel
    if channel is not None:
        await channel.stop()
        channel = None
