import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.exceptions import ChannelUnavailable
from app.utils import websocket_manager
from applications.communication import services
from applications.communication.notifications import Notification, NotificationType
from tests.conftest import RecordingSocket


# ============================================================================
# CHANNEL
# ============================================================================

class TestChannelLifecycle:

    async def test_unavailable_before_init(self):
        with pytest.raises(ChannelUnavailable):
            websocket_manager.get_channel()

    async def test_init_is_idempotent_and_close_resets(self):
        first = websocket_manager.init_channel()
        assert websocket_manager.init_channel() is first
        assert websocket_manager.get_channel() is first

        await websocket_manager.close_channel()
        with pytest.raises(ChannelUnavailable):
            websocket_manager.get_channel()


class FlakyPubSub:
    """First subscription drops the connection, the next one delivers ``envelopes``."""

    def __init__(self, redis):
        self.redis = redis

    async def psubscribe(self, pattern):
        self.redis.subscriptions.append(pattern)

    async def listen(self):
        if len(self.redis.subscriptions) == 1:
            raise RedisConnectionError("Connection reset by peer")
        yield {"type": "psubscribe", "channel": self.redis.subscriptions[-1], "data": 1}
        for user_id, envelope in self.redis.envelopes:
            yield {"type": "pmessage", "channel": f"realtime:user:{user_id}", "data": json.dumps(envelope)}
        await asyncio.Event().wait()

    async def aclose(self):
        self.redis.closed += 1


class FlakyRedis:

    def __init__(self, envelopes=()):
        self.envelopes = list(envelopes)
        self.subscriptions = []
        self.closed = 0

    def pubsub(self):
        return FlakyPubSub(self)


async def wait_for(condition, attempts=100):
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never became true")


class TestRedisListener:

    async def test_resubscribes_after_connection_loss(self, buyer):
        redis = FlakyRedis([(buyer.id, {"event": "hello", "data": {"n": 1}})])
        channel = websocket_manager.RealtimeChannel(redis, reconnect_delay=0)
        socket = RecordingSocket()
        await channel.connect(socket, buyer.id)

        channel.start()
        try:
            await wait_for(lambda: socket.sent)
        finally:
            await channel.stop()

        assert socket.events("hello") == [{"n": 1}]
        assert redis.subscriptions == ["realtime:user:*", "realtime:user:*"]
        assert redis.closed == 2

    async def test_stop_after_listener_crash(self, caplog):
        class BrokenRedis(FlakyRedis):
            def pubsub(self):
                raise RuntimeError("boom")

        channel = websocket_manager.RealtimeChannel(BrokenRedis(), reconnect_delay=0)
        channel.start()
        listener = channel._listener
        await wait_for(listener.done)
        await asyncio.sleep(0)

        await channel.stop()

        assert channel._listener is None
        assert "Realtime listener died" in caplog.text


class TestFanOut:

    async def test_every_session_of_a_user_receives(self, channel, connect, buyer):
        phone, laptop = await connect(buyer), await connect(buyer)
        assert channel.session_count(buyer.id) == 2

        await channel.send_to_user(buyer.id, "ping_all", {"n": 1})

        assert phone.events("ping_all") == [{"n": 1}]
        assert laptop.events("ping_all") == [{"n": 1}]

    async def test_other_users_do_not_receive(self, channel, connect, buyer, seller):
        other = await connect(seller)
        await channel.send_to_user(buyer.id, "hello", {})
        assert other.sent == []

    async def test_failed_socket_is_dropped(self, channel, connect, buyer):
        broken = await connect(buyer, fail=True)
        healthy = await connect(buyer)

        await channel.send_to_user(buyer.id, "hello", {"x": 1})

        assert healthy.events("hello") == [{"x": 1}]
        assert broken.sent == []
        assert channel.session_count(buyer.id) == 1

    async def test_disconnect_last_session_goes_offline(self, channel, buyer):
        conn = await channel.connect(RecordingSocket(), buyer.id)
        assert channel.is_online(buyer.id)
        channel.disconnect(conn)
        assert not channel.is_online(buyer.id)
        # a second disconnect is harmless
        channel.disconnect(conn)

    async def test_accepts_the_socket(self, channel, buyer):
        socket = RecordingSocket()
        await channel.connect(socket, buyer.id)
        assert socket.accepted


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class TestNotify:

    async def test_persists_and_pushes(self, connect, buyer, seller):
        socket = await connect(buyer)

        notification = await services.notify(
            buyer.id, NotificationType.NEW_MESSAGE, "New message", "You have mail",
            data={"message_id": "m1"}, sender_id=seller.id,
        )

        stored = await Notification.get(id=notification.id)
        assert stored.is_read is False
        assert stored.data == {"message_id": "m1"}

        pushed = socket.events("new_notification")
        assert len(pushed) == 1
        assert pushed[0]["id"] == str(notification.id)
        assert pushed[0]["type"] == "new_message"

    async def test_persists_when_channel_missing(self, buyer):
        await services.notify(buyer.id, NotificationType.SYSTEM, "Hi", "Welcome")
        assert await services.unread_count(buyer) == 1

    async def test_persists_when_socket_fails(self, connect, buyer):
        await connect(buyer, fail=True)
        await services.notify(buyer.id, NotificationType.SYSTEM, "Hi", "Welcome")
        assert await services.unread_count(buyer) == 1

    async def test_push_reports_failure(self, buyer):
        assert await services.push(buyer.id, "anything", {}) is False


class TestReadState:

    async def test_mark_read_is_scoped_to_recipient(self, buyer, seller):
        notification = await services.notify(buyer.id, NotificationType.SYSTEM, "Hi", "Welcome")

        assert await services.mark_read(str(notification.id), seller) is None
        assert await services.unread_count(buyer) == 1

        updated = await services.mark_read(str(notification.id), buyer)
        assert updated.is_read is True
        assert updated.read_at is not None
        assert await services.unread_count(buyer) == 0

    async def test_mark_read_unknown_id(self, buyer):
        assert await services.mark_read("not-a-uuid", buyer) is None

    async def test_mark_all_read(self, buyer, seller):
        for n in range(3):
            await services.notify(buyer.id, NotificationType.SYSTEM, f"n{n}", "body")
        await services.notify(seller.id, NotificationType.SYSTEM, "other", "body")

        assert await services.mark_all_read(buyer) == 3
        assert await services.unread_count(buyer) == 0
        assert await services.unread_count(seller) == 1

    async def test_list_newest_first_and_unread_filter(self, buyer):
        for n in range(3):
            await services.notify(buyer.id, NotificationType.SYSTEM, f"n{n}", "body")
        oldest = (await Notification.filter(recipient_id=buyer.id).order_by("created_at").first())
        await services.mark_read(str(oldest.id), buyer)

        items, pagination = await services.list_notifications(buyer, page=1, limit=2)
        assert pagination["total"] == 3
        assert len(items) == 2

        unread, pagination = await services.list_notifications(buyer, unread_only=True)
        assert pagination["total"] == 2
        assert all(not n.is_read for n in unread)
