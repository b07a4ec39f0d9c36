"""Tests for socket and channel broadcast dispatchers."""

import pytest

from gamehub.realtime.dispatcher import (
    ChannelBroadcaster,
    ChannelProvider,
    InMemoryChannelProvider,
    SocketBroadcaster,
)
from gamehub.realtime.protocol import ActiveUsersCountFrame, UserTypingStartFrame
from gamehub.realtime.registry import RoomRegistry


class TestSocketBroadcaster:
    """Fan-out over the room registry."""

    @pytest.mark.asyncio
    async def test_delivers_to_every_member(self, session_factory):
        registry = RoomRegistry()
        sessions = [session_factory(f"u{i}") for i in range(3)]
        for session in sessions:
            registry.join(42, session)

        delivered = await SocketBroadcaster(registry).broadcast(42, ActiveUsersCountFrame(count=3))

        assert delivered == 3
        for session in sessions:
            assert session.sent == [{"type": "active_users_count", "count": 3}]

    @pytest.mark.asyncio
    async def test_failing_session_is_isolated(self, session_factory):
        registry = RoomRegistry()
        healthy = [session_factory("a"), session_factory("c")]
        broken = session_factory("b", fail=True)
        for session in (healthy[0], broken, healthy[1]):
            registry.join(42, session)

        delivered = await SocketBroadcaster(registry).broadcast(42, {"type": "user_joined", "userId": "d"})

        assert delivered == 2
        for session in healthy:
            assert session.types() == ["user_joined"]
        assert broken.sent == []
        # a failed write does not evict the member
        assert registry.room_size(42) == 3

    @pytest.mark.asyncio
    async def test_skips_closed_and_excluded(self, session_factory):
        registry = RoomRegistry()
        sender = session_factory("sender")
        closed = session_factory("closed", is_open=False)
        other = session_factory("other")
        for session in (sender, closed, other):
            registry.join(42, session)

        frame = UserTypingStartFrame(userId="sender", username="Sender")
        delivered = await SocketBroadcaster(registry).broadcast(42, frame, exclude=sender)

        assert delivered == 1
        assert other.types() == ["user_typing_start"]
        assert sender.sent == [] and closed.sent == []

    @pytest.mark.asyncio
    async def test_other_rooms_untouched(self, session_factory):
        registry = RoomRegistry()
        here, elsewhere = session_factory("a"), session_factory("b")
        registry.join(1, here)
        registry.join(2, elsewhere)

        await SocketBroadcaster(registry).broadcast(1, ActiveUsersCountFrame(count=1))

        assert here.sent and not elsewhere.sent

    @pytest.mark.asyncio
    async def test_empty_room(self):
        assert await SocketBroadcaster(RoomRegistry()).broadcast(99, ActiveUsersCountFrame(count=0)) == 0


class RecordingProvider(ChannelProvider):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.triggered = []

    async def trigger(self, channel, event, data, exclude=None):
        if self.fail:
            raise ConnectionError("relay unavailable")
        self.triggered.append((channel, event, data))
        return 1

    def subscribe(self, channel, subscriber):
        pass

    def unsubscribe(self, channel, subscriber):
        pass


class TestChannelBroadcaster:
    """Publish/subscribe transport."""

    @pytest.mark.asyncio
    async def test_channel_and_event_names(self):
        provider = RecordingProvider()
        broadcaster = ChannelBroadcaster(provider)

        await broadcaster.broadcast(42, ActiveUsersCountFrame(count=2))

        assert provider.triggered == [("event-42", "active_users_count", {"count": 2})]

    @pytest.mark.asyncio
    async def test_custom_prefix(self):
        provider = RecordingProvider()
        await ChannelBroadcaster(provider, prefix="room-").broadcast(5, {"type": "user_left"})
        assert provider.triggered[0][0] == "room-5"

    @pytest.mark.asyncio
    async def test_provider_failure_is_absorbed(self):
        broadcaster = ChannelBroadcaster(RecordingProvider(fail=True))
        assert await broadcaster.broadcast(42, ActiveUsersCountFrame(count=1)) == 0

    @pytest.mark.asyncio
    async def test_in_memory_provider_fan_out(self, session_factory):
        provider = InMemoryChannelProvider()
        broadcaster = ChannelBroadcaster(provider)
        a, b, broken = session_factory("a"), session_factory("b"), session_factory("x", fail=True)
        for session in (a, b, broken):
            broadcaster.attach(42, session)

        delivered = await broadcaster.broadcast(42, ActiveUsersCountFrame(count=3), exclude=b)

        assert delivered == 1
        assert a.sent == [{"type": "active_users_count", "count": 3}]
        assert b.sent == []

    @pytest.mark.asyncio
    async def test_detach_stops_delivery(self, session_factory):
        provider = InMemoryChannelProvider()
        broadcaster = ChannelBroadcaster(provider)
        session = session_factory("a")
        broadcaster.attach(42, session)
        broadcaster.detach(42, session)

        assert await broadcaster.broadcast(42, ActiveUsersCountFrame(count=0)) == 0
        assert provider.subscribers("event-42") == []
