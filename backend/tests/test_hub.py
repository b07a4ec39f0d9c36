"""Tests for the realtime hub: join/leave announcements and presence."""

import pytest

from gamehub.config import AppConfig, set_config
from gamehub.realtime.dispatcher import ChannelBroadcaster, InMemoryChannelProvider
from gamehub.realtime.hub import RealtimeHub, get_hub
from gamehub.realtime.protocol import ActiveUsersCountFrame
from gamehub.realtime.registry import RoomRegistry


class TestJoin:
    """join_room behaviour."""

    @pytest.mark.asyncio
    async def test_join_announces_joined_then_count(self, session_factory):
        hub = RealtimeHub()
        alice = session_factory("u1")

        assert await hub.join_room(42, alice) is True

        assert alice.sent == [
            {"type": "user_joined", "userId": "u1"},
            {"type": "active_users_count", "count": 1},
        ]

    @pytest.mark.asyncio
    async def test_second_member_updates_everyone(self, session_factory):
        hub = RealtimeHub()
        alice, bob = session_factory("u1"), session_factory("u2")
        await hub.join_room(42, alice)
        alice.sent.clear()

        await hub.join_room(42, bob)

        for session in (alice, bob):
            assert session.sent == [
                {"type": "user_joined", "userId": "u2"},
                {"type": "active_users_count", "count": 2},
            ]
        assert hub.active_count(42) == 2

    @pytest.mark.asyncio
    async def test_repeat_join_is_idempotent(self, session_factory):
        hub = RealtimeHub()
        alice, bob = session_factory("u1"), session_factory("u2")
        await hub.join_room(42, alice)
        await hub.join_room(42, bob)
        alice.sent.clear()
        bob.sent.clear()

        assert await hub.join_room(42, alice) is False

        assert hub.active_count(42) == 2
        assert alice.sent == [{"type": "active_users_count", "count": 2}]
        assert bob.sent == []

    @pytest.mark.asyncio
    async def test_switching_rooms_leaves_the_first(self, session_factory):
        hub = RealtimeHub()
        alice, bob = session_factory("u1"), session_factory("u2")
        await hub.join_room(1, alice)
        await hub.join_room(1, bob)
        bob.sent.clear()

        await hub.join_room(2, alice)

        assert hub.active_count(1) == 1
        assert hub.active_count(2) == 1
        assert bob.types() == ["user_left", "active_users_count"]
        assert bob.sent[-1]["count"] == 1


class TestLeave:
    """leave_room behaviour."""

    @pytest.mark.asyncio
    async def test_leave_announces_left_then_count(self, session_factory):
        hub = RealtimeHub()
        alice, bob = session_factory("u1"), session_factory("u2")
        await hub.join_room(42, alice)
        await hub.join_room(42, bob)
        alice.sent.clear()

        assert await hub.leave_room(bob) == 42

        assert alice.sent == [
            {"type": "user_left", "userId": "u2"},
            {"type": "active_users_count", "count": 1},
        ]

    @pytest.mark.asyncio
    async def test_leave_clears_stale_typing(self, session_factory):
        hub = RealtimeHub()
        alice, bob = session_factory("u1", "alice"), session_factory("u2", "bob")
        await hub.join_room(42, alice)
        await hub.join_room(42, bob)
        await hub.presence.start_typing(42, "u2", "bob", exclude=bob)
        alice.sent.clear()

        await hub.leave_room(bob)

        assert hub.typing_users(42) == []
        assert alice.types() == ["user_typing_stop", "user_left", "active_users_count"]

    @pytest.mark.asyncio
    async def test_typing_kept_while_user_has_another_session(self, session_factory):
        hub = RealtimeHub()
        phone, laptop = session_factory("u1", "alice"), session_factory("u1", "alice")
        await hub.join_room(42, phone)
        await hub.join_room(42, laptop)
        await hub.presence.start_typing(42, "u1", "alice")

        await hub.leave_room(phone)

        assert hub.typing_users(42) == ["alice"]
        assert hub.active_count(42) == 1

    @pytest.mark.asyncio
    async def test_last_leave_empties_room(self, session_factory):
        hub = RealtimeHub()
        alice = session_factory("u1", "alice")
        await hub.join_room(42, alice)
        await hub.presence.start_typing(42, "u1", "alice")

        await hub.leave_room(alice)

        assert hub.active_count(42) == 0
        assert hub.typing_users(42) == []
        assert hub.registry.rooms() == []

    @pytest.mark.asyncio
    async def test_leave_without_join(self, session_factory):
        assert await RealtimeHub().leave_room(session_factory("u1")) is None

    @pytest.mark.asyncio
    async def test_count_never_drifts(self, session_factory):
        hub = RealtimeHub()
        sessions = [session_factory(f"u{i}") for i in range(5)]
        for session in sessions:
            await hub.join_room(42, session)
            await hub.join_room(42, session)
        for session in sessions[:3]:
            await hub.leave_room(session)
            await hub.leave_room(session)

        assert hub.active_count(42) == 2
        last_counts = [f["count"] for f in sessions[-1].sent if f["type"] == "active_users_count"]
        assert last_counts[-1] == 2

    @pytest.mark.asyncio
    async def test_close_room(self, session_factory):
        hub = RealtimeHub()
        sessions = [session_factory("u1"), session_factory("u2")]
        for session in sessions:
            await hub.join_room(42, session)

        assert set(hub.close_room(42)) == set(sessions)
        assert hub.active_count(42) == 0


class TestChannelTransport:
    """The same hub contract over the pub/sub channel transport."""

    @pytest.mark.asyncio
    async def test_join_and_broadcast_over_channel(self, session_factory):
        registry = RoomRegistry()
        provider = InMemoryChannelProvider()
        hub = RealtimeHub(registry, ChannelBroadcaster(provider))
        alice, bob = session_factory("u1"), session_factory("u2")

        await hub.join_room(42, alice)
        await hub.join_room(42, bob)
        assert len(provider.subscribers("event-42")) == 2

        alice.sent.clear()
        await hub.broadcast(42, ActiveUsersCountFrame(count=2))
        assert alice.sent == [{"type": "active_users_count", "count": 2}]

        await hub.leave_room(bob)
        assert provider.subscribers("event-42") == [alice]

    def test_from_config_selects_channel(self):
        set_config(AppConfig(realtime={"transport": "channel", "channel_prefix": "ev-"}))
        hub = RealtimeHub.from_config()

        assert isinstance(hub.broadcaster, ChannelBroadcaster)
        assert hub.broadcaster.channel_for(9) == "ev-9"


def test_get_hub_is_singleton():
    assert get_hub() is get_hub()
    RealtimeHub.reset_instance()
    assert isinstance(get_hub(), RealtimeHub)
