"""Realtime hub: room membership, presence announcements and fan-out.

This module wires the Room Registry, the configured Broadcaster and the
Presence Tracker together and owns the join/leave announcements every room
member sees.

Key features:
    - At most one room per session; joining another room leaves the first
    - Idempotent join: a session is counted once however often it joins
    - user_joined / user_left deltas followed by the absolute
      active_users_count, computed from the registry member set
    - Typing entries of a leaving user are cleared and announced as stopped
    - Socket or channel transport selected by configuration

Thread Safety:
    Membership and typing state are lock-protected (see RoomRegistry and
    PresenceTracker); the hub adds no state of its own.
"""
import logging
from typing import Any, List, Optional

from gamehub.config import get_config
from gamehub.errors import DispatchError

from .dispatcher import (
    Broadcaster,
    ChannelBroadcaster,
    FramePayload,
    InMemoryChannelProvider,
    SocketBroadcaster,
)
from .presence import PresenceTracker
from .protocol import ActiveUsersCountFrame, UserJoinedFrame, UserLeftFrame
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Facade over the registry, dispatcher and presence tracker.

    Attributes:
        _instance: Singleton instance used by the API handlers.
    """

    _instance: Optional["RealtimeHub"] = None

    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        broadcaster: Optional[Broadcaster] = None,
    ) -> None:
        self.registry = registry or RoomRegistry()
        self.broadcaster = broadcaster or SocketBroadcaster(self.registry)
        self.presence = PresenceTracker(self.registry, self.broadcaster)

    @classmethod
    def from_config(cls) -> "RealtimeHub":
        """Build a hub using the configured transport."""
        settings = get_config().realtime
        registry = RoomRegistry()
        if settings.transport == "channel":
            broadcaster: Broadcaster = ChannelBroadcaster(
                InMemoryChannelProvider(), prefix=settings.channel_prefix
            )
        else:
            broadcaster = SocketBroadcaster(registry)
        logger.info(f"[Hub] Realtime hub ready (transport={settings.transport})")
        return cls(registry, broadcaster)

    @classmethod
    def get_instance(cls) -> "RealtimeHub":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls.from_config()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (tests)."""
        cls._instance = None

    # =========================================================================
    # Membership
    # =========================================================================

    async def join_room(self, room_id: int, session: Any) -> bool:
        """Join a session to an event room and announce it.

        Args:
            room_id: The event id.
            session: The joining session (user_id already set).

        Returns:
            True if the session was new to the room. A repeated join only
            refreshes that session's active_users_count.
        """
        if session.room_id is not None and session.room_id != room_id:
            await self.leave_room(session)

        added = self.registry.join(room_id, session)
        if not added:
            try:
                await session.send_frame(
                    ActiveUsersCountFrame(count=self.registry.room_size(room_id)).to_wire()
                )
            except DispatchError as e:
                logger.warning(f"[Hub] Could not refresh presence count for {session!r}: {e}")
            return False

        self.broadcaster.attach(room_id, session)
        await self.broadcaster.broadcast(room_id, UserJoinedFrame(userId=session.user_id))
        await self.broadcaster.broadcast(
            room_id, ActiveUsersCountFrame(count=self.registry.room_size(room_id))
        )
        return True

    async def leave_room(self, session: Any) -> Optional[int]:
        """Remove a session from its room and announce the departure.

        Safe to call for a session that never joined.

        Returns:
            The room id that was left, or None.
        """
        room_id = self.registry.leave(session)
        if room_id is None:
            return None

        self.broadcaster.detach(room_id, session)

        if session.user_id and not self._user_still_present(room_id, session.user_id):
            await self.presence.clear_user(room_id, session.user_id)

        remaining = self.registry.room_size(room_id)
        if remaining == 0:
            self.presence.clear_room(room_id)
            return room_id

        await self.broadcaster.broadcast(room_id, UserLeftFrame(userId=session.user_id))
        await self.broadcaster.broadcast(room_id, ActiveUsersCountFrame(count=remaining))
        return room_id

    def _user_still_present(self, room_id: int, user_id: str) -> bool:
        return any(s.user_id == user_id for s in self.registry.members(room_id))

    def close_room(self, room_id: int) -> List[Any]:
        """Drop all membership of a room without waiting on in-flight sends."""
        sessions = self.registry.clear_room(room_id)
        for session in sessions:
            self.broadcaster.detach(room_id, session)
        self.presence.clear_room(room_id)
        return sessions

    # =========================================================================
    # Delivery and presence queries
    # =========================================================================

    async def broadcast(
        self, room_id: int, frame: FramePayload, exclude: Optional[Any] = None
    ) -> int:
        return await self.broadcaster.broadcast(room_id, frame, exclude=exclude)

    def active_count(self, room_id: int) -> int:
        return self.presence.active_count(room_id)

    def typing_users(self, room_id: int) -> List[str]:
        return self.presence.typing_users(room_id)


def get_hub() -> RealtimeHub:
    return RealtimeHub.get_instance()
