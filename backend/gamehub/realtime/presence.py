"""Presence and typing state for event rooms.

PresenceTracker (server side) holds the per-room set of usernames currently
typing and announces changes to the room. It runs no timers of its own: it
trusts ``typing_stop`` events, which clients emit after a period of input
inactivity through TypingDebouncer. Entries left behind by a client that
disconnects uncleanly are removed when its session leaves the room.

The presence count is never stored separately: it is read from the Room
Registry's member set, so joins, leaves and the count cannot drift apart.
"""
import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .dispatcher import Broadcaster
from .protocol import UserTypingStartFrame, UserTypingStopFrame
from .registry import RoomRegistry

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TTL = 3.0


class PresenceTracker:
    """Per-room typing sets plus the derived presence count."""

    def __init__(self, registry: RoomRegistry, broadcaster: Broadcaster) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        # room_id -> {username -> user_id}, insertion ordered
        self._typing: Dict[int, Dict[str, str]] = {}
        self._lock = threading.Lock()

    async def start_typing(
        self, room_id: int, user_id: str, username: str, exclude: Optional[Any] = None
    ) -> bool:
        """Mark a user as typing and announce it to the room.

        Returns:
            True if the username was added, False if it was already typing
            (nothing is re-announced in that case).
        """
        with self._lock:
            typing = self._typing.setdefault(room_id, {})
            if username in typing:
                return False
            typing[username] = user_id

        await self.broadcaster.broadcast(
            room_id,
            UserTypingStartFrame(userId=user_id, username=username),
            exclude=exclude,
        )
        return True

    async def stop_typing(
        self, room_id: int, user_id: str, username: str, exclude: Optional[Any] = None
    ) -> bool:
        """Clear a user's typing entry and announce the stop.

        The stop frame is sent even when the user was not marked as typing;
        receivers treat removal of an absent name as a no-op.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            removed = self._discard(room_id, username)

        await self.broadcaster.broadcast(
            room_id,
            UserTypingStopFrame(userId=user_id, username=username),
            exclude=exclude,
        )
        return removed

    async def clear_user(self, room_id: int, user_id: str) -> List[str]:
        """Remove every typing entry a user holds in a room.

        Called when one of the user's sessions leaves the room.

        Returns:
            The usernames that were removed.
        """
        with self._lock:
            typing = self._typing.get(room_id, {})
            names = [name for name, uid in typing.items() if uid == user_id]
            for name in names:
                self._discard(room_id, name)

        for name in names:
            logger.debug(f"[Presence] Clearing stale typing entry {name!r} in room {room_id}")
            await self.broadcaster.broadcast(
                room_id, UserTypingStopFrame(userId=user_id, username=name)
            )
        return names

    def _discard(self, room_id: int, username: str) -> bool:
        typing = self._typing.get(room_id)
        if not typing or username not in typing:
            return False
        del typing[username]
        if not typing:
            del self._typing[room_id]
        return True

    def typing_users(self, room_id: int) -> List[str]:
        with self._lock:
            return list(self._typing.get(room_id, {}))

    def active_count(self, room_id: int) -> int:
        return self.registry.room_size(room_id)

    def clear_room(self, room_id: int) -> None:
        with self._lock:
            self._typing.pop(room_id, None)


class TypingDebouncer:
    """Debounce-on-idle typing signal.

    The first input after an idle period emits ``on_start``; every input
    restarts the idle timer; ``ttl`` seconds without input emit ``on_stop``.

    Usage:
        debouncer = TypingDebouncer(client.start_typing, client.stop_typing)
        await debouncer.input()   # on each keystroke
        await debouncer.stop()    # when the message is sent
    """

    def __init__(
        self,
        on_start: Callable[[], Awaitable[Any]],
        on_stop: Callable[[], Awaitable[Any]],
        ttl: float = DEFAULT_TYPING_TTL,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.on_start = on_start
        self.on_stop = on_stop
        self.ttl = ttl
        self._sleep = sleep
        self._typing = False
        self._timer: Optional[asyncio.Task] = None

    @property
    def is_typing(self) -> bool:
        return self._typing

    async def input(self) -> None:
        """Register an input event."""
        self._cancel_timer()
        if not self._typing:
            self._typing = True
            await self.on_start()
        self._timer = asyncio.create_task(self._expire())

    async def stop(self) -> None:
        """Emit the stop signal now if typing (e.g. the message was sent)."""
        self._cancel_timer()
        if self._typing:
            self._typing = False
            await self.on_stop()

    def cancel(self) -> None:
        """Drop the pending timer and the typing flag without emitting anything."""
        self._cancel_timer()
        self._typing = False

    async def _expire(self) -> None:
        await self._sleep(self.ttl)
        self._timer = None
        if self._typing:
            self._typing = False
            try:
                await self.on_stop()
            except Exception as e:
                logger.warning(f"[Presence] Typing stop callback failed: {e}")

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
