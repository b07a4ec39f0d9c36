"""Room registry: who is connected to which event room right now.

The registry maps an event id to the set of currently joined server-side
sessions. It is the single source of truth for room membership and for the
presence count.

Thread Safety:
    Membership mutations are synchronous and serialized by a per-room lock
    taken from a fixed stripe (plus a registry lock guarding the room
    table), so concurrent connection-close events and message handlers
    running on different event loops or threads cannot lose updates. Readers
    receive a snapshot copy of the member set and may iterate it while
    membership keeps changing.
"""
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from gamehub.errors import DispatchError

logger = logging.getLogger(__name__)

ROOM_LOCK_STRIPES = 64


class ServerSession:
    """Server-side handle for one client connection.

    Attributes:
        websocket: The underlying FastAPI WebSocket.
        user_id: Owning user id, None until the client sends join_event.
        username: Display name used in typing frames.
        room_id: Joined event id, None when not in a room (at most one room).
        last_activity: Monotonic timestamp of the last inbound frame.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.user_id: Optional[str] = None
        self.username: Optional[str] = None
        self.room_id: Optional[int] = None
        self.last_activity = time.monotonic()

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    async def send_frame(self, payload: Dict[str, Any]) -> None:
        """Write one JSON frame to this session.

        Raises:
            DispatchError: The write failed for any reason.
        """
        try:
            await self.websocket.send_json(payload)
        except Exception as exc:
            raise DispatchError(f"Failed to send to session of user {self.user_id}: {exc}") from exc

    def __repr__(self) -> str:
        return f"ServerSession(user_id={self.user_id!r}, room_id={self.room_id!r})"


class RoomRegistry:
    """Maps event ids to their joined sessions.

    Sessions are any objects exposing ``room_id``, ``user_id``, ``is_open``
    and an async ``send_frame(payload)``; ServerSession is the production
    implementation.
    """

    def __init__(self) -> None:
        # room_id -> set of joined sessions
        self._rooms: Dict[int, Set[Any]] = {}

        # fixed stripe of locks serializing membership changes; a room always maps to the same stripe
        self._room_locks: List[threading.Lock] = [threading.Lock() for _ in range(ROOM_LOCK_STRIPES)]

        # guards _rooms itself
        self._lock = threading.Lock()

    def _room_lock(self, room_id: int) -> threading.Lock:
        return self._room_locks[hash(room_id) % len(self._room_locks)]

    def join(self, room_id: int, session: Any) -> bool:
        """Add a session to a room.

        Idempotent: joining the same room twice leaves membership unchanged.
        A session in another room is moved out of it first.

        Args:
            room_id: The event id.
            session: The session joining.

        Returns:
            True if the session was newly added to the room.
        """
        previous = session.room_id
        if previous is not None and previous != room_id:
            self.leave(session)

        with self._room_lock(room_id):
            with self._lock:
                members = self._rooms.setdefault(room_id, set())
            if session in members:
                return False
            members.add(session)
            session.room_id = room_id

        logger.info(f"[Registry] {session!r} joined room {room_id} ({len(members)} members)")
        return True

    def leave(self, session: Any) -> Optional[int]:
        """Remove a session from whatever room it belongs to.

        An emptied room is dropped immediately.

        Returns:
            The room id the session left, or None if it was not in a room.
        """
        room_id = session.room_id
        if room_id is None:
            return None

        with self._room_lock(room_id):
            with self._lock:
                members = self._rooms.get(room_id)
                if members is not None:
                    members.discard(session)
                    if not members:
                        del self._rooms[room_id]
            session.room_id = None

        logger.info(f"[Registry] {session!r} left room {room_id}")
        return room_id

    def members(self, room_id: int) -> List[Any]:
        """Snapshot of the sessions currently joined to a room."""
        with self._room_lock(room_id):
            with self._lock:
                return list(self._rooms.get(room_id, ()))

    def room_size(self, room_id: int) -> int:
        """Number of distinct sessions joined to a room (the presence count)."""
        with self._lock:
            return len(self._rooms.get(room_id, ()))

    def contains(self, room_id: int, session: Any) -> bool:
        with self._lock:
            return session in self._rooms.get(room_id, ())

    def rooms(self) -> List[int]:
        with self._lock:
            return list(self._rooms)

    def clear_room(self, room_id: int) -> List[Any]:
        """Remove every session from a room without touching in-flight sends.

        Returns:
            The sessions that were members.
        """
        with self._room_lock(room_id):
            with self._lock:
                members = self._rooms.pop(room_id, set())
            for session in members:
                session.room_id = None
        return list(members)
