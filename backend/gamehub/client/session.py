"""Realtime client: one logical connection with automatic reconnection.

RealtimeClient is the single transport abstraction UI code talks to:

    connect() / disconnect() / send() / on_message / is_connected / typing_users

Underneath it owns a ConnectionSession per transport attempt. A session is
never reused: when a socket closes unexpectedly a *replacement* session is
created after an exponential backoff delay.

State machine (per session):

    idle → connecting → open → closing → closed

On close:
    - close code 1000 (normal) or a manual disconnect: terminal, no retry
    - anything else: retry after ``min(base * 2**attempt, cap)`` seconds while
      fewer than ``max_reconnect_attempts`` connection attempts have failed
      since the last successful handshake (an initial connect that never
      opened counts as one of them)
    - a successful handshake resets both counters to 0

Every time a session reaches ``open`` and a room is set, ``join_event`` is
sent again: the server keeps no memory of the membership of a replaced
socket.

Network failures are never raised to callers. They show up as a state
change, a log line, and ``last_error``.

Usage:
    client = RealtimeClient("ws://localhost:8000/ws", user_id="u1", event_id=42,
                            on_message=timeline.apply)
    await client.connect()
    await client.send_chat_message("hello")
    await client.disconnect()
"""
import asyncio
import inspect
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import websockets

from gamehub.config import get_config
from gamehub.errors import FrameError, TransportError
from gamehub.realtime.presence import DEFAULT_TYPING_TTL, TypingDebouncer
from gamehub.realtime.protocol import (
    SERVER_FRAME_TYPES,
    ChatMessageFrame,
    Frame,
    JoinEventFrame,
    TypingStartFrame,
    TypingStopFrame,
    UserTypingStartFrame,
    UserTypingStopFrame,
    parse_frame,
)

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000

DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0

MessageHandler = Callable[[Frame], Any]
Connector = Callable[[str], Awaitable[Any]]


def compute_backoff(attempt: int, base: float = DEFAULT_BASE_DELAY, cap: float = DEFAULT_MAX_DELAY) -> float:
    """Delay before the retry numbered ``attempt`` (0-based).

    Args:
        attempt: Retries already scheduled for this outage.
        base: Delay of the first retry, in seconds.
        cap: Upper bound, in seconds.

    Returns:
        ``min(base * 2**attempt, cap)``; non-decreasing in ``attempt``.
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return min(base * (2 ** attempt), cap)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionSession:
    """One transport attempt; discarded when it closes.

    Attributes:
        number: 1-based sequence number within the owning client.
        state: Current SessionState.
        websocket: The open transport, None until the handshake succeeds.
        opened_at: Monotonic time the handshake completed.
        last_activity: Monotonic time of the last frame sent or received.
        close_code: Close code reported by the transport.
    """

    def __init__(self, number: int) -> None:
        self.number = number
        self.state = SessionState.IDLE
        self.websocket: Any = None
        self.opened_at: Optional[float] = None
        self.last_activity = time.monotonic()
        self.close_code: Optional[int] = None
        self.reader: Optional[asyncio.Task] = None

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def __repr__(self) -> str:
        return f"ConnectionSession(#{self.number}, {self.state.value})"


class RealtimeClient:
    """Client side of the /ws realtime transport.

    Args:
        url: Socket endpoint, e.g. ``ws://host:8000/ws``.
        user_id: Authenticated user id sent with join_event.
        event_id: Room to join on every open, if set.
        on_message: Called once per decoded inbound frame (sync or async).
        username: Display name sent with typing frames.
        max_reconnect_attempts: Connection attempts allowed per outage, the
            failed initial attempt included.
        base_delay: First retry delay in seconds.
        max_delay: Retry delay cap in seconds.
        typing_ttl: Idle seconds before a typing_stop is emitted.
        connector: Coroutine function opening a transport; defaults to
            ``websockets.connect``.
        sleep: Coroutine function used for backoff waits.
    """

    def __init__(
        self,
        url: str,
        user_id: Optional[str] = None,
        event_id: Optional[int] = None,
        on_message: Optional[MessageHandler] = None,
        username: Optional[str] = None,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        typing_ttl: float = DEFAULT_TYPING_TTL,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.user_id = user_id
        self.event_id = event_id
        self.username = username
        self.on_message = on_message
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._connector: Connector = connector or websockets.connect
        self._sleep = sleep

        self._session: Optional[ConnectionSession] = None
        self._sessions_created = 0
        self._attempt = 0
        self._failed_attempts = 0
        self._manual_close = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self._typing: List[str] = []
        self.last_error: Optional[TransportError] = None
        self.scheduled_delays: List[float] = []

        self._debouncer = TypingDebouncer(
            self.start_typing, self.stop_typing, ttl=typing_ttl, sleep=sleep
        )

    @classmethod
    def from_config(cls, base_url: str, **kwargs: Any) -> "RealtimeClient":
        """Build a client using the reconnect and typing settings from configuration.

        Args:
            base_url: Server origin, e.g. ``ws://localhost:8000``.
            **kwargs: Passed through to the constructor.
        """
        settings = get_config().realtime
        kwargs.setdefault("max_reconnect_attempts", settings.max_reconnect_attempts)
        kwargs.setdefault("base_delay", settings.reconnect_base_delay)
        kwargs.setdefault("max_delay", settings.reconnect_max_delay)
        kwargs.setdefault("typing_ttl", settings.typing_ttl_seconds)
        return cls(base_url.rstrip("/") + settings.endpoint_path, **kwargs)

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self.state == SessionState.OPEN

    @property
    def typing_users(self) -> List[str]:
        return list(self._typing)

    @property
    def reconnect_attempts(self) -> int:
        return self._attempt

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def session(self) -> Optional[ConnectionSession]:
        return self._session

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """Open the transport unless a session is already connecting or open.

        An explicit call also restores the retry budget, so a client that
        gave up can be revived by the caller (e.g. after a room change).

        Returns:
            True if a transport is open when the call returns.
        """
        if self.state in (SessionState.CONNECTING, SessionState.OPEN):
            return self.is_connected
        self._manual_close = False
        self._cancel_reconnect()
        self._attempt = 0
        self._failed_attempts = 0
        return await self._open()

    async def disconnect(self) -> None:
        """Close the transport for good. Safe to call repeatedly."""
        self._manual_close = True
        self._cancel_reconnect()
        self._debouncer.cancel()

        session = self._session
        if session is None or session.state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        session.state = SessionState.CLOSING
        if session.websocket is not None:
            try:
                await session.websocket.close(code=NORMAL_CLOSURE)
            except Exception as e:
                logger.debug(f"[Client] Close of {session!r} raised: {e}")
        session.close_code = NORMAL_CLOSURE
        session.state = SessionState.CLOSED
        self._typing.clear()

        if session.reader is not None and not session.reader.done():
            session.reader.cancel()
        logger.info(f"[Client] Disconnected {session!r}")

    async def _open(self) -> bool:
        self._sessions_created += 1
        session = ConnectionSession(self._sessions_created)
        self._session = session
        session.state = SessionState.CONNECTING
        logger.info(f"[Client] Connecting {session!r} to {self.url}")

        try:
            websocket = await self._connector(self.url)
        except Exception as e:
            self.last_error = TransportError(f"Connection to {self.url} failed: {e}")
            logger.warning(f"[Client] {self.last_error}")
            self._failed_attempts += 1
            session.state = SessionState.CLOSED
            self._typing.clear()
            self._schedule_reconnect(None)
            return False

        if self._manual_close or self._session is not session:
            # disconnect() ran while the handshake was in flight
            await self._close_quietly(websocket)
            session.state = SessionState.CLOSED
            return False

        session.websocket = websocket
        session.state = SessionState.OPEN
        session.opened_at = time.monotonic()
        session.touch()
        self._attempt = 0
        self._failed_attempts = 0
        self.last_error = None
        logger.info(f"[Client] {session!r} open")

        session.reader = asyncio.create_task(self._read_loop(session))
        await self._send_join()
        return True

    @staticmethod
    async def _close_quietly(websocket: Any) -> None:
        try:
            await websocket.close(code=NORMAL_CLOSURE)
        except Exception as e:
            logger.debug(f"[Client] Close raised: {e}")

    # =========================================================================
    # Reconnection
    # =========================================================================

    def _schedule_reconnect(self, close_code: Optional[int]) -> None:
        if self._manual_close:
            return
        if close_code == NORMAL_CLOSURE:
            logger.info("[Client] Server closed the connection normally; not reconnecting")
            return
        if self._failed_attempts >= self.max_reconnect_attempts:
            logger.warning(
                f"[Client] Giving up after {self._failed_attempts} failed connection attempt(s)"
            )
            return

        delay = compute_backoff(self._attempt, self.base_delay, self.max_delay)
        self._attempt += 1
        self.scheduled_delays.append(delay)
        logger.info(
            f"[Client] Reconnecting in {delay:.1f}s "
            f"(retry {self._attempt}, {self._failed_attempts}/{self.max_reconnect_attempts} "
            f"attempts failed, code={close_code})"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_task = None
        if self._manual_close:
            return
        await self._open()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # =========================================================================
    # Inbound frames
    # =========================================================================

    async def _read_loop(self, session: ConnectionSession) -> None:
        websocket = session.websocket
        try:
            async for raw in websocket:
                session.touch()
                await self._dispatch(raw)
        except websockets.ConnectionClosed:
            pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[Client] Read failed on {session!r}: {e}")
        finally:
            self._on_closed(session, getattr(websocket, "close_code", None))

    def _on_closed(self, session: ConnectionSession, close_code: Optional[int]) -> None:
        if session is not self._session or session.state == SessionState.CLOSED:
            return
        session.state = SessionState.CLOSED
        session.close_code = close_code
        self._typing.clear()
        self._debouncer.cancel()
        logger.info(f"[Client] {session!r} closed (code={close_code})")
        self._schedule_reconnect(close_code)

    async def _dispatch(self, raw: Union[str, bytes]) -> None:
        try:
            frame = parse_frame(raw, SERVER_FRAME_TYPES)
        except FrameError as e:
            logger.warning(f"[Client] Dropping frame: {e}")
            return

        if isinstance(frame, UserTypingStartFrame):
            if frame.username not in self._typing:
                self._typing.append(frame.username)
        elif isinstance(frame, UserTypingStopFrame):
            if frame.username in self._typing:
                self._typing.remove(frame.username)

        if self.on_message is None:
            return
        try:
            result = self.on_message(frame)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[Client] Message handler failed on {frame.type}: {e}")

    # =========================================================================
    # Outbound frames
    # =========================================================================

    async def send(self, payload: Union[Frame, Dict[str, Any]]) -> bool:
        """Write one frame if the transport is open.

        Nothing is buffered: when not connected the frame is dropped with a
        warning.

        Returns:
            True if the frame was written.
        """
        session = self._session
        if session is None or session.state != SessionState.OPEN:
            logger.warning(f"[Client] Not connected; dropping {_frame_type(payload)!r}")
            return False

        data = payload.to_wire() if isinstance(payload, Frame) else payload
        try:
            await session.websocket.send(json.dumps(data))
        except Exception as e:
            logger.warning(f"[Client] Send of {_frame_type(payload)!r} failed: {e}")
            return False
        session.touch()
        return True

    async def _send_join(self) -> bool:
        if self.event_id is None or not self.user_id:
            return False
        return await self.send(JoinEventFrame(userId=self.user_id, eventId=self.event_id))

    async def send_chat_message(
        self,
        content: str,
        message_type: str = "message",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        sent = await self.send(
            ChatMessageFrame(content=content, messageType=message_type, metadata=metadata)
        )
        if sent:
            await self._debouncer.stop()
        return sent

    async def start_typing(self) -> bool:
        return await self.send(TypingStartFrame(userId=self.user_id, username=self.username))

    async def stop_typing(self) -> bool:
        return await self.send(TypingStopFrame(userId=self.user_id, username=self.username))

    async def notify_input(self) -> None:
        """Report a keystroke; typing_start/typing_stop are debounced."""
        await self._debouncer.input()

    async def set_room(self, event_id: Optional[int]) -> None:
        """Switch rooms, joining immediately when connected.

        A client that is not connected (e.g. it gave up reconnecting) is
        connected again.
        """
        if event_id == self.event_id and self.is_connected:
            return
        self.event_id = event_id
        if self.is_connected:
            await self._send_join()
        elif event_id is not None and not self.reconnect_pending:
            await self.connect()

    async def set_user(self, user_id: Optional[str], username: Optional[str] = None) -> None:
        """Change the user; rejoins the current room under the new id."""
        self.user_id = user_id
        if username is not None:
            self.username = username
        if self.is_connected:
            await self._send_join()
        elif user_id and not self.reconnect_pending:
            await self.connect()


def _frame_type(payload: Union[Frame, Dict[str, Any]]) -> Optional[str]:
    if isinstance(payload, Frame):
        return getattr(payload, "type", None)
    return payload.get("type")
