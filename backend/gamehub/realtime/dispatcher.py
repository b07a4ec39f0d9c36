"""Broadcast dispatchers: fan a frame out to every session of a room.

Two interchangeable backends implement the same Broadcaster contract:

    - SocketBroadcaster: iterates the Room Registry's member snapshot and
      writes to each open session directly.
    - ChannelBroadcaster: publishes to the named channel ``event-{eventId}``
      with the frame ``type`` as the event name; fan-out to subscribers is
      delegated to a ChannelProvider.

Delivery is best-effort and fire-and-forget per session: a failed write to
one session is logged and never prevents delivery to the others, and never
reaches the sender.

Performance Notes:
    - Sends are issued concurrently with asyncio.gather()
    - The member snapshot is taken once per broadcast; sessions joining
      mid-broadcast receive the next frame, not this one
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from .protocol import Frame, channel_name
from .registry import RoomRegistry

logger = logging.getLogger(__name__)

FramePayload = Union[Frame, Dict[str, Any]]


def _to_payload(frame: FramePayload) -> Dict[str, Any]:
    if isinstance(frame, Frame):
        return frame.to_wire()
    return dict(frame)


async def _safe_send(session: Any, payload: Dict[str, Any]) -> bool:
    """Send a frame to one session with error isolation.

    Returns:
        True if successful, False if the write failed.
    """
    try:
        await session.send_frame(payload)
        return True
    except Exception as e:
        logger.warning(f"[Hub] Dispatch of {payload.get('type')!r} to {session!r} failed: {e}")
        return False


async def _fan_out(sessions: List[Any], payload: Dict[str, Any]) -> int:
    if not sessions:
        return 0
    results = await asyncio.gather(
        *[_safe_send(session, payload) for session in sessions],
        return_exceptions=True
    )
    return sum(1 for result in results if result is True)


class Broadcaster(ABC):
    """Delivers frames to the members of an event room."""

    @abstractmethod
    async def broadcast(
        self, room_id: int, frame: FramePayload, exclude: Optional[Any] = None
    ) -> int:
        """Deliver a frame to every open session of a room.

        Args:
            room_id: The event id.
            frame: The wire frame (model or JSON-compatible dict).
            exclude: Optional session that must not receive the frame.

        Returns:
            Number of sessions the frame was written to.
        """

    def attach(self, room_id: int, session: Any) -> None:
        """Hook called after a session joins a room."""

    def detach(self, room_id: int, session: Any) -> None:
        """Hook called after a session leaves a room."""


class SocketBroadcaster(Broadcaster):
    """Writes frames straight to the sessions joined in the Room Registry."""

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry

    async def broadcast(
        self, room_id: int, frame: FramePayload, exclude: Optional[Any] = None
    ) -> int:
        payload = _to_payload(frame)
        targets = [
            session for session in self.registry.members(room_id)
            if session is not exclude and session.is_open
        ]
        delivered = await _fan_out(targets, payload)
        logger.debug(
            f"[Hub] {payload.get('type')} -> room {room_id}: {delivered}/{len(targets)} delivered"
        )
        return delivered


# =============================================================================
# Channel (pub/sub) transport
# =============================================================================


class ChannelProvider(ABC):
    """A publish/subscribe relay keyed by channel name."""

    @abstractmethod
    async def trigger(
        self,
        channel: str,
        event: str,
        data: Dict[str, Any],
        exclude: Optional[Any] = None,
    ) -> int:
        """Publish ``event`` with ``data`` to every subscriber of ``channel``."""

    @abstractmethod
    def subscribe(self, channel: str, subscriber: Any) -> None:
        """Start delivering a channel's events to a subscriber."""

    @abstractmethod
    def unsubscribe(self, channel: str, subscriber: Any) -> None:
        """Stop delivering a channel's events to a subscriber."""


class InMemoryChannelProvider(ChannelProvider):
    """Process-local channel relay.

    Subscribers are sessions; each receives ``{"type": event, **data}``,
    the same frame shape the socket transport delivers.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, List[Any]] = {}
        self._lock = threading.Lock()

    def subscribe(self, channel: str, subscriber: Any) -> None:
        with self._lock:
            subscribers = self._channels.setdefault(channel, [])
            if subscriber not in subscribers:
                subscribers.append(subscriber)

    def unsubscribe(self, channel: str, subscriber: Any) -> None:
        with self._lock:
            subscribers = self._channels.get(channel)
            if subscribers and subscriber in subscribers:
                subscribers.remove(subscriber)
                if not subscribers:
                    del self._channels[channel]

    def subscribers(self, channel: str) -> List[Any]:
        with self._lock:
            return list(self._channels.get(channel, ()))

    async def trigger(
        self,
        channel: str,
        event: str,
        data: Dict[str, Any],
        exclude: Optional[Any] = None,
    ) -> int:
        payload = {"type": event, **data}
        targets = [
            subscriber for subscriber in self.subscribers(channel)
            if subscriber is not exclude and getattr(subscriber, "is_open", True)
        ]
        return await _fan_out(targets, payload)


class ChannelBroadcaster(Broadcaster):
    """Publishes room frames to ``{prefix}{eventId}`` channels.

    The dispatcher only picks the channel name and the event name (the frame
    type); fan-out belongs to the provider.
    """

    def __init__(self, provider: ChannelProvider, prefix: str = "event-") -> None:
        self.provider = provider
        self.prefix = prefix

    def channel_for(self, room_id: int) -> str:
        return channel_name(room_id, self.prefix)

    async def broadcast(
        self, room_id: int, frame: FramePayload, exclude: Optional[Any] = None
    ) -> int:
        payload = _to_payload(frame)
        event = payload.pop("type")
        channel = self.channel_for(room_id)
        try:
            return await self.provider.trigger(channel, event, payload, exclude=exclude)
        except Exception as e:
            logger.warning(f"[Hub] Publish of {event!r} to {channel} failed: {e}")
            return 0

    def attach(self, room_id: int, session: Any) -> None:
        self.provider.subscribe(self.channel_for(room_id), session)

    def detach(self, room_id: int, session: Any) -> None:
        self.provider.unsubscribe(self.channel_for(room_id), session)
