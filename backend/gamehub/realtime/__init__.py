"""Server-side realtime layer: wire protocol, rooms, fan-out and presence."""
from .dispatcher import (
    Broadcaster,
    ChannelBroadcaster,
    ChannelProvider,
    InMemoryChannelProvider,
    SocketBroadcaster,
)
from .hub import RealtimeHub, get_hub
from .presence import PresenceTracker, TypingDebouncer
from .protocol import parse_frame
from .registry import RoomRegistry, ServerSession

__all__ = [
    "Broadcaster",
    "ChannelBroadcaster",
    "ChannelProvider",
    "InMemoryChannelProvider",
    "PresenceTracker",
    "RealtimeHub",
    "RoomRegistry",
    "ServerSession",
    "SocketBroadcaster",
    "TypingDebouncer",
    "get_hub",
    "parse_frame",
]
