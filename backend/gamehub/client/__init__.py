"""Client-side realtime transport, timeline and REST client."""
from .api import ChatApiClient
from .session import ConnectionSession, RealtimeClient, SessionState, compute_backoff
from .timeline import MessageTimeline

__all__ = [
    "ChatApiClient",
    "ConnectionSession",
    "MessageTimeline",
    "RealtimeClient",
    "SessionState",
    "compute_backoff",
]
