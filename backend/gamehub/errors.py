"""Error taxonomy for the realtime messaging core.

Errors that affect data integrity (validation, persistence) propagate to the
caller. Errors that only affect best-effort delivery (dispatch, notification)
are caught and logged where they happen.

    GameHubError
    ├── TransportError      connection drop / handshake failure (client side)
    ├── ValidationError     empty content, bad request payload
    │   └── FrameError      malformed or unknown inbound wire frame
    ├── NotFoundError       unknown message / notification
    ├── PersistenceError    storage layer failure
    ├── DispatchError       write to a single session failed during fan-out
    └── NotificationError   notification record could not be created
"""


class GameHubError(Exception):
    """Base class for all errors raised by the messaging core."""


class TransportError(GameHubError):
    """The transport could not be opened or was lost."""


class ValidationError(GameHubError):
    """A request or message failed validation."""


class FrameError(ValidationError):
    """An inbound frame could not be decoded to a known wire message."""


class NotFoundError(GameHubError):
    """The referenced entity does not exist."""


class PersistenceError(GameHubError):
    """The storage layer failed to complete an operation."""


class DispatchError(GameHubError):
    """Delivering a frame to one session failed."""


class NotificationError(GameHubError):
    """A notification record could not be created."""
