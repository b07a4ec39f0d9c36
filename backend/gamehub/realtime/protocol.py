"""Wire message schema for the realtime transport.

Every frame is a JSON object tagged by its ``type`` field. Frames are decoded
into a pydantic discriminated union at the boundary; a frame that does not
decode to exactly one known type raises FrameError and is dropped by the
caller without closing the connection.

Protocol Message Types:
    Client → Server:
        - join_event: {userId, eventId}
        - chat_message: {content, messageType, metadata?}
        - typing_start / typing_stop: {userId?, username?}
    Server → Client:
        - new_message: {message: StoredMessage (hydrated)}
        - user_typing_start / user_typing_stop: {userId, username}
        - reaction_update: {messageId, reactions}
        - user_joined / user_left: {userId?}
        - active_users_count: {count}
        - error: {error}
"""
import json
from typing import Annotated, Any, Dict, FrozenSet, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from gamehub.errors import FrameError
from gamehub.storage.schemas import StoredMessage


class Frame(BaseModel):
    """Base class for all wire frames."""
    model_config = ConfigDict(extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict ready for send_json()."""
        return self.model_dump(mode="json")


# =============================================================================
# Client → Server
# =============================================================================


class JoinEventFrame(Frame):
    type: Literal["join_event"] = "join_event"
    userId: str = Field(..., min_length=1)
    eventId: PositiveInt


class ChatMessageFrame(Frame):
    type: Literal["chat_message"] = "chat_message"
    content: str
    messageType: str = "message"
    metadata: Optional[Dict[str, Any]] = None


class TypingStartFrame(Frame):
    type: Literal["typing_start"] = "typing_start"
    userId: Optional[str] = None
    username: Optional[str] = None


class TypingStopFrame(Frame):
    type: Literal["typing_stop"] = "typing_stop"
    userId: Optional[str] = None
    username: Optional[str] = None


# =============================================================================
# Server → Client
# =============================================================================


class NewMessageFrame(Frame):
    type: Literal["new_message"] = "new_message"
    message: StoredMessage


class UserTypingStartFrame(Frame):
    type: Literal["user_typing_start"] = "user_typing_start"
    userId: str
    username: str


class UserTypingStopFrame(Frame):
    type: Literal["user_typing_stop"] = "user_typing_stop"
    userId: str
    username: str


class ReactionUpdateFrame(Frame):
    type: Literal["reaction_update"] = "reaction_update"
    messageId: int
    reactions: Dict[str, int]


class UserJoinedFrame(Frame):
    type: Literal["user_joined"] = "user_joined"
    userId: Optional[str] = None


class UserLeftFrame(Frame):
    type: Literal["user_left"] = "user_left"
    userId: Optional[str] = None


class ActiveUsersCountFrame(Frame):
    type: Literal["active_users_count"] = "active_users_count"
    count: int = Field(..., ge=0)


class ErrorFrame(Frame):
    type: Literal["error"] = "error"
    error: str


WireMessage = Annotated[
    Union[
        JoinEventFrame,
        ChatMessageFrame,
        TypingStartFrame,
        TypingStopFrame,
        NewMessageFrame,
        UserTypingStartFrame,
        UserTypingStopFrame,
        ReactionUpdateFrame,
        UserJoinedFrame,
        UserLeftFrame,
        ActiveUsersCountFrame,
        ErrorFrame,
    ],
    Field(discriminator="type"),
]

_wire_adapter: TypeAdapter = TypeAdapter(WireMessage)

CLIENT_FRAME_TYPES: FrozenSet[str] = frozenset(
    {"join_event", "chat_message", "typing_start", "typing_stop"}
)
SERVER_FRAME_TYPES: FrozenSet[str] = frozenset(
    {
        "new_message",
        "user_typing_start",
        "user_typing_stop",
        "reaction_update",
        "user_joined",
        "user_left",
        "active_users_count",
        "error",
    }
)


def parse_frame(
    raw: Union[str, bytes, Dict[str, Any]],
    allowed: Optional[FrozenSet[str]] = None,
) -> Frame:
    """Decode one inbound frame.

    Args:
        raw: JSON text, bytes, or an already-decoded dict.
        allowed: Optional set of frame types accepted in this direction.

    Returns:
        The decoded frame model.

    Raises:
        FrameError: Invalid JSON, a non-object payload, an unknown or
            disallowed type, or missing/invalid fields.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise FrameError(f"Invalid JSON frame: {exc}") from exc
    else:
        data = raw

    if not isinstance(data, dict):
        raise FrameError("Frame must be a JSON object")

    frame_type = data.get("type")
    if allowed is not None and frame_type not in allowed:
        raise FrameError(f"Unexpected frame type: {frame_type!r}")

    try:
        return _wire_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise FrameError(f"Invalid {frame_type!r} frame: {exc.error_count()} error(s)") from exc


def channel_name(event_id: int, prefix: str = "event-") -> str:
    """Name of the pub/sub channel carrying an event room's frames."""
    return f"{prefix}{event_id}"
