"""Chat router providing the event message REST API and the realtime socket.

This module provides:
    - GET  /api/events/{event_id}/messages: Chronological message history
    - POST /api/events/{event_id}/messages: Send a message (persist, then broadcast)
    - POST /api/events/{event_id}/messages/{message_id}/react: Add a reaction
    - GET  /api/events/{event_id}/presence: Active session count and typing users
    - POST /api/events/{event_id}/typing: Typing signal for REST/channel clients
    - WebSocket /ws: Realtime room membership, chat and typing

The WebSocket protocol supports:
    - join_event: join one event room (at most one per socket)
    - chat_message: send through the same pipeline as the REST endpoint
    - typing_start / typing_stop: typing indicators, re-broadcast to the
      other members of the room as user_typing_start / user_typing_stop

Malformed or unknown frames are logged and dropped; the connection stays
open. Rejected chat sends are answered with an ``error`` frame to the sender
only.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gamehub.auth.identity import ANONYMOUS_NAME, Identity, get_current_identity
from gamehub.config import get_config
from gamehub.errors import (
    DispatchError,
    FrameError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from gamehub.realtime.hub import get_hub
from gamehub.realtime.protocol import (
    CLIENT_FRAME_TYPES,
    ChatMessageFrame,
    ErrorFrame,
    JoinEventFrame,
    TypingStartFrame,
    TypingStopFrame,
    parse_frame,
)
from gamehub.realtime.registry import ServerSession
from gamehub.storage.schemas import MessageUser
from gamehub.storage.service import get_store

from .pipeline import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_HISTORY_LIMIT = 500


# =============================================================================
# Request Models
# =============================================================================


class SendMessageRequest(BaseModel):
    """Request body for sending a chat message.

    Attributes:
        content: Message text; must not be blank after trimming.
        type: Message kind (message, system, challenge).
        metadata: Optional JSON object stored with the message.
    """
    content: str = Field(..., description="Message content")
    type: str = Field("message", description="Message type")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Extra message data")


class ReactRequest(BaseModel):
    emoji: Optional[str] = Field(None, description="Reaction emoji")


class TypingRequest(BaseModel):
    isTyping: bool = Field(True, description="Whether the user is typing")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"message": message}, status_code=status_code)


def _record_sender(event_id: int, identity: Identity) -> None:
    store = get_store()
    try:
        store.upsert_user(identity.public_profile())
        store.add_participant(event_id, identity.id)
    except PersistenceError as e:
        logger.warning(f"[Chat] Could not record {identity.id} as participant of event {event_id}: {e}")


# =============================================================================
# REST endpoints
# =============================================================================


@router.get("/api/events/{event_id}/messages")
async def get_event_messages(
    event_id: int,
    limit: Optional[int] = Query(None, ge=1, le=MAX_HISTORY_LIMIT, description="Number of messages to return"),
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Get the most recent messages of an event, oldest first.

    Clients call this on load and after every reconnect to seed their
    timeline; frames received over the socket are then merged by id.

    Example:
        GET /api/events/42/messages?limit=50
    """
    settings = get_config().messages
    limit = min(limit or settings.default_history_limit, settings.max_history_limit)
    try:
        messages = get_pipeline().history(event_id, limit)
    except PersistenceError:
        return _error("Failed to fetch messages", 500)
    return JSONResponse([m.model_dump(mode="json") for m in messages])


@router.post("/api/events/{event_id}/messages")
async def send_event_message(
    event_id: int,
    request: SendMessageRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Send a chat message to an event.

    The message is stored first; only a stored message is broadcast to the
    room as ``new_message``. The sender's public profile is attached before
    the broadcast and in the response.

    Returns:
        201 with the hydrated stored message, 400 for rejected content,
        500 when the store failed (nothing was broadcast).
    """
    try:
        message = await get_pipeline().send(
            event_id,
            identity,
            request.content,
            request.type or "message",
            request.metadata,
        )
    except ValidationError as e:
        return _error(str(e), 400)
    except PersistenceError as e:
        logger.error(f"[Chat] Failed to send message to event {event_id}: {e}")
        return _error("Failed to send message", 500)

    _record_sender(event_id, identity)
    return JSONResponse(message.model_dump(mode="json"), status_code=201)


@router.post("/api/events/{event_id}/messages/{message_id}/react")
async def react_to_message(
    event_id: int,
    message_id: int,
    request: ReactRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Add a reaction to a message and broadcast ``reaction_update``.

    Returns:
        JSON acknowledgement: {success, emoji, messageId, reactions}
    """
    try:
        reactions = await get_pipeline().react(event_id, message_id, identity, request.emoji)
    except ValidationError as e:
        return _error(str(e), 400)
    except NotFoundError as e:
        return _error(str(e), 404)
    except PersistenceError:
        return _error("Failed to add reaction", 500)

    return JSONResponse({
        "success": True,
        "emoji": request.emoji.strip(),
        "messageId": message_id,
        "reactions": reactions,
    })


@router.get("/api/events/{event_id}/presence")
async def get_event_presence(
    event_id: int,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    hub = get_hub()
    return JSONResponse({
        "eventId": event_id,
        "activeUsers": hub.active_count(event_id),
        "typingUsers": hub.typing_users(event_id),
    })


@router.post("/api/events/{event_id}/typing")
async def set_typing(
    event_id: int,
    request: TypingRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Typing signal for clients that publish through REST.

    Clients debounce locally and send ``isTyping: false`` after a period of
    input inactivity.
    """
    presence = get_hub().presence
    if request.isTyping:
        await presence.start_typing(event_id, identity.id, identity.display_name)
    else:
        await presence.stop_typing(event_id, identity.id, identity.display_name)
    return JSONResponse({
        "success": True,
        "typingUsers": presence.typing_users(event_id),
    })


# =============================================================================
# WebSocket endpoint
# =============================================================================


async def _reply(session: ServerSession, error: str) -> None:
    try:
        await session.send_frame(ErrorFrame(error=error).to_wire())
    except DispatchError as e:
        logger.warning(f"[WS] Could not report error to {session!r}: {e}")


def _typing_name(session: ServerSession, frame: Any) -> str:
    return session.username or frame.username or ANONYMOUS_NAME


def _load_profile(user_id: str) -> Optional[MessageUser]:
    try:
        return get_store().get_user(user_id)
    except PersistenceError as e:
        logger.warning(f"[WS] Could not load profile of {user_id}: {e}")
        return None


async def _handle_join(session: ServerSession, frame: JoinEventFrame) -> None:
    store = get_store()
    session.user_id = frame.userId
    profile = _load_profile(frame.userId)
    session.username = (profile.firstName or profile.username) if profile else None

    try:
        store.add_participant(frame.eventId, frame.userId)
    except PersistenceError as e:
        logger.warning(f"[WS] Could not record participation of {frame.userId}: {e}")

    joined = await get_hub().join_room(frame.eventId, session)
    logger.info(
        f"[WS] {frame.userId} {'joined' if joined else 're-joined'} event {frame.eventId}"
    )


async def _handle_chat(session: ServerSession, frame: ChatMessageFrame) -> None:
    if session.room_id is None or session.user_id is None:
        await _reply(session, "Join an event before sending messages")
        return

    profile = _load_profile(session.user_id)
    if profile is not None:
        identity = Identity(**profile.model_dump())
    else:
        identity = Identity(id=session.user_id)

    try:
        await get_pipeline().send(
            session.room_id, identity, frame.content, frame.messageType, frame.metadata
        )
    except ValidationError as e:
        await _reply(session, str(e))
    except PersistenceError as e:
        logger.error(f"[WS] Failed to send message from {session.user_id}: {e}")
        await _reply(session, "Failed to send message")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for realtime event rooms.

    Protocol Flow:
        1. Client connects; nothing is sent until it joins
        2. Client sends: {type: "join_event", userId, eventId}
           → Server broadcasts: {type: "user_joined", userId}
           → Server broadcasts: {type: "active_users_count", count}
        3. Client sends: {type: "chat_message", content, messageType}
           → Server broadcasts: {type: "new_message", message: {...}}
        4. Client sends: {type: "typing_start"} / {type: "typing_stop"}
           → Others receive: {type: "user_typing_start" | "user_typing_stop", userId, username}
        5. On disconnect → Server broadcasts user_left and active_users_count

    Args:
        websocket: The WebSocket connection.
    """
    await websocket.accept()
    session = ServerSession(websocket)
    hub = get_hub()
    logger.info("[WS] New connection")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            session.touch()

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue

            try:
                frame = parse_frame(raw, CLIENT_FRAME_TYPES)
            except FrameError as e:
                logger.warning(f"[WS] Dropping frame from {session!r}: {e}")
                continue

            if isinstance(frame, JoinEventFrame):
                await _handle_join(session, frame)
                continue

            if isinstance(frame, ChatMessageFrame):
                await _handle_chat(session, frame)
                continue

            if session.room_id is None or session.user_id is None:
                logger.debug(f"[WS] Ignoring {frame.type} from {session!r} outside a room")
                continue

            if isinstance(frame, TypingStartFrame):
                await hub.presence.start_typing(
                    session.room_id, session.user_id, _typing_name(session, frame), exclude=session
                )
            elif isinstance(frame, TypingStopFrame):
                await hub.presence.stop_typing(
                    session.room_id, session.user_id, _typing_name(session, frame), exclude=session
                )

    except WebSocketDisconnect:
        logger.info(f"[WS] {session!r} disconnected")
    finally:
        await hub.leave_room(session)
