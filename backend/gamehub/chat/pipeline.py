"""Chat send pipeline and reaction ledger.

Sending a chat message is a strict sequence:

    1. persist through the store (validation + id/timestamp assignment)
    2. hydrate the stored message with the sender's public profile
    3. broadcast it to the event room as ``new_message``
    4. best-effort: notify every other participant of the event

Steps 1-3 are awaited in order, so a single sender's sequential messages are
stored and broadcast in submission order. ValidationError and
PersistenceError from step 1 propagate to the caller and nothing is
broadcast. Step 4 never raises: notification failures are logged and
dropped.

Reactions are kept in a process-local ledger (emoji -> set of user ids per
message) and only their counts are broadcast. They are not written to the
store.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Set

from gamehub.auth.identity import Identity
from gamehub.errors import NotificationError, ValidationError
from gamehub.realtime.hub import RealtimeHub, get_hub
from gamehub.realtime.protocol import NewMessageFrame, ReactionUpdateFrame
from gamehub.storage.schemas import NotificationCreate, StoredMessage
from gamehub.storage.service import ChatStore, get_store

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "New Message"


class Notifier(Protocol):
    def create_notification(self, notification: NotificationCreate) -> Any:
        ...


class ReactionLedger:
    """In-memory reactions per message.

    A user counts once per emoji per message; reacting again is a no-op.
    """

    def __init__(self) -> None:
        # message_id -> {emoji -> {user_id, ...}}
        self._reactions: Dict[int, Dict[str, Set[str]]] = {}
        self._lock = threading.Lock()

    def add(self, message_id: int, emoji: str, user_id: str) -> Dict[str, int]:
        """Record a reaction and return the message's reaction counts."""
        with self._lock:
            by_emoji = self._reactions.setdefault(message_id, {})
            by_emoji.setdefault(emoji, set()).add(user_id)
            return {key: len(users) for key, users in by_emoji.items()}

    def counts(self, message_id: int) -> Dict[str, int]:
        with self._lock:
            by_emoji = self._reactions.get(message_id, {})
            return {key: len(users) for key, users in by_emoji.items()}

    def clear(self) -> None:
        with self._lock:
            self._reactions.clear()


reaction_ledger = ReactionLedger()


class ChatPipeline:
    """Persist-then-broadcast message flow for one event room at a time.

    Args:
        store: Message persistence gateway (create_message, get_message,
            get_event_participants).
        hub: Realtime hub used for room fan-out.
        notifier: Notification gateway; defaults to the store.
        reactions: Reaction ledger; defaults to the process-wide ledger.
    """

    def __init__(
        self,
        store: ChatStore,
        hub: RealtimeHub,
        notifier: Optional[Notifier] = None,
        reactions: Optional[ReactionLedger] = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.notifier = notifier if notifier is not None else store
        self.reactions = reactions if reactions is not None else reaction_ledger

    async def send(
        self,
        event_id: int,
        identity: Identity,
        content: str,
        type: str = "message",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        """Store a message and deliver it to the event room.

        Args:
            event_id: Target event (room) id.
            identity: The authenticated sender, passed explicitly.
            content: Message text.
            type: Message kind.
            metadata: Optional JSON object stored with the message.

        Returns:
            The stored, hydrated message.

        Raises:
            ValidationError: Rejected content; nothing was broadcast.
            PersistenceError: The store failed; nothing was broadcast.
        """
        stored = self.store.create_message(event_id, identity.id, content, type, metadata)
        message = stored.model_copy(update={"user": identity.public_profile()})

        delivered = await self.hub.broadcast(event_id, NewMessageFrame(message=message))
        logger.info(
            f"[Chat] Message {message.id} from {identity.id} in event {event_id} "
            f"delivered to {delivered} session(s)"
        )

        self._notify_participants(event_id, identity)
        return message

    def _notify_participants(self, event_id: int, sender: Identity) -> int:
        try:
            participants = self.store.get_event_participants(event_id)
        except Exception as e:
            logger.warning(f"[Chat] Could not load participants of event {event_id}: {e}")
            return 0

        content = f"{sender.display_name} sent a message in event {event_id}"
        sent = 0
        for user_id in participants:
            if user_id == sender.id:
                continue
            try:
                self.notifier.create_notification(
                    NotificationCreate(
                        userId=user_id,
                        type="message",
                        title=NOTIFICATION_TITLE,
                        content=content,
                        relatedId=event_id,
                    )
                )
                sent += 1
            except NotificationError as e:
                logger.warning(f"[Chat] Notification for {user_id} failed: {e}")
            except Exception as e:
                logger.exception(f"[Chat] Notifier raised unexpectedly for {user_id}: {e}")
        return sent

    async def react(
        self, event_id: int, message_id: int, identity: Identity, emoji: str
    ) -> Dict[str, int]:
        """Add a reaction and broadcast the new counts.

        Raises:
            ValidationError: Empty emoji.
            NotFoundError: No such message in this event.
        """
        emoji = (emoji or "").strip()
        if not emoji:
            raise ValidationError("Emoji is required")

        self.store.get_message(event_id, message_id)
        reactions = self.reactions.add(message_id, emoji, identity.id)

        await self.hub.broadcast(
            event_id, ReactionUpdateFrame(messageId=message_id, reactions=reactions)
        )
        return reactions

    def history(self, event_id: int, limit: int) -> List[StoredMessage]:
        return self.store.get_event_messages(event_id, limit=limit)


def get_pipeline() -> ChatPipeline:
    return ChatPipeline(get_store(), get_hub())
