"""Client-side message timeline for one event room.

The timeline is seeded from REST history and then fed every inbound frame.
Messages are keyed by their store-assigned id, so a message that arrives
both in history and over the socket (or twice over the socket after a
reconnect) is shown once.

The presence count is taken only from ``active_users_count`` frames;
``user_joined`` / ``user_left`` are informational and never counted.
"""
from typing import Any, Dict, Iterable, List, Union

from gamehub.realtime.protocol import (
    SERVER_FRAME_TYPES,
    ActiveUsersCountFrame,
    Frame,
    NewMessageFrame,
    ReactionUpdateFrame,
    parse_frame,
)
from gamehub.storage.schemas import StoredMessage


class MessageTimeline:
    """Ordered, de-duplicated view of an event's messages."""

    def __init__(self) -> None:
        self._messages: Dict[int, StoredMessage] = {}
        self.active_users = 0

    def seed(self, messages: Iterable[Union[StoredMessage, Dict[str, Any]]]) -> int:
        """Merge fetched history; returns the number of messages added."""
        added = 0
        for item in messages:
            message = item if isinstance(item, StoredMessage) else StoredMessage.model_validate(item)
            if message.id not in self._messages:
                self._messages[message.id] = message
                added += 1
        return added

    def apply(self, frame: Union[Frame, Dict[str, Any]]) -> bool:
        """Apply one server frame.

        Returns:
            True if the timeline changed. Re-delivery of a known message id
            returns False and changes nothing.
        """
        if isinstance(frame, dict):
            frame = parse_frame(frame, SERVER_FRAME_TYPES)

        if isinstance(frame, NewMessageFrame):
            if frame.message.id in self._messages:
                return False
            self._messages[frame.message.id] = frame.message
            return True

        if isinstance(frame, ReactionUpdateFrame):
            message = self._messages.get(frame.messageId)
            if message is None:
                return False
            metadata = dict(message.metadata or {})
            metadata["reactions"] = dict(frame.reactions)
            self._messages[message.id] = message.model_copy(update={"metadata": metadata})
            return True

        if isinstance(frame, ActiveUsersCountFrame):
            changed = frame.count != self.active_users
            self.active_users = frame.count
            return changed

        return False

    @property
    def messages(self) -> List[StoredMessage]:
        """Messages in chronological (id) order."""
        return [self._messages[key] for key in sorted(self._messages)]

    def get(self, message_id: int) -> StoredMessage:
        return self._messages[message_id]

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)
