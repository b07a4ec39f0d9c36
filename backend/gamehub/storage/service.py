"""DuckDB-based chat storage service.

This module provides persistent storage for chat messages, public user
profiles, event participation and notifications using DuckDB, a fast
embedded analytical database. The service implements the singleton pattern
to ensure only one database connection exists at a time.

It is both collaborators the realtime core consumes:
    - Message Persistence Gateway: create_message / get_event_messages
    - Notification Gateway: create_notification

Database Schema:
    chat_messages table:
        - id: Sequence-generated primary key (strictly increasing)
        - event_id: Event (room) identifier
        - user_id: Sender
        - content: Trimmed message text
        - type: message, system or challenge
        - metadata: JSON text
        - created_at: When the message was stored (UTC)
    users table:
        - id, first_name, username, profile_image_url
    event_participants table:
        - event_id, user_id, joined_at
    notifications table:
        - id, user_id, type, title, content, is_read, related_id, created_at

Thread Safety:
    Every statement runs under a store-level lock, so the single DuckDB
    connection can be shared by the request handlers of all event loops.
    Serializing inserts also means a single sender's sequential messages are
    stored in submission order.

Usage:
    store = ChatStore.get_instance()
    message = store.create_message(42, "user-1", "hello")
    history = store.get_event_messages(42, limit=100)
"""
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import duckdb

from gamehub.config import get_config
from gamehub.errors import NotFoundError, NotificationError, PersistenceError, ValidationError

from .schemas import MessageUser, Notification, NotificationCreate, StoredMessage

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100
DEFAULT_MAX_CONTENT_LENGTH = 4000
DEFAULT_NOTIFICATION_LIMIT = 50

_MESSAGE_COLUMNS = """
    m.id, m.event_id, m.user_id, m.content, m.type, m.metadata, m.created_at,
    u.id, u.first_name, u.username, u.profile_image_url
"""


def _utcnow() -> datetime:
    # DuckDB TIMESTAMP columns are naive; store UTC wall time.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChatStore:
    """Singleton service for chat messages, profiles and notifications.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["ChatStore"] = None
    _db_path: str = "gamehub.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ) -> None:
        """Initialize the chat store.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file, or ":memory:". Defaults to "gamehub.duckdb".
            max_content_length: Longest accepted message body after trimming.
        """
        if db_path:
            self._db_path = db_path
        self.max_content_length = max_content_length
        self._lock = threading.RLock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(
        cls,
        db_path: Optional[str] = None,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ) -> "ChatStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
            max_content_length: Only used on first call.

        Returns:
            The singleton ChatStore instance.
        """
        if cls._instance is None:
            cls._instance = cls(db_path, max_content_length)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance.

        Closes the database connection and clears the instance.
        Primarily used for testing to ensure a clean state.
        """
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create sequences and tables if they don't exist (idempotent)."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("CREATE SEQUENCE IF NOT EXISTS chat_messages_seq START 1")
            conn.execute("CREATE SEQUENCE IF NOT EXISTS notifications_seq START 1")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chat_messages (
                    id INTEGER DEFAULT nextval('chat_messages_seq') PRIMARY KEY,
                    event_id INTEGER NOT NULL,
                    user_id VARCHAR NOT NULL,
                    content VARCHAR NOT NULL,
                    type VARCHAR NOT NULL,
                    metadata VARCHAR,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id VARCHAR PRIMARY KEY,
                    first_name VARCHAR,
                    username VARCHAR,
                    profile_image_url VARCHAR
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS event_participants (
                    event_id INTEGER NOT NULL,
                    user_id VARCHAR NOT NULL,
                    joined_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (event_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER DEFAULT nextval('notifications_seq') PRIMARY KEY,
                    user_id VARCHAR NOT NULL,
                    type VARCHAR NOT NULL,
                    title VARCHAR NOT NULL,
                    content VARCHAR,
                    is_read BOOLEAN NOT NULL DEFAULT false,
                    related_id INTEGER,
                    created_at TIMESTAMP NOT NULL
                )
            """)

    def _execute(self, sql: str, params: Optional[list] = None) -> duckdb.DuckDBPyConnection:
        try:
            return self._get_connection().execute(sql, params or [])
        except duckdb.Error as exc:
            logger.error(f"[Store] Statement failed: {exc}")
            raise PersistenceError(str(exc)) from exc

    # =========================================================================
    # Messages (persistence gateway)
    # =========================================================================

    def create_message(
        self,
        event_id: int,
        user_id: str,
        content: str,
        type: str = "message",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        """Validate and store a chat message.

        Args:
            event_id: Positive event id.
            user_id: Sender's user id.
            content: Raw message text; stored trimmed.
            type: Message type.
            metadata: Optional JSON object.

        Returns:
            The stored message, hydrated with the sender's profile if known.

        Raises:
            ValidationError: Empty content, over-long content or bad event id.
            PersistenceError: The database rejected the insert.
        """
        if event_id <= 0:
            raise ValidationError("Event id must be a positive integer")
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content is required")
        if len(text) > self.max_content_length:
            raise ValidationError(
                f"Message content exceeds {self.max_content_length} characters"
            )

        metadata_json = json.dumps(metadata) if metadata is not None else None
        created_at = _utcnow()

        with self._lock:
            row = self._execute(
                """
                INSERT INTO chat_messages (event_id, user_id, content, type, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [event_id, user_id, text, type or "message", metadata_json, created_at],
            ).fetchone()
            message = self.get_message(event_id, row[0])

        logger.debug(f"[Store] Stored message {message.id} in event {event_id}")
        return message

    def get_message(self, event_id: int, message_id: int) -> StoredMessage:
        """Fetch one hydrated message.

        Raises:
            NotFoundError: No such message in this event.
        """
        with self._lock:
            row = self._execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM chat_messages m
                LEFT JOIN users u ON u.id = m.user_id
                WHERE m.event_id = ? AND m.id = ?
                """,
                [event_id, message_id],
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Message {message_id} not found in event {event_id}")
        return self._row_to_message(row)

    def get_event_messages(
        self, event_id: int, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[StoredMessage]:
        """Get the most recent messages of an event in chronological order.

        Args:
            event_id: The event id.
            limit: Maximum number of messages to return.

        Returns:
            Up to ``limit`` hydrated messages, oldest first.
        """
        with self._lock:
            rows = self._execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM chat_messages m
                LEFT JOIN users u ON u.id = m.user_id
                WHERE m.event_id = ?
                ORDER BY m.id DESC
                LIMIT ?
                """,
                [event_id, limit],
            ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    @staticmethod
    def _row_to_message(row: tuple) -> StoredMessage:
        user = None
        if row[7] is not None:
            user = MessageUser(
                id=row[7],
                firstName=row[8],
                username=row[9],
                profileImageUrl=row[10],
            )
        return StoredMessage(
            id=row[0],
            eventId=row[1],
            userId=row[2],
            content=row[3],
            type=row[4],
            metadata=json.loads(row[5]) if row[5] else None,
            createdAt=row[6],
            user=user,
        )

    # =========================================================================
    # Profiles
    # =========================================================================

    def upsert_user(self, profile: MessageUser) -> MessageUser:
        """Store the latest public profile for a user."""
        with self._lock:
            self._execute(
                "INSERT OR REPLACE INTO users (id, first_name, username, profile_image_url) "
                "VALUES (?, ?, ?, ?)",
                [profile.id, profile.firstName, profile.username, profile.profileImageUrl],
            )
        return profile

    def get_user(self, user_id: str) -> Optional[MessageUser]:
        """Get a stored public profile, or None if the user is unknown."""
        with self._lock:
            row = self._execute(
                "SELECT id, first_name, username, profile_image_url FROM users WHERE id = ?",
                [user_id],
            ).fetchone()
        if row is None:
            return None
        return MessageUser(id=row[0], firstName=row[1], username=row[2], profileImageUrl=row[3])

    # =========================================================================
    # Event participation
    # =========================================================================

    def add_participant(self, event_id: int, user_id: str) -> bool:
        """Record that a user takes part in an event.

        Returns:
            True if the participation is new, False if it already existed.
        """
        with self._lock:
            existing = self._execute(
                "SELECT 1 FROM event_participants WHERE event_id = ? AND user_id = ?",
                [event_id, user_id],
            ).fetchone()
            if existing is not None:
                return False
            self._execute(
                "INSERT INTO event_participants (event_id, user_id, joined_at) VALUES (?, ?, ?)",
                [event_id, user_id, _utcnow()],
            )
        return True

    def get_event_participants(self, event_id: int) -> List[str]:
        """Get the user ids taking part in an event, in join order."""
        with self._lock:
            rows = self._execute(
                "SELECT user_id FROM event_participants WHERE event_id = ? "
                "ORDER BY joined_at, user_id",
                [event_id],
            ).fetchall()
        return [row[0] for row in rows]

    # =========================================================================
    # Notifications (notification gateway)
    # =========================================================================

    def create_notification(self, notification: NotificationCreate) -> Notification:
        """Record a notification for a user.

        Raises:
            NotificationError: The notification could not be written.
        """
        created_at = _utcnow()
        try:
            with self._lock:
                row = self._execute(
                    """
                    INSERT INTO notifications (user_id, type, title, content, related_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    RETURNING id
                    """,
                    [
                        notification.userId,
                        notification.type,
                        notification.title,
                        notification.content,
                        notification.relatedId,
                        created_at,
                    ],
                ).fetchone()
        except PersistenceError as exc:
            raise NotificationError(f"Could not notify {notification.userId}: {exc}") from exc
        return Notification(id=row[0], isRead=False, createdAt=created_at, **notification.model_dump())

    def get_user_notifications(
        self, user_id: str, limit: int = DEFAULT_NOTIFICATION_LIMIT
    ) -> List[Notification]:
        """Get a user's notifications, newest first."""
        with self._lock:
            rows = self._execute(
                """
                SELECT id, user_id, type, title, content, is_read, related_id, created_at
                FROM notifications
                WHERE user_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                [user_id, limit],
            ).fetchall()
        return [
            Notification(
                id=row[0],
                userId=row[1],
                type=row[2],
                title=row[3],
                content=row[4],
                isRead=row[5],
                relatedId=row[6],
                createdAt=row[7],
            )
            for row in rows
        ]

    def mark_notification_read(self, notification_id: int, user_id: str) -> None:
        """Mark one of a user's notifications as read.

        Raises:
            NotFoundError: The notification does not exist or belongs to someone else.
        """
        with self._lock:
            row = self._execute(
                "SELECT 1 FROM notifications WHERE id = ? AND user_id = ?",
                [notification_id, user_id],
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Notification {notification_id} not found")
            self._execute(
                "UPDATE notifications SET is_read = true WHERE id = ?",
                [notification_id],
            )

    def get_unread_notification_count(self, user_id: str) -> int:
        with self._lock:
            row = self._execute(
                "SELECT count(*) FROM notifications WHERE user_id = ? AND NOT is_read",
                [user_id],
            ).fetchone()
        return int(row[0])

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def get_store() -> ChatStore:
    """Return the process-wide store, created from configuration on first use."""
    config = get_config()
    return ChatStore.get_instance(
        db_path=config.storage.db_path,
        max_content_length=config.messages.max_content_length,
    )
