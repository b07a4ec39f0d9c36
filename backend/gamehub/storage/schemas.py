"""Pydantic schemas for stored chat messages, profiles and notifications.

These schemas are used by:
    - ChatStore: DuckDB storage layer (persistence + notification gateway)
    - ChatPipeline: hydrates stored messages before broadcast
    - Wire protocol: the ``new_message`` frame embeds a StoredMessage
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class MessageUser(BaseModel):
    """Public profile fields of a message sender.

    Attributes:
        id: Sender's user id.
        firstName: Optional first name.
        username: Optional handle.
        profileImageUrl: Optional avatar URL.
    """
    id: str = Field(..., description="User id")
    firstName: Optional[str] = Field(default=None, description="First name")
    username: Optional[str] = Field(default=None, description="Handle")
    profileImageUrl: Optional[str] = Field(default=None, description="Avatar URL")


class StoredMessage(BaseModel):
    """Canonical stored form of a chat message.

    The id is assigned by the store and is unique across all events. ``user``
    is filled in by hydration and is None only for a message whose sender has
    no stored profile.

    Attributes:
        id: Store-assigned message id.
        eventId: Event (room) the message belongs to.
        userId: Sender's user id.
        content: Trimmed message text.
        type: Message kind (message, system, challenge).
        metadata: Free-form JSON object (challenge details, reactions).
        createdAt: Store timestamp (UTC).
        user: Sender's public profile.
    """
    id: int = Field(..., description="Store-assigned message id")
    eventId: int = Field(..., description="Event id")
    userId: str = Field(..., description="Sender user id")
    content: str = Field(..., description="Message content")
    type: str = Field(default="message", description="Message type")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Extra message data")
    createdAt: datetime = Field(..., description="Creation time (UTC)")
    user: Optional[MessageUser] = Field(default=None, description="Sender profile")


class NotificationCreate(BaseModel):
    """Input schema for recording a notification.

    Attributes:
        userId: Recipient.
        type: Notification kind (message, challenge, achievement).
        title: Short title.
        content: Optional body text.
        relatedId: Optional related entity id (event, challenge).
    """
    userId: str = Field(..., min_length=1, description="Recipient user id")
    type: str = Field(..., min_length=1, max_length=50, description="Notification type")
    title: str = Field(..., min_length=1, max_length=255, description="Title")
    content: Optional[str] = Field(default=None, description="Body text")
    relatedId: Optional[int] = Field(default=None, description="Related entity id")


class Notification(NotificationCreate):
    """A stored notification."""
    id: int = Field(..., description="Notification id")
    isRead: bool = Field(default=False, description="Whether the user has read it")
    createdAt: datetime = Field(..., description="Creation time (UTC)")
