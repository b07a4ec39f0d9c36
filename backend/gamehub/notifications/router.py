"""Notification API endpoints.

Notifications are recorded by the chat send pipeline for every other
participant of an event. This module lets a user read them.

Endpoints:
    GET   /api/notifications: The caller's notifications, newest first
    GET   /api/notifications/count: Number of unread notifications
    PATCH /api/notifications/{notification_id}/read: Mark one as read
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from gamehub.auth.identity import Identity, get_current_identity
from gamehub.errors import NotFoundError, PersistenceError
from gamehub.storage.schemas import Notification
from gamehub.storage.service import DEFAULT_NOTIFICATION_LIMIT, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class UnreadCountResponse(BaseModel):
    count: int = Field(..., ge=0, description="Unread notifications")


class MarkReadResponse(BaseModel):
    success: bool = Field(..., description="Whether the notification was updated")
    message: str = Field("Notification marked as read", description="Human-readable result")


@router.get("", response_model=List[Notification])
async def list_notifications(
    limit: int = Query(DEFAULT_NOTIFICATION_LIMIT, ge=1, le=200, description="Maximum entries"),
    identity: Identity = Depends(get_current_identity),
) -> List[Notification]:
    try:
        return get_store().get_user_notifications(identity.id, limit=limit)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to fetch notifications")


@router.get("/count", response_model=UnreadCountResponse)
async def unread_count(
    identity: Identity = Depends(get_current_identity),
) -> UnreadCountResponse:
    try:
        count = get_store().get_unread_notification_count(identity.id)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to fetch unread count")
    return UnreadCountResponse(count=count)


@router.patch("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: int,
    identity: Identity = Depends(get_current_identity),
) -> MarkReadResponse:
    """Mark one of the caller's notifications as read.

    Raises:
        HTTPException: 404 if the notification is unknown or not the caller's.
    """
    try:
        get_store().mark_notification_read(notification_id, identity.id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to update notification")
    logger.debug(f"[Notifications] {identity.id} read notification {notification_id}")
    return MarkReadResponse(success=True)
