"""Authenticated identity for REST and socket handlers.

The auth proxy in front of the API authenticates the user and forwards the
resolved identity as request headers. The messaging core treats the identity
as opaque: it is passed explicitly through the send pipeline and never looked
up from ambient state.

Headers:
    X-User-Id          required, the stable user id
    X-User-First-Name  optional
    X-User-Name        optional
    X-User-Avatar      optional, profile image URL
"""
from typing import Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel, Field

from gamehub.storage.schemas import MessageUser

ANONYMOUS_NAME = "Anonymous"


class Identity(BaseModel):
    """The authenticated user making a request.

    Attributes:
        id: Stable user id issued by the identity provider.
        firstName: Optional first name.
        username: Optional handle.
        profileImageUrl: Optional avatar URL.
    """
    id: str = Field(..., min_length=1, description="Authenticated user id")
    firstName: Optional[str] = Field(default=None, description="First name")
    username: Optional[str] = Field(default=None, description="Handle")
    profileImageUrl: Optional[str] = Field(default=None, description="Avatar URL")

    @property
    def display_name(self) -> str:
        return self.firstName or self.username or ANONYMOUS_NAME

    def public_profile(self) -> MessageUser:
        """Return the public profile fields attached to broadcast messages."""
        return MessageUser(
            id=self.id,
            firstName=self.firstName,
            username=self.username,
            profileImageUrl=self.profileImageUrl,
        )


async def get_current_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_first_name: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_avatar: Optional[str] = Header(default=None),
) -> Identity:
    """FastAPI dependency resolving the forwarded identity headers.

    Raises:
        HTTPException: 401 when no user id was forwarded.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return Identity(
        id=x_user_id.strip(),
        firstName=x_user_first_name or None,
        username=x_user_name or None,
        profileImageUrl=x_user_avatar or None,
    )
