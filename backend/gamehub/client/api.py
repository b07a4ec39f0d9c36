"""Async REST client for the event chat API.

Wraps httpx.AsyncClient and forwards the caller's identity as the headers
the auth proxy would set. Error responses map onto the messaging error
taxonomy:

    4xx          -> ValidationError
    5xx          -> PersistenceError
    network      -> TransportError

Usage:
    async with ChatApiClient("http://localhost:8000", identity) as api:
        history = await api.fetch_history(42)
        message = await api.send_message(42, "hello")
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from gamehub.auth.identity import Identity
from gamehub.errors import PersistenceError, TransportError, ValidationError
from gamehub.storage.schemas import StoredMessage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def identity_headers(identity: Identity) -> Dict[str, str]:
    headers = {"X-User-Id": identity.id}
    if identity.firstName:
        headers["X-User-First-Name"] = identity.firstName
    if identity.username:
        headers["X-User-Name"] = identity.username
    if identity.profileImageUrl:
        headers["X-User-Avatar"] = identity.profileImageUrl
    return headers


class ChatApiClient:
    """REST client for messages, reactions and typing.

    Args:
        base_url: Server origin, e.g. ``http://localhost:8000``.
        identity: The user the requests are made as.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        identity: Identity,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.identity = identity
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=identity_headers(identity),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            return response.json()

        detail = _error_detail(response)
        logger.warning(f"[Client] {method} {path} -> {response.status_code}: {detail}")
        if response.status_code >= 500:
            raise PersistenceError(detail)
        raise ValidationError(detail)

    async def fetch_history(self, event_id: int, limit: Optional[int] = None) -> List[StoredMessage]:
        """Chronological history used to seed the timeline."""
        params = {"limit": limit} if limit is not None else None
        data = await self._request("GET", f"/api/events/{event_id}/messages", params=params)
        return [StoredMessage.model_validate(item) for item in data]

    async def send_message(
        self,
        event_id: int,
        content: str,
        type: str = "message",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        body: Dict[str, Any] = {"content": content, "type": type}
        if metadata is not None:
            body["metadata"] = metadata
        data = await self._request("POST", f"/api/events/{event_id}/messages", json=body)
        return StoredMessage.model_validate(data)

    async def react(self, event_id: int, message_id: int, emoji: str) -> Dict[str, int]:
        data = await self._request(
            "POST",
            f"/api/events/{event_id}/messages/{message_id}/react",
            json={"emoji": emoji},
        )
        return data.get("reactions", {})

    async def set_typing(self, event_id: int, is_typing: bool) -> List[str]:
        data = await self._request(
            "POST", f"/api/events/{event_id}/typing", json={"isTyping": is_typing}
        )
        return data.get("typingUsers", [])

    async def get_presence(self, event_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/api/events/{event_id}/presence")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)
