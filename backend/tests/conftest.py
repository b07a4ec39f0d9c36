"""Shared test fixtures and configuration for backend tests."""
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from gamehub.chat.pipeline import reaction_ledger
from gamehub.config import AppConfig, reset_config, set_config
from gamehub.errors import DispatchError
from gamehub.main import app
from gamehub.realtime.hub import RealtimeHub
from gamehub.storage.service import ChatStore


class FakeSession:
    """In-process stand-in for a server session.

    Records every frame written to it; ``fail=True`` makes every write raise
    like a broken socket.
    """

    def __init__(self, user_id: Optional[str] = None, username: Optional[str] = None,
                 fail: bool = False, is_open: bool = True) -> None:
        self.user_id = user_id
        self.username = username or user_id
        self.room_id: Optional[int] = None
        self.is_open = is_open
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_frame(self, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise DispatchError(f"socket of {self.user_id} is gone")
        self.sent.append(payload)

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def __repr__(self) -> str:
        return f"FakeSession({self.user_id!r})"


@pytest.fixture(autouse=True)
def isolated_state():
    """Fresh in-memory store, hub, config and reaction ledger for each test.

    Keeps tests away from the file-based gamehub.duckdb, which can be locked
    by a running development server.
    """
    set_config(AppConfig(storage={"db_path": ":memory:"}))
    ChatStore.reset_instance()
    ChatStore.get_instance(db_path=":memory:")
    RealtimeHub.reset_instance()
    reaction_ledger.clear()
    yield
    ChatStore.reset_instance()
    RealtimeHub.reset_instance()
    reaction_ledger.clear()
    reset_config()


@pytest.fixture
def store() -> ChatStore:
    return ChatStore.get_instance()


@pytest.fixture
def session_factory():
    """Build FakeSession objects: ``session_factory("u1", fail=True)``."""
    return FakeSession


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Named api_client (not client) to avoid shadowing the module-level
    `client = TestClient(app)` pattern used in the chat tests.
    """
    return TestClient(app)
