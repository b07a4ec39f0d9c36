"""Tests for the event chat REST API and the /ws realtime socket.

Identity is forwarded by the auth proxy as X-User-* headers; these tests
set the headers directly.
"""
import json

from fastapi.testclient import TestClient

from gamehub.errors import PersistenceError
from gamehub.main import app
from gamehub.storage.schemas import MessageUser
from gamehub.storage.service import ChatStore


client = TestClient(app)

UNA = {"X-User-Id": "U1", "X-User-First-Name": "Una", "X-User-Avatar": "http://img/una.png"}
BO = {"X-User-Id": "U2", "X-User-Name": "bo"}


def join(ws, user_id, event_id=42):
    """Send join_event and consume this socket's user_joined + count frames."""
    ws.send_json({"type": "join_event", "userId": user_id, "eventId": event_id})
    joined = ws.receive_json()
    count = ws.receive_json()
    assert joined["type"] == "user_joined"
    assert count["type"] == "active_users_count"
    return count["count"]


def sync(ws, user_id, event_id=42):
    """Round-trip a repeat join so every frame this socket sent before has been handled."""
    ws.send_json({"type": "join_event", "userId": user_id, "eventId": event_id})
    assert ws.receive_json()["type"] == "active_users_count"


class TestSendMessage:
    """POST /api/events/{id}/messages"""

    def test_send_returns_hydrated_message(self):
        response = client.post("/api/events/42/messages", json={"content": "  hello  "}, headers=UNA)

        assert response.status_code == 201
        data = response.json()
        assert isinstance(data["id"], int)
        assert data["content"] == "hello"
        assert data["type"] == "message"
        assert data["eventId"] == 42
        assert data["user"] == {
            "id": "U1",
            "firstName": "Una",
            "username": None,
            "profileImageUrl": "http://img/una.png",
        }
        assert "createdAt" in data

    def test_blank_content_rejected(self):
        response = client.post("/api/events/42/messages", json={"content": "   "}, headers=UNA)

        assert response.status_code == 400
        assert response.json()["message"] == "Message content is required"
        assert client.get("/api/events/42/messages", headers=UNA).json() == []

    def test_rejected_send_does_not_register_participant(self):
        client.post("/api/events/42/messages", json={"content": "   "}, headers=UNA)
        assert ChatStore.get_instance().get_event_participants(42) == []

        client.post("/api/events/42/messages", json={"content": "hi"}, headers=UNA)
        assert ChatStore.get_instance().get_event_participants(42) == ["U1"]
        assert ChatStore.get_instance().get_user("U1").firstName == "Una"

    def test_missing_identity(self):
        response = client.post("/api/events/42/messages", json={"content": "hi"})
        assert response.status_code == 401

    def test_missing_content_field(self):
        response = client.post("/api/events/42/messages", json={}, headers=UNA)
        assert response.status_code == 422

    def test_store_failure_returns_500(self, monkeypatch):
        def broken(*args, **kwargs):
            raise PersistenceError("disk full")

        monkeypatch.setattr(ChatStore.get_instance(), "create_message", broken)

        response = client.post("/api/events/42/messages", json={"content": "hi"}, headers=UNA)
        assert response.status_code == 500
        assert response.json() == {"message": "Failed to send message"}

    def test_rest_send_reaches_socket_members(self):
        with client.websocket_connect("/ws") as ws:
            join(ws, "U2")

            response = client.post("/api/events/42/messages", json={"content": "from rest"}, headers=UNA)

            frame = ws.receive_json()
            assert frame["type"] == "new_message"
            assert frame["message"]["id"] == response.json()["id"]
            assert frame["message"]["user"]["firstName"] == "Una"


class TestHistory:
    """GET /api/events/{id}/messages"""

    def test_history_chronological(self):
        for text in ("first", "second", "third"):
            client.post("/api/events/42/messages", json={"content": text}, headers=UNA)

        response = client.get("/api/events/42/messages", headers=BO)

        assert response.status_code == 200
        assert [m["content"] for m in response.json()] == ["first", "second", "third"]

    def test_history_limit(self):
        for i in range(4):
            client.post("/api/events/42/messages", json={"content": f"m{i}"}, headers=UNA)

        response = client.get("/api/events/42/messages?limit=2", headers=UNA)
        assert [m["content"] for m in response.json()] == ["m2", "m3"]

    def test_history_limit_bounds(self):
        assert client.get("/api/events/42/messages?limit=0", headers=UNA).status_code == 422
        assert client.get("/api/events/42/messages?limit=501", headers=UNA).status_code == 422

    def test_history_hydrated_with_sender_profile(self):
        client.post("/api/events/42/messages", json={"content": "hi"}, headers=UNA)

        [message] = client.get("/api/events/42/messages", headers=BO).json()
        assert message["user"]["firstName"] == "Una"


class TestReactions:
    """POST /api/events/{eventId}/messages/{messageId}/react"""

    def test_react_acknowledges_with_counts(self):
        message_id = client.post(
            "/api/events/42/messages", json={"content": "gg"}, headers=UNA
        ).json()["id"]

        response = client.post(
            f"/api/events/42/messages/{message_id}/react", json={"emoji": "🔥"}, headers=BO
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "emoji": "🔥",
            "messageId": message_id,
            "reactions": {"🔥": 1},
        }

    def test_react_broadcasts_update(self):
        message_id = client.post(
            "/api/events/42/messages", json={"content": "gg"}, headers=UNA
        ).json()["id"]

        with client.websocket_connect("/ws") as ws:
            join(ws, "U3")
            client.post(f"/api/events/42/messages/{message_id}/react", json={"emoji": "👍"}, headers=BO)

            frame = ws.receive_json()
            assert frame == {"type": "reaction_update", "messageId": message_id, "reactions": {"👍": 1}}

    def test_missing_emoji(self):
        message_id = client.post(
            "/api/events/42/messages", json={"content": "gg"}, headers=UNA
        ).json()["id"]

        response = client.post(f"/api/events/42/messages/{message_id}/react", json={}, headers=BO)

        assert response.status_code == 400
        assert response.json() == {"message": "Emoji is required"}

    def test_unknown_message(self):
        response = client.post("/api/events/42/messages/999/react", json={"emoji": "👍"}, headers=BO)
        assert response.status_code == 404


class TestPresenceAndTyping:
    """GET /presence and POST /typing"""

    def test_presence_of_empty_event(self):
        response = client.get("/api/events/42/presence", headers=UNA)
        assert response.json() == {"eventId": 42, "activeUsers": 0, "typingUsers": []}

    def test_rest_typing_round_trip(self):
        started = client.post("/api/events/42/typing", json={"isTyping": True}, headers=UNA)
        assert started.json() == {"success": True, "typingUsers": ["Una"]}

        stopped = client.post("/api/events/42/typing", json={"isTyping": False}, headers=UNA)
        assert stopped.json() == {"success": True, "typingUsers": []}

    def test_presence_counts_socket_sessions(self):
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            join(ws1, "U1")
            assert join(ws2, "U2") == 2

            response = client.get("/api/events/42/presence", headers=UNA)
            assert response.json()["activeUsers"] == 2


class TestWebSocket:
    """WebSocket /ws"""

    def test_join_and_chat(self):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join_event", "userId": "U1", "eventId": 42})
            assert ws.receive_json() == {"type": "user_joined", "userId": "U1"}
            assert ws.receive_json() == {"type": "active_users_count", "count": 1}

            ws.send_json({"type": "chat_message", "content": "hello", "messageType": "message"})
            frame = ws.receive_json()

            assert frame["type"] == "new_message"
            assert isinstance(frame["message"]["id"], int)
            assert frame["message"]["content"] == "hello"
            assert frame["message"]["user"]["id"] == "U1"

        [stored] = ChatStore.get_instance().get_event_messages(42)
        assert stored.content == "hello"

    def test_chat_delivered_to_all_members(self):
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            join(ws1, "U1")
            join(ws2, "U2")
            ws1.receive_json()  # user_joined U2
            ws1.receive_json()  # active_users_count 2

            ws2.send_json({"type": "chat_message", "content": "hi all"})
            frame2 = ws2.receive_json()
            frame1 = ws1.receive_json()

            assert frame1 == frame2
            assert frame1["message"]["userId"] == "U2"

    def test_second_join_notifies_first(self):
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            join(ws1, "U1")
            join(ws2, "U2")

            assert ws1.receive_json() == {"type": "user_joined", "userId": "U2"}
            assert ws1.receive_json() == {"type": "active_users_count", "count": 2}

    def test_repeat_join_counts_once(self):
        with client.websocket_connect("/ws") as ws:
            join(ws, "U1")
            ws.send_json({"type": "join_event", "userId": "U1", "eventId": 42})

            assert ws.receive_json() == {"type": "active_users_count", "count": 1}

    def test_blank_chat_gets_error_and_no_broadcast(self):
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            join(ws1, "U1")
            join(ws2, "U2")
            ws1.receive_json()
            ws1.receive_json()

            ws2.send_json({"type": "chat_message", "content": "   "})
            assert ws2.receive_json() == {"type": "error", "error": "Message content is required"}

            # the next frame ws1 sees is the following valid message, not the blank one
            ws2.send_json({"type": "chat_message", "content": "real"})
            ws2.receive_json()
            assert ws1.receive_json()["message"]["content"] == "real"

    def test_chat_before_join(self):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "chat_message", "content": "hello"})
            frame = ws.receive_json()
            assert frame["type"] == "error"

    def test_malformed_frames_do_not_close_connection(self):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("this is not json")
            ws.send_json({"type": "teleport"})
            ws.send_json({"type": "join_event", "userId": "U1"})
            ws.send_json(["not", "an", "object"])
            ws.send_bytes(b"\x80\x81 not utf-8")
            ws.send_bytes(b'{"type": "teleport"}')

            assert join(ws, "U1") == 1

    def test_binary_frame_is_decoded(self):
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(json.dumps({"type": "join_event", "userId": "U1", "eventId": 42}).encode())

            assert ws.receive_json() == {"type": "user_joined", "userId": "U1"}
            assert ws.receive_json() == {"type": "active_users_count", "count": 1}

    def test_typing_relayed_to_others_with_profile_name(self):
        store = ChatStore.get_instance()
        store.upsert_user(MessageUser(id="U1", firstName="Una"))

        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            join(ws1, "U1")
            join(ws2, "U2")
            ws1.receive_json()
            ws1.receive_json()

            ws1.send_json({"type": "typing_start"})
            sync(ws1, "U1")
            assert ws2.receive_json() == {"type": "user_typing_start", "userId": "U1", "username": "Una"}

            ws1.send_json({"type": "typing_stop"})
            sync(ws1, "U1")
            assert ws2.receive_json() == {"type": "user_typing_stop", "userId": "U1", "username": "Una"}

    def test_typing_uses_frame_username_for_unknown_profile(self):
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            join(ws1, "U9")
            join(ws2, "U2")
            ws1.receive_json()
            ws1.receive_json()

            ws1.send_json({"type": "typing_start", "userId": "U9", "username": "ninja"})
            sync(ws1, "U9")
            assert ws2.receive_json()["username"] == "ninja"

    def test_profile_lookup_failure_does_not_close_socket(self, monkeypatch):
        def broken(user_id):
            raise PersistenceError("users table unavailable")

        monkeypatch.setattr(ChatStore.get_instance(), "get_user", broken)

        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            assert join(ws1, "U1") == 1
            join(ws2, "U2")
            ws1.receive_json()
            ws1.receive_json()

            ws1.send_json({"type": "typing_start", "username": "una"})
            sync(ws1, "U1")
            assert ws2.receive_json()["username"] == "una"

    def test_join_records_participation(self):
        with client.websocket_connect("/ws") as ws:
            join(ws, "U7", event_id=5)

        assert "U7" in ChatStore.get_instance().get_event_participants(5)

    def test_socket_chat_notifies_other_participants(self):
        store = ChatStore.get_instance()
        store.add_participant(42, "U2")

        with client.websocket_connect("/ws") as ws:
            join(ws, "U1")
            ws.send_json({"type": "chat_message", "content": "ping"})
            ws.receive_json()
            sync(ws, "U1")

        [notification] = store.get_user_notifications("U2")
        assert notification.relatedId == 42


class TestNotificationsApi:
    """GET /api/notifications, GET /count, PATCH /{id}/read"""

    def _seed(self):
        store = ChatStore.get_instance()
        store.add_participant(42, "U2")
        client.post("/api/events/42/messages", json={"content": "hey"}, headers=UNA)

    def test_list_and_unread_count(self):
        self._seed()

        listing = client.get("/api/notifications", headers=BO)
        assert listing.status_code == 200
        [notification] = listing.json()
        assert notification["title"] == "New Message"
        assert notification["content"] == "Una sent a message in event 42"

        count = client.get("/api/notifications/count", headers=BO)
        assert count.json() == {"count": 1}

    def test_mark_read(self):
        self._seed()
        notification_id = client.get("/api/notifications", headers=BO).json()[0]["id"]

        response = client.patch(f"/api/notifications/{notification_id}/read", headers=BO)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Notification marked as read"}
        assert client.get("/api/notifications/count", headers=BO).json() == {"count": 0}

    def test_mark_read_of_other_user(self):
        self._seed()
        notification_id = client.get("/api/notifications", headers=BO).json()[0]["id"]

        response = client.patch(f"/api/notifications/{notification_id}/read", headers=UNA)
        assert response.status_code == 404

    def test_requires_identity(self):
        assert client.get("/api/notifications").status_code == 401

    def test_read_requires_patch(self):
        self._seed()
        notification_id = client.get("/api/notifications", headers=BO).json()[0]["id"]

        assert client.post(f"/api/notifications/{notification_id}/read", headers=BO).status_code == 405


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
