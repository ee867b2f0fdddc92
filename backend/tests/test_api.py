from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_completion_client
from app.core.config import Settings
from app.core.exceptions import PersistenceError, UpstreamError
from app.core.security import decode_access_token
from app import main
from app.main import create_app
from app.services.conversation_store import ConversationStore
from app.services.stream_relay import REFUSAL_MESSAGE, REFUSAL_MESSAGE_ZH

from fakes import FakeCompletionClient, parse_events

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture
def completion():
    return FakeCompletionClient()


def build_app(completion, **overrides):
    settings = Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        SECRET_KEY="test-secret",
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        LOG_LEVEL="WARNING",
        **overrides,
    )
    app = create_app(settings)
    app.dependency_overrides[get_completion_client] = lambda: completion
    return app


@pytest.fixture
def client(completion):
    with TestClient(build_app(completion)) as test_client:
        yield test_client


def register(client, email, password="secret1", username="user"):
    response = client.post(
        "/api/auth/register",
        json={"email": email, "username": username, "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def login(client, email, password):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def send(client, token, **body):
    return client.post("/api/conversations", json=body, headers=auth_headers(token))


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_register_login_and_me(client):
    registered = register(client, "carol@example.com", username="carol")
    assert registered["user"]["role"] == "user"
    assert "password" not in registered["user"]
    assert "hashed_password" not in registered["user"]

    logged_in = login(client, "carol@example.com", "secret1")
    assert logged_in["user"]["loginCount"] == 1
    assert logged_in["user"]["lastLogin"] is not None

    me = client.get("/api/auth/me", headers=auth_headers(logged_in["token"]))
    assert me.status_code == 200
    assert me.json()["email"] == "carol@example.com"


def test_register_rejects_duplicates_and_short_passwords(client):
    register(client, "dave@example.com")

    duplicate = client.post(
        "/api/auth/register",
        json={"email": "dave@example.com", "username": "dave", "password": "secret1"},
    )
    assert duplicate.status_code == 409

    short = client.post(
        "/api/auth/register",
        json={"email": "erin@example.com", "username": "erin", "password": "123"},
    )
    assert short.status_code == 422


def test_login_with_bad_password(client):
    register(client, "frank@example.com")
    response = client.post("/api/auth/login", json={"email": "frank@example.com", "password": "wrong!"})
    assert response.status_code == 401
    assert response.json() == {"detail": "invalid credentials"}


def test_token_is_required(client):
    missing = client.get("/api/conversations")
    assert missing.status_code == 401
    assert missing.json() == {"detail": "token required"}

    invalid = client.get("/api/conversations", headers=auth_headers("garbage"))
    assert invalid.status_code == 401
    assert invalid.json() == {"detail": "invalid token"}


def test_stream_conversation_end_to_end(client, completion):
    token = register(client, "gina@example.com")["token"]

    response = send(client, token, content="What is C17200 beryllium copper used for?")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    events = parse_events(response.text)
    conversation_id = events[0]["conversationId"]
    assert events[0]["started"] is True
    assert "".join(e["chunk"] for e in events if "chunk" in e) == "Brass is a copper-zinc alloy."
    assert events[-1]["done"] is True

    listing = client.get("/api/conversations", headers=auth_headers(token)).json()
    assert listing["total"] == 1
    assert listing["pageSize"] == 20
    assert listing["items"][0]["conversationId"] == conversation_id
    assert listing["items"][0]["title"] == "What is C17200 beryllium copper used for?"
    assert listing["items"][0]["lastMessage"] == "Brass is a copper-zinc alloy."

    follow_up = send(client, token, conversationId=conversation_id, content="And its hardness?")
    assert parse_events(follow_up.text)[-1]["done"] is True
    assert completion.calls[-1][-2]["role"] == "assistant"

    messages = client.get(
        f"/api/conversations/{conversation_id}/messages", headers=auth_headers(token)
    ).json()
    assert messages["conversationId"] == conversation_id
    assert [m["role"] for m in messages["messages"]] == ["user", "assistant", "user", "assistant"]
    assert messages["messages"][-1]["id"] == parse_events(follow_up.text)[-1]["messageId"]

    recent = client.get(
        f"/api/conversations/{conversation_id}/messages?limit=2", headers=auth_headers(token)
    ).json()
    assert [m["content"] for m in recent["messages"]] == ["And its hardness?", "Brass is a copper-zinc alloy."]

    deleted = client.delete(f"/api/conversations/{conversation_id}", headers=auth_headers(token))
    assert deleted.json() == {"success": True}
    gone = client.get(f"/api/conversations/{conversation_id}/messages", headers=auth_headers(token))
    assert gone.status_code == 404


def test_out_of_scope_question_is_refused(client, completion):
    token = register(client, "hank@example.com")["token"]

    events = parse_events(send(client, token, content="Who won the football match?").text)

    assert completion.calls == []
    assert events[1] == {"chunk": REFUSAL_MESSAGE}
    assert events[-1]["done"] is True


def test_pre_stream_errors_are_plain_json(client):
    owner = register(client, "ivy@example.com")["token"]
    other = register(client, "jack@example.com")["token"]

    blank = send(client, owner, content="   ")
    assert blank.status_code == 400
    assert blank.json() == {"detail": "content required"}

    missing = send(client, owner, conversationId="no-such-id", content="copper")
    assert missing.status_code == 404

    conversation_id = parse_events(send(client, owner, content="copper").text)[0]["conversationId"]
    forbidden = send(client, other, conversationId=conversation_id, content="copper")
    assert forbidden.status_code == 403
    assert forbidden.json() == {"detail": "forbidden"}

    assert client.get(
        f"/api/conversations/{conversation_id}/messages", headers=auth_headers(other)
    ).status_code == 403
    assert client.delete(
        f"/api/conversations/{conversation_id}", headers=auth_headers(other)
    ).status_code == 404


def test_upstream_failure_is_reported_in_stream(client, completion):
    completion.error = UpstreamError("completion service error")
    token = register(client, "kate@example.com")["token"]

    response = send(client, token, content="copper")
    assert response.status_code == 200
    assert parse_events(response.text)[-1] == {"error": "completion service error"}


def test_admin_user_management(client):
    admin = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert admin["user"]["role"] == "admin"
    headers = auth_headers(admin["token"])

    created = client.post(
        "/api/auth/users",
        json={"email": "liam@example.com", "username": "liam", "password": "secret1", "role": "admin"},
        headers=headers,
    )
    assert created.status_code == 201
    liam_id = created.json()["id"]

    duplicate = client.post(
        "/api/auth/users",
        json={"email": "liam@example.com", "username": "liam", "password": "secret1"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    mia_id = register(client, "mia@example.com", username="mia")["user"]["id"]

    listing = client.get("/api/auth/users?search=mia", headers=headers).json()
    assert [u["id"] for u in listing["users"]] == [mia_id]
    admins = client.get("/api/auth/users?role=admin", headers=headers).json()
    assert admins["total"] == 2

    stats = client.get("/api/auth/users/stats", headers=headers).json()
    assert stats == {"total": 3, "admins": 2, "users": 1, "new_users_7d": 3}

    updated = client.put(f"/api/auth/users/{mia_id}", json={"username": "mia2"}, headers=headers)
    assert updated.json()["username"] == "mia2"
    assert client.put(f"/api/auth/users/{mia_id}", json={}, headers=headers).status_code == 400
    taken = client.put(f"/api/auth/users/{mia_id}", json={"email": "liam@example.com"}, headers=headers)
    assert taken.status_code == 409

    exported = client.post("/api/auth/users/export", json={"userIds": [mia_id]}, headers=headers).json()
    assert exported["count"] == 1
    assert exported["data"][0]["email"] == "mia@example.com"
    assert "exportedAt" in exported

    own_id = admin["user"]["id"]
    assert client.delete(f"/api/auth/users/{own_id}", headers=headers).status_code == 403
    assert client.post(
        "/api/auth/users/bulk-delete", json={"userIds": [own_id, mia_id]}, headers=headers
    ).status_code == 403
    assert client.post("/api/auth/users/bulk-delete", json={"userIds": []}, headers=headers).status_code == 400

    removed = client.post("/api/auth/users/bulk-delete", json={"userIds": [mia_id, liam_id]}, headers=headers)
    assert removed.json() == {"message": "users deleted successfully", "deletedCount": 2}
    assert client.delete(f"/api/auth/users/{mia_id}", headers=headers).status_code == 404


def test_deleting_a_user_removes_their_conversations(client):
    admin_headers = auth_headers(login(client, ADMIN_EMAIL, ADMIN_PASSWORD)["token"])
    noah = register(client, "noah@example.com")
    send(client, noah["token"], content="copper")

    response = client.delete(f"/api/auth/users/{noah['user']['id']}", headers=admin_headers)
    assert response.json() == {"message": "user deleted successfully"}

    # The token still decodes but the user no longer exists
    assert client.get("/api/conversations", headers=auth_headers(noah["token"])).status_code == 401


def test_regular_users_cannot_administer(client):
    owen = register(client, "owen@example.com")
    headers = auth_headers(owen["token"])

    assert client.get("/api/auth/users", headers=headers).status_code == 403
    assert client.get("/api/auth/users/stats", headers=headers).status_code == 403
    assert client.get(f"/api/auth/users/{owen['user']['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/auth/users/{owen['user']['id'] + 100}", headers=headers).status_code == 403


def test_password_change(client):
    pia = register(client, "pia@example.com")
    headers = auth_headers(pia["token"])
    url = f"/api/auth/users/{pia['user']['id']}/password"

    assert client.put(url, json={"newPassword": "newsecret"}, headers=headers).status_code == 400
    wrong = client.put(url, json={"currentPassword": "nope", "newPassword": "newsecret"}, headers=headers)
    assert wrong.status_code == 401

    ok = client.put(url, json={"currentPassword": "secret1", "newPassword": "newsecret"}, headers=headers)
    assert ok.json() == {"message": "password updated successfully"}
    login(client, "pia@example.com", "newsecret")

    admin_headers = auth_headers(login(client, ADMIN_EMAIL, ADMIN_PASSWORD)["token"])
    reset = client.put(url, json={"newPassword": "adminset"}, headers=admin_headers)
    assert reset.status_code == 200
    login(client, "pia@example.com", "adminset")


def test_invalid_paging_and_limit_fall_back_to_defaults(client):
    token = register(client, "quinn@example.com")["token"]
    headers = auth_headers(token)
    conversation_id = parse_events(send(client, token, content="copper").text)[0]["conversationId"]

    listing = client.get("/api/conversations?page=abc&pageSize=-5", headers=headers).json()
    assert listing["page"] == 1
    assert listing["pageSize"] == 20
    assert client.get("/api/conversations?pageSize=500", headers=headers).json()["pageSize"] == 100

    for limit in ("0", "-2", "abc"):
        messages = client.get(
            f"/api/conversations/{conversation_id}/messages?limit={limit}", headers=headers
        ).json()["messages"]
        assert len(messages) == 2


def test_token_lifetime_and_algorithm_follow_app_settings(completion):
    with TestClient(build_app(completion, ACCESS_TOKEN_EXPIRE_MINUTES=1, ALGORITHM="HS512")) as client:
        token = register(client, "rosa@example.com")["token"]

        assert decode_access_token(token, secret_key="test-secret", algorithm="HS256") is None
        payload = decode_access_token(token, secret_key="test-secret", algorithm="HS512")
        lifetime = payload["exp"] - datetime.now(timezone.utc).timestamp()
        assert 0 < lifetime <= 60

        me = client.get("/api/auth/me", headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json()["email"] == "rosa@example.com"


def test_store_failure_before_stream_is_plain_json(client, monkeypatch):
    token = register(client, "sam@example.com")["token"]

    async def unavailable(self, *args, **kwargs):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(ConversationStore, "create_conversation", unavailable)
    response = send(client, token, content="copper")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"detail": "database unavailable"}


def test_failed_inbound_message_leaves_no_conversation(client, monkeypatch):
    token = register(client, "tess@example.com")["token"]

    async def unavailable(self, *args, **kwargs):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(ConversationStore, "append_message", unavailable)
    response = send(client, token, content="copper")

    assert response.status_code == 500
    assert not response.headers["content-type"].startswith("text/event-stream")
    assert response.json() == {"detail": "database unavailable"}
    assert client.get("/api/conversations", headers=auth_headers(token)).json()["total"] == 0


def test_chinese_refusal_when_configured(completion):
    with TestClient(build_app(completion, RESPONSE_LANGUAGE="zh")) as client:
        token = register(client, "uma@example.com")["token"]
        events = parse_events(send(client, token, content="Who won the football match?").text)

    assert events[1] == {"chunk": REFUSAL_MESSAGE_ZH}
    assert events[-1]["done"] is True


def test_run_serves_on_configured_host_and_port(monkeypatch):
    served = {}

    def fake_run(app, **kwargs):
        served["app"] = app
        served.update(kwargs)

    monkeypatch.setattr(main.uvicorn, "run", fake_run)
    monkeypatch.setattr(main, "default_settings", Settings(HOST="127.0.0.1", PORT=9123))
    main.run()

    assert served["app"] is main.app
    assert served["host"] == "127.0.0.1"
    assert served["port"] == 9123
