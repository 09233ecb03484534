from app.core.exceptions import (
    DeadlineExceededError,
    ErrorKind,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailureError,
)
from app.core.security import ACCESS_TOKEN, decode_token
from app.services.events import InMemoryEventPublisher, emit, serialize_event
from conftest import PASSWORD, auth_header, make_subject, make_user


def test_error_taxonomy_status_codes():
    expected = {
        NotFoundError: (404, ErrorKind.NOT_FOUND),
        UnauthorizedError: (401, ErrorKind.UNAUTHORIZED),
        ForbiddenError: (403, ErrorKind.FORBIDDEN),
        InvalidStateError: (409, ErrorKind.INVALID_STATE),
        DeadlineExceededError: (410, ErrorKind.DEADLINE_EXCEEDED),
        ValidationFailureError: (422, ErrorKind.VALIDATION_FAILURE),
    }
    for cls, (status, kind) in expected.items():
        error = cls("boom", details={"id": 1})
        assert (error.status_code, error.kind) == (status, kind)
        assert error.to_dict() == {"detail": "boom", "error_kind": kind, "details": {"id": 1}}


def test_signup_then_login(client, db):
    resp = client.post(
        "/api/v1/auth/signup",
        json={"email": "New@Example.com", "password": PASSWORD, "full_name": "New Student"},
    )
    assert resp.status_code == 201
    assert resp.json()["role"] == "student"

    resp = client.post("/api/v1/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    resp = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["email"] == "new@example.com"


def test_token_types_are_not_interchangeable(client, db):
    make_user(db, "student@example.com")
    tokens = client.post(
        "/api/v1/auth/login", json={"email": "student@example.com", "password": PASSWORD}
    ).json()

    resp = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert resp.status_code == 401

    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert resp.status_code == 401

    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 200
    assert decode_token(resp.json()["access_token"], expected_type=ACCESS_TOKEN)["role"] == "student"


def test_wrong_password_is_unauthorized(client, db):
    make_user(db, "student@example.com")
    resp = client.post("/api/v1/auth/login", json={"email": "student@example.com", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.json()["error_kind"] == "Unauthorized"


def test_missing_token_is_unauthorized(client):
    resp = client.get("/api/v1/users/me")
    assert resp.status_code == 401
    assert resp.json()["error_kind"] == "Unauthorized"


def test_unknown_entity_is_not_found(client, db):
    student = make_user(db, "student@example.com")
    resp = client.get(
        "/api/v1/sessions/00000000-0000-0000-0000-000000000000",
        headers=auth_header(student),
    )
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Session not found", "error_kind": "NotFound"}


def test_request_validation_uses_the_taxonomy(client):
    resp = client.post("/api/v1/auth/signup", json={"email": "not-an-email"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error_kind"] == "ValidationFailure"
    assert body["details"]


def test_subjects_are_public(client, db):
    make_subject(db, "Physics")
    resp = client.get("/api/v1/subjects/")
    assert resp.status_code == 200
    assert [s["name"] for s in resp.json()] == ["Physics"]


# ── Events ────────────────────────────────────────────────────────────────────

def test_emit_stamps_event_name_and_time():
    publisher = InMemoryEventPublisher()
    emit(publisher, ["user:1", "chat:2"], "message_created", {"text": "hi"})

    assert [t for t, _ in publisher.events] == ["user:1", "chat:2"]
    payload = publisher.for_topic("chat:2")[0]
    assert payload["event"] == "message_created"
    assert payload["text"] == "hi"
    assert "occurred_at" in payload


def test_emit_without_publisher_is_a_no_op():
    emit(None, "user:1", "anything")


def test_publish_failures_do_not_propagate():
    class Broken(InMemoryEventPublisher):
        def publish(self, topic, payload):
            raise ConnectionError("redis down")

    emit(Broken(), "user:1", "session_booked")


def test_serialized_events_are_deterministic():
    assert serialize_event({"b": 1, "a": 2}) == '{"a":2,"b":1}'
