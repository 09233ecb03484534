import uuid

import pytest

from app.core.exceptions import NotFoundError
from app.services import notification_service
from conftest import auth_header, make_user


@pytest.fixture
def inbox(db):
    student = make_user(db, "student@example.com")
    other = make_user(db, "other@example.com")
    notification_service.notify_after_commit(db, [student.id], "session_booked", "Booked", "See you soon")
    notification_service.notify_after_commit(db, [student.id, other.id], "feedback_due", "Due", "Please review")
    return student, other


def test_unknown_type_is_refused(db):
    student = make_user(db, "student@example.com")
    with pytest.raises(ValueError):
        notification_service.notify(db, student.id, "party_invite", "Hi", "There")


def test_notify_after_commit_deduplicates_recipients(db):
    student = make_user(db, "student@example.com")
    written = notification_service.notify_after_commit(
        db, [student.id, student.id, None], "session_booked", "Booked", "See you soon"
    )
    assert written == 1


def test_list_and_filter_via_api(client, db, inbox):
    student, _ = inbox
    resp = client.get("/api/v1/notifications/", headers=auth_header(student))
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    assert body["unread_count"] == 2
    assert {n["type"] for n in body["notifications"]} == {"session_booked", "feedback_due"}

    resp = client.get("/api/v1/notifications/?type=feedback_due", headers=auth_header(student))
    assert [n["title"] for n in resp.json()["notifications"]] == ["Due"]


def test_mark_read_and_read_all(client, db, inbox):
    student, other = inbox
    page, _, _ = notification_service.list_notifications(db, student.id)

    resp = client.patch(f"/api/v1/notifications/{page[0].id}/read", headers=auth_header(student))
    assert resp.status_code == 200
    assert resp.json()["is_read"] is True
    assert client.get("/api/v1/notifications/unread-count", headers=auth_header(student)).json() == {"count": 1}

    resp = client.patch("/api/v1/notifications/read-all", headers=auth_header(student))
    assert resp.status_code == 200
    assert notification_service.unread_count(db, student.id) == 0
    assert notification_service.unread_count(db, other.id) == 1


def test_foreign_notification_is_not_found(client, db, inbox):
    student, other = inbox
    page, _, _ = notification_service.list_notifications(db, other.id)

    resp = client.delete(f"/api/v1/notifications/{page[0].id}", headers=auth_header(student))
    assert resp.status_code == 404
    assert resp.json()["error_kind"] == "NotFound"

    with pytest.raises(NotFoundError):
        notification_service.mark_read(db, student.id, uuid.uuid4())


def test_delete_own_notification(client, db, inbox):
    student, _ = inbox
    page, _, _ = notification_service.list_notifications(db, student.id)
    resp = client.delete(f"/api/v1/notifications/{page[0].id}", headers=auth_header(student))
    assert resp.status_code == 200
    assert notification_service.list_notifications(db, student.id)[1] == 1


def test_email_html_escapes_user_text():
    page = notification_service._build_email_html(
        "<b>Eve</b>", "Reason: <script>x()</script>", "a < b & c"
    )
    assert "&lt;b&gt;Eve&lt;/b&gt;" in page
    assert "&lt;script&gt;x()&lt;/script&gt;" in page
    assert "a &lt; b &amp; c" in page
    assert "<script>" not in page
    assert "<b>Eve" not in page
