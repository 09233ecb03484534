from datetime import timedelta

import pytest

from app.core.exceptions import InvalidStateError
from app.models.chat import Chat
from app.models.trial_request import RequestStatus
from app.schemas.trial_request import SessionRequestCreate, TrialRequestCreate
from app.services import request_service, session_request_service, trial_request_service
from conftest import auth_header, make_subject, make_tutor, make_user

SESSION = request_service.SESSION


def session_payload(subject):
    return SessionRequestCreate(
        subject_id=subject.id,
        description="Looking for weekly German grammar practice.",
    )


def test_trial_is_required_first(client, db):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")

    resp = client.post(
        "/api/v1/session-requests/",
        json={"subject_id": str(subject.id), "description": "Weekly German grammar practice."},
        headers=auth_header(student),
    )
    assert resp.status_code == 409
    assert resp.json()["error_kind"] == "InvalidState"


def test_create_session_request(client, db, publisher):
    subject = make_subject(db)
    tutor = make_tutor(db, "tutor@example.com", subjects=[subject])
    student = make_user(db, "student@example.com", has_completed_trial=True)

    resp = client.post(
        "/api/v1/session-requests/",
        json={"subject_id": str(subject.id), "description": "Weekly German grammar practice."},
        headers=auth_header(student),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["request_type"] == "SESSION"
    assert body["status"] == "PENDING"
    assert "session_request_created" in publisher.event_names(f"user:{tutor.id}")


def test_pending_session_request_blocks_another(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com", has_completed_trial=True)
    session_request_service.create_session_request(db, student, session_payload(subject), now=now)

    with pytest.raises(InvalidStateError, match="pending session request"):
        session_request_service.create_session_request(db, student, session_payload(subject), now=now)


def test_pending_request_of_either_kind_blocks_a_trial(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    payload = TrialRequestCreate(
        subject_id=subject.id,
        description="Needs help with quadratic equations.",
        student_info={"name": "Lena", "is_under_18": False},
    )
    trial_request_service.create_trial_request(db, payload, actor=student, now=now)

    assert request_service.has_pending_request(db, student.id) is request_service.TRIAL


def test_session_request_lifetime_is_seven_days(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com", has_completed_trial=True)
    request = session_request_service.create_session_request(db, student, session_payload(subject), now=now)
    assert request.expires_at == now + timedelta(days=7)


def test_accept_session_request_opens_chat(db, now):
    subject = make_subject(db)
    tutor = make_tutor(db, "tutor@example.com", subjects=[subject])
    student = make_user(db, "student@example.com", has_completed_trial=True)
    request = session_request_service.create_session_request(db, student, session_payload(subject), now=now)

    accepted = request_service.accept_request(db, SESSION, request.id, tutor, now=now + timedelta(days=2))

    assert accepted.status == RequestStatus.ACCEPTED
    chat = db.query(Chat).filter(Chat.session_request_id == request.id).one()
    assert chat.id == accepted.chat_id


def test_cancelled_session_request_frees_the_slot(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com", has_completed_trial=True)
    first = session_request_service.create_session_request(db, student, session_payload(subject), now=now)
    request_service.cancel_request(db, SESSION, first.id, "Wrong subject", actor=student, now=now)

    second = session_request_service.create_session_request(db, student, session_payload(subject), now=now)
    assert second.status == RequestStatus.PENDING
