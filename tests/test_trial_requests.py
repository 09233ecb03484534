from datetime import timedelta

import pytest

from app.core.exceptions import (
    DeadlineExceededError,
    ForbiddenError,
    InvalidStateError,
    ValidationFailureError,
)
from app.models.chat import Chat
from app.models.trial_request import RequestStatus, TrialRequest
from app.models.user import User
from app.schemas.trial_request import TrialRequestCreate
from app.services import request_service, trial_request_service
from app.services.lifecycle import effective_status
from conftest import auth_header, make_subject, make_tutor, make_user

TRIAL = request_service.TRIAL


def trial_payload(subject_id, **student_info):
    info = {"name": "Lena Schmidt", "is_under_18": False, **student_info}
    return {
        "subject_id": str(subject_id),
        "description": "Needs help with quadratic equations before the exam.",
        "student_info": info,
    }


def member_request(db, student, subject, now):
    payload = TrialRequestCreate(**trial_payload(subject.id))
    request, _ = trial_request_service.create_trial_request(db, payload, actor=student, now=now)
    return request


# ── Creation ──────────────────────────────────────────────────────────────────

def test_adult_guest_without_email_is_rejected(client, db):
    subject = make_subject(db)
    resp = client.post("/api/v1/trial-requests/", json=trial_payload(subject.id, password="secret-pass-123"))
    assert resp.status_code == 422
    body = resp.json()
    assert body["error_kind"] == "ValidationFailure"
    assert body["detail"] == "Email is required for students 18 and above"
    assert db.query(TrialRequest).count() == 0


def test_minor_requires_guardian(client, db):
    subject = make_subject(db)
    resp = client.post("/api/v1/trial-requests/", json=trial_payload(subject.id, is_under_18=True))
    assert resp.status_code == 422
    assert resp.json()["detail"] == "Guardian information is required for students under 18"


def test_guest_request_provisions_account_and_tokens(client, db, publisher):
    subject = make_subject(db)
    tutor = make_tutor(db, "tutor@example.com", subjects=[subject])

    resp = client.post(
        "/api/v1/trial-requests/",
        json=trial_payload(subject.id, email="Lena@Example.com", password="secret-pass-123"),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["tokens"]["access_token"]
    assert body["request"]["request_type"] == "TRIAL"
    assert body["request"]["status"] == "PENDING"
    assert body["request"]["effective_status"] == "PENDING"

    db.expire_all()
    guest = db.query(User).filter(User.email == "lena@example.com").one()
    assert guest.is_guest_signup
    assert guest.trial_requests_count == 1
    assert "trial_request_created" in publisher.event_names(f"user:{tutor.id}")


def test_guardian_becomes_account_holder_for_minor(client, db):
    subject = make_subject(db)
    payload = trial_payload(
        subject.id,
        is_under_18=True,
        guardian_info={"name": "Anna Schmidt", "email": "anna@example.com", "password": "secret-pass-123"},
    )
    resp = client.post("/api/v1/trial-requests/", json=payload)
    assert resp.status_code == 201
    assert db.query(User).filter(User.email == "anna@example.com").count() == 1


def test_guest_with_registered_email_must_log_in(client, db):
    subject = make_subject(db)
    make_user(db, "taken@example.com")
    resp = client.post(
        "/api/v1/trial-requests/",
        json=trial_payload(subject.id, email="taken@example.com", password="secret-pass-123"),
    )
    assert resp.status_code == 409
    assert resp.json()["error_kind"] == "InvalidState"


def test_member_cannot_hold_two_pending_requests(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    member_request(db, student, subject, now)

    with pytest.raises(InvalidStateError, match="already have a pending trial request"):
        member_request(db, student, subject, now)
    assert db.query(TrialRequest).filter(TrialRequest.student_id == student.id).count() == 1


def test_member_with_completed_trial_cannot_request_another(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com", has_completed_trial=True)
    with pytest.raises(InvalidStateError, match="already completed a trial"):
        member_request(db, student, subject, now)


# ── Accept ────────────────────────────────────────────────────────────────────

def test_first_tutor_accepts_before_expiry(db, now):
    math = make_subject(db)
    student = make_user(db, "student@example.com")
    tutor_a = make_tutor(db, "tutor-a@example.com", subjects=[math])
    request = member_request(db, student, math, now - timedelta(hours=23))

    accepted = request_service.accept_request(db, TRIAL, request.id, tutor_a, now=now)

    assert accepted.status == RequestStatus.ACCEPTED
    assert accepted.accepted_tutor_id == tutor_a.id
    chat = db.query(Chat).filter(Chat.id == accepted.chat_id).one()
    assert {p.id for p in chat.participants} == {student.id, tutor_a.id}
    assert chat.trial_request_id == request.id
    db.refresh(student)
    assert student.has_completed_trial is True


def test_second_tutor_sees_request_no_longer_available(db, now):
    math = make_subject(db)
    student = make_user(db, "student@example.com")
    tutor_a = make_tutor(db, "tutor-a@example.com", subjects=[math])
    tutor_b = make_tutor(db, "tutor-b@example.com", subjects=[math])
    request = member_request(db, student, math, now - timedelta(hours=23))

    request_service.accept_request(db, TRIAL, request.id, tutor_a, now=now)
    with pytest.raises(InvalidStateError, match="no longer available"):
        request_service.accept_request(db, TRIAL, request.id, tutor_b, now=now + timedelta(minutes=5))

    assert db.query(Chat).count() == 1


def test_accepting_lapsed_request_expires_it(db, now):
    math = make_subject(db)
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com", subjects=[math])
    request = member_request(db, student, math, now - timedelta(hours=25))

    with pytest.raises(DeadlineExceededError):
        request_service.accept_request(db, TRIAL, request.id, tutor, now=now)

    db.expire_all()
    assert db.get(TrialRequest, request.id).status == RequestStatus.EXPIRED
    assert db.query(Chat).count() == 0


def test_tutor_must_teach_the_subject(db, now):
    math = make_subject(db)
    german = make_subject(db, "German")
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com", subjects=[german])
    request = member_request(db, student, math, now)

    with pytest.raises(ForbiddenError):
        request_service.accept_request(db, TRIAL, request.id, tutor, now=now)


def test_unverified_tutor_cannot_accept(client, db, now):
    math = make_subject(db)
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com", subjects=[math], verified=False)
    request = member_request(db, student, math, now)

    resp = client.post(f"/api/v1/trial-requests/{request.id}/accept", headers=auth_header(tutor))
    assert resp.status_code == 403
    assert resp.json()["error_kind"] == "Forbidden"


def test_accept_endpoint_notifies_student(client, db, publisher, now):
    math = make_subject(db)
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com", subjects=[math])
    request = member_request(db, student, math, now)

    resp = client.post(
        f"/api/v1/trial-requests/{request.id}/accept",
        json={"intro_message": "Hi Lena, happy to help!"},
        headers=auth_header(tutor),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"
    assert "trial_request_accepted" in publisher.event_names(f"user:{student.id}")

    notes = client.get("/api/v1/notifications/", headers=auth_header(student)).json()
    assert any(n["type"] == "trial_request_accepted" for n in notes["notifications"])


# ── Cancel / Extend ───────────────────────────────────────────────────────────

def test_guest_cancels_with_contact_email(client, db, now):
    subject = make_subject(db)
    resp = client.post(
        "/api/v1/trial-requests/",
        json=trial_payload(subject.id, email="guest@example.com", password="secret-pass-123"),
    )
    request_id = resp.json()["request"]["id"]

    resp = client.post(
        f"/api/v1/trial-requests/{request_id}/cancel",
        json={"cancellation_reason": "Found a tutor elsewhere", "email": "GUEST@example.com"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"


def test_cancel_without_identity_is_unauthorized(client, db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    request = member_request(db, student, subject, now)

    resp = client.post(
        f"/api/v1/trial-requests/{request.id}/cancel",
        json={"cancellation_reason": "Changed my mind"},
    )
    assert resp.status_code == 401
    assert resp.json()["error_kind"] == "Unauthorized"


def test_cancel_requires_reason(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    request = member_request(db, student, subject, now)
    with pytest.raises(ValidationFailureError):
        request_service.cancel_request(db, TRIAL, request.id, "  ", actor=student, now=now)


def test_cancelled_request_stays_cancelled(db, now):
    math = make_subject(db)
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com", subjects=[math])
    request = member_request(db, student, math, now)
    request_service.cancel_request(db, TRIAL, request.id, "No longer needed", actor=student, now=now)

    with pytest.raises(InvalidStateError):
        request_service.accept_request(db, TRIAL, request.id, tutor, now=now)
    with pytest.raises(InvalidStateError):
        request_service.extend_request(db, TRIAL, request.id, actor=student, now=now)


def test_extend_succeeds_once(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    request = member_request(db, student, subject, now)

    extended = request_service.extend_request(db, TRIAL, request.id, actor=student, now=now)
    assert extended.extension_count == 1
    assert extended.is_extended
    assert extended.expires_at == now + timedelta(days=7)

    with pytest.raises(InvalidStateError, match="extended once"):
        request_service.extend_request(db, TRIAL, request.id, actor=student, now=now)


def test_only_owner_can_extend(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    other = make_user(db, "other@example.com")
    request = member_request(db, student, subject, now)
    with pytest.raises(ForbiddenError):
        request_service.extend_request(db, TRIAL, request.id, actor=other, now=now)


# ── Matching ──────────────────────────────────────────────────────────────────

def test_matching_lists_open_requests_for_taught_subjects(client, db, now):
    math = make_subject(db)
    german = make_subject(db, "German")
    tutor = make_tutor(db, "tutor@example.com", subjects=[math])
    fresh = member_request(db, make_user(db, "s1@example.com"), math, now)
    member_request(db, make_user(db, "s2@example.com"), math, now - timedelta(hours=30))
    member_request(db, make_user(db, "s3@example.com"), german, now)

    resp = client.get("/api/v1/matching/requests", headers=auth_header(tutor))
    assert resp.status_code == 200
    page = resp.json()
    assert page["total"] == 1
    assert page["items"][0]["id"] == str(fresh.id)


def test_lapsed_request_reports_expired_before_sweep(db, now):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    request = member_request(db, student, subject, now - timedelta(hours=25))

    assert request.status == RequestStatus.PENDING
    assert effective_status(request, now) == RequestStatus.EXPIRED
