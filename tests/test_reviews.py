from datetime import datetime, timezone

import pytest

from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.notification import Notification
from app.models.session_review import SessionReview
from app.models.tutoring_session import SessionStatus
from app.models.user import UserRole
from app.services import review_service
from app.services.events import InMemoryEventPublisher
from conftest import auth_header, make_session, make_tutor, make_user

JAN_15 = datetime(2025, 1, 15, 16, 0, tzinfo=timezone.utc)

SCORES = {
    "overall_rating": 5,
    "teaching_quality": 4,
    "communication": 5,
    "punctuality": 3,
    "preparedness": 4,
}


@pytest.fixture
def finished(db):
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    session = make_session(db, student, tutor, JAN_15, status=SessionStatus.COMPLETED)
    return student, tutor, session


def review(db, student, session, would_recommend=True, **overrides):
    fields = dict(SCORES, would_recommend=would_recommend)
    fields.update(overrides)
    return review_service.create_review(db, student, session.id, **fields)


# ── Creation ──────────────────────────────────────────────────────────────────

def test_student_reviews_completed_session(db, finished):
    student, tutor, session = finished
    publisher = InMemoryEventPublisher()

    created = review_service.create_review(
        db, student, session.id, would_recommend=True, comment="  Very patient.  ",
        publisher=publisher, **SCORES,
    )

    assert created.tutor_id == tutor.id
    assert created.comment == "Very patient."
    assert created.is_public is True
    assert created.is_edited is False
    inbox = db.query(Notification).filter(Notification.user_id == tutor.id).all()
    assert [n.notification_type for n in inbox] == ["review_received"]
    assert publisher.for_topic(f"user:{tutor.id}")[0]["event"] == "review_received"


def test_one_review_per_session(db, finished):
    student, _, session = finished
    review(db, student, session)
    with pytest.raises(InvalidStateError, match="already exists"):
        review(db, student, session, overall_rating=1)
    assert db.query(SessionReview).count() == 1


@pytest.mark.parametrize("status", [
    SessionStatus.SCHEDULED,
    SessionStatus.IN_PROGRESS,
    SessionStatus.CANCELLED,
    SessionStatus.EXPIRED,
])
def test_only_completed_sessions_can_be_reviewed(db, status):
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    session = make_session(db, student, tutor, JAN_15, status=status)
    with pytest.raises(InvalidStateError, match="completed sessions"):
        review(db, student, session)


def test_only_the_sessions_student_reviews(db, finished):
    _, tutor, session = finished
    stranger = make_user(db, "stranger@example.com")
    for actor in (stranger, tutor):
        with pytest.raises(ForbiddenError):
            review(db, actor, session)


@pytest.mark.parametrize("overrides", [
    {"overall_rating": 0},
    {"punctuality": 6},
    {"preparedness": None},
    {"comment": "x" * 1001},
])
def test_invalid_review_is_rejected(db, finished, overrides):
    student, _, session = finished
    with pytest.raises(ValidationFailureError):
        review(db, student, session, **overrides)
    assert db.query(SessionReview).count() == 0


# ── Editing & visibility ──────────────────────────────────────────────────────

def test_author_edits_review(db, finished):
    student, _, session = finished
    created = review(db, student, session)
    edited_at = datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)

    updated = review_service.update_review(
        db, created.id, student, {"overall_rating": 3, "comment": "Improving."}, now=edited_at,
    )

    assert updated.overall_rating == 3
    assert updated.teaching_quality == SCORES["teaching_quality"]
    assert updated.comment == "Improving."
    assert updated.is_edited is True
    assert updated.edited_at == edited_at


def test_edit_is_validated_and_owner_only(db, finished):
    student, tutor, session = finished
    created = review(db, student, session)

    with pytest.raises(ValidationFailureError):
        review_service.update_review(db, created.id, student, {"communication": 9})
    with pytest.raises(ForbiddenError):
        review_service.update_review(db, created.id, tutor, {"overall_rating": 5})

    db.refresh(created)
    assert created.communication == SCORES["communication"]
    assert created.is_edited is False


def test_hidden_reviews_leave_listings_and_stats(db, finished):
    student, tutor, session = finished
    created = review(db, student, session)

    review_service.set_visibility(db, created.id, False)

    assert review_service.list_tutor_reviews(db, tutor.id) == []
    assert [r.id for r in review_service.list_tutor_reviews(db, tutor.id, include_hidden=True)] == [created.id]
    assert review_service.tutor_review_stats(db, tutor.id)["total_reviews"] == 0
    # The author still sees it, a stranger does not
    assert review_service.get_review(db, created.id, student).id == created.id
    with pytest.raises(NotFoundError):
        review_service.get_review(db, created.id, make_user(db, "stranger@example.com"))


def test_delete_is_author_or_admin(db, finished):
    student, tutor, session = finished
    created = review(db, student, session)

    with pytest.raises(ForbiddenError):
        review_service.delete_review(db, created.id, tutor)

    admin = make_user(db, "admin@example.com", role=UserRole.ADMIN)
    review_service.delete_review(db, created.id, admin)
    assert db.query(SessionReview).count() == 0
    # The session can be reviewed again once the old review is gone
    assert review(db, student, session).session_id == session.id


# ── Stats ─────────────────────────────────────────────────────────────────────

def test_tutor_stats(db):
    tutor = make_tutor(db, "tutor@example.com")
    ratings = [(5, True), (4, True), (2, False)]
    for i, (overall, recommend) in enumerate(ratings):
        student = make_user(db, f"student{i}@example.com")
        session = make_session(db, student, tutor, JAN_15, status=SessionStatus.COMPLETED)
        review(db, student, session, would_recommend=recommend, overall_rating=overall)

    stats = review_service.tutor_review_stats(db, tutor.id)

    assert stats["total_reviews"] == 3
    assert stats["average_overall_rating"] == pytest.approx(3.7)
    assert stats["average_teaching_quality"] == pytest.approx(4.0)
    assert stats["would_recommend_percentage"] == 67
    assert stats["rating_distribution"] == {1: 0, 2: 1, 3: 0, 4: 1, 5: 1}


def test_stats_for_a_tutor_without_reviews(db):
    tutor = make_tutor(db, "tutor@example.com")
    stats = review_service.tutor_review_stats(db, tutor.id)
    assert stats["total_reviews"] == 0
    assert stats["average_overall_rating"] == 0.0
    assert stats["would_recommend_percentage"] == 0
    assert stats["rating_distribution"] == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}


def test_stats_for_unknown_tutor_is_not_found(db):
    student = make_user(db, "student@example.com")
    with pytest.raises(NotFoundError):
        review_service.tutor_review_stats(db, student.id)


# ── API ───────────────────────────────────────────────────────────────────────

def test_review_via_api(client, db, finished):
    student, tutor, session = finished

    resp = client.post(
        "/api/v1/reviews/",
        json={"session_id": str(session.id), "would_recommend": True, **SCORES},
        headers=auth_header(student),
    )
    assert resp.status_code == 201
    review_id = resp.json()["id"]

    resp = client.post(
        "/api/v1/reviews/",
        json={"session_id": str(session.id), "would_recommend": True, **SCORES},
        headers=auth_header(student),
    )
    assert resp.status_code == 409

    resp = client.get("/api/v1/reviews/mine", headers=auth_header(student))
    assert [r["id"] for r in resp.json()] == [review_id]

    resp = client.get(f"/api/v1/reviews/tutor/{tutor.id}/stats")
    assert resp.status_code == 200
    assert resp.json()["total_reviews"] == 1
    assert resp.json()["rating_distribution"]["5"] == 1


def test_visibility_is_admin_only_via_api(client, db, finished):
    student, tutor, session = finished
    created = review(db, student, session)
    admin = make_user(db, "admin@example.com", role=UserRole.ADMIN)

    resp = client.patch(
        f"/api/v1/reviews/{created.id}/visibility", json={"is_public": False}, headers=auth_header(tutor),
    )
    assert resp.status_code == 403

    resp = client.patch(
        f"/api/v1/reviews/{created.id}/visibility", json={"is_public": False}, headers=auth_header(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["is_public"] is False

    assert client.get(f"/api/v1/reviews/tutor/{tutor.id}").json() == []
    resp = client.get(f"/api/v1/reviews/tutor/{tutor.id}", headers=auth_header(admin))
    assert [r["id"] for r in resp.json()] == [str(created.id)]
