# app/services/review_service.py
# Student reviews of completed sessions.
#
#   create_review        student, own COMPLETED session, one per session
#   update_review        author only, marks the review edited
#   delete_review        author or admin
#   set_visibility       admin, hidden reviews drop out of listings and stats
#   tutor_review_stats   aggregates over public reviews only

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.session_review import RATING_FIELDS, SessionReview
from app.models.tutoring_session import SessionStatus, TutoringSession
from app.models.user import User, UserRole
from app.services.events import EventPublisher, emit, user_topic
from app.services.lifecycle import resolve_now
from app.services.notification_service import notify_after_commit

logger = logging.getLogger("lernhub.reviews")

MAX_COMMENT_LENGTH = 1000


def validate_review(ratings: Dict[str, Any], comment: Optional[str]) -> None:
    for field in RATING_FIELDS:
        value = ratings.get(field)
        if value is None or not 1 <= value <= 5:
            raise ValidationFailureError(
                f"{field.replace('_', ' ').capitalize()} must be between 1 and 5",
                details={"field": field},
            )
    if comment and len(comment.strip()) > MAX_COMMENT_LENGTH:
        raise ValidationFailureError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")


def _get_review(db: Session, review_id: UUID) -> SessionReview:
    review = db.query(SessionReview).filter(SessionReview.id == review_id).first()
    if not review:
        raise NotFoundError("Review not found")
    return review


def _clean_comment(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    return comment.strip() or None


def create_review(
    db: Session,
    student: User,
    session_id: UUID,
    overall_rating: int,
    teaching_quality: int,
    communication: int,
    punctuality: int,
    preparedness: int,
    would_recommend: bool,
    comment: Optional[str] = None,
    is_public: bool = True,
    publisher: Optional[EventPublisher] = None,
) -> SessionReview:
    session = db.query(TutoringSession).filter(TutoringSession.id == session_id).first()
    if not session:
        raise NotFoundError("Session not found")
    if session.student_id != student.id:
        raise ForbiddenError("You can only review your own sessions")
    if session.status != SessionStatus.COMPLETED:
        raise InvalidStateError(
            "Can only review completed sessions",
            details={"status": session.status},
        )

    ratings = {
        "overall_rating": overall_rating,
        "teaching_quality": teaching_quality,
        "communication": communication,
        "punctuality": punctuality,
        "preparedness": preparedness,
    }
    validate_review(ratings, comment)

    if db.query(SessionReview).filter(SessionReview.session_id == session.id).first():
        raise InvalidStateError("Review already exists for this session")

    review = SessionReview(
        session_id=session.id,
        student_id=student.id,
        tutor_id=session.tutor_id,
        comment=_clean_comment(comment),
        would_recommend=would_recommend,
        is_public=is_public,
        **ratings,
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent review of the same session
        db.rollback()
        raise InvalidStateError("Review already exists for this session")
    db.refresh(review)
    logger.info("Review %s created for session %s (overall %s)", review.id, session.id, overall_rating)

    notify_after_commit(
        db, [session.tutor_id], "review_received",
        title="New session review",
        body=f"{student.full_name} rated your {session.subject} session {overall_rating}/5.",
        extra_data={"session_id": str(session.id), "review_id": str(review.id)},
        action_url=f"/sessions/{session.id}",
    )
    emit(publisher, user_topic(session.tutor_id), "review_received", {
        "session_id": str(session.id),
        "review_id": str(review.id),
        "overall_rating": overall_rating,
    })
    return review


def update_review(
    db: Session,
    review_id: UUID,
    student: User,
    changes: Dict[str, Any],
    now: Optional[datetime] = None,
) -> SessionReview:
    """
    Apply a partial update. Keys left out of `changes` (or set to None) keep
    their stored value; the merged review is validated as a whole.
    """
    now = resolve_now(now)
    review = _get_review(db, review_id)
    if review.student_id != student.id:
        raise ForbiddenError("You can only update your own reviews")

    changes = {k: v for k, v in changes.items() if v is not None}
    ratings = {field: changes.get(field, getattr(review, field)) for field in RATING_FIELDS}
    comment = changes.get("comment", review.comment)
    validate_review(ratings, comment)

    for field, value in ratings.items():
        setattr(review, field, value)
    if "comment" in changes:
        review.comment = _clean_comment(changes["comment"])
    if "would_recommend" in changes:
        review.would_recommend = changes["would_recommend"]
    if "is_public" in changes:
        review.is_public = changes["is_public"]
    review.is_edited = True
    review.edited_at = now
    db.commit()
    db.refresh(review)
    logger.info("Review %s edited", review.id)
    return review


def delete_review(db: Session, review_id: UUID, user: User) -> None:
    review = _get_review(db, review_id)
    if user.role != UserRole.ADMIN and review.student_id != user.id:
        raise ForbiddenError("You can only delete your own reviews")
    db.delete(review)
    db.commit()
    logger.info("Review %s deleted by %s", review_id, user.id)


def set_visibility(db: Session, review_id: UUID, is_public: bool) -> SessionReview:
    review = _get_review(db, review_id)
    review.is_public = is_public
    db.commit()
    db.refresh(review)
    logger.info("Review %s is now %s", review.id, "public" if is_public else "hidden")
    return review


# ── Reads ─────────────────────────────────────────────────────────────────────

def get_review(db: Session, review_id: UUID, viewer: User) -> SessionReview:
    review = _get_review(db, review_id)
    # Hidden reviews stay visible to the two parties and admins
    if not review.is_public and viewer.role != UserRole.ADMIN \
            and viewer.id not in (review.student_id, review.tutor_id):
        raise NotFoundError("Review not found")
    return review


def list_my_reviews(db: Session, student: User) -> List[SessionReview]:
    return db.query(SessionReview).filter(
        SessionReview.student_id == student.id,
    ).order_by(SessionReview.created_at.desc()).all()


def _require_tutor(db: Session, tutor_id: UUID) -> User:
    tutor = db.query(User).filter(User.id == tutor_id, User.role == UserRole.TUTOR).first()
    if not tutor:
        raise NotFoundError("Tutor not found")
    return tutor


def list_tutor_reviews(db: Session, tutor_id: UUID, include_hidden: bool = False) -> List[SessionReview]:
    _require_tutor(db, tutor_id)
    query = db.query(SessionReview).filter(SessionReview.tutor_id == tutor_id)
    if not include_hidden:
        query = query.filter(SessionReview.is_public == True)  # noqa: E712
    return query.order_by(SessionReview.created_at.desc()).all()


def tutor_review_stats(db: Session, tutor_id: UUID) -> Dict[str, Any]:
    """
    Averages are rounded to one decimal, the recommend share to a whole percent.
    A tutor with no public reviews gets zeros rather than None.
    """
    reviews = list_tutor_reviews(db, tutor_id)
    total = len(reviews)
    distribution = {star: 0 for star in range(1, 6)}
    for review in reviews:
        distribution[review.overall_rating] += 1

    def average(field: str) -> float:
        if not total:
            return 0.0
        return round(sum(getattr(r, field) for r in reviews) / total, 1)

    recommended = sum(1 for r in reviews if r.would_recommend)
    return {
        "tutor_id": tutor_id,
        "total_reviews": total,
        **{f"average_{field}": average(field) for field in RATING_FIELDS},
        "would_recommend_percentage": round(recommended * 100 / total) if total else 0,
        "rating_distribution": distribution,
    }
