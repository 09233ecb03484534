# app/api/v1/endpoints/reviews.py
# Student reviews of completed sessions
#
#   POST   /reviews/                       → student reviews own COMPLETED session
#   GET    /reviews/mine                   → student's own reviews
#   GET    /reviews/tutor/{tutor_id}       → public reviews (admins see hidden too)
#   GET    /reviews/tutor/{tutor_id}/stats → public aggregates, no login needed
#   GET    /reviews/{id}
#   PATCH  /reviews/{id}                   → author edits
#   DELETE /reviews/{id}                   → author or admin
#   PATCH  /reviews/{id}/visibility        → admin hides or shows

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import get_optional_user, require_admin, require_login, require_student
from app.db.session import get_db
from app.models.user import User, UserRole
from app.schemas.auth import MessageResponse
from app.schemas.review import (
    CreateReviewRequest,
    ReviewResponse,
    ReviewVisibilityRequest,
    TutorReviewStats,
    UpdateReviewRequest,
)
from app.services import review_service
from app.services.events import EventPublisher, get_event_publisher

router = APIRouter()


@router.post("/", response_model=ReviewResponse, status_code=201, summary="Review a completed session")
def create_review(
    payload: CreateReviewRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    fields = payload.model_dump(exclude={"session_id"})
    return review_service.create_review(db, current_user, payload.session_id, publisher=publisher, **fields)


@router.get("/mine", response_model=List[ReviewResponse], summary="My reviews")
def my_reviews(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    return review_service.list_my_reviews(db, current_user)


@router.get("/tutor/{tutor_id}", response_model=List[ReviewResponse], summary="A tutor's reviews")
def tutor_reviews(
    tutor_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    is_admin = current_user is not None and current_user.role == UserRole.ADMIN
    return review_service.list_tutor_reviews(db, tutor_id, include_hidden=is_admin)


@router.get("/tutor/{tutor_id}/stats", response_model=TutorReviewStats, summary="A tutor's review stats")
def tutor_stats(tutor_id: UUID, db: Session = Depends(get_db)):
    return review_service.tutor_review_stats(db, tutor_id)


@router.get("/{review_id}", response_model=ReviewResponse)
def get_review(
    review_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    return review_service.get_review(db, review_id, current_user)


@router.patch("/{review_id}", response_model=ReviewResponse, summary="Edit my review")
def update_review(
    review_id: UUID,
    payload: UpdateReviewRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    return review_service.update_review(db, review_id, current_user, payload.model_dump(exclude_unset=True))


@router.delete("/{review_id}", response_model=MessageResponse)
def delete_review(
    review_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    review_service.delete_review(db, review_id, current_user)
    return MessageResponse(message="Review deleted.")


@router.patch("/{review_id}/visibility", response_model=ReviewResponse, summary="Hide or show a review")
def set_visibility(
    review_id: UUID,
    payload: ReviewVisibilityRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return review_service.set_visibility(db, review_id, payload.is_public)
