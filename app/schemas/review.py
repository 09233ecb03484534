# app/schemas/review.py
# Session reviews: students rate a completed session, tutors collect stats

from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CreateReviewRequest(BaseModel):
    """Rating ranges and comment length are checked by review_service."""
    session_id: UUID
    overall_rating: int
    teaching_quality: int
    communication: int
    punctuality: int
    preparedness: int
    would_recommend: bool
    comment: Optional[str] = None
    is_public: bool = True


class UpdateReviewRequest(BaseModel):
    overall_rating: Optional[int] = None
    teaching_quality: Optional[int] = None
    communication: Optional[int] = None
    punctuality: Optional[int] = None
    preparedness: Optional[int] = None
    would_recommend: Optional[bool] = None
    comment: Optional[str] = None
    is_public: Optional[bool] = None


class ReviewVisibilityRequest(BaseModel):
    is_public: bool


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    student_id: UUID
    tutor_id: UUID
    overall_rating: int
    teaching_quality: int
    communication: int
    punctuality: int
    preparedness: int
    comment: Optional[str] = None
    would_recommend: bool
    is_public: bool
    is_edited: bool
    edited_at: Optional[datetime] = None
    created_at: datetime


class TutorReviewStats(BaseModel):
    tutor_id: UUID
    total_reviews: int
    average_overall_rating: float
    average_teaching_quality: float
    average_communication: float
    average_punctuality: float
    average_preparedness: float
    would_recommend_percentage: int
    # overall_rating → count, always keyed 1..5
    rating_distribution: Dict[int, int] = Field(default_factory=dict)
