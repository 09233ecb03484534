# app/schemas/user.py
# Pydantic response models for user and tutor profiles.
#
#   OwnProfileResponse    -- GET /users/me (private view, includes contact info)
#   TutorProfileResponse  -- tutor directory data (rating, level, subjects)

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, field_validator

from app.schemas.trial_request import SubjectBrief


class TutorProfileResponse(BaseModel):
    """Aggregates maintained by completion, feedback and forfeiture."""
    id: UUID
    user_id: UUID
    bio: Optional[str] = None
    is_verified: bool
    verified_at: Optional[datetime] = None
    average_rating: Optional[float] = None
    ratings_count: int
    pending_feedback_count: int
    completed_sessions: int
    level: str
    level_updated_at: Optional[datetime] = None
    subjects: List[SubjectBrief] = []

    model_config = {"from_attributes": True}


class OwnProfileResponse(BaseModel):
    id: UUID
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    date_of_birth: Optional[date] = None
    role: str                         # student | tutor | admin | applicant
    is_active: bool
    has_completed_trial: bool
    trial_requests_count: int
    session_requests_count: int
    subscription_tier: Optional[str] = None
    created_at: datetime

    tutor_profile: Optional[TutorProfileResponse] = None

    model_config = {"from_attributes": True}


class UpdateProfileRequest(BaseModel):
    """PATCH /users/me. Tutors may also set a bio."""
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def name_not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError("Full name cannot be empty")
        return v
