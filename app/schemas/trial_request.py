# app/schemas/trial_request.py
# Pydantic request/response models for trial and session request endpoints

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.models.trial_request import TrialRequest
from app.schemas.auth import TokenResponse
from app.services.lifecycle import effective_status


# ── Requests (input) ──────────────────────────────────────────────────────────

class GuardianInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None


class StudentInfo(BaseModel):
    """
    Under 18: guardian_info required, the guardian becomes the account holder.
    18+: the student's own email and password are required.
    Age-conditional rules are checked by the service (ValidationFailure).
    """
    name: str = Field(min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    is_under_18: bool
    date_of_birth: Optional[date] = None
    guardian_info: Optional[GuardianInfo] = None

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        return v


class RequestDetails(BaseModel):
    subject_id: UUID
    grade_level: Optional[str] = Field(default=None, max_length=50)
    school_type: Optional[str] = Field(default=None, max_length=50)
    description: str = Field(min_length=10, max_length=500)
    learning_goals: Optional[str] = Field(default=None, max_length=1000)
    documents: List[str] = Field(default_factory=list)


class TrialRequestCreate(RequestDetails):
    student_info: StudentInfo
    preferred_language: Literal["ENGLISH", "GERMAN"] = "GERMAN"
    preferred_date_time: Optional[datetime] = None


class SessionRequestCreate(RequestDetails):
    pass


class AcceptRequest(BaseModel):
    intro_message: Optional[str] = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    cancellation_reason: str = Field(min_length=1, max_length=500)
    email: Optional[EmailStr] = None    # guests identify by contact email


class ExtendRequest(BaseModel):
    email: Optional[EmailStr] = None


# ── Responses (output) ────────────────────────────────────────────────────────

class SubjectBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class RequestResponse(BaseModel):
    """Shared shape of trial and session requests."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    request_type: Optional[str] = None    # TRIAL | SESSION
    student_id: Optional[UUID] = None
    subject: SubjectBrief
    grade_level: Optional[str] = None
    school_type: Optional[str] = None
    description: str
    learning_goals: Optional[str] = None
    documents: Optional[List[str]] = None

    status: str                          # stored status
    effective_status: Optional[str] = None    # status at response time
    expires_at: datetime
    reminder_sent_at: Optional[datetime] = None
    final_expires_at: Optional[datetime] = None
    is_extended: bool
    extension_count: int

    accepted_tutor_id: Optional[UUID] = None
    chat_id: Optional[UUID] = None
    accepted_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    # Trial only
    student_name: Optional[str] = None
    student_is_under_18: Optional[bool] = None
    preferred_language: Optional[str] = None
    preferred_date_time: Optional[datetime] = None

    @classmethod
    def from_request(cls, request, now: Optional[datetime] = None) -> "RequestResponse":
        out = cls.model_validate(request)
        out.request_type = "TRIAL" if isinstance(request, TrialRequest) else "SESSION"
        out.effective_status = effective_status(request, now)
        return out


class TrialRequestCreated(BaseModel):
    """Guests additionally receive tokens for their freshly provisioned account."""
    request: RequestResponse
    tokens: Optional[TokenResponse] = None


class MatchingPage(BaseModel):
    items: List[RequestResponse]
    total: int
    page: int
    limit: int
