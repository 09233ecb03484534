# app/schemas/session.py
# Pydantic request/response models for chats, proposals and tutoring sessions

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.lifecycle import effective_status


# ── Chats ─────────────────────────────────────────────────────────────────────

class ParticipantBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    role: str
    avatar_url: Optional[str] = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    trial_request_id: Optional[UUID] = None
    session_request_id: Optional[UUID] = None
    participants: List[ParticipantBrief]
    created_at: datetime
    last_message_at: Optional[datetime] = None


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4000)


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_id: UUID
    subject: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration: int
    price_per_hour: float
    total_price: float
    status: str
    expires_at: datetime
    rejection_reason: Optional[str] = None
    responded_at: Optional[datetime] = None
    session_id: Optional[UUID] = None
    original_proposal_id: Optional[UUID] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    chat_id: UUID
    sender_id: UUID
    message_type: str
    text: Optional[str] = None
    proposal: Optional[ProposalResponse] = None
    created_at: datetime


# ── Proposals ─────────────────────────────────────────────────────────────────

class ProposeSessionRequest(BaseModel):
    chat_id: UUID
    subject: str = Field(min_length=1, max_length=100)
    start_time: datetime
    end_time: datetime
    description: Optional[str] = Field(default=None, max_length=2000)


class CounterProposalRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    description: Optional[str] = Field(default=None, max_length=2000)


class RejectProposalRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# ── Sessions ──────────────────────────────────────────────────────────────────

class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    tutor_id: UUID
    subject: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration: int
    price_per_hour: float
    total_price: float
    payment_status: str

    status: str                          # stored status
    effective_status: Optional[str] = None    # status at response time

    chat_id: Optional[UUID] = None
    message_id: Optional[UUID] = None
    is_trial: bool
    trial_request_id: Optional[UUID] = None

    reschedule_request: Optional[Dict[str, Any]] = None
    previous_start_time: Optional[datetime] = None
    previous_end_time: Optional[datetime] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[UUID] = None
    cancellation_reason: Optional[str] = None

    teacher_completion_status: str
    teacher_completed_at: Optional[datetime] = None
    tutor_feedback_id: Optional[UUID] = None
    created_at: datetime

    @classmethod
    def from_session(cls, session, now: Optional[datetime] = None) -> "SessionResponse":
        out = cls.model_validate(session)
        out.effective_status = effective_status(session, now)
        return out


class CancelSessionRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class RescheduleRequest(BaseModel):
    new_start_time: datetime
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleDecision(BaseModel):
    approve: bool

    @field_validator("approve", mode="before")
    @classmethod
    def strict_bool(cls, v):
        if not isinstance(v, bool):
            raise ValueError("approve must be true or false")
        return v
