# app/schemas/feedback.py

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.services.lifecycle import effective_status


class SubmitFeedbackRequest(BaseModel):
    """
    Content rules (text length, audio duration, exactly one kind) are enforced
    by the service so they surface as ValidationFailure with a readable message.
    """
    session_id: UUID
    rating: int
    feedback_type: Literal["TEXT", "AUDIO"]
    feedback_text: Optional[str] = None
    feedback_audio_url: Optional[str] = Field(default=None, max_length=2048)
    audio_duration: Optional[int] = None


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    tutor_id: UUID
    student_id: UUID
    rating: Optional[int] = None
    feedback_type: Optional[str] = None
    feedback_text: Optional[str] = None
    feedback_audio_url: Optional[str] = None
    audio_duration: Optional[int] = None
    due_date: datetime
    submitted_at: Optional[datetime] = None
    is_late: bool
    status: str
    effective_status: Optional[str] = None    # PENDING | OVERDUE | FORFEITED | SUBMITTED
    payment_forfeited: bool
    forfeited_amount: Optional[float] = None
    forfeited_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_feedback(cls, feedback, now: Optional[datetime] = None) -> "FeedbackResponse":
        out = cls.model_validate(feedback)
        out.effective_status = effective_status(feedback, now)
        return out
