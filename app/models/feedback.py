# app/models/feedback.py
# Tutor session feedback -- a deadline-bound obligation created when a
# session completes. Due on the 3rd of the following month, 23:59:59.999.
#
#   PENDING → SUBMITTED             (tutor, on or before due_date)
#   PENDING → payment_forfeited     (monthly forfeiture sweep, after due_date)

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow


class FeedbackType:
    TEXT = "TEXT"
    AUDIO = "AUDIO"


class FeedbackStatus:
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"


class TutorSessionFeedback(Base):
    __tablename__ = "tutor_session_feedback"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid, ForeignKey("tutoring_sessions.id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    tutor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # ── Content ───────────────────────────────────────────────────────────────
    rating = Column(Integer, nullable=True)                 # 1-5, set on submit
    feedback_type = Column(Enum("TEXT", "AUDIO", name="feedback_type_enum"), nullable=True)
    feedback_text = Column(Text, nullable=True)
    feedback_audio_url = Column(Text, nullable=True)
    audio_duration = Column(Integer, nullable=True)         # seconds, max 60

    # ── Deadline ──────────────────────────────────────────────────────────────
    due_date = Column(TZDateTime, nullable=False, index=True)
    submitted_at = Column(TZDateTime, nullable=True)
    is_late = Column(Boolean, nullable=False, default=False)

    status = Column(
        Enum("PENDING", "SUBMITTED", name="feedback_status_enum"),
        nullable=False,
        default=FeedbackStatus.PENDING,
        index=True,
    )

    # ── Forfeiture ────────────────────────────────────────────────────────────
    payment_forfeited = Column(Boolean, nullable=False, default=False, index=True)
    forfeited_amount = Column(Float, nullable=True)
    forfeited_at = Column(TZDateTime, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    session = relationship("TutoringSession")

    def __repr__(self) -> str:
        return (
            f"<TutorSessionFeedback session={self.session_id} "
            f"status={self.status} forfeited={self.payment_forfeited}>"
        )
