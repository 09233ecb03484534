# app/models/session_review.py
# A student's public rating of a COMPLETED session, one per session.
# Separate from TutorSessionFeedback, which flows the other way (tutor → student)
# and carries a payment deadline. Reviews have no deadline.

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow

# Scored 1-5 each; overall_rating drives the distribution in tutor stats
RATING_FIELDS = ("overall_rating", "teaching_quality", "communication", "punctuality", "preparedness")


class SessionReview(Base):
    __tablename__ = "session_reviews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid, ForeignKey("tutoring_sessions.id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tutor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # ── Ratings ───────────────────────────────────────────────────────────────
    overall_rating = Column(Integer, nullable=False)
    teaching_quality = Column(Integer, nullable=False)
    communication = Column(Integer, nullable=False)
    punctuality = Column(Integer, nullable=False)
    preparedness = Column(Integer, nullable=False)

    comment = Column(Text, nullable=True)                   # max 1000 chars
    would_recommend = Column(Boolean, nullable=False)

    # Hidden reviews still exist but drop out of public listings and stats
    is_public = Column(Boolean, nullable=False, default=True, index=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(TZDateTime, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    session = relationship("TutoringSession")

    def __repr__(self) -> str:
        return f"<SessionReview session={self.session_id} overall={self.overall_rating} public={self.is_public}>"
