# app/models/tutor.py
# Tutor-specific data: verification, taught subjects, rating and level stats

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow


class TutorLevel:
    STARTER = "STARTER"
    INTERMEDIATE = "INTERMEDIATE"
    EXPERT = "EXPERT"


tutor_subjects = Table(
    "tutor_subjects",
    Base.metadata,
    Column("tutor_profile_id", Uuid, ForeignKey("tutor_profiles.id", ondelete="CASCADE"), primary_key=True),
    Column("subject_id", Uuid, ForeignKey("subjects.id", ondelete="CASCADE"), primary_key=True),
)


class TutorProfile(Base):
    """
    Extended profile for users with role='tutor'.
    is_verified is set by an admin -- NEVER by the tutor.
    """
    __tablename__ = "tutor_profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    bio = Column(Text, nullable=True)

    # ── Verification ──────────────────────────────────────────────────────────
    is_verified = Column(Boolean, nullable=False, default=False, index=True)
    verified_at = Column(TZDateTime, nullable=True)

    # ── Stats (denormalised) ──────────────────────────────────────────────────
    average_rating = Column(Float, nullable=True)
    ratings_count = Column(Integer, nullable=False, default=0)
    pending_feedback_count = Column(Integer, nullable=False, default=0)
    completed_sessions = Column(Integer, nullable=False, default=0)

    # ── Level ─────────────────────────────────────────────────────────────────
    # STARTER 0-20 completed sessions, INTERMEDIATE 21-50, EXPERT 51+
    level = Column(
        Enum("STARTER", "INTERMEDIATE", "EXPERT", name="tutor_level_enum"),
        nullable=False,
        default=TutorLevel.STARTER,
    )
    level_updated_at = Column(TZDateTime, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # ── Relationships ─────────────────────────────────────────────────────────
    user = relationship("User", back_populates="tutor_profile")
    subjects = relationship("Subject", secondary=tutor_subjects, lazy="selectin")

    def teaches(self, subject_id) -> bool:
        return any(s.id == subject_id for s in self.subjects)

    def __repr__(self) -> str:
        return f"<TutorProfile user={self.user_id} verified={self.is_verified} level={self.level}>"
