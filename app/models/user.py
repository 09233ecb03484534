# app/models/user.py
# Base user model for all roles: student | tutor | admin | applicant
# Tutor-specific data lives in TutorProfile (separate table)

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow


class UserRole:
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"
    APPLICANT = "applicant"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Identity ──────────────────────────────────────────────────────────────
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=False)
    avatar_url = Column(Text, nullable=True)
    phone = Column(String(30), nullable=True)
    date_of_birth = Column(Date, nullable=True)

    # ── Role ──────────────────────────────────────────────────────────────────
    role = Column(
        Enum("student", "tutor", "admin", "applicant", name="user_role_enum"),
        nullable=False,
        default=UserRole.STUDENT,
    )

    # ── Student Progress ──────────────────────────────────────────────────────
    # has_completed_trial flips on trial acceptance and gates both request types
    has_completed_trial = Column(Boolean, nullable=False, default=False)
    trial_requests_count = Column(Integer, nullable=False, default=0)
    session_requests_count = Column(Integer, nullable=False, default=0)
    subscription_tier = Column(String(20), nullable=True)   # FLEXIBLE | REGULAR | LONG_TERM
    payment_customer_id = Column(String(255), nullable=True)
    default_payment_method_id = Column(String(255), nullable=True)

    # ── Account Status ────────────────────────────────────────────────────────
    is_active = Column(Boolean, nullable=False, default=True)
    is_guest_signup = Column(Boolean, nullable=False, default=False)

    # ── Timestamps ────────────────────────────────────────────────────────────
    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_login_at = Column(TZDateTime, nullable=True)

    # ── Relationships ─────────────────────────────────────────────────────────
    refresh_tokens = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan"
    )
    tutor_profile = relationship(
        "TutorProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    notifications = relationship(
        "Notification", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    token_hash = Column(String(255), unique=True, nullable=False)  # SHA-256 of the token
    expires_at = Column(TZDateTime, nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="refresh_tokens")

    def __repr__(self) -> str:
        return f"<RefreshToken id={self.id} user_id={self.user_id} revoked={self.is_revoked}>"
