# app/services/auth_service.py
# Account creation and token issuance shared by /auth and guest trial signup.

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import InvalidStateError
from app.core.security import (
    create_access_token,
    create_refresh_token,
    get_token_expiry,
    hash_password,
    hash_token,
)
from app.models.tutor import TutorProfile
from app.models.user import RefreshToken, User, UserRole
from app.schemas.auth import TokenResponse


def email_taken(db: Session, email: str) -> bool:
    return db.query(User.id).filter(User.email == email.strip().lower()).first() is not None


def create_user(
    db: Session,
    email: str,
    password: str,
    full_name: str,
    role: str = UserRole.STUDENT,
    phone: Optional[str] = None,
    date_of_birth: Optional[date] = None,
    is_guest_signup: bool = False,
) -> User:
    """Adds the user (and a tutor profile for applicants). Flushes only."""
    if email_taken(db, email):
        raise InvalidStateError("An account with this email already exists.")
    user = User(
        email=email.strip().lower(),
        hashed_password=hash_password(password),
        full_name=full_name.strip(),
        phone=phone,
        date_of_birth=date_of_birth,
        role=role,
        is_active=True,
        is_guest_signup=is_guest_signup,
    )
    db.add(user)
    db.flush()
    if role in (UserRole.TUTOR, UserRole.APPLICANT):
        db.add(TutorProfile(user_id=user.id))
        db.flush()
    return user


def issue_tokens(db: Session, user: User) -> TokenResponse:
    """Mint an access/refresh pair and store the refresh token hashed. Flushes only."""
    access_token = create_access_token(user.id, user.role)
    refresh_token = create_refresh_token(user.id)
    db.add(RefreshToken(
        user_id=user.id,
        token_hash=hash_token(refresh_token),
        expires_at=get_token_expiry(days=settings.refresh_token_expire_days),
    ))
    db.flush()
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.access_token_expire_minutes * 60,
        user_id=user.id,
        role=user.role,
        full_name=user.full_name,
        has_completed_trial=bool(user.has_completed_trial),
        subscription_tier=user.subscription_tier,
    )
