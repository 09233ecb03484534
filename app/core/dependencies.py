# app/core/dependencies.py
# FastAPI dependency functions for authentication and authorization
#
# Role checks here are coarse (is this a tutor at all?). Ownership and
# counterparty checks live in the services, which raise ForbiddenError.

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.core.security import ACCESS_TOKEN, decode_token
from app.db.session import get_db
from app.models.user import User, UserRole

# Bearer token extractor -- auto_error=False so we can handle 401 ourselves
bearer_scheme = HTTPBearer(auto_error=False)


# ── Token Extraction ──────────────────────────────────────────────────────────

def _extract_user_from_token(
    credentials: Optional[HTTPAuthorizationCredentials],
    db: Session,
) -> Optional[User]:
    """
    Decode Bearer token and load user from DB.
    Returns None if no token, invalid token, or user not found/inactive.
    """
    if not credentials:
        return None

    payload = decode_token(credentials.credentials, expected_type=ACCESS_TOKEN)
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    try:
        user_uuid = UUID(user_id)
    except ValueError:
        return None

    return db.query(User).filter(
        and_(User.id == user_uuid, User.is_active == True)  # noqa: E712
    ).first()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Please log in.",
        headers={"WWW-Authenticate": "Bearer"},
    )


# ── Auth Dependencies ─────────────────────────────────────────────────────────

def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """
    Returns the authenticated user if a valid token is present.
    Returns None for anonymous requests -- does NOT raise 401.

    Use for: trial request creation (guest or member), cancel/extend by email.
    """
    return _extract_user_from_token(credentials, db)


def require_login(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    user = _extract_user_from_token(credentials, db)
    if not user:
        raise _unauthorized()
    return user


def _require_role(role: str, label: str):
    def dependency(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        db: Session = Depends(get_db),
    ) -> User:
        user = _extract_user_from_token(credentials, db)
        if not user:
            raise _unauthorized()
        if user.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{label} access required.",
            )
        return user
    return dependency


# Students: session requests, proposal responses, subscriptions
require_student = _require_role(UserRole.STUDENT, "Student")

# Tutors: matching, accepting requests, proposals, feedback
require_tutor = _require_role(UserRole.TUTOR, "Tutor")

# Admins: verification, manual sweeps, completion overrides
require_admin = _require_role(UserRole.ADMIN, "Admin")
