# app/core/security.py
# Password hashing and JWT access/refresh tokens
# Used by: auth endpoints, guest trial onboarding (auth_service), dependencies.py

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings

# bcrypt, old hashes re-hashed on next verify
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


# ── Password Hashing ──────────────────────────────────────────────────────────

def hash_password(plain_password: str) -> str:
    """Hash a password for a member signup or a provisioned guest account."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# ── JWT Tokens ────────────────────────────────────────────────────────────────

def _encode(user_id: UUID, token_type: str, lifetime: timedelta, **claims: Any) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        **claims,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: UUID, role: str) -> str:
    """
    Create a short-lived access token sent as `Authorization: Bearer <token>`.
    Lifetime: ACCESS_TOKEN_EXPIRE_MINUTES.

    Payload:
        sub  -- user UUID as string
        role -- student | tutor | admin | applicant (informational only,
                dependencies.py re-reads the role from the users table)
        type -- "access"
    """
    return _encode(
        user_id, ACCESS_TOKEN,
        timedelta(minutes=settings.access_token_expire_minutes),
        role=role,
    )


def create_refresh_token(user_id: UUID) -> str:
    """
    Create a long-lived refresh token.
    Lifetime: REFRESH_TOKEN_EXPIRE_DAYS. Only its SHA-256 hash is stored
    (refresh_tokens table); logout revokes that row.
    """
    return _encode(user_id, REFRESH_TOKEN, timedelta(days=settings.refresh_token_expire_days))


def decode_token(token: str, expected_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry and return the payload.
    Returns None for an invalid token, or one whose `type` differs from
    `expected_type` (a refresh token is never accepted as an access token).
    Does not touch the database.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if expected_type is not None and payload.get("type") != expected_type:
        return None
    return payload


def get_token_expiry(days: int = 0, minutes: int = 0) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days, minutes=minutes)


def hash_token(token: str) -> str:
    # Refresh tokens are looked up by this digest, never stored raw
    return hashlib.sha256(token.encode()).hexdigest()
