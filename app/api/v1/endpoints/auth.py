# app/api/v1/endpoints/auth.py
# Authentication endpoints
#
# POST /auth/signup   -- email + password signup (student or tutor applicant)
# POST /auth/login    -- returns access + refresh token
# POST /auth/refresh  -- new access token from refresh token
# POST /auth/logout   -- revoke refresh token
#
# Guests who create a trial request get an account and tokens from
# POST /trial-requests instead (see trial_requests.py).

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import (
    REFRESH_TOKEN,
    create_access_token,
    decode_token,
    hash_token,
    verify_password,
)
from app.db.session import get_db
import app.db.base  # noqa: F401 -- registers all models so relationships resolve
from app.models.user import RefreshToken, User
from app.schemas.auth import (
    AccessTokenResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SignupRequest,
    TokenResponse,
)
from app.services import auth_service

router = APIRouter()


# Signup
@router.post("/signup", response_model=TokenResponse, status_code=201, summary="Sign up with email and password")
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    user = auth_service.create_user(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role=payload.role,
        phone=payload.phone,
    )
    response = auth_service.issue_tokens(db, user)
    db.commit()
    return response


# Login
@router.post("/login", response_model=TokenResponse, summary="Log in with email and password")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(
        and_(User.email == payload.email.lower(), User.is_active == True)  # noqa: E712
    ).first()
    if not user or not user.hashed_password:
        raise HTTPException(status_code=401, detail="Incorrect email or password.")
    if not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Incorrect email or password.")
    user.last_login_at = datetime.now(timezone.utc)
    response = auth_service.issue_tokens(db, user)
    db.commit()
    return response


# Refresh
@router.post("/refresh", response_model=AccessTokenResponse, summary="Get a new access token")
def refresh_token(payload: RefreshRequest, db: Session = Depends(get_db)):
    token_payload = decode_token(payload.refresh_token, expected_type=REFRESH_TOKEN)
    if not token_payload:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token.")

    db_token = db.query(RefreshToken).filter(
        and_(
            RefreshToken.token_hash == hash_token(payload.refresh_token),
            RefreshToken.is_revoked == False,  # noqa: E712
            RefreshToken.expires_at > datetime.now(timezone.utc),
        )
    ).first()
    if not db_token or str(db_token.user_id) != token_payload.get("sub"):
        raise HTTPException(status_code=401, detail="Refresh token has been revoked or expired.")

    user = db.query(User).filter(
        and_(User.id == db_token.user_id, User.is_active == True)  # noqa: E712
    ).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found.")
    return AccessTokenResponse(
        access_token=create_access_token(user.id, user.role),
        expires_in=settings.access_token_expire_minutes * 60,
    )


# Logout
@router.post("/logout", response_model=MessageResponse, summary="Log out and revoke refresh token")
def logout(payload: LogoutRequest, db: Session = Depends(get_db)):
    db_token = db.query(RefreshToken).filter(
        RefreshToken.token_hash == hash_token(payload.refresh_token)
    ).first()
    if db_token:
        db_token.is_revoked = True
        db.commit()
    return MessageResponse(message="Logged out successfully.")
