# app/api/v1/endpoints/users.py
# Own profile endpoints
#
#   GET   /users/me   → private profile (with tutor aggregates for tutors)
#   PATCH /users/me   → update name / phone / avatar (and bio for tutors)

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_login
from app.db.session import get_db
from app.models.user import User
from app.schemas.user import OwnProfileResponse, UpdateProfileRequest
from app.services import tutor_service

router = APIRouter()


@router.get("/me", response_model=OwnProfileResponse, summary="Get own profile")
def get_me(current_user: User = Depends(require_login)):
    return current_user


@router.patch("/me", response_model=OwnProfileResponse, summary="Update own profile")
def update_me(
    payload: UpdateProfileRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    bio = updates.pop("bio", None)
    for field, value in updates.items():
        setattr(current_user, field, value)

    if bio is not None:
        profile = tutor_service.get_profile(db, current_user.id)
        if profile is not None:
            profile.bio = bio

    db.commit()
    db.refresh(current_user)
    return current_user
