# app/api/v1/endpoints/matching.py
# Tutor matching view: open trial and session requests for the subjects
# the calling tutor teaches, newest first. Lapsed requests are never shown.

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_tutor
from app.db.session import get_db
from app.models.user import User
from app.schemas.trial_request import MatchingPage, RequestResponse
from app.services import request_service
from app.services.lifecycle import resolve_now

router = APIRouter()


@router.get("/requests", response_model=MatchingPage, summary="Open requests for my subjects")
def matching_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_tutor),
    db: Session = Depends(get_db),
):
    now = resolve_now()
    result = request_service.matching_requests(db, current_user, page=page, limit=limit, now=now)
    return MatchingPage(
        items=[RequestResponse.from_request(row, now) for _, row in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
    )
