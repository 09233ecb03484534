# app/api/v1/endpoints/subjects.py
# Public subject catalogue (used by request forms). Admins add subjects
# through POST /admin/subjects.

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.db.session import get_db
from app.models.subject import Subject
from app.schemas.admin import SubjectResponse

router = APIRouter()


@router.get("/", response_model=List[SubjectResponse], summary="List active subjects")
def list_subjects(db: Session = Depends(get_db)):
    return db.query(Subject).filter(Subject.is_active == True).order_by(Subject.name).all()  # noqa: E712
