# app/schemas/admin.py

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ── Subjects ──────────────────────────────────────────────────────────────────

class SubjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class SubjectResponse(BaseModel):
    id: UUID
    name: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Tutor Verification ────────────────────────────────────────────────────────

class TutorSubjectsUpdate(BaseModel):
    subject_ids: List[UUID]


class PendingTutorItem(BaseModel):
    user_id: UUID
    full_name: str
    email: str
    role: str
    subjects: List[str] = []
    created_at: datetime


# ── Sweeps ────────────────────────────────────────────────────────────────────

class SweepRequest(BaseModel):
    """`now` overrides the clock (backfills, replays); defaults to the current time."""
    now: Optional[datetime] = None
    mode: Optional[str] = Field(default=None, pattern="^(delete|expire)$")


class SweepResponse(BaseModel):
    sweep: str
    ran_at: datetime
    counts: Dict[str, int]
