# app/models/subject.py
# Subject catalog -- leaf lookup table referenced by requests, tutors, sessions

import uuid

from sqlalchemy import Boolean, Column, String, Uuid

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Subject name={self.name}>"
