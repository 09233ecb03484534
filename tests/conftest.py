import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest_lernhub.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("EVENT_TRANSPORT", "log")
os.environ.setdefault("SENDGRID_API_KEY", "")
os.environ.setdefault("RAZORPAY_KEY_ID", "")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import app.db.base  # noqa: F401, E402
from app.core.security import create_access_token, hash_password  # noqa: E402
from app.db.base_class import Base  # noqa: E402
from app.db.session import SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models.chat import Chat  # noqa: E402
from app.models.subject import Subject  # noqa: E402
from app.models.tutor import TutorProfile  # noqa: E402
from app.models.tutoring_session import SessionStatus, TutoringSession  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.events import InMemoryEventPublisher, get_event_publisher  # noqa: E402

PASSWORD = "secret-pass-123"
# One bcrypt hash for every factory user keeps the suite fast
_HASHED = hash_password(PASSWORD)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def publisher():
    events = InMemoryEventPublisher()
    app.dependency_overrides[get_event_publisher] = lambda: events
    yield events
    app.dependency_overrides.pop(get_event_publisher, None)


@pytest.fixture
def client(publisher):
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


# ── Factories ─────────────────────────────────────────────────────────────────

def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def make_user(db, email, role=UserRole.STUDENT, full_name=None, **fields) -> User:
    user = User(
        email=email,
        hashed_password=_HASHED,
        full_name=full_name or email.split("@")[0].title(),
        role=role,
        is_active=True,
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_subject(db, name="Mathematics") -> Subject:
    subject = Subject(name=name, is_active=True)
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


def make_tutor(db, email, subjects=(), verified=True) -> User:
    tutor = make_user(db, email, role=UserRole.TUTOR)
    profile = TutorProfile(
        user_id=tutor.id,
        is_verified=verified,
        verified_at=datetime.now(timezone.utc) if verified else None,
    )
    profile.subjects = list(subjects)
    db.add(profile)
    db.commit()
    return tutor


def make_chat(db, student, tutor, trial_request_id=None) -> Chat:
    chat = Chat(participants=[student, tutor], trial_request_id=trial_request_id)
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def make_session(
    db,
    student,
    tutor,
    start,
    minutes=60,
    status=SessionStatus.SCHEDULED,
    price_per_hour=30.0,
    chat=None,
    **fields,
) -> TutoringSession:
    session = TutoringSession(
        student_id=student.id,
        tutor_id=tutor.id,
        subject="Mathematics",
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        duration=minutes,
        price_per_hour=price_per_hour,
        total_price=price_per_hour * minutes / 60,
        status=status,
        chat_id=chat.id if chat else None,
        **fields,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session
