# app/db/session.py
# Database session management
#
# Two connection modes:
#   Local dev / tests → DATABASE_URL from env (.env or the test harness)
#   Production        → Unix socket via pg8000 (auto-detected by APP_ENV=production)
#
# FastAPI endpoints get a session via: Depends(get_db)

import os
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session

from app.core.config import settings


def _build_database_url() -> str:
    """
    Build the correct DATABASE_URL for the current environment.

    - Development: reads DATABASE_URL directly from env
    - Production:  constructs a pg8000 Unix socket URL from individual
                   DB_USER, DB_PASS, DB_NAME, DB_CONNECTION_NAME env vars
    """
    app_env = os.getenv("APP_ENV", "development")

    if app_env == "production":
        db_user = os.environ["DB_USER"]
        db_pass = os.environ["DB_PASS"]
        db_name = os.environ["DB_NAME"]
        db_connection_name = os.environ["DB_CONNECTION_NAME"]
        socket_path = f"/cloudsql/{db_connection_name}/.s.PGSQL.5432"
        return (
            f"postgresql+pg8000://{db_user}:{db_pass}@/{db_name}"
            f"?unix_sock={socket_path}"
        )

    database_url = os.getenv("DATABASE_URL") or settings.database_url
    if not database_url:
        raise RuntimeError(
            "DATABASE_URL environment variable is not set. "
            "Copy .env.example to .env and fill in your local DB credentials."
        )
    return database_url


def _engine_options(url: str) -> dict:
    # SQLite (tests, local hacking) has no server-side pool to tune
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 1800,
    }


# ── Engine ────────────────────────────────────────────────────────────────────
DATABASE_URL = _build_database_url()

engine = create_engine(
    DATABASE_URL,
    echo=settings.sql_echo,
    **_engine_options(DATABASE_URL),
)

# ── Session Factory ───────────────────────────────────────────────────────────
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Prevents lazy load errors after commit
)


# ── FastAPI Dependency ────────────────────────────────────────────────────────
def get_db() -> Generator[Session, None, None]:
    """
    Dependency injected into every endpoint that needs DB access.
    Services commit their own unit of work; anything left open is
    committed here, and any exception rolls the whole request back.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ── Health Check Helper ───────────────────────────────────────────────────────
def check_db_connection() -> bool:
    """Used by /health. Returns True if connected, False otherwise."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
