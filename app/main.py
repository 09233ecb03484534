# app/main.py
# LernHub FastAPI application entry point
#
# Startup:  optional migrations, DB connection check, Redis ping
# Shutdown: event publisher close, connection pool disposal
# Errors:   classified service failures → {"detail", "error_kind"} JSON
# Routes:   /health, /api/v1/* (all endpoints via master router)

import logging
from contextlib import asynccontextmanager

import redis as redis_lib
from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.exceptions import ErrorKind, LifecycleError
from app.db.session import check_db_connection, engine
from app.services.events import get_event_publisher
from app.services.razorpay_service import PaymentProviderError

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("lernhub")

# HTTP status → error kind for errors raised by FastAPI itself
_KIND_BY_STATUS = {
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.INVALID_STATE,
    410: ErrorKind.DEADLINE_EXCEEDED,
    422: ErrorKind.VALIDATION_FAILURE,
}


def run_startup_migrations() -> bool:
    """Run `alembic upgrade head` using the project alembic.ini."""
    try:
        command.upgrade(Config("alembic.ini"), "head")
        logger.info("Database migrations: OK")
        return True
    except Exception as exc:
        logger.warning("Database migrations failed -- %s", exc)
        return False


def _redis_ok(timeout: float) -> bool:
    try:
        r = redis_lib.from_url(settings.redis_url, socket_connect_timeout=timeout)
        r.ping()
        r.close()
        return True
    except redis_lib.RedisError:
        return False


# ── Lifespan ──────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.app_env)

    if settings.auto_migrate_on_startup:
        run_startup_migrations()

    if check_db_connection():
        logger.info("Database connection: OK")
    else:
        logger.warning("Database connection failed -- check DATABASE_URL")

    if settings.event_transport == "redis":
        if _redis_ok(2):
            logger.info("Redis connection: OK")
        else:
            logger.warning("Redis connection failed -- check REDIS_URL")

    yield

    logger.info("Shutting down -- closing event publisher, disposing DB pool")
    get_event_publisher().close()
    engine.dispose()


# ── App Instance ──────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="LernHub -- tutoring marketplace: requests, matching, sessions, feedback and subscriptions.",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)


# ── CORS ──────────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error Handlers ────────────────────────────────────────────────────────────

@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({
            "detail": "Request validation failed",
            "error_kind": ErrorKind.VALIDATION_FAILURE,
            "details": exc.errors(),
        }),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    content = {"detail": exc.detail}
    kind = _KIND_BY_STATUS.get(exc.status_code)
    if kind:
        content["error_kind"] = kind
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(PaymentProviderError)
async def payment_error_handler(request: Request, exc: PaymentProviderError):
    logger.error("Payment provider error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": f"Payment provider error: {exc}"})


# ── Routes ────────────────────────────────────────────────────────────────────

app.include_router(api_router, prefix="/api/v1")


@app.get("/health", tags=["Health"], include_in_schema=False)
def health_check():
    """
    Liveness probe. Always 200; DB and Redis status included for observability.
    """
    return JSONResponse(
        status_code=200,
        content={
            "status": "ok",
            "app": settings.app_name,
            "version": settings.app_version,
            "environment": settings.app_env,
            "services": {
                "database": "ok" if check_db_connection() else "unavailable",
                "redis": "ok" if _redis_ok(1) else "unavailable",
            },
        },
    )


@app.get("/", include_in_schema=False)
def root():
    return JSONResponse(
        content={
            "message": "LernHub API",
            "docs": "/api/docs",
            "health": "/health",
        }
    )
