# app/api/v1/router.py
# Master router -- registers all endpoint routers under /api/v1
# Each endpoint module registers its own router with its own prefix and tags

from fastapi import APIRouter

from app.api.v1.endpoints import (
    admin,
    auth,
    chats,
    feedback,
    matching,
    notifications,
    reviews,
    session_requests,
    sessions,
    subjects,
    subscriptions,
    trial_requests,
    users,
)

api_router = APIRouter()

# Auth
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])

# Users & Subjects
api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(subjects.router, prefix="/subjects", tags=["Subjects"])

# Requests & Matching
api_router.include_router(trial_requests.router, prefix="/trial-requests", tags=["Trial Requests"])
api_router.include_router(session_requests.router, prefix="/session-requests", tags=["Session Requests"])
api_router.include_router(matching.router, prefix="/matching", tags=["Matching"])

# Chats, Proposals & Sessions
api_router.include_router(chats.router, prefix="/chats", tags=["Chats"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])

# Tutor Feedback & Session Reviews
api_router.include_router(feedback.router, prefix="/feedback", tags=["Feedback"])
api_router.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])

# Subscriptions & Payments
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"])

# Notifications
api_router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])

# Admin
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
