"""API v1 router - includes all v1 endpoints."""

from fastapi import APIRouter

from examcore.api.v1.endpoints import health, study_sessions, test_sessions

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router, prefix="", tags=["Health"])
api_router.include_router(study_sessions.router, prefix="/sessions/study", tags=["Study Sessions"])
api_router.include_router(test_sessions.router, prefix="/sessions/test", tags=["Test Sessions"])
