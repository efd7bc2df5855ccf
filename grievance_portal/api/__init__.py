"""API routes for the Grievance Portal."""

from fastapi import APIRouter

from .auth import router as auth_router
from .grievances import router as grievances_router
from .notifications import router as notifications_router

# Main API router
api_router = APIRouter()

api_router.include_router(auth_router)
api_router.include_router(grievances_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
