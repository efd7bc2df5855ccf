"""Grievance Portal: Main FastAPI Application.

Intake and case management for grievances: submission (signed in or
anonymous), role-gated case actions, in-app notifications with email,
and resolution analytics.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse
from .services import GrievanceError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables already exist)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Grievance Portal API

    Intake and case management for student and staff grievances.

    ### Key Features

    - **Case Numbers**: Every grievance gets a gapless `GRV-<year>-NNNN` number.
    - **Anonymous Intake**: Anonymous submissions get a one-time tracking code.
    - **Case Lifecycle**: Status, comments, assignment, escalation and feedback, each role-gated.
    - **Timeline**: Every change is recorded and shown newest first.
    - **Notifications**: In-app notifications with best-effort email.
    - **Analytics**: Resolution times with mean, median and 90th percentile.

    ### Authentication

    Send the session credential as `Authorization: Bearer <token>` or as the
    session cookie.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

# Credentials require explicit origins, not "*"
cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
for origin in settings.allowed_origins:
    if origin and origin not in cors_origins:
        cors_origins.append(origin)

logger.info(f"CORS allowed origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(GrievanceError)
async def grievance_exception_handler(request: Request, exc: GrievanceError):
    """Domain errors that escaped a route's own mapping."""
    if exc.status_code >= 500:
        logger.exception(f"Case store failure on {request.method} {request.url.path}")
        message = "The request could not be completed"
    else:
        message = str(exc)

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, message=message).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions without leaking internals."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message="An unexpected error occurred",
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "grievance_portal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
