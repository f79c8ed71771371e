"""
PickleHub API Server

FastAPI server for pickleball teams, events, reservations, chat and notifications.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from picklehub.api.routes import router, limiter as routes_limiter
from picklehub.database import db
from picklehub.models.schemas import ErrorResponse
from picklehub.services.exceptions import PickleHubError
from picklehub.services.reminder_service import get_reminder_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up PickleHub API...")

    # Initialize database (create tables if they don't exist)
    # Fallback for tables that might not be in migrations yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Start event reminder worker
    try:
        get_reminder_service().start()
    except Exception as e:
        logger.error(f"Failed to start event reminder worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down PickleHub API...")

    try:
        get_reminder_service().stop()
    except Exception as e:
        logger.error(f"Error stopping event reminder worker: {e}", exc_info=True)

    try:
        await db.dispose_engine()
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}", exc_info=True)


app = FastAPI(
    title="PickleHub API",
    description="API for pickleball teams, events, reservations, chat and notifications",
    version="0.1.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(PickleHubError)
async def pickle_hub_error_handler(request: Request, exc: PickleHubError):
    """Render domain errors as {"error": <name>, "detail": <message>}."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.error, detail=exc.detail).model_dump(),
    )


# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
