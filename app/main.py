"""
Inbox Clerk - Main FastAPI Application

Local control surface for the inbox pipeline:
- Start/stop monitoring and manual rescans
- Undo of the last move
- Review folder listing and recent activity
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
import sys

from app.utils.classifier import OllamaClassifier
from app.utils.config import get_settings
from app.api import health, admin
from domains.file_ingest.errors import WatcherSetupError
from domains.file_ingest.service import ClerkService


# Configure logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=get_settings().log_level.upper()
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")

    service = ClerkService.from_settings(settings)
    app.state.service = service

    if settings.ai_enabled and isinstance(service.classifier, OllamaClassifier):
        service.classifier.load_in_background()

    if settings.monitor_on_startup:
        try:
            service.start_monitoring()
        except WatcherSetupError as e:
            logger.error(f"Monitoring not started: {e}")

    yield

    # Cleanup
    logger.info("Shutting down application...")
    service.shutdown()
    logger.success("Application shut down complete")


# Create FastAPI app
settings = get_settings()
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Rule-driven inbox organizer",
    lifespan=lifespan
)


# Exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
        }
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Inbox Clerk",
        "version": settings.api_version,
        "status": "operational",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower()
    )
