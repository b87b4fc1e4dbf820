"""
Health check endpoint.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel
from datetime import datetime

from app.models.schemas import MonitorStatus
from app.utils.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    classifier_ready: bool
    version: str
    pipeline: MonitorStatus


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - Inbox is being monitored
    - Classifier is ready (otherwise files use keyword fallback)
    """
    settings = get_settings()
    service = request.app.state.service
    status = service.status()
    classifier_ready = service.classifier.is_ready()

    return HealthResponse(
        status="healthy" if status.monitoring and classifier_ready else "degraded",
        timestamp=datetime.now(),
        classifier_ready=classifier_ready,
        version=settings.api_version,
        pipeline=status,
    )
