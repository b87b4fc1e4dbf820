"""
Admin endpoints for pipeline control.

Includes:
- Start/stop monitoring
- Manual rescan
- Undo of the last move
- Review folder, activity and rule listings
"""

from fastapi import APIRouter, HTTPException, Request
from typing import List
from loguru import logger

from app.models.schemas import ActivityLogEntry, OperationStatus, ReviewListing, Rule
from domains.file_ingest.errors import WatcherSetupError
from domains.file_ingest.service import ClerkService

router = APIRouter()


def _service(request: Request) -> ClerkService:
    return request.app.state.service


@router.post("/monitor/start", response_model=OperationStatus)
def start_monitoring(request: Request):
    """Start watching the inbox and scan existing files."""
    service = _service(request)
    try:
        service.start_monitoring()
    except WatcherSetupError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return OperationStatus(status="monitoring", message=f"Watching {service.watch_dir}")


@router.post("/monitor/stop", response_model=OperationStatus)
def stop_monitoring(request: Request):
    """Stop watching; pending retries are kept for the next start."""
    service = _service(request)
    service.stop_monitoring()
    return OperationStatus(
        status="stopped",
        message="Monitoring stopped",
        details={"pending_retries": service.retry_scheduler.pending_count},
    )


@router.post("/scan", response_model=OperationStatus)
def trigger_scan(request: Request):
    """
    Trigger an immediate scan of the inbox.

    Returns:
        Number of files dispatched for processing
    """
    logger.info("Manual scan triggered")
    service = _service(request)
    service.reload_rules()
    dispatched = service.manual_scan()
    return OperationStatus(
        status="queued",
        message=f"{dispatched} file(s) dispatched",
        details={"dispatched": dispatched},
    )


@router.post("/undo", response_model=OperationStatus)
def undo_last_move(request: Request):
    """Move the most recently relocated file back to where it came from."""
    restored = _service(request).undo_last()
    if restored is None:
        raise HTTPException(status_code=404, detail="Nothing to undo")

    return OperationStatus(status="restored", message=f"Restored to {restored}")


@router.get("/review", response_model=ReviewListing)
def list_review_folder(request: Request):
    """List files waiting in the review folder."""
    service = _service(request)
    return ReviewListing(
        path=str(service.review_folder()),
        files=[p.name for p in service.review_files()],
    )


@router.get("/activity", response_model=List[ActivityLogEntry])
def recent_activity(request: Request, limit: int = 50):
    """Recent activity, newest first."""
    return _service(request).activity.recent(limit)


@router.get("/rules", response_model=List[Rule])
def active_rules(request: Request):
    """Enabled rules in evaluation order."""
    return _service(request).rules


@router.post("/rules/reload", response_model=OperationStatus)
def reload_rules(request: Request):
    """Re-read rules from storage."""
    rules = _service(request).reload_rules()
    return OperationStatus(status="reloaded", message=f"{len(rules)} active rule(s)")
