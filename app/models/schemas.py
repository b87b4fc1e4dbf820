"""
Pydantic models for Inbox Clerk.

Shared data models across the application.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =====================================================
# Rule Models
# =====================================================

class Rule(BaseModel):
    """User-authored routing rule. Evaluated in priority order, first match wins."""
    id: UUID = Field(default_factory=uuid4)
    natural_prompt: str
    target_path: str
    created_at: datetime = Field(default_factory=_utcnow)
    is_enabled: bool = True
    priority: int = 0


# =====================================================
# Activity Models
# =====================================================

class ActionType(str, Enum):
    """What happened to a file."""
    SCANNED = "scanned"
    MOVED = "moved"
    REVIEWED = "reviewed"          # moved to the review holding folder
    QUARANTINED = "quarantined"    # identical copy already at destination
    WHITELISTED = "whitelisted"    # installer/app, left in place
    SKIPPED = "skipped"
    ABANDONED = "abandoned"        # retry attempts exhausted


class ActionStatus(str, Enum):
    """Outcome of an action."""
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    RETRYING = "retrying"


UNDOABLE_ACTIONS = frozenset({ActionType.MOVED, ActionType.REVIEWED})


class ActivityLogEntry(BaseModel):
    """Immutable record of one file outcome."""
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=_utcnow)
    file_name: str
    action: ActionType
    status: ActionStatus
    matched_rule_id: Optional[UUID] = None
    details: Optional[str] = None
    source_path: Optional[str] = None
    destination_path: Optional[str] = None

    @property
    def can_undo(self) -> bool:
        """Whether this action can be reversed by moving the file back."""
        return (
            self.action in UNDOABLE_ACTIONS
            and self.status == ActionStatus.SUCCESS
            and self.source_path is not None
            and self.destination_path is not None
        )


# =====================================================
# Response Models
# =====================================================

class MonitorStatus(BaseModel):
    """Snapshot of the pipeline state."""
    monitoring: bool
    watch_dir: str
    classifier_state: str
    pending_retries: int
    pending_fallbacks: int
    processed_files: int
    review_count: int
    rules: int


class ReviewListing(BaseModel):
    """Files waiting in the review holding folder."""
    path: str
    files: List[str] = []


class OperationStatus(BaseModel):
    """Generic operation status."""
    status: str
    message: str
    details: Optional[Dict[str, Any]] = None
