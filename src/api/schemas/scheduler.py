"""
Scheduler API schemas.

Execution slot and recovery read models for /scheduler/* endpoints.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class LockHolderResponse(BaseModel):
    """Process owning the execution slot."""

    version: str
    pid: int
    hostname: str
    acquired_at: str


class LockStatusResponse(BaseModel):
    """Execution slot status."""

    held: bool = Field(..., description="Whether a job holds the execution slot")
    running: Optional[str] = Field(default=None, description="Version currently running")
    holder: Optional[LockHolderResponse] = None


class RecoverRequest(BaseModel):
    """Request to run recovery."""

    requeue_stuck: bool = Field(
        default=False,
        description="Append stuck jobs to the queue tail"
    )


class RecoverResponse(BaseModel):
    """Recovery statistics."""

    stale_lock_released: bool
    stuck_jobs: List[str] = Field(default_factory=list)
    requeued: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
