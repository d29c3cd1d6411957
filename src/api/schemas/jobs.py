"""
Job API schemas.

Read models for /jobs endpoints.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class JobResponse(BaseModel):
    """Response representing a Job."""

    version: str = Field(..., description="Job identifier (also its container name)")
    status: str = Field(
        ...,
        description="Reported status (pending/done/errored/running/queued/stuck)"
    )
    order: Optional[int] = Field(default=None, description="0-based queue order if queued")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp (ISO format)")
    finished_at: Optional[str] = Field(default=None, description="Completion timestamp")


class JobListResponse(BaseModel):
    """Response for job list endpoint."""

    jobs: List[JobResponse] = Field(default_factory=list)
    queue: List[str] = Field(default_factory=list, description="Queued versions, oldest first")
    running: Optional[str] = Field(default=None, description="Version currently running")
    total: int = Field(..., description="Total number of jobs")


class JobScheduleResponse(BaseModel):
    """Response from a submission. The job runs in a background task."""

    version: str
    accepted: bool
    message: Optional[str] = None


class JobDeleteResponse(BaseModel):
    """Response from job deletion."""

    removed: List[str] = Field(default_factory=list)
    not_found: List[str] = Field(default_factory=list)
    all: bool = Field(default=False, description="Whether every job was removed")
