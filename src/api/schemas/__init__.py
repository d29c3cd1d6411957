"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    JobResponse,
    JobListResponse,
    JobScheduleResponse,
    JobDeleteResponse,
)
from .scheduler import (
    LockHolderResponse,
    LockStatusResponse,
    RecoverRequest,
    RecoverResponse,
)

__all__ = [
    "JobResponse",
    "JobListResponse",
    "JobScheduleResponse",
    "JobDeleteResponse",
    "LockHolderResponse",
    "LockStatusResponse",
    "RecoverRequest",
    "RecoverResponse",
]
