"""
Scheduler router for execution slot APIs.

Endpoints under /scheduler/* for lock status and recovery.

The execution slot is a system-level resource, not a sub-resource of a
job, so it lives in its own namespace apart from /jobs/{version}.
"""

from fastapi import APIRouter

from src.scheduler.errors import SchedulerError
from ..schemas.scheduler import (
    LockHolderResponse,
    LockStatusResponse,
    RecoverRequest,
    RecoverResponse,
)
from .._scheduler_state import get_scheduler_service
from .jobs import raise_http_error


router = APIRouter()


@router.get("/lock", response_model=LockStatusResponse)
def get_lock_status():
    """
    Get execution slot status.

    Returns:
    - held: Whether the slot is taken
    - running: Version currently executing (null if free)
    - holder: Process that owns the slot
    """
    service = get_scheduler_service()
    try:
        status = service.lock_status()
    except SchedulerError as e:
        raise_http_error(e)

    holder = None
    if status.holder is not None:
        holder = LockHolderResponse(
            version=status.holder.version,
            pid=status.holder.pid,
            hostname=status.holder.hostname,
            acquired_at=status.holder.acquired_at,
        )

    return LockStatusResponse(held=status.held, running=status.running, holder=holder)


@router.post("/recover", response_model=RecoverResponse)
def recover(request: RecoverRequest = RecoverRequest()):
    """
    Release a stale lock and report stuck jobs.

    Idempotent. Stuck jobs are re-enqueued only when requeue_stuck is set.
    """
    service = get_scheduler_service()
    try:
        stats = service.recover(requeue_stuck=request.requeue_stuck)
    except SchedulerError as e:
        raise_http_error(e)

    return RecoverResponse(**stats)
