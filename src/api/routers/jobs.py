"""
Jobs router for job management API.

- GET /jobs - List jobs with reported status, queue order and running job
- GET /jobs/{version} - Get one job
- POST /jobs/{version}/schedule - Submit a prepared job (runs in background)
- DELETE /jobs - Remove jobs (?version=..&force=..), or all with ?all=true
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query

from src.scheduler.entities import JobView
from src.scheduler.errors import (
    DuplicateJobError,
    InvalidJobIdError,
    JobNotFoundError,
    SchedulerError,
)
from ..schemas.jobs import (
    JobDeleteResponse,
    JobListResponse,
    JobResponse,
    JobScheduleResponse,
)
from .._scheduler_state import get_scheduler_service


logger = logging.getLogger(__name__)

router = APIRouter()


def raise_http_error(e: SchedulerError) -> None:
    """Map a scheduler error onto an HTTP status."""
    if isinstance(e, JobNotFoundError):
        raise HTTPException(status_code=404, detail=str(e)) from e
    if isinstance(e, InvalidJobIdError):
        raise HTTPException(status_code=400, detail=str(e)) from e
    if isinstance(e, DuplicateJobError):
        raise HTTPException(status_code=409, detail=str(e)) from e
    raise HTTPException(status_code=500, detail=str(e)) from e


def _to_response(view: JobView) -> JobResponse:
    return JobResponse(
        version=view.version,
        status=view.status.value,
        order=view.order,
        stdout=view.stdout,
        stderr=view.stderr,
        created_at=view.created_at,
        finished_at=view.finished_at,
    )


def _schedule_in_background(version: str) -> None:
    service = get_scheduler_service()
    try:
        outcome = service.schedule(version)
    except SchedulerError as e:
        logger.error(f"Background schedule of {version} failed: {e}")
        return
    logger.info(f"Background schedule of {version}: {outcome.value}")


@router.get("", response_model=JobListResponse)
def list_jobs():
    """
    List every job.

    Pending jobs are reported as running, queued (with order) or stuck.
    """
    service = get_scheduler_service()
    try:
        snapshot = service.query_all()
    except SchedulerError as e:
        raise_http_error(e)

    return JobListResponse(
        jobs=[_to_response(view) for view in snapshot.jobs],
        queue=snapshot.queue,
        running=snapshot.running,
        total=len(snapshot.jobs),
    )


@router.get("/{version}", response_model=JobResponse)
def get_job(version: str):
    """Get one job. 404 if unknown and not running."""
    service = get_scheduler_service()
    try:
        view = service.query(version)
    except SchedulerError as e:
        raise_http_error(e)

    return _to_response(view)


@router.post("/{version}/schedule", response_model=JobScheduleResponse, status_code=202)
def schedule_job(version: str, background_tasks: BackgroundTasks):
    """
    Submit a prepared job.

    The submission may block for as long as this process owns the
    execution slot, so it runs as a background task. Poll GET /jobs/{version}.
    """
    service = get_scheduler_service()
    try:
        service.queue_manager.validate(version)
        job = service.persistence.get_job(version)
        if job is not None and job.is_terminal():
            raise DuplicateJobError(version, f"already finished ({job.status.value})")
    except SchedulerError as e:
        raise_http_error(e)

    background_tasks.add_task(_schedule_in_background, version)

    return JobScheduleResponse(
        version=version,
        accepted=True,
        message="Submitted; poll GET /jobs/{version} for status",
    )


@router.delete("", response_model=JobDeleteResponse)
def delete_jobs(
    version: List[str] = Query(default=[], description="Versions to remove"),
    force: bool = Query(default=False, description="Also stop a running job"),
    remove_all: bool = Query(default=False, alias="all", description="Remove every job"),
):
    """Remove jobs from the queue and the job collection."""
    service = get_scheduler_service()

    if not remove_all and not version:
        raise HTTPException(status_code=400, detail="Give at least one version, or all=true")

    try:
        if remove_all:
            service.remove_all(force=force)
            return JobDeleteResponse(all=True)

        removed = service.remove(*version, force=force)
    except SchedulerError as e:
        raise_http_error(e)

    return JobDeleteResponse(
        removed=removed,
        not_found=[v for v in version if v not in removed],
    )
