"""
Scheduler service held by the API process.

The service is built during the FastAPI lifespan; routers look it up per
request. Submissions from the API share the execution slot with CLI
invocations and coordinator containers through the on-disk store.
"""

import logging
from typing import Optional

from src.infra.config import SchedulerConfig
from src.scheduler.runner import ContainerRunner
from src.scheduler.service import SchedulerService


logger = logging.getLogger(__name__)

_scheduler_service: Optional[SchedulerService] = None


def init_scheduler_service(
    config: SchedulerConfig,
    runner: Optional[ContainerRunner] = None,
) -> SchedulerService:
    """
    Build the service if it does not exist yet and return it.

    A service set up beforehand (tests inject one with a fake runner) is
    kept as is.

    Args:
        config: Scheduler configuration
        runner: Container runner (default: Docker Engine on config.docker_host)
    """
    global _scheduler_service

    if _scheduler_service is None:
        _scheduler_service = SchedulerService.create(config, runner=runner)
        logger.info(f"Scheduler service ready (store: {config.db_path})")

    return _scheduler_service


def get_scheduler_service() -> SchedulerService:
    """
    Return the service for a request.

    Raises:
        RuntimeError: If the lifespan has not initialized it
    """
    if _scheduler_service is None:
        raise RuntimeError("Scheduler service not initialized; the app lifespan has not run")
    return _scheduler_service


def shutdown_scheduler_service() -> None:
    """
    Drop the service on lifespan shutdown.

    A job already running in a background task finishes; queued jobs stay
    queued for the next submitter.
    """
    global _scheduler_service

    service, _scheduler_service = _scheduler_service, None
    if service is None:
        return

    service.request_stop()
    service.close()
    logger.info("Scheduler service closed")
