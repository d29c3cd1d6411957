"""
Scheduler Service - Main entry point for the Job Scheduler.

This service wires all scheduler components from a SchedulerConfig:
- JobStore (storage)
- QueueManager (queue operations)
- ExecutionLock (single execution slot)
- ContainerRunner (sandbox lifecycle)
- Executor (one job's lifecycle)
- Dispatcher (run now or enqueue, drain the queue)
- RecoveryManager (stale lock / stuck jobs)

Usage:
    service = SchedulerService.create(load_config())
    service.schedule("v1")
    service.close()

Each invocation (CLI, coordinator container, API request) builds its own
service; they coordinate only through the store and the lock.
"""

import logging
from typing import Optional

from ..infra.config import CONTAINER_RUNNER_ROOT, CONTAINER_SERVER_DIR, SchedulerConfig
from .dispatcher import Dispatcher
from .entities import (
    Job,
    JobStatus,
    JobView,
    JobViewStatus,
    LockStatus,
    SchedulerSnapshot,
    SubmitOutcome,
)
from .errors import DuplicateJobError, JobNotFoundError, NameConflictError
from .executor import Executor
from .lock import ExecutionLock, FileExecutionLock, StoreLeaseLock
from .persistence import JobStore
from .queue_manager import QueueManager
from .recovery import RecoveryManager
from .runner import ContainerHandle, ContainerRunner, ContainerSpec, DockerEngineRunner, Mount


logger = logging.getLogger(__name__)


def build_lock(config: SchedulerConfig, persistence: JobStore) -> ExecutionLock:
    """Create the execution lock for the configured backend."""
    if config.lock_backend == "store":
        return StoreLeaseLock(persistence)
    return FileExecutionLock(config.lock_path)


class SchedulerService:
    """
    Main service that coordinates all scheduler components.

    Provides:
    - Component initialization and wiring
    - Submission, queries and removal
    - Job container preparation and coordinator dispatch
    """

    def __init__(
        self,
        config: SchedulerConfig,
        persistence: JobStore,
        queue_manager: QueueManager,
        lock: ExecutionLock,
        runner: ContainerRunner,
        dispatcher: Dispatcher,
        recovery_manager: RecoveryManager,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.config = config
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.lock = lock
        self.runner = runner
        self.dispatcher = dispatcher
        self.recovery_manager = recovery_manager

    @classmethod
    def create(
        cls,
        config: SchedulerConfig,
        runner: Optional[ContainerRunner] = None,
        lock: Optional[ExecutionLock] = None,
    ) -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            config: Scheduler configuration
            runner: Container runner (default: DockerEngineRunner on config.docker_host)
            lock: Execution lock (default: per config.lock_backend)

        Returns:
            Configured SchedulerService
        """
        persistence = JobStore(config.db_path, timeout=config.store_timeout)
        queue_manager = QueueManager(persistence)

        if lock is None:
            lock = build_lock(config, persistence)

        if runner is None:
            runner = DockerEngineRunner(
                docker_host=config.docker_host,
                api_version=config.docker_api_version,
                max_name_retries=config.name_retries,
            )

        executor = Executor(persistence=persistence, runner=runner)

        dispatcher = Dispatcher(
            persistence=persistence,
            queue_manager=queue_manager,
            lock=lock,
            executor=executor,
        )

        recovery_manager = RecoveryManager(
            persistence=persistence,
            queue_manager=queue_manager,
            lock=lock,
        )

        return cls(
            config=config,
            persistence=persistence,
            queue_manager=queue_manager,
            lock=lock,
            runner=runner,
            dispatcher=dispatcher,
            recovery_manager=recovery_manager,
        )

    def close(self) -> None:
        self.runner.close()

    # =========================================================================
    # Submission
    # =========================================================================

    def schedule(self, version: str) -> SubmitOutcome:
        """
        Submit a job: run it now if the slot is free, otherwise queue it.

        Blocks until the slot owner's work loop finishes when it runs here.
        """
        outcome = self.dispatcher.submit(version)
        if outcome == SubmitOutcome.QUEUED:
            logger.info(f"{version} queued at position {self.queue_manager.position(version)}")
        return outcome

    def request_stop(self) -> None:
        """Finish the current job, then leave the rest queued."""
        self.dispatcher.request_stop()

    # =========================================================================
    # Queries
    # =========================================================================

    def _running_version(self) -> Optional[str]:
        """The job being executed, if the slot is held."""
        if not self.lock.is_held():
            return None
        marker = self.persistence.get_running()
        if marker is None:
            return None
        return marker.version

    @staticmethod
    def _view(job: Job, queue: list[str], running: Optional[str]) -> JobView:
        status = JobViewStatus(job.status.value)
        order = None

        if job.status == JobStatus.PENDING:
            if job.version == running:
                status = JobViewStatus.RUNNING
            elif job.version in queue:
                status = JobViewStatus.QUEUED
                order = queue.index(job.version)
            else:
                status = JobViewStatus.STUCK

        return JobView(
            version=job.version,
            status=status,
            order=order,
            stdout=job.stdout,
            stderr=job.stderr,
            created_at=job.created_at,
            finished_at=job.finished_at,
        )

    def query(self, version: str) -> JobView:
        """
        Get one job's view.

        Raises:
            JobNotFoundError: If the job is unknown and not running
        """
        running = self._running_version()
        job = self.persistence.get_job(version)

        if job is None:
            if version == running:
                return JobView(version=version, status=JobViewStatus.RUNNING)
            raise JobNotFoundError(version)

        return self._view(job, self.queue_manager.list_queued(), running)

    def query_all(self) -> SchedulerSnapshot:
        """Get every job with its view status, the queue order and the running job."""
        running = self._running_version()
        queue = self.queue_manager.list_queued()
        jobs = self.persistence.list_jobs()

        views = [self._view(job, queue, running) for job in jobs]
        if running is not None and all(job.version != running for job in jobs):
            views.append(JobView(version=running, status=JobViewStatus.RUNNING))

        return SchedulerSnapshot(jobs=views, queue=queue, running=running)

    def lock_status(self) -> LockStatus:
        """Report whether the slot is held and which job runs in it."""
        holder = self.lock.holder()
        if holder is None:
            return LockStatus(held=False)

        marker = self.persistence.get_running()
        running = marker.version if marker is not None else holder.version
        return LockStatus(held=True, running=running, holder=holder)

    # =========================================================================
    # Removal
    # =========================================================================

    def remove(self, *versions: str, force: bool = False) -> list[str]:
        """
        Remove jobs from the queue and the job collection.

        Without force a running job's record is deleted but its container
        keeps running; the executor then discards its output. With force
        the running container is killed as well.

        Returns:
            The versions that were found anywhere
        """
        running = self._running_version()

        unscheduled = self.queue_manager.remove(*versions)
        deleted = self.persistence.delete_jobs(*versions)

        stopped = []
        for version in versions:
            handle = ContainerHandle.for_name(version)
            if version == running:
                if force:
                    logger.info(f"Stopping running job {version}")
                    self.runner.remove(handle, force=True)
                    stopped.append(version)
                continue
            if version in unscheduled or version in deleted:
                # Created by prepare(), never started or left behind by an aborted run
                self.runner.remove(handle, force=True)

        found = set(unscheduled) | set(deleted) | set(stopped)
        removed = [v for v in dict.fromkeys(versions) if v in found]
        if removed:
            logger.info(f"Removed {', '.join(removed)}")
        return removed

    def remove_all(self, force: bool = False) -> None:
        """Drop every job and queue entry; with force also stop the running job."""
        running = self._running_version()
        if force and running is not None:
            logger.info(f"Stopping running job {running}")
            self.runner.remove(ContainerHandle.for_name(running), force=True)

        self.persistence.clear()
        pruned = self.runner.prune(f"{self.config.container_label}=runner")
        logger.info(f"Removed all jobs ({pruned} job containers pruned)")

    # =========================================================================
    # Containers
    # =========================================================================

    def prepare(
        self,
        version: str,
        command: list[str],
        workdir: str = "",
        mounts: Optional[list[Mount]] = None,
        env: Optional[dict[str, str]] = None,
    ) -> ContainerHandle:
        """
        Create the job container for a version.

        The version's workspace is bind-mounted at the runner root; workdir
        is relative to it.

        Raises:
            InvalidJobIdError: Bad identifier
            DuplicateJobError: A container with this name already exists
        """
        self.queue_manager.validate(version)

        spec = ContainerSpec(
            image=self.config.runner_image,
            command=command,
            name=version,
            working_dir=CONTAINER_RUNNER_ROOT + workdir,
            entrypoint=[""],
            mounts=[
                Mount(source=str(self.config.version_path(version)), target=CONTAINER_RUNNER_ROOT),
                *(mounts or []),
            ],
            env=env if env is not None else {"CGO_ENABLED": "0"},
            labels={self.config.container_label: "runner"},
        )

        try:
            handle = self.runner.create(spec)
        except NameConflictError as e:
            raise DuplicateJobError(version, "container already exists") from e

        logger.info(f"Prepared container for {version}: {' '.join(command)}")
        return handle

    def launch(self, version: str, debug: Optional[bool] = None) -> ContainerHandle:
        """
        Dispatch a coordinator container that runs `sched <version>`.

        Stopped coordinators from earlier launches are pruned first.
        """
        if debug is None:
            debug = self.config.debug

        label = self.config.container_label
        pruned = self.runner.prune(f"{label}=server")
        if pruned:
            logger.debug(f"Pruned {pruned} stopped coordinators")

        self.config.ensure_dirs()

        mounts = [Mount(source=str(self.config.server_dir), target=CONTAINER_SERVER_DIR)]
        socket_path = self.config.docker_socket
        if socket_path is not None:
            mounts.insert(0, Mount(source=socket_path, target=socket_path))

        spec = ContainerSpec(
            image=self.config.server_image,
            command=["python", "-m", "src", "sched", version],
            name=label,
            mounts=mounts,
            env={
                "BENCHER_SERVER_DIR": CONTAINER_SERVER_DIR,
                "BENCHER_LOCK_BACKEND": self.config.lock_backend,
                "LOG_LEVEL": self.config.log_level,
            },
            labels={label: "server"},
        )
        return self.runner.dispatch_coordinator(spec, name_prefix=label, wait=debug)

    # =========================================================================
    # Recovery
    # =========================================================================

    def recover(self, requeue_stuck: bool = False) -> dict:
        return self.recovery_manager.recover(requeue_stuck=requeue_stuck)
