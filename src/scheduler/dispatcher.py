"""
Dispatcher for the Job Scheduler.

The scheduling state machine:
- submit(): run now if the execution slot is free, otherwise enqueue
- run_next(): dequeue the oldest job and run it
- work loop: the slot owner keeps calling run_next() until the queue is
  empty (or a stop is requested), then releases the slot

Per job: Submitted -> {Running | Queued} -> {Done | Errored}

Single-slot enforcement comes from the durable ExecutionLock, not from
in-process state: every invocation of the tool builds its own Dispatcher.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from .entities import Job, SubmitOutcome, now_iso
from .errors import DuplicateJobError, SchedulerError
from .executor import Executor
from .lock import ExecutionLock
from .persistence import JobStore
from .queue_manager import QueueManager


logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    """Dispatcher lifecycle states."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class Dispatcher:
    """
    Decides whether a submitted job runs now or waits, and drains the queue.

    Key behaviors:
    1. try_acquire() the execution slot
    2. Busy: enqueue, persist Pending, return QUEUED
    3. Free: run the job, then run_next() until the queue is empty
    4. Release the slot, then re-check the queue so that work enqueued
       during the release is not stranded
    """

    def __init__(
        self,
        persistence: JobStore,
        queue_manager: QueueManager,
        lock: ExecutionLock,
        executor: Executor,
    ):
        """
        Initialize Dispatcher.

        Args:
            persistence: JobStore for job records and the running marker
            queue_manager: QueueManager for queue operations
            lock: ExecutionLock bounding running jobs to one
            executor: Executor driving each job's container
        """
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.lock = lock
        self.executor = executor

        self._state = DispatcherState.IDLE
        self._current_job: Optional[Job] = None
        self._stop_event = threading.Event()

    @property
    def state(self) -> DispatcherState:
        """Get current dispatcher state."""
        return self._state

    @property
    def current_job(self) -> Optional[Job]:
        """Get the job this process is running, if any."""
        return self._current_job

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(self, version: str) -> SubmitOutcome:
        """
        Submit a job.

        Returns once the job (and any jobs queued behind it) ran to
        completion in this process, or once it is durably queued.

        Raises:
            InvalidJobIdError: Bad identifier
            DuplicateJobError: Job already finished, running or queued
            EngineError, DemuxError: A run aborted; the slot is released
        """
        self.queue_manager.validate(version)
        self._reject_duplicate(version)

        if not self.lock.try_acquire(version):
            self.queue_manager.enqueue(version)

            # The owner may have released between our attempt and the
            # enqueue commit; if so nobody else will pick this up.
            if not self.lock.try_acquire(version):
                return SubmitOutcome.QUEUED
            logger.info(f"Execution slot freed while scheduling {version}, draining queue")
            self._work_loop(None)
            return SubmitOutcome.COMPLETED

        if self.queue_manager.peek() is not None:
            # Stranded entries are older than this submission
            logger.info(f"Queue not empty, {version} joins the tail")
            self.queue_manager.enqueue(version)
            self._work_loop(None)
            return SubmitOutcome.COMPLETED

        self._work_loop(version)
        return SubmitOutcome.COMPLETED

    def _reject_duplicate(self, version: str) -> None:
        existing = self.persistence.get_job(version)
        if existing is not None and existing.is_terminal():
            raise DuplicateJobError(version, f"already finished ({existing.status.value})")

        marker = self.persistence.get_running()
        if marker is not None and marker.version == version and self.lock.is_held():
            raise DuplicateJobError(version, "is already running")

        if self.queue_manager.is_queued(version):
            raise DuplicateJobError(version, "is already queued")

    # =========================================================================
    # Queue Draining
    # =========================================================================

    def run_next(self) -> Optional[Job]:
        """
        Dequeue the oldest job and run it to completion.

        Must only be called while holding the execution slot.

        Returns:
            The terminal Job, or None if the queue was empty or the job
            was removed while running
        """
        version = self.queue_manager.take_next()
        if version is None:
            return None

        return self._run(version, dequeued=True)

    def _work_loop(self, first: Optional[str]) -> None:
        """Run jobs while holding the slot. The caller has already acquired it."""
        version = first

        while True:
            self._state = DispatcherState.RUNNING
            try:
                if version is not None:
                    self._run(version)
                while not self._stop_event.is_set() and self.queue_manager.peek() is not None:
                    self.run_next()
            finally:
                self._current_job = None
                self.persistence.clear_running()
                self.lock.release()
                self._state = DispatcherState.IDLE

            if self._stop_event.is_set():
                logger.info("Stop requested, remaining jobs stay queued")
                return

            version = self.queue_manager.peek()
            if version is None or not self.lock.try_acquire(version):
                return
            # Another submitter enqueued during the release; keep draining
            version = None

    def _run(self, version: str, dequeued: bool = False) -> Optional[Job]:
        existing = self.persistence.get_job(version)
        job = Job(
            version=version,
            created_at=existing.created_at if existing else now_iso(),
        )

        # A dequeued job removed after the pop must not come back as Pending
        if self.persistence.start_run(job, require_record=dequeued) is None:
            logger.info(f"{version} was removed before it started, skipping")
            return None
        self._current_job = job

        logger.info(f"Running {version}")
        try:
            return self.executor.execute(job)
        except SchedulerError as e:
            logger.error(f"Job {version} aborted, left pending: {e}")
            raise
        finally:
            self._current_job = None

    # =========================================================================
    # Shutdown
    # =========================================================================

    def request_stop(self) -> None:
        """
        Stop after the current job.

        The running job is not preempted; queued jobs stay queued.
        """
        if self._state == DispatcherState.RUNNING:
            logger.info("Stopping dispatcher after the current job...")
            self._state = DispatcherState.STOPPING
        self._stop_event.set()

    def is_busy(self) -> bool:
        """Check if this process is executing a job."""
        return self._current_job is not None
