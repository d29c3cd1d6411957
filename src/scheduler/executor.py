"""
Executor for the Job Scheduler.

Drives one job's container through start -> wait -> collect -> persist ->
teardown and returns the terminal Job.

What Executor MUST NOT do:
- Touch the queue or the execution lock (Dispatcher's responsibility)
- Retry a failed run
- Create job containers (SchedulerService.prepare() does that up front)
"""

import logging
from typing import Optional

from .entities import Job, now_iso
from .errors import DemuxError, EngineError
from .persistence import JobStore
from .runner import ContainerHandle, ContainerRunner


logger = logging.getLogger(__name__)


class Executor:
    """
    Runs a job's pre-created container to completion.

    Execution happens synchronously: the caller (Dispatcher) blocks until
    the container exits and its logs have drained. Engine and demux
    failures propagate without persisting a terminal state, so the job
    stays Pending and its container is left in place for inspection.

    A job removed while running is the exception: its container may be
    gone already, so failures after the removal are logged and the run
    ends without a result.
    """

    def __init__(self, persistence: JobStore, runner: ContainerRunner):
        """
        Initialize Executor.

        Args:
            persistence: JobStore for the terminal Job record
            runner: ContainerRunner driving the sandbox (injectable for testing)
        """
        self.persistence = persistence
        self.runner = runner

    def execute(self, job: Job) -> Optional[Job]:
        """
        Execute a job and return it with captured output.

        Args:
            job: Pending job; its container is named after job.version

        Returns:
            The terminal Job, or None if the job was removed while running

        Raises:
            EngineError: start/wait/logs/remove failed
            DemuxError: the log stream was malformed
        """
        handle = ContainerHandle.for_name(job.version)

        try:
            self.runner.start(handle)
            exit_code = self.runner.wait(handle)
            if self._was_removed(job):
                return self._discard(handle, job)
            stdout, stderr = self.runner.collect_logs(handle)
        except (EngineError, DemuxError) as e:
            if not self._was_removed(job):
                raise
            logger.info(f"Engine call for removed job {job.version} failed: {e}")
            return self._discard(handle, job)

        # A silent nonzero exit still has to read as Errored
        if exit_code != 0 and stderr == "":
            stderr = f"exited with status {exit_code}\n"

        job.stdout = stdout
        job.stderr = stderr
        job.finished_at = now_iso()
        if not self.persistence.update_job(job):
            return self._discard(handle, job)

        logger.info(
            f"Job {job.version} execution completed: "
            f"status={job.status.value}, exit_code={exit_code}"
        )

        self.runner.remove(handle)
        return job

    def _was_removed(self, job: Job) -> bool:
        return self.persistence.get_job(job.version) is None

    def _discard(self, handle: ContainerHandle, job: Job) -> Optional[Job]:
        """Tear down a removed job's container, if it is still there."""
        logger.warning(f"Job {job.version} was removed while running, discarding output")
        try:
            self.runner.remove(handle, force=True)
        except EngineError as e:
            logger.warning(f"Teardown of removed job {job.version} failed: {e}")
        return None
