"""
Recovery Manager for the Job Scheduler.

- Releases an execution lock whose holder process is gone
- Finds stuck jobs (Pending, not queued, not running)
- Re-enqueues stuck jobs on explicit request

Recovery is idempotent: running it twice produces the same result.
Nothing here runs automatically; `recover` is an operator command.
"""

import logging
import os
import socket

from .errors import SchedulerError
from .lock import ExecutionLock
from .persistence import JobStore
from .queue_manager import QueueManager


logger = logging.getLogger(__name__)


def is_process_running(pid: int) -> bool:
    """
    Check if a process is running by PID.

    Uses os.kill with signal 0. A process owned by another user counts
    as running.
    """
    if pid is None or pid <= 0:
        return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RecoveryManager:
    """
    Reconciles state left behind by a crashed or aborted slot owner.

    Scenarios:
    1. Owner process died holding the lock -> lock is stale
    2. Engine/demux failure mid-lifecycle -> job stays Pending outside the queue
    """

    def __init__(
        self,
        persistence: JobStore,
        queue_manager: QueueManager,
        lock: ExecutionLock,
    ):
        self.persistence = persistence
        self.queue_manager = queue_manager
        self.lock = lock

    def recover(self, requeue_stuck: bool = False) -> dict:
        """
        Perform recovery.

        Args:
            requeue_stuck: Append stuck jobs to the queue tail

        Returns:
            Recovery statistics
        """
        stats = {
            "stale_lock_released": False,
            "stuck_jobs": [],
            "requeued": [],
            "errors": [],
        }

        logger.info("Starting recovery...")

        # 1. Stale lock (Scenario 1)
        try:
            stats["stale_lock_released"] = self.release_stale_lock()
        except SchedulerError as e:
            logger.error(f"Error releasing stale lock: {e}")
            stats["errors"].append(f"Lock: {e}")

        # 2. Stuck jobs (Scenario 2)
        try:
            stats["stuck_jobs"] = self.find_stuck_jobs()
        except SchedulerError as e:
            logger.error(f"Error finding stuck jobs: {e}")
            stats["errors"].append(f"Stuck jobs: {e}")

        if requeue_stuck:
            for version in stats["stuck_jobs"]:
                try:
                    self.queue_manager.enqueue(version)
                    stats["requeued"].append(version)
                except SchedulerError as e:
                    logger.error(f"Error requeueing {version}: {e}")
                    stats["errors"].append(f"Requeue {version}: {e}")

        logger.info(
            f"Recovery complete: "
            f"stale lock released={stats['stale_lock_released']}, "
            f"{len(stats['stuck_jobs'])} stuck jobs, "
            f"{len(stats['requeued'])} requeued"
        )

        return stats

    def is_lock_stale(self) -> bool:
        """
        Check whether the lock is held by a process that no longer exists.

        Only holders on this host can be checked; a holder recorded on a
        different host (another container) is never considered stale.
        """
        holder = self.lock.holder()
        if holder is None:
            return False

        if holder.hostname != socket.gethostname():
            logger.debug(f"[LOCK] Holder {holder} is on another host, cannot verify")
            return False

        return not is_process_running(holder.pid)

    def release_stale_lock(self) -> bool:
        """Force-release a stale lock and clear the running marker."""
        if not self.is_lock_stale():
            return False

        holder = self.lock.holder()
        logger.warning(f"[LOCK] Releasing stale lock held by {holder}")
        self.lock.force_release()
        self.persistence.clear_running()
        return True

    def find_stuck_jobs(self) -> list[str]:
        """List Pending jobs that are neither queued nor running."""
        queued = set(self.queue_manager.list_queued())

        running = None
        marker = self.persistence.get_running()
        if marker is not None and self.lock.is_held():
            running = marker.version

        return [
            job.version
            for job in self.persistence.list_jobs()
            if not job.is_terminal()
            and job.version not in queued
            and job.version != running
        ]
