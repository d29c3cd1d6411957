"""
Queue Manager for the Job Scheduler.

- Validates job identifiers before they reach the store
- Enqueues jobs (queue entry + Pending job record)
- Hands out the next job with the peek-then-pop discipline
- Removes entries from anywhere in the queue

What QueueManager MUST NOT do:
- Execute jobs (Executor's responsibility)
- Decide whether to run or enqueue (Dispatcher's responsibility)
- Touch the execution lock
"""

import logging
from typing import Optional

from .entities import Job, is_valid_version
from .errors import InvalidJobIdError, QueueOrderError
from .persistence import JobStore


logger = logging.getLogger(__name__)


class QueueManager:
    """
    FIFO queue of job identifiers awaiting the execution slot.

    No priorities, no reordering: the oldest surviving entry always goes next.
    """

    def __init__(self, persistence: JobStore):
        """
        Initialize QueueManager.

        Args:
            persistence: JobStore for storage operations
        """
        self.persistence = persistence

    @staticmethod
    def validate(version: str) -> str:
        """
        Check a job identifier.

        Raises:
            InvalidJobIdError: If the identifier is empty or not a valid container name
        """
        if not is_valid_version(version):
            raise InvalidJobIdError(version)
        return version

    def enqueue(self, version: str) -> Job:
        """
        Append a job to the tail and persist it as Pending.

        The queue entry is written first: a Pending record without a queue
        entry would look stuck.

        Raises:
            DuplicateJobError: If the version is already queued
        """
        self.validate(version)
        self.persistence.enqueue(version)

        job = self.persistence.get_job(version)
        if job is None:
            job = self.persistence.save_job(Job(version=version))

        logger.info(f"Scheduling {version}")
        return job

    def peek(self) -> Optional[str]:
        """Get the oldest queued version without removing it."""
        return self.persistence.peek_front()

    def pop(self, version: str) -> None:
        """Remove version from the front. It must have just been peeked."""
        self.persistence.pop_front(version)

    def take_next(self) -> Optional[str]:
        """
        Peek the front and pop that same entry.

        If the front changes between peek and pop (an external removal),
        peek again.

        Returns:
            The dequeued version, or None if the queue is empty
        """
        while True:
            version = self.peek()
            if version is None:
                return None
            try:
                self.pop(version)
            except QueueOrderError as e:
                logger.warning(f"Queue front moved while dequeuing: {e}")
                continue
            return version

    def list_queued(self) -> list[str]:
        """List queued versions, oldest first."""
        return self.persistence.list_queue()

    def position(self, version: str) -> Optional[int]:
        """Get the 0-based queue order of a version, or None if not queued."""
        queued = self.persistence.list_queue()
        try:
            return queued.index(version)
        except ValueError:
            return None

    def is_queued(self, version: str) -> bool:
        return self.position(version) is not None

    def remove(self, *versions: str) -> list[str]:
        """
        Remove versions from the queue.

        Returns:
            The versions that were queued
        """
        removed = self.persistence.remove_from_queue(*versions)
        if removed:
            logger.info(f"Unscheduled {', '.join(removed)}")
        return removed
