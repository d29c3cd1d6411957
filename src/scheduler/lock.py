"""
Execution lock for the Job Scheduler.

Bounds the number of running jobs to one across every process on the
host. This is a durable resource, not an in-process mutex: the slot
stays taken until release() (or force_release() after a crash), no
matter which process asks.

Backends:
- FileExecutionLock: sentinel file created with O_CREAT | O_EXCL
- StoreLeaseLock: single lease row in the job store

Example:
    >>> lock = FileExecutionLock(Path("/tmp/bencher/lock"))
    >>> if lock.try_acquire("v1"):
    ...     try:
    ...         # Run the job
    ...         pass
    ...     finally:
    ...         lock.release()
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .entities import LockHolder
from .errors import LockConflictError, StoreError
from .persistence import JobStore


logger = logging.getLogger(__name__)


class ExecutionLock(ABC):
    """
    Named exclusive resource with TryAcquire/Release semantics.

    Free --try_acquire--> Held --release--> Free
    Held --try_acquire--> False (no state change)
    """

    @abstractmethod
    def try_acquire(self, version: str) -> bool:
        """
        Attempt to take the slot for a job.

        Returns:
            True if acquired, False if already held by anyone
        """
        ...

    @abstractmethod
    def release(self) -> None:
        """Release a slot this instance acquired."""
        ...

    @abstractmethod
    def holder(self) -> Optional[LockHolder]:
        """Get the recorded holder, or None when free."""
        ...

    @abstractmethod
    def force_release(self) -> bool:
        """
        Release the slot regardless of owner.

        Only for recovery after the owner crashed.

        Returns:
            True if a held slot was released
        """
        ...

    def is_held(self) -> bool:
        """Check whether anyone holds the slot."""
        return self.holder() is not None

    @contextmanager
    def hold(self, version: str) -> Iterator["ExecutionLock"]:
        """
        Hold the slot for the duration of a block.

        Raises:
            LockConflictError: If the slot is already held
        """
        if not self.try_acquire(version):
            holder = self.holder()
            raise LockConflictError(str(holder) if holder else None)
        try:
            yield self
        finally:
            self.release()


class FileExecutionLock(ExecutionLock):
    """
    Execution lock backed by an exclusively-created sentinel file.

    The sentinel holds the holder record as JSON. release() only removes a
    sentinel carrying this instance's acquisition token, so a slot that was
    force-released and re-taken by someone else survives a late release.
    One instance may be shared by several threads (the API does this).
    """

    def __init__(self, lock_path: str | Path):
        """
        Initialize the file lock.

        Args:
            lock_path: Sentinel file path. Parent directories are created.
        """
        self.lock_path = Path(lock_path)
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._guard = threading.Lock()
        self._token: Optional[str] = None

    def try_acquire(self, version: str) -> bool:
        holder = LockHolder.current(version)
        with self._guard:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                logger.debug(f"[LOCK] Slot busy, {version} not acquired")
                return False
            except OSError as e:
                raise StoreError(f"create lock sentinel {self.lock_path}: {e}") from e

            try:
                try:
                    os.write(fd, holder.to_json().encode())
                finally:
                    os.close(fd)
            except OSError as e:
                self.lock_path.unlink(missing_ok=True)
                raise StoreError(f"write lock sentinel {self.lock_path}: {e}") from e

            self._token = holder.token
        logger.info(f"[LOCK] Acquired execution slot for {holder}")
        return True

    def release(self) -> None:
        with self._guard:
            token, self._token = self._token, None
            if token is None:
                return

            current = self.holder()
            if current is None or current.token != token:
                logger.warning(f"[LOCK] Slot was taken over ({current}), leaving it in place")
                return

            try:
                self.lock_path.unlink(missing_ok=True)
            except OSError as e:
                raise StoreError(f"remove lock sentinel {self.lock_path}: {e}") from e
        logger.info("[LOCK] Released execution slot")

    def holder(self) -> Optional[LockHolder]:
        try:
            data = self.lock_path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"read lock sentinel {self.lock_path}: {e}") from e

        try:
            return LockHolder.from_json(data)
        except (ValueError, KeyError):
            # Sentinel exists but the holder record is not written yet (or is
            # from an older tool); the slot is still taken.
            return LockHolder(version="", pid=-1, hostname="unknown", token="")

    def force_release(self) -> bool:
        with self._guard:
            self._token = None
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StoreError(f"force remove lock sentinel {self.lock_path}: {e}") from e
        logger.warning(f"[LOCK] Force-released execution slot ({self.lock_path})")
        return True


class StoreLeaseLock(ExecutionLock):
    """
    Execution lock backed by a single lease row in the job store.

    Like the file lock, release() only drops the lease this instance took.
    """

    def __init__(self, persistence: JobStore):
        self.persistence = persistence
        self._guard = threading.Lock()
        self._token: Optional[str] = None

    def try_acquire(self, version: str) -> bool:
        holder = LockHolder.current(version)
        with self._guard:
            if not self.persistence.try_take_lease(holder):
                logger.debug(f"[LOCK] Lease busy, {version} not acquired")
                return False
            self._token = holder.token
        logger.info(f"[LOCK] Acquired execution lease for {holder}")
        return True

    def release(self) -> None:
        with self._guard:
            token, self._token = self._token, None
            if token is None:
                return
            if not self.persistence.drop_lease(token):
                logger.warning("[LOCK] Lease was taken over, leaving it in place")
                return
        logger.info("[LOCK] Released execution lease")

    def holder(self) -> Optional[LockHolder]:
        return self.persistence.get_lease()

    def force_release(self) -> bool:
        with self._guard:
            self._token = None
            released = self.persistence.drop_lease()
        if released:
            logger.warning("[LOCK] Force-released execution lease")
        return released
