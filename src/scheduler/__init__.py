"""
Job Scheduler Core Module.

- Durable job store and FIFO queue (SQLite)
- Cross-process execution lock (one running job host-wide)
- Container lifecycle orchestration over the Docker Engine API
"""

from .entities import (
    JobStatus,
    JobViewStatus,
    SubmitOutcome,
    Job,
    JobView,
    LockHolder,
    LockStatus,
    RunMarker,
    SchedulerSnapshot,
)
from .errors import (
    SchedulerError,
    StoreError,
    LockConflictError,
    EngineError,
    NameConflictError,
    NameCollisionExhaustedError,
    DemuxError,
    JobNotFoundError,
    DuplicateJobError,
    InvalidJobIdError,
    QueueOrderError,
)
from .persistence import JobStore
from .queue_manager import QueueManager
from .lock import ExecutionLock, FileExecutionLock, StoreLeaseLock
from .demux import demultiplex
from .runner import ContainerHandle, ContainerRunner, ContainerSpec, DockerEngineRunner, Mount
from .executor import Executor
from .dispatcher import Dispatcher, DispatcherState
from .recovery import RecoveryManager
from .service import SchedulerService, build_lock

__all__ = [
    # Entities
    "JobStatus",
    "JobViewStatus",
    "SubmitOutcome",
    "Job",
    "JobView",
    "LockHolder",
    "LockStatus",
    "RunMarker",
    "SchedulerSnapshot",
    # Errors
    "SchedulerError",
    "StoreError",
    "LockConflictError",
    "EngineError",
    "NameConflictError",
    "NameCollisionExhaustedError",
    "DemuxError",
    "JobNotFoundError",
    "DuplicateJobError",
    "InvalidJobIdError",
    "QueueOrderError",
    # Persistence
    "JobStore",
    # Queue
    "QueueManager",
    # Lock
    "ExecutionLock",
    "FileExecutionLock",
    "StoreLeaseLock",
    # Runner
    "demultiplex",
    "ContainerHandle",
    "ContainerRunner",
    "ContainerSpec",
    "DockerEngineRunner",
    "Mount",
    # Executor
    "Executor",
    # Dispatcher
    "Dispatcher",
    "DispatcherState",
    # Recovery
    "RecoveryManager",
    # Service
    "SchedulerService",
    "build_lock",
]
