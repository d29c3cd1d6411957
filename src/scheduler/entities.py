"""
Scheduler Domain Entities.

- Job: one benchmark execution, keyed by its version string
- LockHolder: who owns the execution slot
- RunMarker: which job the slot owner is running right now
- JobView / SchedulerSnapshot / LockStatus: read models for tooling

Job status is derived from captured output, never stored.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional
import json
import os
import re
import socket
import uuid


# Job identifiers double as container names, so they follow the engine's
# naming rule.
VERSION_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class JobStatus(str, Enum):
    """
    Persisted job status, derived from stdout/stderr.

    - PENDING: no output captured yet
    - DONE: stdout captured, stderr empty
    - ERRORED: stderr captured (dominates DONE)
    """

    PENDING = "pending"
    DONE = "done"
    ERRORED = "errored"


class JobViewStatus(str, Enum):
    """
    Reported job status, computed at query time.

    Extends JobStatus with the scheduling position of a pending job.
    """

    PENDING = "pending"
    DONE = "done"
    ERRORED = "errored"
    RUNNING = "running"
    QUEUED = "queued"
    STUCK = "stuck"


class SubmitOutcome(str, Enum):
    """Result of a submission."""

    COMPLETED = "completed"
    QUEUED = "queued"


def now_iso() -> str:
    """Get current time as ISO format string."""
    return datetime.utcnow().isoformat() + "Z"


def is_valid_version(version: str) -> bool:
    """Check whether a job identifier is usable as queue key and container name."""
    return bool(version) and VERSION_PATTERN.match(version) is not None


@dataclass
class Job:
    """
    Single benchmark execution.

    Mutability rules:
    - version, created_at: Immutable
    - stdout, stderr, finished_at: Write-once, when the container lifecycle completes
    """

    version: str
    stdout: str = ""
    stderr: str = ""
    created_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None

    @property
    def status(self) -> JobStatus:
        status = JobStatus.PENDING
        if self.stdout != "":
            status = JobStatus.DONE
        if self.stderr != "":
            status = JobStatus.ERRORED
        return status

    def is_terminal(self) -> bool:
        """Check if job has finished (DONE or ERRORED)."""
        return self.status != JobStatus.PENDING

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str | bytes) -> "Job":
        raw = json.loads(data)
        return cls(
            version=raw["version"],
            stdout=raw.get("stdout", ""),
            stderr=raw.get("stderr", ""),
            created_at=raw.get("created_at") or now_iso(),
            finished_at=raw.get("finished_at"),
        )


@dataclass
class LockHolder:
    """Identity of the process owning the execution slot."""

    version: str
    pid: int
    hostname: str
    acquired_at: str = field(default_factory=now_iso)
    # Distinguishes one acquisition from the next, even by the same process
    token: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def current(cls, version: str) -> "LockHolder":
        """Describe the calling process as holder for a job."""
        return cls(version=version, pid=os.getpid(), hostname=socket.gethostname())

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str | bytes) -> "LockHolder":
        raw = json.loads(data)
        return cls(
            version=raw["version"],
            pid=int(raw["pid"]),
            hostname=raw["hostname"],
            acquired_at=raw.get("acquired_at") or now_iso(),
            token=raw.get("token", ""),
        )

    def __str__(self) -> str:
        return f"{self.version} (pid={self.pid}@{self.hostname})"


@dataclass
class RunMarker:
    """Record of the job currently executing, kept apart from the lock itself."""

    version: str
    pid: int
    hostname: str
    started_at: str


@dataclass
class JobView:
    """A job as reported to tooling."""

    version: str
    status: JobViewStatus
    order: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    created_at: Optional[str] = None
    finished_at: Optional[str] = None


@dataclass
class LockStatus:
    """Execution slot status: free, or held while running a given job."""

    held: bool
    running: Optional[str] = None
    holder: Optional[LockHolder] = None


@dataclass
class SchedulerSnapshot:
    """Everything QueryAll reports: jobs, queue order, running job."""

    jobs: list[JobView] = field(default_factory=list)
    queue: list[str] = field(default_factory=list)
    running: Optional[str] = None

    def get(self, version: str) -> Optional[JobView]:
        for view in self.jobs:
            if view.version == version:
                return view
        return None
