"""
Scheduler-specific exceptions.

Every error raised out of the scheduler is wrapped once with call-site
context and derives from SchedulerError so the outermost layer (CLI, API)
can log it and exit nonzero.

Lock contention is NOT an error on the scheduling path: try_acquire()
returns False and the job is enqueued. LockConflictError only exists for
callers that use the lock as a context manager.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class StoreError(SchedulerError):
    """
    Raised when the embedded store is unreachable or a transaction fails.

    Fatal to the invoking command.
    """
    pass


class LockConflictError(SchedulerError):
    """Raised when entering an execution lock context that is already held."""

    def __init__(self, holder: str | None = None):
        self.holder = holder
        if holder:
            super().__init__(f"Execution lock already held by {holder}")
        else:
            super().__init__("Execution lock already held")


class EngineError(SchedulerError):
    """
    Raised when a container engine call (create/start/wait/remove) fails.

    Terminal for the submission; only coordinator name collisions are retried.
    """
    pass


class NameConflictError(EngineError):
    """Raised by the engine when a container name is already taken."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Container name already in use: {name}")


class NameCollisionExhaustedError(EngineError):
    """Raised when the coordinator container could not be named after N attempts."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not find a free coordinator container name after {attempts} attempts"
        )


class DemuxError(SchedulerError):
    """
    Raised when a multiplexed log stream is malformed.

    Collection is all-or-nothing: no partial output survives this error.
    """
    pass


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Job not found: {version}")


class DuplicateJobError(SchedulerError):
    """
    Raised when a job identifier is already in use.

    Covers a job container name collision on create, a second enqueue of
    the same identifier, and resubmission of a finished job.
    """

    def __init__(self, version: str, reason: str = "already exists"):
        self.version = version
        super().__init__(f"Job {version} {reason}")


class InvalidJobIdError(SchedulerError):
    """Raised when a job identifier is not usable as a queue key and container name."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Invalid job identifier {version!r}: must match [A-Za-z0-9][A-Za-z0-9_.-]*"
        )


class QueueOrderError(SchedulerError):
    """
    Raised when pop_front() is asked to remove an id that is not at the front.

    The queue is left untouched.
    """

    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Cannot pop {expected!r} from queue: front is {actual!r}"
        )
