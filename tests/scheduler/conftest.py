"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty database in tmp_path
  - File execution lock in tmp_path
  - Fake container runner from the root conftest (no engine needed)

Separate "processes" are simulated with separate component instances
sharing the same database and lock paths; they share no in-memory state.
"""

from pathlib import Path
from typing import Callable

import pytest

from src.infra.config import SchedulerConfig
from src.scheduler import (
    ContainerRunner,
    Dispatcher,
    Executor,
    FileExecutionLock,
    JobStore,
    QueueManager,
    RecoveryManager,
    SchedulerService,
)


class Process:
    """One scheduler invocation: its own store, lock and dispatcher objects."""

    def __init__(self, db_path: Path, lock_path: Path, runner: ContainerRunner):
        self.persistence = JobStore(db_path)
        self.queue_manager = QueueManager(self.persistence)
        self.lock = FileExecutionLock(lock_path)
        self.executor = Executor(self.persistence, runner)
        self.dispatcher = Dispatcher(
            persistence=self.persistence,
            queue_manager=self.queue_manager,
            lock=self.lock,
            executor=self.executor,
        )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of a fresh database file."""
    return tmp_path / "server" / "db"


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    """Path of the lock sentinel."""
    return tmp_path / "server" / "pid"


@pytest.fixture
def persistence(db_path: Path) -> JobStore:
    """Create a fresh JobStore with empty database."""
    return JobStore(db_path)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def queue_manager(persistence: JobStore) -> QueueManager:
    """Create a QueueManager with the test database."""
    return QueueManager(persistence)


@pytest.fixture
def lock(lock_path: Path) -> FileExecutionLock:
    """Create a file execution lock."""
    return FileExecutionLock(lock_path)


@pytest.fixture
def executor(persistence: JobStore, fake_runner: ContainerRunner) -> Executor:
    """Create an Executor driving the fake runner."""
    return Executor(persistence, fake_runner)


@pytest.fixture
def dispatcher(
    persistence: JobStore,
    queue_manager: QueueManager,
    lock: FileExecutionLock,
    executor: Executor,
) -> Dispatcher:
    """Create a Dispatcher with all dependencies."""
    return Dispatcher(
        persistence=persistence,
        queue_manager=queue_manager,
        lock=lock,
        executor=executor,
    )


@pytest.fixture
def recovery_manager(
    persistence: JobStore,
    queue_manager: QueueManager,
    lock: FileExecutionLock,
) -> RecoveryManager:
    """Create a RecoveryManager."""
    return RecoveryManager(persistence, queue_manager, lock)


@pytest.fixture
def new_process(db_path: Path, lock_path: Path, fake_runner: ContainerRunner) -> Callable[[], Process]:
    """
    Factory fixture for independent scheduler invocations.

    Each call returns components sharing only the on-disk state.
    """

    def _create() -> Process:
        return Process(db_path, lock_path, fake_runner)

    return _create


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def config(tmp_path: Path, db_path: Path, lock_path: Path) -> SchedulerConfig:
    """Configuration rooted in tmp_path, sharing the fixture db and lock paths."""
    return SchedulerConfig.for_home(
        tmp_path,
        db_path=db_path,
        lock_path=lock_path,
        log_dir=tmp_path / "server" / "logs",
    )


@pytest.fixture
def service(config: SchedulerConfig, fake_runner: ContainerRunner) -> SchedulerService:
    """Create a SchedulerService wired to the fake runner."""
    return SchedulerService.create(config, runner=fake_runner)
