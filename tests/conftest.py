"""
Pytest configuration and shared fixtures.
"""

import logging
from typing import Callable, Optional

import pytest

from src.infra.config import load_config
from src.scheduler import (
    ContainerHandle,
    ContainerRunner,
    ContainerSpec,
    EngineError,
    NameConflictError,
)


CONFIG_ENV_VARS = (
    "BENCHER_HOME",
    "BENCHER_SERVER_DIR",
    "BENCHER_VERSIONS_DIR",
    "BENCHER_DB_PATH",
    "BENCHER_LOCK_PATH",
    "BENCHER_LOG_DIR",
    "BENCHER_LOCK_BACKEND",
    "BENCHER_STORE_TIMEOUT",
    "BENCHER_DOCKER_API_VERSION",
    "BENCHER_SERVER_IMAGE",
    "BENCHER_RUNNER_IMAGE",
    "BENCHER_CONTAINER_LABEL",
    "BENCHER_NAME_RETRIES",
    "BENCHER_DEBUG",
    "DOCKER_HOST",
    "LOG_LEVEL",
)


class FakeContainerRunner(ContainerRunner):
    """
    In-memory ContainerRunner for testing.

    - outputs: version -> (stdout, stderr, exit_code)
    - hooks: (operation, name) -> callable(handle), run before the operation
    - failures: (operation, name) -> exception raised by the operation
    - events: every call, in order, as (operation, name)

    Like the engine, a force-removed container answers 404 until it is
    created again.
    """

    def __init__(self):
        self.outputs: dict[str, tuple[str, str, int]] = {}
        self.hooks: dict[tuple[str, str], Callable[[ContainerHandle], None]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.events: list[tuple[str, str]] = []
        self.containers: dict[str, ContainerSpec] = {}
        self.removed: list[tuple[str, bool]] = []
        self.killed: set[str] = set()
        self.pruned: list[str] = []
        self.closed = False

    def set_output(self, version: str, stdout: str = "", stderr: str = "", exit_code: int = 0) -> None:
        self.outputs[version] = (stdout, stderr, exit_code)

    def on(self, operation: str, name: str, hook: Callable[[ContainerHandle], None]) -> None:
        self.hooks[(operation, name)] = hook

    def fail_on(self, operation: str, name: str, error: Exception) -> None:
        self.failures[(operation, name)] = error

    def _call(self, operation: str, name: str, handle: Optional[ContainerHandle] = None) -> None:
        self.events.append((operation, name))
        hook = self.hooks.get((operation, name))
        if hook is not None:
            hook(handle)
        error = self.failures.get((operation, name))
        if error is not None:
            raise error
        if operation in ("start", "wait", "collect_logs") and name in self.killed:
            raise EngineError(f"{operation} {name}: HTTP 404: No such container: {name}")

    def ran(self) -> list[str]:
        """Names of containers started, in order."""
        return [name for op, name in self.events if op == "start"]

    def create(self, spec: ContainerSpec) -> ContainerHandle:
        self._call("create", spec.name)
        if spec.name in self.containers:
            raise NameConflictError(spec.name)
        self.containers[spec.name] = spec
        self.killed.discard(spec.name)
        return ContainerHandle(id=f"id-{spec.name}", name=spec.name)

    def start(self, handle: ContainerHandle) -> None:
        self._call("start", handle.name, handle)

    def wait(self, handle: ContainerHandle) -> int:
        self._call("wait", handle.name, handle)
        return self.outputs.get(handle.name, ("ok\n", "", 0))[2]

    def collect_logs(self, handle: ContainerHandle) -> tuple[str, str]:
        self._call("collect_logs", handle.name, handle)
        stdout, stderr, _ = self.outputs.get(handle.name, (f"{handle.name} ok\n", "", 0))
        return stdout, stderr

    def remove(self, handle: ContainerHandle, force: bool = False) -> None:
        self._call("remove", handle.name, handle)
        self.removed.append((handle.name, force))
        if force:
            self.killed.add(handle.name)
        self.containers.pop(handle.name, None)

    def prune(self, label: str) -> int:
        self._call("prune", label)
        self.pruned.append(label)
        return 0

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True, scope="function")
def reset_environment(tmp_path, monkeypatch):
    """
    Isolate each test from the host configuration.

    Every BENCHER_* variable is cleared and BENCHER_HOME points into the
    test's tmp_path, so nothing touches ~/.bencher.
    """
    for key in CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BENCHER_HOME", str(tmp_path / "home"))

    yield

    # setup_logging() detaches the package logger from the root logger
    package_logger = logging.getLogger("src")
    for handler in list(package_logger.handlers):
        handler.close()
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def fake_runner() -> FakeContainerRunner:
    """Create a fake container runner."""
    return FakeContainerRunner()


@pytest.fixture
def api_client(fake_runner):
    """
    TestClient over the app, its scheduler service wired to the fake runner.

    The service is initialized before the lifespan runs, which then reuses it.
    """
    from fastapi.testclient import TestClient

    from src.api._scheduler_state import init_scheduler_service, shutdown_scheduler_service
    from src.api.main import app

    init_scheduler_service(load_config(), runner=fake_runner)
    try:
        with TestClient(app) as client:
            yield client
    finally:
        shutdown_scheduler_service()
