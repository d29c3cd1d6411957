"""
Container Runner for the Job Scheduler.

Abstraction over a sandboxed execution engine's lifecycle:
create -> start -> wait -> collect logs -> remove.

DockerEngineRunner speaks the Docker Engine HTTP API directly (over the
unix socket by default) so the raw multiplexed log stream can be
demultiplexed byte-exactly by demux.demultiplex().

Waiting and log collection are the scheduler's only suspension points.
Neither applies a timeout.
"""

import json
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

import httpx

from .demux import demultiplex
from .errors import EngineError, NameCollisionExhaustedError, NameConflictError


logger = logging.getLogger(__name__)


DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"

# Timeout for short engine calls; wait/logs run without one
ENGINE_REQUEST_TIMEOUT = 60.0

DEFAULT_MAX_NAME_RETRIES = 5

_NAME_ADJECTIVES = [
    "admiring", "brave", "clever", "dazzling", "eager", "festive", "gifted",
    "happy", "inspiring", "jolly", "keen", "loving", "modest", "nifty",
    "optimistic", "peaceful", "quirky", "relaxed", "serene", "trusting",
    "upbeat", "vibrant", "wizardly", "youthful", "zealous",
]

_NAME_SURNAMES = [
    "babbage", "curie", "dijkstra", "euler", "fermat", "gauss", "hopper",
    "jepsen", "knuth", "lamport", "liskov", "lovelace", "mccarthy", "noether",
    "pike", "ritchie", "shannon", "thompson", "torvalds", "turing", "wirth",
]


def random_name() -> str:
    """Generate a random container name such as 'eager_knuth'."""
    return f"{random.choice(_NAME_ADJECTIVES)}_{random.choice(_NAME_SURNAMES)}"


@dataclass
class Mount:
    """Bind mount from a host path into the sandbox."""

    source: str
    target: str
    read_only: bool = False


@dataclass
class ContainerSpec:
    """
    Everything needed to create a sandbox.

    entrypoint=[""] clears the image's entrypoint; None keeps it.
    """

    image: str
    command: list[str]
    name: str
    working_dir: Optional[str] = None
    entrypoint: Optional[list[str]] = None
    mounts: list[Mount] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    def to_engine_config(self) -> dict:
        """Build the container create payload."""
        config = {
            "Image": self.image,
            "Cmd": list(self.command),
            "Env": [f"{key}={value}" for key, value in self.env.items()],
            "Labels": dict(self.labels),
            "HostConfig": {
                "Mounts": [
                    {
                        "Type": "bind",
                        "Source": m.source,
                        "Target": m.target,
                        "ReadOnly": m.read_only,
                    }
                    for m in self.mounts
                ],
            },
        }
        if self.working_dir is not None:
            config["WorkingDir"] = self.working_dir
        if self.entrypoint is not None:
            config["Entrypoint"] = list(self.entrypoint)
        return config


@dataclass(frozen=True)
class ContainerHandle:
    """Reference to a created sandbox. The engine accepts the name as id."""

    id: str
    name: str

    @classmethod
    def for_name(cls, name: str) -> "ContainerHandle":
        return cls(id=name, name=name)


class ContainerRunner(ABC):
    """
    Container engine lifecycle.

    Implementations raise EngineError (with call-site context) on any
    engine-side failure, and NameConflictError when a name is taken.
    """

    max_name_retries: int = DEFAULT_MAX_NAME_RETRIES
    name_generator: Callable[[], str] = staticmethod(random_name)

    @abstractmethod
    def create(self, spec: ContainerSpec) -> ContainerHandle:
        ...

    @abstractmethod
    def start(self, handle: ContainerHandle) -> None:
        ...

    @abstractmethod
    def wait(self, handle: ContainerHandle) -> int:
        """Block until the container is no longer running; return its exit code."""
        ...

    @abstractmethod
    def collect_logs(self, handle: ContainerHandle) -> tuple[str, str]:
        """Return (stdout, stderr) of a finished container."""
        ...

    @abstractmethod
    def remove(self, handle: ContainerHandle, force: bool = False) -> None:
        """Remove the container. Removing a missing container is not an error."""
        ...

    @abstractmethod
    def prune(self, label: str) -> int:
        """Remove stopped containers carrying label; return how many went."""
        ...

    def close(self) -> None:
        pass

    def dispatch_coordinator(
        self,
        spec: ContainerSpec,
        name_prefix: str,
        wait: bool = False,
    ) -> ContainerHandle:
        """
        Create and start a coordinating container under a random name.

        On a naming conflict a fresh name is drawn, up to max_name_retries
        attempts.

        Args:
            spec: Container spec; its name is replaced
            name_prefix: Prefix for the generated name
            wait: Block until the coordinator exits (debug mode)

        Raises:
            NameCollisionExhaustedError: If every attempt collided
        """
        for attempt in range(1, self.max_name_retries + 1):
            named = replace(spec, name=f"{name_prefix}_{self.name_generator()}")
            try:
                handle = self.create(named)
            except NameConflictError:
                logger.debug(
                    f"Coordinator name {named.name} taken "
                    f"(attempt {attempt}/{self.max_name_retries})"
                )
                continue

            self.start(handle)
            logger.info(f"Dispatched coordinator {handle.name}: {' '.join(spec.command)}")
            if wait:
                self.wait(handle)
            return handle

        raise NameCollisionExhaustedError(self.max_name_retries)


class DockerEngineRunner(ContainerRunner):
    """ContainerRunner backed by the Docker Engine HTTP API."""

    def __init__(
        self,
        docker_host: str = DEFAULT_DOCKER_HOST,
        api_version: Optional[str] = None,
        max_name_retries: int = DEFAULT_MAX_NAME_RETRIES,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the runner.

        Args:
            docker_host: unix:///path/to/socket or tcp://host:port
            api_version: Engine API version prefix such as "1.43" (None = engine default)
            max_name_retries: Coordinator naming attempts before giving up
            client: Preconfigured httpx client (tests inject a MockTransport here)
        """
        self.docker_host = docker_host
        self.api_version = api_version
        self.max_name_retries = max_name_retries
        self._client = client if client is not None else self._build_client(docker_host)

    @staticmethod
    def _build_client(docker_host: str) -> httpx.Client:
        if docker_host.startswith("unix://"):
            transport = httpx.HTTPTransport(uds=docker_host[len("unix://"):])
            return httpx.Client(
                transport=transport,
                base_url="http://docker",
                timeout=ENGINE_REQUEST_TIMEOUT,
            )
        if docker_host.startswith("tcp://"):
            return httpx.Client(
                base_url="http://" + docker_host[len("tcp://"):],
                timeout=ENGINE_REQUEST_TIMEOUT,
            )
        raise EngineError(f"Unsupported DOCKER_HOST: {docker_host}")

    def _path(self, path: str) -> str:
        if self.api_version:
            return f"/v{self.api_version}{path}"
        return path

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("message", "")
        except (ValueError, AttributeError):
            return response.text[:200]

    def _request(
        self,
        method: str,
        path: str,
        context: str,
        ok: tuple[int, ...] = (200, 201, 204),
        **kwargs,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, self._path(path), **kwargs)
        except httpx.RequestError as e:
            raise EngineError(f"{context}: {e}") from e

        if response.status_code not in ok:
            raise EngineError(
                f"{context}: HTTP {response.status_code}: {self._error_message(response)}"
            )
        return response

    def create(self, spec: ContainerSpec) -> ContainerHandle:
        response = self._request(
            "POST",
            "/containers/create",
            f"create {spec.name}",
            ok=(201, 409),
            params={"name": spec.name},
            json=spec.to_engine_config(),
        )
        if response.status_code == 409:
            raise NameConflictError(spec.name)

        container_id = response.json()["Id"]
        logger.debug(f"Created container {spec.name} ({container_id[:12]})")
        return ContainerHandle(id=container_id, name=spec.name)

    def start(self, handle: ContainerHandle) -> None:
        # 304: already started
        self._request(
            "POST",
            f"/containers/{handle.id}/start",
            f"start {handle.name}",
            ok=(204, 304),
        )

    def wait(self, handle: ContainerHandle) -> int:
        response = self._request(
            "POST",
            f"/containers/{handle.id}/wait",
            f"wait {handle.name}",
            ok=(200,),
            params={"condition": "not-running"},
            timeout=None,
        )
        body = response.json()
        error = (body.get("Error") or {}).get("Message")
        if error:
            raise EngineError(f"wait {handle.name}: {error}")
        return int(body.get("StatusCode", 0))

    def collect_logs(self, handle: ContainerHandle) -> tuple[str, str]:
        context = f"logs {handle.name}"
        try:
            with self._client.stream(
                "GET",
                self._path(f"/containers/{handle.id}/logs"),
                params={"follow": "1", "stdout": "1", "stderr": "1"},
                timeout=None,
            ) as response:
                if response.status_code != 200:
                    response.read()
                    raise EngineError(
                        f"{context}: HTTP {response.status_code}: "
                        f"{self._error_message(response)}"
                    )
                return demultiplex(response.iter_raw())
        except httpx.RequestError as e:
            raise EngineError(f"{context}: {e}") from e

    def remove(self, handle: ContainerHandle, force: bool = False) -> None:
        response = self._request(
            "DELETE",
            f"/containers/{handle.id}",
            f"remove {handle.name}",
            ok=(204, 404),
            params={"force": "1" if force else "0"},
        )
        if response.status_code == 404:
            logger.debug(f"Container {handle.name} already gone")

    def prune(self, label: str) -> int:
        response = self._request(
            "POST",
            "/containers/prune",
            f"prune {label}",
            ok=(200,),
            params={"filters": json.dumps({"label": [label]})},
        )
        deleted = response.json().get("ContainersDeleted") or []
        return len(deleted)

    def close(self) -> None:
        self._client.close()
