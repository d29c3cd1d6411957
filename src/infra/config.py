"""
Scheduler configuration.

Directory structure (host):
~/.bencher/
 ├── versions/                 # Per-version workspaces, bind-mounted into job containers
 │   └── <version>/
 └── server/                   # Scheduler state, bind-mounted into coordinators at /bencher
     ├── db                    # SQLite store (jobs, queue, running marker, lease)
     ├── pid                   # Execution lock sentinel (file backend)
     └── logs/                 # bencher_YYYYMMDD_<START_HHMMSS>.log

Environment Variables:
- BENCHER_HOME: Root directory (default: ~/.bencher)
- BENCHER_SERVER_DIR: Scheduler state directory (default: $BENCHER_HOME/server)
- BENCHER_VERSIONS_DIR: Workspace directory (default: $BENCHER_HOME/versions)
- BENCHER_DB_PATH: Store file (default: $BENCHER_SERVER_DIR/db)
- BENCHER_LOCK_PATH: Lock sentinel (default: $BENCHER_SERVER_DIR/pid)
- BENCHER_LOG_DIR: Log directory (default: $BENCHER_SERVER_DIR/logs)
- BENCHER_LOCK_BACKEND: file | store (default: file)
- BENCHER_STORE_TIMEOUT: Seconds to wait for a busy store (default: 30)
- DOCKER_HOST: Engine address (default: unix:///var/run/docker.sock)
- BENCHER_DOCKER_API_VERSION: Engine API version prefix (default: engine default)
- BENCHER_SERVER_IMAGE: Coordinator image (default: ghcr.io/schattian/bencher:master)
- BENCHER_RUNNER_IMAGE: Job image (default: golang:alpine)
- BENCHER_CONTAINER_LABEL: Label key on every container (default: bencher)
- BENCHER_NAME_RETRIES: Coordinator naming attempts (default: 5)
- LOG_LEVEL: Logging level (default: INFO)
- BENCHER_DEBUG: Wait for coordinators to exit (default: false)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_SERVER_IMAGE = "ghcr.io/schattian/bencher:master"
DEFAULT_RUNNER_IMAGE = "golang:alpine"
DEFAULT_CONTAINER_LABEL = "bencher"

# Mount points inside containers
CONTAINER_SERVER_DIR = "/bencher"
CONTAINER_RUNNER_ROOT = "/bencher"

LOCK_BACKENDS = ("file", "store")


# =============================================================================
# Environment Variable Helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def _get_env_path(key: str, default: Path) -> Path:
    val = os.getenv(key)
    if val:
        return Path(val).expanduser()
    return default


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SchedulerConfig:
    """Paths, engine settings and images for one scheduler process."""

    home: Path
    server_dir: Path
    versions_dir: Path
    db_path: Path
    lock_path: Path
    log_dir: Path
    lock_backend: str = "file"
    store_timeout: float = 30.0
    docker_host: str = "unix:///var/run/docker.sock"
    docker_api_version: Optional[str] = None
    server_image: str = DEFAULT_SERVER_IMAGE
    runner_image: str = DEFAULT_RUNNER_IMAGE
    container_label: str = DEFAULT_CONTAINER_LABEL
    name_retries: int = 5
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def for_home(cls, home: str | Path, **overrides) -> "SchedulerConfig":
        """Build a config with every path laid out under home."""
        home = Path(home)
        server_dir = home / "server"
        values = dict(
            home=home,
            server_dir=server_dir,
            versions_dir=home / "versions",
            db_path=server_dir / "db",
            lock_path=server_dir / "pid",
            log_dir=server_dir / "logs",
        )
        values.update(overrides)
        return cls(**values)

    @property
    def docker_socket(self) -> Optional[str]:
        """Host path of the engine socket, if the engine is reached over one."""
        if self.docker_host.startswith("unix://"):
            return self.docker_host[len("unix://"):]
        return None

    def version_path(self, version: str) -> Path:
        """Host workspace of a version."""
        return self.versions_dir / version

    def ensure_dirs(self) -> None:
        self.server_dir.mkdir(parents=True, exist_ok=True)
        self.versions_dir.mkdir(parents=True, exist_ok=True)


def load_config() -> SchedulerConfig:
    """
    Read configuration from the environment.

    Entrypoints call load_dotenv() first so a .env file can supply values.
    """
    home = _get_env_path("BENCHER_HOME", Path.home() / ".bencher")
    server_dir = _get_env_path("BENCHER_SERVER_DIR", home / "server")

    lock_backend = os.getenv("BENCHER_LOCK_BACKEND", "file").lower()
    if lock_backend not in LOCK_BACKENDS:
        logger.warning(f"[Config] Unknown lock backend {lock_backend}, using: file")
        lock_backend = "file"

    return SchedulerConfig(
        home=home,
        server_dir=server_dir,
        versions_dir=_get_env_path("BENCHER_VERSIONS_DIR", home / "versions"),
        db_path=_get_env_path("BENCHER_DB_PATH", server_dir / "db"),
        lock_path=_get_env_path("BENCHER_LOCK_PATH", server_dir / "pid"),
        log_dir=_get_env_path("BENCHER_LOG_DIR", server_dir / "logs"),
        lock_backend=lock_backend,
        store_timeout=_get_env_float("BENCHER_STORE_TIMEOUT", 30.0),
        docker_host=os.getenv("DOCKER_HOST", "unix:///var/run/docker.sock"),
        docker_api_version=os.getenv("BENCHER_DOCKER_API_VERSION") or None,
        server_image=os.getenv("BENCHER_SERVER_IMAGE", DEFAULT_SERVER_IMAGE),
        runner_image=os.getenv("BENCHER_RUNNER_IMAGE", DEFAULT_RUNNER_IMAGE),
        container_label=os.getenv("BENCHER_CONTAINER_LABEL", DEFAULT_CONTAINER_LABEL),
        name_retries=_get_env_int("BENCHER_NAME_RETRIES", 5),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        debug=_get_env_bool("BENCHER_DEBUG", False),
    )
