"""
Logging configuration module.

Each process (CLI invocation, coordinator container, API server) writes
its own daily log files named after the day and the process start time.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

# Every module logger lives under the package logger
PACKAGE_LOGGER = "src"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# httpx logs every engine request at INFO
QUIET_LOGGERS = ("httpx", "httpcore")

# Fixed once per process so every daily file of one process shares it
_PROCESS_START_TIME: Optional[str] = None


def _process_start_time() -> str:
    global _PROCESS_START_TIME
    if _PROCESS_START_TIME is None:
        _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")
    return _PROCESS_START_TIME


def _today() -> str:
    return datetime.now().strftime("%Y%m%d")


class DailyRotatingFileHandler(logging.FileHandler):
    """
    File handler that moves to a new file when the date changes.

    Files: <log_dir>/bencher_YYYYMMDD_<START_HHMMSS>.log

    Coordinators for different jobs can start on the same day; the start
    time keeps their files apart.
    """

    def __init__(self, log_dir: str | Path = "logs", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._start_hhmmss = _process_start_time()
        self._current_date = _today()

        super().__init__(self._path_for(self._current_date), mode="a", encoding=encoding)

    def _path_for(self, date_str: str) -> str:
        return str(self.log_dir / f"bencher_{date_str}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        date_str = _today()
        if date_str != self._current_date:
            self.close()
            self._current_date = date_str
            self.baseFilename = self._path_for(date_str)
            self.stream = self._open()

        super().emit(record)


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str | Path] = None,
) -> logging.Logger:
    """
    Configure the package logger and return it.

    Calling it again replaces the handlers of the previous call.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        log_dir: Directory for daily log files (None = console only)

    Returns:
        logging.Logger: The package logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    # Handlers live here, not on the root logger
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _attach(logger, logging.StreamHandler(), level)

    if log_dir is None:
        logger.debug(f"Logging started - level: {log_level}, console only")
        return logger

    file_handler = DailyRotatingFileHandler(log_dir=log_dir)
    _attach(logger, file_handler, level)
    logger.debug(f"Logging started - level: {log_level}, log file: {file_handler.baseFilename}")

    return logger
