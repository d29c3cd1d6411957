"""
Infrastructure module - configuration and logging.
"""

from .config import SchedulerConfig, load_config
from .logging_config import setup_logging

__all__ = [
    # config
    "SchedulerConfig",
    "load_config",
    # logging
    "setup_logging",
]
