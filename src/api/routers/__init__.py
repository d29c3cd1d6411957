"""
API Routers package.
"""

from . import jobs, scheduler

__all__ = ["jobs", "scheduler"]
