"""
bencher - sequential benchmark job scheduler running jobs in container sandboxes.
"""

__version__ = "0.1.0"
