"""
Worker module.
Contains the handler registry, the per-queue poller and the worker process.
"""

from jobcore.worker.handlers import (
    execute_job,
    get_handler,
    list_handlers,
    register,
    register_handler,
)

__all__ = [
    "execute_job",
    "get_handler",
    "list_handlers",
    "register",
    "register_handler",
]
