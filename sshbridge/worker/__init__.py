"""Background execution - tasks and the thread pool that runs them."""

from sshbridge.worker.task import Task, TaskResult, Status, AuthResult
from sshbridge.worker.pool import TaskPool, get_default_pool, configure_logging

__all__ = [
    "Task",
    "TaskResult",
    "Status",
    "AuthResult",
    "TaskPool",
    "get_default_pool",
    "configure_logging",
]
