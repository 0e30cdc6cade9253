"""
Task - one blocking protocol call moved off the event loop.

Path: sshbridge/worker/task.py

A Task has three phases:

    execute()      pool thread   performs the blocking call, returns a TaskResult
    on_success()   loop thread   maps the TaskResult to a value, or raises SSHError
    on_failure()   loop thread   only when execute() itself raised

execute() never sees the future. The pool hands the TaskResult back to the
loop thread with call_soon_threadsafe(), and only then is the future settled,
so the result slot is never shared between threads while it is written.

Usage:
    task = Task(
        "channel.read",
        execute=lambda: TaskResult(status=handle.read(buf, len(buf)), payload=buf),
        resolve=lambda r: bytes(r.payload[:r.status]),
    )
    data = await pool.submit(task)
"""

import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, Type

from sshbridge.core.errors import SSHError, translate_error


class Status(IntEnum):
    """Return codes of the blocking protocol layer."""
    OK = 0
    ERROR = -1


class AuthResult(IntEnum):
    """Return codes of the authentication calls."""
    SUCCESS = 0
    DENIED = 1
    PARTIAL = 2
    ERROR = -1


@dataclass
class TaskResult:
    """Result slot written by Task.execute() on the pool thread."""
    status: int = Status.ERROR
    payload: Any = None
    error: Optional[str] = None


def _resolve_status(result: TaskResult) -> None:
    if result.status != Status.OK:
        raise translate_error(None, result.error)
    return None


class Task:
    """
    Unit of blocking work whose outcome settles an asyncio future once.

    Args:
        name: Short label used in log lines ("session.connect").
        execute: Blocking callable run on a pool thread. Must return a
            TaskResult and must not touch any asyncio object.
        resolve: Loop-thread mapping from TaskResult to the resolved value.
            Raise an SSHError to reject. Defaults to "status OK -> None".
        settle: Optional loop-thread hook called with True/False right before
            the future is settled. Entities use it to move their state flags
            only once the outcome is known.
        failure_message: Prefix for rejections caused by execute() raising.
        error_cls: SSHError subclass used for such rejections.
        owner: Object kept alive until the task has completed. Entities pass
            themselves so their finalizer cannot free a handle that
            execute() is still using.
    """

    def __init__(
        self,
        name: str,
        execute: Callable[[], TaskResult],
        resolve: Optional[Callable[[TaskResult], Any]] = None,
        settle: Optional[Callable[[bool], None]] = None,
        failure_message: Optional[str] = None,
        error_cls: Type[SSHError] = SSHError,
        owner: Any = None,
    ):
        self.name = name
        self._execute = execute
        self._resolve = resolve or _resolve_status
        self._settle = settle
        self._failure_message = failure_message
        self._error_cls = error_cls
        self.owner = owner

        self.submitted_at: Optional[float] = None
        self.duration_ms: float = 0
        self._executed = False
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def execute(self) -> TaskResult:
        """Run the blocking call. Pool thread only."""
        start = time.time()
        try:
            result = self._execute()
        finally:
            self.duration_ms = (time.time() - start) * 1000
            self._executed = True
        if not isinstance(result, TaskResult):
            raise TypeError(f"{self.name}: execute must return TaskResult, got {type(result).__name__}")
        return result

    def on_success(self, result: TaskResult) -> Any:
        """Map the result slot to a value. Raises SSHError on protocol failure."""
        self._mark_completed()
        try:
            value = self._resolve(result)
        except Exception:
            self._run_settle(False)
            raise
        self._run_settle(True)
        return value

    def on_failure(self, fault: BaseException) -> SSHError:
        """Build the rejection for a fault raised inside execute()."""
        self._mark_completed()
        self._run_settle(False)
        if isinstance(fault, SSHError):
            return fault
        error = translate_error(self._failure_message, str(fault) or type(fault).__name__, self._error_cls)
        error.__cause__ = fault
        return error

    def _mark_completed(self) -> None:
        if not self._executed:
            raise RuntimeError(f"{self.name}: completion before execute finished")
        if self._completed:
            raise RuntimeError(f"{self.name}: completed twice")
        self._completed = True

    def _run_settle(self, ok: bool) -> None:
        if self._settle is not None:
            self._settle(ok)

    def __repr__(self) -> str:
        state = "completed" if self._completed else ("executed" if self._executed else "pending")
        return f"Task({self.name}, {state})"
