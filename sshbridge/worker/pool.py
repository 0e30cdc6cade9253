"""
Task Pool - run blocking SSH calls on worker threads, settle futures on the loop.

Path: sshbridge/worker/pool.py

Provides the background-execution facility behind every asynchronous
SSHSession / SSHChannel operation. Task bodies run on a ThreadPoolExecutor;
their outcome is marshalled back to the owning event loop with
call_soon_threadsafe() and only there is the asyncio future settled.

Completions arrive in the order the pool finishes them, not in call order.
Nothing here serializes work against a single channel.
"""

import asyncio
import logging
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from sshbridge.worker.task import Task, TaskResult


# Module logger - configure at application level
logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 64


class TaskPool:
    """
    Thread pool that executes Tasks and resolves their futures on the loop thread.

    Usage:
        pool = TaskPool(max_workers=16)

        future = pool.submit(task)      # must be called from the loop thread
        value = await future

        pool.shutdown()
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        thread_name_prefix: str = "sshbridge",
        debug: bool = False,
    ):
        """
        Initialize task pool.

        Args:
            max_workers: Maximum concurrent blocking calls. Every in-flight
                read holds a thread for its whole duration, so size this for
                the number of channels expected to block at once.
            thread_name_prefix: Prefix for worker thread names.
            debug: Log task tracebacks at DEBUG level.
        """
        self.max_workers = max_workers or DEFAULT_MAX_WORKERS
        self.debug = debug
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._lock = threading.Lock()
        self._in_flight = 0
        self._closed = False

    @property
    def in_flight(self) -> int:
        """Number of tasks submitted but not yet handed back to the loop."""
        with self._lock:
            return self._in_flight

    def submit(self, task: Task, loop: Optional[asyncio.AbstractEventLoop] = None) -> asyncio.Future:
        """
        Queue a task and return the future it will settle.

        Args:
            task: Task to execute.
            loop: Owning event loop. Defaults to the running loop.

        Returns:
            asyncio.Future resolved with task.on_success() or rejected with
            the SSHError from on_success()/on_failure().
        """
        if self._closed:
            raise RuntimeError("TaskPool is shut down")

        loop = loop or asyncio.get_running_loop()
        future = loop.create_future()

        with self._lock:
            self._in_flight += 1
            in_flight = self._in_flight
        logger.debug(f"{task.name}: queued ({in_flight} in flight)")

        self._executor.submit(self._run, task, loop, future)
        return future

    def _run(self, task: Task, loop: asyncio.AbstractEventLoop, future: asyncio.Future) -> None:
        """Pool thread: execute the task, then hop back to the loop."""
        result: Optional[TaskResult] = None
        fault: Optional[BaseException] = None

        try:
            result = task.execute()
        except Exception as e:
            fault = e
            logger.debug(f"{task.name}: execute raised {type(e).__name__}: {e}")
            if self.debug:
                logger.debug(f"Traceback for {task.name}:\n{traceback.format_exc()}")
        finally:
            with self._lock:
                self._in_flight -= 1

        try:
            loop.call_soon_threadsafe(self._complete, task, future, result, fault)
        except RuntimeError:
            # Loop closed while the call was blocking; nobody is left to notify
            logger.warning(f"{task.name}: event loop closed before completion could be delivered")

    def _complete(
        self,
        task: Task,
        future: asyncio.Future,
        result: Optional[TaskResult],
        fault: Optional[BaseException],
    ) -> None:
        """Loop thread: settle the future exactly once, then let go of the owner."""
        try:
            self._settle_future(task, future, result, fault)
        finally:
            task.owner = None

    def _settle_future(
        self,
        task: Task,
        future: asyncio.Future,
        result: Optional[TaskResult],
        fault: Optional[BaseException],
    ) -> None:
        if fault is not None:
            error = task.on_failure(fault)
            outcome = f"failed ({error})"
            if not future.done():
                future.set_exception(error)
        else:
            try:
                value = task.on_success(result)
            except Exception as error:
                outcome = f"rejected ({error})"
                if not future.done():
                    future.set_exception(error)
            else:
                outcome = "ok"
                if not future.done():
                    future.set_result(value)

        if future.cancelled():
            logger.debug(f"{task.name}: {outcome} after caller cancelled, outcome dropped")
        else:
            logger.debug(f"{task.name}: {outcome} ({task.duration_ms:.0f}ms)")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks; optionally wait for running ones."""
        self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "TaskPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"TaskPool(max_workers={self.max_workers}, in_flight={self.in_flight})"


_default_pool: Optional[TaskPool] = None
_default_pool_lock = threading.Lock()


def get_default_pool() -> TaskPool:
    """
    Get the process-wide pool used by sessions created without one.

    Sized from the execution.max_workers config setting on first use.
    """
    global _default_pool

    with _default_pool_lock:
        if _default_pool is None or _default_pool._closed:
            from sshbridge.core.config import get_config

            _default_pool = TaskPool(max_workers=get_config().execution.max_workers)

    return _default_pool


def configure_logging(
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
):
    """
    Configure logging for sshbridge.

    Call this at application startup to enable logging.

    Args:
        level: Logging level (default: INFO).
        format_string: Optional custom format string.
        handler: Optional custom handler (default: StreamHandler).

    Example:
        from sshbridge.worker.pool import configure_logging
        configure_logging(level=logging.DEBUG)
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if handler is None:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(format_string))

    package_logger = logging.getLogger("sshbridge")
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
