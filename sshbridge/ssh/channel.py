"""
SSH Channel - asynchronous stream over an SSHSession.

Path: sshbridge/ssh/channel.py

A channel starts UNOPENED. open_session() or request_forward_tcpip() opens
it; read(), write() and request_exec() then run as Tasks on the session's
pool. Operations are not serialized against each other: two reads issued
together may complete in either order.

State moves only when the outcome of an operation is known:

    open:   UNOPENED -> OPENING -> OPEN   (failure -> CLOSED)
    close:  OPEN     -> CLOSING -> CLOSED
"""

import asyncio
import logging
import weakref
from enum import Enum
from typing import Optional, Union

from sshbridge.core.errors import SSHChannelError, SSHError, translate_error
from sshbridge.ssh.handles import ChannelHandle
from sshbridge.ssh.session import SSHSession, _SessionResource
from sshbridge.worker.task import Status, Task, TaskResult


logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 65536
DEFAULT_SOURCE_HOST = "127.0.0.1"


class ChannelState(Enum):
    UNOPENED = "unopened"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class _ChannelResource:
    """
    Owns the ChannelHandle and keeps the session resource alive with it.

    The handle is created lazily by the first open operation.
    """

    def __init__(self, session_resource: _SessionResource):
        self.session_resource: Optional[_SessionResource] = session_resource
        self.handle: Optional[ChannelHandle] = None
        self.state = ChannelState.UNOPENED

    def release(self) -> None:
        """Send EOF and close if still open, then free. Never raises."""
        handle = self.handle
        if handle is not None:
            try:
                if self.state is ChannelState.OPEN and handle.is_open():
                    handle.send_eof()
                    handle.close()
            except Exception as e:
                logger.debug(f"Closing channel during release failed: {e}")
            finally:
                try:
                    handle.free()
                except Exception as e:
                    logger.debug(f"Freeing channel handle failed: {e}")
        self.handle = None
        self.state = ChannelState.CLOSED
        self.session_resource = None


class SSHChannel:
    """
    Asynchronous SSH channel. Create with SSHSession.create_channel().

    Holds a strong reference to the session, so the session outlives
    every channel made from it.
    """

    def __init__(self, session: SSHSession):
        self._session = session
        self._resource = _ChannelResource(session._resource)
        self._finalizer = weakref.finalize(self, self._resource.release)

    @property
    def session(self) -> SSHSession:
        return self._session

    @property
    def state(self) -> ChannelState:
        return self._resource.state

    def is_open(self) -> bool:
        """True only if open locally and the underlying stream is still open."""
        handle = self._resource.handle
        return self.state is ChannelState.OPEN and handle is not None and handle.is_open()

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def _open(self, name: str, call, message: str) -> asyncio.Future:
        resource = self._resource
        if resource.state is not ChannelState.UNOPENED:
            raise SSHChannelError("Channel already opened")

        session_handle = resource.session_resource.handle
        if resource.handle is None:
            resource.handle = session_handle.new_channel()
        handle = resource.handle

        def execute() -> TaskResult:
            status = call(handle)
            return TaskResult(status=status, error=handle.get_error() if status != Status.OK else None)

        def resolve(result: TaskResult) -> None:
            if result.status != Status.OK:
                raise translate_error(message, result.error, SSHChannelError)

        def settle(ok: bool) -> None:
            resource.state = ChannelState.OPEN if ok else ChannelState.CLOSED

        task = Task(
            f"channel.{name}",
            execute=execute,
            resolve=resolve,
            settle=settle,
            failure_message=message,
            error_cls=SSHChannelError,
            owner=self,
        )
        future = self._session.pool.submit(task)
        resource.state = ChannelState.OPENING
        return future

    def open_session(self) -> asyncio.Future:
        """
        Open a session channel for exec.

        Raises:
            SSHChannelError: Channel was already opened.
        """
        return self._open(
            "open_session",
            lambda handle: handle.open_session(),
            "Failed to open channel session",
        )

    def request_forward_tcpip(
        self,
        remote_host: str,
        remote_port: int,
        source_host: str = DEFAULT_SOURCE_HOST,
        source_port: int = 0,
    ) -> asyncio.Future:
        """
        Open a direct-tcpip channel to remote_host:remote_port via the server.

        Args:
            remote_host: Host to connect to, as seen by the server.
            remote_port: Port to connect to.
            source_host: Originator address reported to the server.
            source_port: Originator port reported to the server.
        """
        if not isinstance(remote_host, str) or not remote_host:
            raise TypeError("Expected remote host string")
        if not isinstance(remote_port, int) or isinstance(remote_port, bool):
            raise TypeError("Expected remote port number")
        if not isinstance(source_host, str):
            raise TypeError("Expected source host string")
        if not isinstance(source_port, int) or isinstance(source_port, bool):
            raise TypeError("Expected source port number")

        return self._open(
            f"request_forward_tcpip[{remote_host}:{remote_port}]",
            lambda handle: handle.open_forward(remote_host, remote_port, source_host, source_port),
            "Failed to open forward channel",
        )

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def _require_open(self) -> ChannelHandle:
        if self.state is not ChannelState.OPEN or self._resource.handle is None:
            raise SSHChannelError("Channel is not open")
        return self._resource.handle

    def request_exec(self, command: str) -> asyncio.Future:
        """
        Run a command on an open session channel.

        Raises:
            TypeError: command is not a string.
            ValueError: command is empty.
            SSHChannelError: Channel is not open.
        """
        if not isinstance(command, str):
            raise TypeError("Expected command string")
        if not command:
            raise ValueError("Command must not be empty")
        handle = self._require_open()

        def execute() -> TaskResult:
            status = handle.request_exec(command)
            return TaskResult(status=status, error=handle.get_error() if status != Status.OK else None)

        def resolve(result: TaskResult) -> None:
            if result.status != Status.OK:
                raise translate_error("Failed to execute command", result.error, SSHChannelError)

        task = Task(
            "channel.request_exec",
            execute=execute,
            resolve=resolve,
            failure_message="Failed to execute command",
            error_cls=SSHChannelError,
            owner=self,
        )
        return self._session.pool.submit(task)

    def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> asyncio.Future:
        """
        Read up to max_bytes from the channel.

        Returns:
            Future resolving to bytes; b"" means end of stream.
        """
        if not isinstance(max_bytes, int) or isinstance(max_bytes, bool) or max_bytes <= 0:
            raise ValueError("max_bytes must be a positive integer")
        handle = self._require_open()

        def execute() -> TaskResult:
            buffer = bytearray(max_bytes)
            count = handle.read(buffer, max_bytes)
            return TaskResult(
                status=count,
                payload=buffer,
                error=handle.get_error() if count < 0 else None,
            )

        def resolve(result: TaskResult) -> bytes:
            if result.status < 0:
                raise translate_error("Failed to read from channel", result.error, SSHChannelError)
            return bytes(result.payload[:result.status])

        task = Task(
            "channel.read",
            execute=execute,
            resolve=resolve,
            failure_message="Failed to read from channel",
            error_cls=SSHChannelError,
            owner=self,
        )
        return self._session.pool.submit(task)

    def write(self, data: Union[bytes, bytearray, memoryview]) -> asyncio.Future:
        """
        Write data once; the write may be short.

        The data is copied at call time, so the caller may reuse its buffer.

        Returns:
            Future resolving to the number of bytes accepted.
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError("Expected bytes-like data")
        handle = self._require_open()
        payload = bytes(data)

        def execute() -> TaskResult:
            count = handle.write(payload)
            return TaskResult(status=count, error=handle.get_error() if count < 0 else None)

        def resolve(result: TaskResult) -> int:
            if result.status < 0:
                raise translate_error("Failed to write to channel", result.error, SSHChannelError)
            return result.status

        task = Task(
            "channel.write",
            execute=execute,
            resolve=resolve,
            failure_message="Failed to write to channel",
            error_cls=SSHChannelError,
            owner=self,
        )
        return self._session.pool.submit(task)

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def close(self) -> asyncio.Future:
        """
        Send EOF and close. Resolves immediately if the channel is not open.
        """
        resource = self._resource
        if resource.state is not ChannelState.OPEN or resource.handle is None:
            future = asyncio.get_running_loop().create_future()
            future.set_result(None)
            return future

        handle = resource.handle

        def execute() -> TaskResult:
            handle.send_eof()
            status = handle.close()
            return TaskResult(status=status, error=handle.get_error() if status != Status.OK else None)

        def resolve(result: TaskResult) -> None:
            if result.status != Status.OK:
                raise translate_error("Failed to close channel", result.error, SSHChannelError)

        # The stream is unusable after a close attempt either way
        def settle(ok: bool) -> None:
            resource.state = ChannelState.CLOSED

        task = Task(
            "channel.close",
            execute=execute,
            resolve=resolve,
            settle=settle,
            failure_message="Failed to close channel",
            error_cls=SSHChannelError,
            owner=self,
        )
        future = self._session.pool.submit(task)
        resource.state = ChannelState.CLOSING
        return future

    async def __aenter__(self) -> "SSHChannel":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.close()
        except SSHError as e:
            logger.debug(f"Ignoring close failure on exit: {e}")

    def __repr__(self) -> str:
        return f"SSHChannel({self.state.value}, session={self._session.host})"
