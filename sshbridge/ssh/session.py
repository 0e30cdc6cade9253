"""
SSH Session - asynchronous connection, authentication and channel factory.

Path: sshbridge/ssh/session.py

Every blocking call is wrapped in a Task and run on a TaskPool; the method
itself only validates preconditions and returns an asyncio future. Invalid
state or arguments raise immediately, protocol failures reject the future.

Usage:
    session = SSHSession({"host": "example.com", "user": "alice"})
    await session.connect()
    await session.authenticate_password("alice", "secret")

    channel = session.create_channel()
    await channel.open_session()
    await channel.request_exec("uname -a")
    print(await channel.read())

    await session.disconnect()

The session's SessionHandle lives in a _SessionResource. Channels hold a
reference to that resource as well as to the SSHSession, so the connection
is only torn down once the session and every channel made from it are gone,
and no Task started by one of them is still running.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Union

from sshbridge.core.config import get_config
from sshbridge.core.errors import (
    SSHAuthenticationError,
    SSHConnectionError,
    SSHError,
    translate_error,
)
from sshbridge.ssh.agent import AgentDetector
from sshbridge.ssh.handles import (
    DEFAULT_PORT,
    OPTION_HOST,
    OPTION_IDENTITY_AGENT,
    OPTION_PORT,
    OPTION_TIMEOUT,
    OPTION_USER,
    SessionHandle,
)
from sshbridge.worker.pool import TaskPool, get_default_pool
from sshbridge.worker.task import AuthResult, Status, Task, TaskResult


logger = logging.getLogger(__name__)

# Public option names accepted by SSHSession.set_option(), mapped to handle options
SETTABLE_OPTIONS = {
    "host": OPTION_HOST,
    "port": OPTION_PORT,
    "user": OPTION_USER,
    "agent_socket": OPTION_IDENTITY_AGENT,
}


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class SessionOptions:
    """Options accepted by the SSHSession constructor."""
    host: Optional[str] = None
    port: Optional[int] = None          # None = ssh config, then 22
    user: Optional[str] = None
    config_file: Optional[str] = None   # None = configured default / ~/.ssh/config
    agent_socket: Optional[str] = None
    timeout: Optional[float] = None     # seconds; None = execution.timeout
    auto_detect_agent: Optional[bool] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SessionOptions":
        """Build from a dict; unrecognized keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class _SessionResource:
    """
    Shared cell owning the SessionHandle.

    Referenced by the SSHSession and by each channel's resource. release()
    runs from the session's finalizer once no SSHSession wrapper is left.
    """

    def __init__(self, handle: SessionHandle):
        self.handle = handle
        self.state = SessionState.DISCONNECTED
        # Futures resolved when the pending connect settles
        self.connect_waiters: List[asyncio.Future] = []

    def release(self) -> None:
        """Best-effort disconnect then free. Never raises."""
        try:
            if self.state is not SessionState.DISCONNECTED:
                self.handle.disconnect()
        except Exception as e:
            logger.debug(f"Disconnect during release failed: {e}")
        finally:
            self.state = SessionState.DISCONNECTED
            try:
                self.handle.free()
            except Exception as e:
                logger.debug(f"Freeing session handle failed: {e}")


class SSHSession:
    """
    Asynchronous SSH session.

    Args:
        options: SessionOptions or a mapping with the same keys.
        pool: TaskPool running blocking calls. Defaults to the shared pool.
        handle_factory: Callable returning a new SessionHandle.
    """

    def __init__(
        self,
        options: Optional[Union[SessionOptions, Mapping[str, Any]]] = None,
        *,
        pool: Optional[TaskPool] = None,
        handle_factory: Optional[Callable[[], SessionHandle]] = None,
    ):
        if options is None:
            options = SessionOptions()
        elif not isinstance(options, SessionOptions):
            options = SessionOptions.from_mapping(options)

        config = get_config()
        self._pool = pool
        handle_factory = handle_factory or SessionHandle
        handle = handle_factory()
        if handle is None:
            raise SSHError("Failed to create SSH session")

        self._resource = _SessionResource(handle)
        self._finalizer = weakref.finalize(self, self._resource.release)

        self._apply_initial_options(options, config)

    def _apply_initial_options(self, options: SessionOptions, config) -> None:
        if options.host:
            self.set_option("host", options.host)
        if options.port is not None:
            self.set_option("port", options.port)
        if options.user:
            self.set_option("user", options.user)

        if options.agent_socket:
            self.set_option("agent_socket", options.agent_socket)

        # Explicit config file must parse; default discovery only fills gaps
        if options.config_file:
            self.parse_config(options.config_file)
        elif options.host:
            default_config = config.ssh.config_file
            status = self._handle.options_parse_config(str(default_config) if default_config else None)
            if status != Status.OK:
                logger.warning(f"Ignoring SSH config: {self._handle.get_error()}")

        auto_detect = options.auto_detect_agent
        if auto_detect is None:
            auto_detect = config.ssh.auto_detect_agent
        if auto_detect and not self._handle.identity_agent:
            agent = AgentDetector.detect()
            if agent:
                logger.debug(f"Using {agent.type.value} agent at {agent.socket_path}")
                self.set_option("agent_socket", agent.socket_path)

        timeout = options.timeout if options.timeout is not None else config.execution.timeout
        if timeout:
            if self._handle.options_set(OPTION_TIMEOUT, timeout) != Status.OK:
                raise translate_error("Failed to set option", self._handle.get_error())

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def _handle(self) -> SessionHandle:
        return self._resource.handle

    @property
    def state(self) -> SessionState:
        return self._resource.state

    @property
    def pool(self) -> TaskPool:
        if self._pool is None:
            self._pool = get_default_pool()
        return self._pool

    @property
    def host(self) -> Optional[str]:
        return self._handle.host

    @property
    def port(self) -> int:
        return self._handle.port or DEFAULT_PORT

    @property
    def user(self) -> Optional[str]:
        return self._handle.user

    # ------------------------------------------------------------------
    # Synchronous operations
    # ------------------------------------------------------------------

    def set_option(self, name: str, value: Union[str, int]) -> None:
        """
        Set a connection option.

        Args:
            name: One of host, port, user, agent_socket.
            value: Option value.

        Raises:
            ValueError: Unknown option name.
            SSHError: The protocol layer rejected the value.
        """
        handle_option = SETTABLE_OPTIONS.get(name)
        if handle_option is None:
            raise ValueError(f"Unknown option: {name}")

        if self._handle.options_set(handle_option, value) != Status.OK:
            raise translate_error("Failed to set option", self._handle.get_error())

    def parse_config(self, path: Optional[str] = None) -> None:
        """
        Apply OpenSSH client config for the current host.

        Args:
            path: Config file. None uses default discovery (~/.ssh/config).

        Raises:
            SSHError: The file could not be read or parsed.
        """
        if self._handle.options_parse_config(path) != Status.OK:
            raise translate_error("Failed to parse SSH config", self._handle.get_error())

    def is_connected(self) -> bool:
        """True only if connected locally and the transport is still alive."""
        return self.state is SessionState.CONNECTED and self._handle.is_connected()

    def create_channel(self):
        """
        Create an unopened channel on this session.

        Raises:
            SSHConnectionError: Session is not connected.
        """
        if self.state is not SessionState.CONNECTED:
            raise SSHConnectionError("Session is not connected")

        from sshbridge.ssh.channel import SSHChannel

        return SSHChannel(self)

    # ------------------------------------------------------------------
    # Asynchronous operations
    # ------------------------------------------------------------------

    def connect(self) -> asyncio.Future:
        """
        Connect and perform the SSH handshake.

        Returns:
            Future resolving to None, or rejecting with SSHConnectionError.

        Raises:
            SSHConnectionError: Already connected or connecting.
        """
        if self.state is SessionState.CONNECTED:
            raise SSHConnectionError("Session is already connected")
        if self.state is SessionState.CONNECTING:
            raise SSHConnectionError("Connection already in progress")

        handle = self._handle
        resource = self._resource

        def execute() -> TaskResult:
            status = handle.connect()
            return TaskResult(status=status, error=handle.get_error() if status != Status.OK else None)

        def resolve(result: TaskResult) -> None:
            if result.status != Status.OK:
                raise translate_error("Connection failed", result.error, SSHConnectionError)

        def settle(ok: bool) -> None:
            resource.state = SessionState.CONNECTED if ok else SessionState.DISCONNECTED
            waiters, resource.connect_waiters = resource.connect_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)

        task = Task(
            f"session.connect[{handle.host}:{handle.port}]",
            execute=execute,
            resolve=resolve,
            settle=settle,
            failure_message="Connection failed",
            error_cls=SSHConnectionError,
            owner=self,
        )
        future = self.pool.submit(task)
        resource.state = SessionState.CONNECTING
        return future

    def disconnect(self) -> asyncio.Future:
        """
        Tear down the connection.

        Called while a connect is still in flight, the teardown waits for that
        connect to settle, so a late handshake cannot leave the session
        CONNECTED after disconnect() has resolved.

        Returns:
            Future resolving to None once the transport is closed.
        """
        if self.state is SessionState.CONNECTING:
            waiter = asyncio.get_running_loop().create_future()
            self._resource.connect_waiters.append(waiter)
            return asyncio.ensure_future(self._disconnect_after(waiter))
        return self._submit_disconnect()

    async def _disconnect_after(self, waiter: asyncio.Future) -> None:
        await waiter
        await self._submit_disconnect()

    def _submit_disconnect(self) -> asyncio.Future:
        handle = self._handle
        resource = self._resource

        def execute() -> TaskResult:
            handle.disconnect()
            return TaskResult(status=Status.OK)

        def settle(ok: bool) -> None:
            resource.state = SessionState.DISCONNECTED

        task = Task(
            f"session.disconnect[{handle.host}]",
            execute=execute,
            settle=settle,
            failure_message="Disconnect failed",
            error_cls=SSHConnectionError,
            owner=self,
        )
        return self.pool.submit(task)

    def _authenticate(self, name: str, call: Callable[[], AuthResult], message: str) -> asyncio.Future:
        if self.state is not SessionState.CONNECTED:
            raise SSHConnectionError("Session is not connected")

        handle = self._handle

        def execute() -> TaskResult:
            result = call()
            return TaskResult(
                status=result,
                error=handle.get_error() if result != AuthResult.SUCCESS else None,
            )

        def resolve(result: TaskResult) -> None:
            if result.status != AuthResult.SUCCESS:
                raise translate_error(message, result.error, SSHAuthenticationError)

        task = Task(
            f"session.{name}[{handle.host}]",
            execute=execute,
            resolve=resolve,
            failure_message=message,
            error_cls=SSHAuthenticationError,
            owner=self,
        )
        return self.pool.submit(task)

    def authenticate_password(self, username: Optional[str], password: str) -> asyncio.Future:
        """
        Authenticate with a password.

        Args:
            username: Login name. Empty or None uses the session's user option.
            password: Password.

        Returns:
            Future resolving to None, or rejecting with SSHAuthenticationError.
        """
        if username is not None and not isinstance(username, str):
            raise TypeError("Expected username string")
        if not isinstance(password, str):
            raise TypeError("Expected password string")

        handle = self._handle
        return self._authenticate(
            "authenticate_password",
            lambda: handle.userauth_password(username or None, password),
            "Authentication failed",
        )

    def authenticate_agent(self, username: Optional[str] = None) -> asyncio.Future:
        """
        Authenticate with the identities held by the SSH agent.

        Args:
            username: Login name. Empty or None uses the session's user option.
        """
        if username is not None and not isinstance(username, str):
            raise TypeError("Expected username string")

        handle = self._handle
        return self._authenticate(
            "authenticate_agent",
            lambda: handle.userauth_agent(username or None),
            "Agent authentication failed",
        )

    def authenticate(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_agent: bool = False,
    ) -> asyncio.Future:
        """Agent auth when use_agent is set, otherwise password auth."""
        if use_agent:
            return self.authenticate_agent(username)
        if password:
            return self.authenticate_password(username, password)
        raise ValueError("Either password or use_agent must be specified")

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "SSHSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.state is not SessionState.DISCONNECTED:
            await self.disconnect()

    def __repr__(self) -> str:
        return f"SSHSession({self.user or ''}@{self.host}:{self.port}, {self.state.value})"
