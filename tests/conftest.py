"""Pytest configuration and fixtures."""

import threading
from typing import List, Optional

import pytest

from sshbridge.core.config import Config, SessionDefaults, set_config
from sshbridge.ssh.handles import SessionHandle
from sshbridge.ssh.session import SSHSession
from sshbridge.worker.pool import TaskPool
from sshbridge.worker.task import AuthResult, Status


BLOCK_TIMEOUT = 5


class FakeChannelHandle:
    """
    In-memory stand-in for ChannelHandle.

    A session channel serves the session's exec_output after request_exec,
    then end of stream. A forward channel echoes whatever is written to it
    until closed.
    """

    def __init__(self, session: "FakeSessionHandle"):
        self._session = session
        self._cond = threading.Condition()
        self._pending = bytearray()
        self._eof = False

        self.opened = False
        self.closed = False
        self.freed = False
        self.eof_sent = False
        self.forward_args = None
        self.commands: List[str] = []
        self.written = bytearray()
        self.calls: List[str] = []

    def get_error(self) -> Optional[str]:
        return self._session.get_error()

    def _fail(self, message: str) -> Status:
        self._session.set_error(message)
        return Status.ERROR

    def _open(self) -> Status:
        if self.opened:
            return self._fail("Channel already opened")
        if not self._session.is_connected():
            return self._fail("Session is not connected")
        if self._session.open_error:
            return self._fail(self._session.open_error)
        self.opened = True
        return Status.OK

    def open_session(self) -> Status:
        self.calls.append("open_session")
        return self._open()

    def open_forward(self, remote_host, remote_port, source_host, source_port) -> Status:
        self.calls.append("open_forward")
        self.forward_args = (remote_host, remote_port, source_host, source_port)
        return self._open()

    def request_exec(self, command: str) -> Status:
        self.calls.append("request_exec")
        if self._session.exec_error:
            return self._fail(self._session.exec_error)
        self.commands.append(command)
        with self._cond:
            self._pending += self._session.exec_output
            self._eof = True
            self._cond.notify_all()
        return Status.OK

    def read(self, buffer: bytearray, count: int) -> int:
        self.calls.append("read")
        if self._session.read_error:
            return int(self._fail(self._session.read_error))
        with self._cond:
            self._cond.wait_for(lambda: self._pending or self._eof or self.closed, BLOCK_TIMEOUT)
            n = min(count, len(buffer), len(self._pending))
            buffer[:n] = self._pending[:n]
            del self._pending[:n]
            return n

    def write(self, data: bytes) -> int:
        self.calls.append("write")
        if self._session.write_error:
            return int(self._fail(self._session.write_error))
        limit = self._session.write_limit
        chunk = bytes(data[:limit]) if limit else bytes(data)
        self.written += chunk
        if self.forward_args is not None:
            with self._cond:
                self._pending += chunk
                self._cond.notify_all()
        return len(chunk)

    def send_eof(self) -> Status:
        self.calls.append("send_eof")
        self.eof_sent = True
        return Status.OK

    def close(self) -> Status:
        self.calls.append("close")
        with self._cond:
            self.closed = True
            self._cond.notify_all()
        return Status.OK

    def is_open(self) -> bool:
        return self.opened and not self.closed

    def free(self) -> None:
        self.calls.append("free")
        self.freed = True


class FakeSessionHandle(SessionHandle):
    """SessionHandle with option handling intact and the network replaced."""

    def __init__(self, config_path: str = "/nonexistent/sshbridge-test/ssh_config"):
        super().__init__(config_path=config_path)
        self.connected = False
        self.gate = threading.Event()
        self.gate.set()

        self.connect_error: Optional[str] = None
        self.password = "secret"
        self.agent_accepts = True
        self.open_error: Optional[str] = None
        self.exec_error: Optional[str] = None
        self.read_error: Optional[str] = None
        self.write_error: Optional[str] = None
        self.write_limit: Optional[int] = None
        self.exec_output = b"hi\n"

        self.channels: List[FakeChannelHandle] = []
        self.auth_calls: List[tuple] = []
        self.disconnect_calls = 0
        self.free_calls = 0

    def connect(self) -> Status:
        self.gate.wait(BLOCK_TIMEOUT)
        if self.connect_error is not None:
            if self.connect_error:
                self.set_error(self.connect_error)
            return Status.ERROR
        self.connected = True
        return Status.OK

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def free(self) -> None:
        self.free_calls += 1
        self.connected = False
        self._freed = True

    def userauth_password(self, username, password) -> AuthResult:
        self.auth_calls.append(("password", username or self.user))
        if password == self.password:
            return AuthResult.SUCCESS
        self.set_error(f"Access denied for {username or self.user}: Permission denied")
        return AuthResult.DENIED

    def userauth_agent(self, username) -> AuthResult:
        self.auth_calls.append(("agent", username or self.user))
        if self.agent_accepts:
            return AuthResult.SUCCESS
        self.set_error("SSH agent has no identities")
        return AuthResult.DENIED

    def new_channel(self) -> FakeChannelHandle:
        channel = FakeChannelHandle(self)
        self.channels.append(channel)
        return channel


@pytest.fixture(autouse=True)
def isolated_config(tmp_path):
    """Default config that never reads ~/.sshbridge or probes for agents."""
    config = Config(
        base_dir=tmp_path / ".sshbridge",
        config_file=tmp_path / ".sshbridge" / "config.yaml",
        log_dir=tmp_path / ".sshbridge" / "logs",
        ssh=SessionDefaults(auto_detect_agent=False),
    )
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def pool():
    """Small pool, shut down after the test."""
    task_pool = TaskPool(max_workers=4, thread_name_prefix="sshbridge-test")
    yield task_pool
    task_pool.shutdown(wait=False)


@pytest.fixture
def handle() -> FakeSessionHandle:
    return FakeSessionHandle()


@pytest.fixture
def make_session(pool, handle):
    """Factory for sessions backed by the shared fake handle."""

    def factory(options=None) -> SSHSession:
        if options is None:
            options = {"host": "example.com", "port": 22, "user": "alice"}
        return SSHSession(options, pool=pool, handle_factory=lambda: handle)

    return factory
