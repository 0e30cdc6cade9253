"""
Blocking SSH handles - the protocol layer driven by Task bodies.

Path: sshbridge/ssh/handles.py

SessionHandle and ChannelHandle wrap a paramiko Transport / Channel behind a
small call-and-status-code API:

    status = handle.connect()            # Status.OK or Status.ERROR
    if status != Status.OK:
        detail = handle.get_error()      # last protocol error string

Every call blocks and must run off the event loop (see sshbridge.worker).
No call raises for protocol failures; paramiko exceptions are caught here,
recorded as the session's last error and reported through the return code.
Channel failures are recorded on the owning session, so get_error() on
either handle returns the same string.

Handles are not thread-safe. A handle is used by one Task at a time; callers
that overlap operations on the same handle own the consequences.
"""

import getpass
import logging
import os
import socket
from typing import Optional, Union

import paramiko
from paramiko.agent import AgentSSH

from sshbridge.ssh.sshconfig import DEFAULT_SSH_CONFIG, load_ssh_config, lookup_host
from sshbridge.worker.task import AuthResult, Status


logger = logging.getLogger(__name__)

DEFAULT_PORT = 22

# Names accepted by SessionHandle.options_set()
OPTION_HOST = "host"
OPTION_PORT = "port"
OPTION_USER = "user"
OPTION_IDENTITY_AGENT = "identity_agent"
OPTION_TIMEOUT = "timeout"

SESSION_OPTIONS = (OPTION_HOST, OPTION_PORT, OPTION_USER, OPTION_IDENTITY_AGENT, OPTION_TIMEOUT)


class IdentityAgent(AgentSSH):
    """
    paramiko agent client bound to an explicit socket path.

    paramiko.Agent only honours SSH_AUTH_SOCK; this variant connects to the
    identity agent configured on the session instead.
    """

    def __init__(self, socket_path: str, timeout: Optional[float] = None):
        super().__init__()
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(socket_path)
        except OSError:
            sock.close()
            raise
        self._connect(sock)

    def close(self):
        self._close()


class SessionHandle:
    """
    One SSH connection: options, transport, authentication.

    Args:
        config_path: Default OpenSSH config used by options_parse_config(None).
    """

    def __init__(self, config_path: Optional[str] = None):
        self._default_config = config_path or str(DEFAULT_SSH_CONFIG)

        self.host: Optional[str] = None
        self.port: int = DEFAULT_PORT
        self.user: Optional[str] = None
        self.identity_agent: Optional[str] = None
        self.timeout: Optional[float] = None
        self._explicit = set()

        self._transport: Optional[paramiko.Transport] = None
        self._error: Optional[str] = None
        self._freed = False

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def get_error(self) -> Optional[str]:
        """Last protocol error string, or None."""
        return self._error

    def set_error(self, message: str) -> None:
        self._error = message
        logger.debug(f"{self.host or '<no host>'}: {message}")

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def options_set(self, name: str, value: Union[str, int, float, None]) -> Status:
        """
        Set one connection option.

        Args:
            name: One of SESSION_OPTIONS.
            value: Option value. Validated here.

        Returns:
            Status.OK, or Status.ERROR with the reason in get_error().
        """
        if name == OPTION_HOST:
            if not isinstance(value, str) or not value.strip():
                self.set_error("Invalid host: expected a non-empty string")
                return Status.ERROR
            user, at, host = value.rpartition("@")
            if at:
                # user@host form, as accepted by ssh(1)
                self.user = user
                self._explicit.add(OPTION_USER)
            self.host = host.strip()
        elif name == OPTION_PORT:
            try:
                port = int(value)
            except (TypeError, ValueError):
                self.set_error(f"Invalid port: {value!r}")
                return Status.ERROR
            if isinstance(value, bool) or not 0 < port < 65536:
                self.set_error(f"Invalid port: {value!r}")
                return Status.ERROR
            self.port = port
        elif name == OPTION_USER:
            if not isinstance(value, str) or not value:
                self.set_error("Invalid user: expected a non-empty string")
                return Status.ERROR
            self.user = value
        elif name == OPTION_IDENTITY_AGENT:
            if not isinstance(value, str) or not value:
                self.set_error("Invalid identity agent: expected a socket path")
                return Status.ERROR
            self.identity_agent = os.path.expanduser(value)
        elif name == OPTION_TIMEOUT:
            try:
                timeout = float(value)
            except (TypeError, ValueError):
                self.set_error(f"Invalid timeout: {value!r}")
                return Status.ERROR
            if timeout < 0:
                self.set_error(f"Invalid timeout: {value!r}")
                return Status.ERROR
            self.timeout = timeout or None
        else:
            self.set_error(f"Unknown option: {name}")
            return Status.ERROR

        self._explicit.add(name)
        return Status.OK

    def options_parse_config(self, path: Optional[str] = None) -> Status:
        """
        Apply OpenSSH client config for the current host.

        Options set explicitly beforehand are kept. A missing default config
        is not an error; a missing explicit file is.

        Args:
            path: Config file, or None for the default location.
        """
        config_path = os.path.expanduser(path) if path else self._default_config
        if path and not os.path.exists(config_path):
            self.set_error(f"Unable to open config file {config_path}")
            return Status.ERROR

        try:
            config = load_ssh_config(config_path)
        except (OSError, paramiko.SSHException, ValueError) as e:
            self.set_error(f"Unable to parse config file {config_path}: {e}")
            return Status.ERROR

        if config is None or not self.host:
            return Status.OK

        host_config = lookup_host(config, self.host)
        if host_config is None:
            return Status.OK

        if host_config.hostname:
            self.host = host_config.hostname
        if host_config.port and OPTION_PORT not in self._explicit:
            self.port = host_config.port
        if host_config.user and OPTION_USER not in self._explicit:
            self.user = host_config.user
        if host_config.identity_agent and OPTION_IDENTITY_AGENT not in self._explicit:
            self.identity_agent = host_config.identity_agent

        logger.debug(f"Applied SSH config from {config_path} for {self.host}")
        return Status.OK

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def transport(self) -> Optional[paramiko.Transport]:
        return self._transport

    @property
    def freed(self) -> bool:
        return self._freed

    def default_user(self) -> str:
        return self.user or getpass.getuser()

    def connect(self) -> Status:
        """TCP connect plus SSH handshake (key exchange). Blocking."""
        if self._freed:
            self.set_error("Session handle has been freed")
            return Status.ERROR
        if not self.host:
            self.set_error("Hostname required")
            return Status.ERROR
        if self._transport is not None and self._transport.is_active():
            self.set_error("Session is already connected")
            return Status.ERROR

        sock = None
        transport = None
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
            transport = paramiko.Transport(sock)
            transport.start_client(timeout=self.timeout)
        except (OSError, paramiko.SSHException, EOFError) as e:
            for resource in (transport, sock):
                if resource is not None:
                    try:
                        resource.close()
                    except Exception:
                        pass
            self.set_error(f"Failed to connect to {self.host}:{self.port}: {str(e) or type(e).__name__}")
            return Status.ERROR

        server_key = transport.get_remote_server_key()
        logger.debug(
            f"{self.host}:{self.port}: connected, server key {server_key.get_name()} "
            f"{server_key.get_fingerprint().hex()}"
        )
        self._transport = transport
        return Status.OK

    def disconnect(self) -> None:
        """Close the transport. Idempotent."""
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
            logger.debug(f"{self.host}: disconnected")

    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_active()

    def free(self) -> None:
        """Release everything the handle owns."""
        if self._freed:
            return
        self.disconnect()
        self._freed = True

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _auth_transport(self) -> Optional[paramiko.Transport]:
        if not self.is_connected():
            self.set_error("Session is not connected")
            return None
        return self._transport

    def userauth_password(self, username: Optional[str], password: str) -> AuthResult:
        """
        Password authentication.

        Args:
            username: Login name; None/empty uses the user option.
            password: Password.
        """
        transport = self._auth_transport()
        if transport is None:
            return AuthResult.ERROR

        user = username or self.default_user()
        try:
            remaining = transport.auth_password(user, password)
        except paramiko.BadAuthenticationType as e:
            self.set_error(f"Password authentication not allowed for {user}; server accepts {', '.join(e.allowed_types)}")
            return AuthResult.DENIED
        except paramiko.AuthenticationException as e:
            self.set_error(f"Access denied for {user}: {e}")
            return AuthResult.DENIED
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.set_error(f"Authentication error: {e}")
            return AuthResult.ERROR

        if remaining and not transport.is_authenticated():
            self.set_error(f"Partial authentication, server requires {', '.join(remaining)}")
            return AuthResult.PARTIAL
        return AuthResult.SUCCESS

    def userauth_agent(self, username: Optional[str]) -> AuthResult:
        """
        Public key authentication with every identity the agent offers.

        The agent socket is the identity_agent option, else SSH_AUTH_SOCK.
        """
        transport = self._auth_transport()
        if transport is None:
            return AuthResult.ERROR

        socket_path = self.identity_agent or os.environ.get("SSH_AUTH_SOCK")
        if not socket_path:
            self.set_error("No SSH agent available")
            return AuthResult.ERROR

        user = username or self.default_user()
        try:
            agent = IdentityAgent(socket_path, timeout=self.timeout)
        except (OSError, paramiko.SSHException) as e:
            self.set_error(f"Unable to connect to SSH agent at {socket_path}: {e}")
            return AuthResult.ERROR

        try:
            keys = agent.get_keys()
            if not keys:
                self.set_error("SSH agent has no identities")
                return AuthResult.DENIED

            for key in keys:
                try:
                    remaining = transport.auth_publickey(user, key)
                except paramiko.AuthenticationException:
                    logger.debug(f"{self.host}: agent key {key.get_name()} refused for {user}")
                    continue
                if remaining and not transport.is_authenticated():
                    self.set_error(f"Partial authentication, server requires {', '.join(remaining)}")
                    return AuthResult.PARTIAL
                return AuthResult.SUCCESS
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.set_error(f"Agent authentication error: {e}")
            return AuthResult.ERROR
        finally:
            agent.close()

        self.set_error(f"Access denied for {user}: no agent identity accepted")
        return AuthResult.DENIED

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def new_channel(self) -> "ChannelHandle":
        """Allocate an unopened channel bound to this session."""
        return ChannelHandle(self)

    def __repr__(self) -> str:
        state = "connected" if self.is_connected() else "disconnected"
        return f"SessionHandle({self.user or ''}@{self.host}:{self.port}, {state})"


class ChannelHandle:
    """
    One logical stream over a SessionHandle.

    Holds a non-owning reference to its session; the session must stay
    alive while the channel is in use.
    """

    def __init__(self, session: SessionHandle):
        self._session = session
        self._channel: Optional[paramiko.Channel] = None
        self._freed = False

    @property
    def session(self) -> SessionHandle:
        return self._session

    @property
    def freed(self) -> bool:
        return self._freed

    def get_error(self) -> Optional[str]:
        return self._session.get_error()

    def _fail(self, message: str) -> Status:
        self._session.set_error(message)
        return Status.ERROR

    def _live_transport(self) -> Optional[paramiko.Transport]:
        if self._freed:
            self._fail("Channel handle has been freed")
            return None
        if self._channel is not None:
            self._fail("Channel already opened")
            return None
        if not self._session.is_connected():
            self._fail("Session is not connected")
            return None
        return self._session.transport

    def open_session(self) -> Status:
        transport = self._live_transport()
        if transport is None:
            return Status.ERROR
        try:
            self._channel = transport.open_session(timeout=self._session.timeout)
        except (paramiko.SSHException, OSError, EOFError) as e:
            return self._fail(f"Channel open refused: {e}")
        return Status.OK

    def open_forward(self, remote_host: str, remote_port: int, source_host: str, source_port: int) -> Status:
        """Open a direct-tcpip channel to remote_host:remote_port."""
        transport = self._live_transport()
        if transport is None:
            return Status.ERROR
        try:
            self._channel = transport.open_channel(
                "direct-tcpip",
                (remote_host, remote_port),
                (source_host, source_port),
                timeout=self._session.timeout,
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            return self._fail(f"Forward to {remote_host}:{remote_port} refused: {e}")
        return Status.OK

    def request_exec(self, command: str) -> Status:
        if self._channel is None:
            return self._fail("Channel is not open")
        try:
            self._channel.exec_command(command)
        except (paramiko.SSHException, OSError, EOFError) as e:
            return self._fail(f"Exec request refused: {e}")
        return Status.OK

    def read(self, buffer: bytearray, count: int) -> int:
        """
        Read up to count bytes of stdout into buffer.

        Returns:
            Bytes read (0 at end of stream), or -1 on failure.
        """
        if self._channel is None:
            return int(self._fail("Channel is not open"))
        try:
            data = self._channel.recv(min(count, len(buffer)))
        except (socket.timeout, paramiko.SSHException, OSError, EOFError) as e:
            return int(self._fail(f"Read failed: {str(e) or type(e).__name__}"))
        buffer[:len(data)] = data
        return len(data)

    def write(self, data: bytes) -> int:
        """
        Write once; may be short.

        Returns:
            Bytes written, or -1 on failure.
        """
        if self._channel is None:
            return int(self._fail("Channel is not open"))
        try:
            return self._channel.send(data)
        except (socket.timeout, paramiko.SSHException, OSError, EOFError) as e:
            return int(self._fail(f"Write failed: {str(e) or type(e).__name__}"))

    def send_eof(self) -> Status:
        if self._channel is None:
            return Status.ERROR
        try:
            self._channel.shutdown_write()
        except (paramiko.SSHException, OSError, EOFError) as e:
            return self._fail(f"Send EOF failed: {e}")
        return Status.OK

    def close(self) -> Status:
        if self._channel is None:
            return Status.ERROR
        try:
            self._channel.close()
        except (paramiko.SSHException, OSError, EOFError) as e:
            return self._fail(f"Close failed: {e}")
        return Status.OK

    def is_open(self) -> bool:
        return self._channel is not None and not self._channel.closed

    def free(self) -> None:
        if self._freed:
            return
        if self._channel is not None and not self._channel.closed:
            self._channel.close()
        self._channel = None
        self._freed = True

    def __repr__(self) -> str:
        return f"ChannelHandle({'open' if self.is_open() else 'not open'})"
