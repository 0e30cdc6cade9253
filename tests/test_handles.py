"""Tests for the blocking paramiko-backed handles."""

import socket
from unittest.mock import Mock, patch

import paramiko
import pytest

from sshbridge.ssh.handles import ChannelHandle, SessionHandle
from sshbridge.worker.task import AuthResult, Status


@pytest.fixture
def session_handle(tmp_path):
    handle = SessionHandle(config_path=str(tmp_path / "no_ssh_config"))
    handle.options_set("host", "example.com")
    handle.options_set("user", "alice")
    return handle


def _attach_transport(handle) -> Mock:
    transport = Mock(spec=paramiko.Transport)
    transport.is_active.return_value = True
    transport.is_authenticated.return_value = True
    handle._transport = transport
    return transport


# ----------------------------------------------------------------------
# Options
# ----------------------------------------------------------------------

def test_host_with_user(session_handle):
    assert session_handle.options_set("host", "bob@example.org") == Status.OK
    assert session_handle.host == "example.org"
    assert session_handle.user == "bob"


@pytest.mark.parametrize("value", ["", "   ", None, 42])
def test_invalid_host(session_handle, value):
    assert session_handle.options_set("host", value) == Status.ERROR
    assert session_handle.get_error().startswith("Invalid host")


@pytest.mark.parametrize("value, expected", [(22, 22), ("2222", 2222), (65535, 65535)])
def test_valid_port(session_handle, value, expected):
    assert session_handle.options_set("port", value) == Status.OK
    assert session_handle.port == expected


@pytest.mark.parametrize("value", [0, 65536, -1, "ssh", None, True])
def test_invalid_port(session_handle, value):
    assert session_handle.options_set("port", value) == Status.ERROR
    assert session_handle.get_error().startswith("Invalid port")
    assert session_handle.port == 22


def test_identity_agent_expands_home(session_handle, monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert session_handle.options_set("identity_agent", "~/agent.sock") == Status.OK
    assert session_handle.identity_agent == str(tmp_path / "agent.sock")


def test_timeout(session_handle):
    assert session_handle.options_set("timeout", 2.5) == Status.OK
    assert session_handle.timeout == 2.5
    assert session_handle.options_set("timeout", 0) == Status.OK
    assert session_handle.timeout is None
    assert session_handle.options_set("timeout", -1) == Status.ERROR


def test_unknown_option(session_handle):
    assert session_handle.options_set("compression", "yes") == Status.ERROR
    assert session_handle.get_error() == "Unknown option: compression"


def test_parse_config_missing_explicit_file(session_handle, tmp_path):
    assert session_handle.options_parse_config(str(tmp_path / "missing")) == Status.ERROR
    assert "Unable to open config file" in session_handle.get_error()


def test_parse_config_missing_default_file(session_handle):
    assert session_handle.options_parse_config() == Status.OK


def test_parse_config_identity_agent(tmp_path):
    path = tmp_path / "ssh_config"
    path.write_text("Host lab\n    HostName lab.example.com\n    IdentityAgent /tmp/lab-agent.sock\n")
    handle = SessionHandle()
    handle.options_set("host", "lab")
    assert handle.options_parse_config(str(path)) == Status.OK
    assert handle.host == "lab.example.com"
    assert handle.identity_agent == "/tmp/lab-agent.sock"


# ----------------------------------------------------------------------
# Connection
# ----------------------------------------------------------------------

def test_connect_requires_host(tmp_path):
    handle = SessionHandle(config_path=str(tmp_path / "none"))
    assert handle.connect() == Status.ERROR
    assert handle.get_error() == "Hostname required"


def test_connect_refused(session_handle):
    with patch(
        "sshbridge.ssh.handles.socket.create_connection",
        side_effect=ConnectionRefusedError(111, "Connection refused"),
    ):
        assert session_handle.connect() == Status.ERROR

    assert session_handle.get_error() == (
        "Failed to connect to example.com:22: [Errno 111] Connection refused"
    )
    assert not session_handle.is_connected()


def test_connect_handshake_failure_closes_everything(session_handle):
    sock = Mock()
    transport = Mock()
    transport.start_client.side_effect = paramiko.SSHException("Error reading SSH protocol banner")

    with patch("sshbridge.ssh.handles.socket.create_connection", return_value=sock), \
            patch("sshbridge.ssh.handles.paramiko.Transport", return_value=transport):
        assert session_handle.connect() == Status.ERROR

    transport.close.assert_called_once()
    sock.close.assert_called_once()
    assert "Error reading SSH protocol banner" in session_handle.get_error()


def test_connect_and_disconnect(session_handle):
    session_handle.options_set("timeout", 7)
    transport = Mock()
    transport.is_active.return_value = True
    transport.get_remote_server_key.return_value.get_fingerprint.return_value = b"\x01\x02"

    with patch("sshbridge.ssh.handles.socket.create_connection") as create_connection, \
            patch("sshbridge.ssh.handles.paramiko.Transport", return_value=transport):
        assert session_handle.connect() == Status.OK

    create_connection.assert_called_once_with(("example.com", 22), timeout=7.0)
    transport.start_client.assert_called_once_with(timeout=7.0)
    assert session_handle.is_connected()

    session_handle.disconnect()
    session_handle.disconnect()
    transport.close.assert_called_once()
    assert not session_handle.is_connected()


def test_free_disconnects_and_blocks_reuse(session_handle):
    transport = _attach_transport(session_handle)
    session_handle.free()
    transport.close.assert_called_once()
    assert session_handle.freed
    assert session_handle.connect() == Status.ERROR
    assert "freed" in session_handle.get_error()


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------

def test_password_auth_requires_connection(session_handle):
    assert session_handle.userauth_password("alice", "secret") == AuthResult.ERROR
    assert session_handle.get_error() == "Session is not connected"


def test_password_auth_success(session_handle):
    transport = _attach_transport(session_handle)
    transport.auth_password.return_value = []
    assert session_handle.userauth_password(None, "secret") == AuthResult.SUCCESS
    transport.auth_password.assert_called_once_with("alice", "secret")


def test_password_auth_denied(session_handle):
    transport = _attach_transport(session_handle)
    transport.auth_password.side_effect = paramiko.AuthenticationException("Authentication failed.")
    assert session_handle.userauth_password("alice", "wrong") == AuthResult.DENIED
    assert session_handle.get_error() == "Access denied for alice: Authentication failed."


def test_password_auth_not_allowed(session_handle):
    transport = _attach_transport(session_handle)
    transport.auth_password.side_effect = paramiko.BadAuthenticationType(
        "Bad authentication type", ["publickey"]
    )
    assert session_handle.userauth_password("alice", "secret") == AuthResult.DENIED
    assert "server accepts publickey" in session_handle.get_error()


def test_password_auth_partial(session_handle):
    transport = _attach_transport(session_handle)
    transport.auth_password.return_value = ["publickey"]
    transport.is_authenticated.return_value = False
    assert session_handle.userauth_password("alice", "secret") == AuthResult.PARTIAL


def test_agent_auth_without_agent(session_handle, monkeypatch):
    _attach_transport(session_handle)
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    assert session_handle.userauth_agent("alice") == AuthResult.ERROR
    assert session_handle.get_error() == "No SSH agent available"


def test_agent_auth_tries_each_key(session_handle):
    transport = _attach_transport(session_handle)
    transport.auth_publickey.side_effect = [paramiko.AuthenticationException("no"), []]
    session_handle.options_set("identity_agent", "/tmp/agent.sock")

    agent = Mock()
    first, second = Mock(), Mock()
    agent.get_keys.return_value = (first, second)

    with patch("sshbridge.ssh.handles.IdentityAgent", return_value=agent) as agent_cls:
        assert session_handle.userauth_agent(None) == AuthResult.SUCCESS

    agent_cls.assert_called_once_with("/tmp/agent.sock", timeout=None)
    assert [c.args for c in transport.auth_publickey.call_args_list] == [("alice", first), ("alice", second)]
    agent.close.assert_called_once()


def test_agent_auth_no_key_accepted(session_handle):
    transport = _attach_transport(session_handle)
    transport.auth_publickey.side_effect = paramiko.AuthenticationException("no")
    session_handle.options_set("identity_agent", "/tmp/agent.sock")

    agent = Mock()
    agent.get_keys.return_value = (Mock(),)
    with patch("sshbridge.ssh.handles.IdentityAgent", return_value=agent):
        assert session_handle.userauth_agent("alice") == AuthResult.DENIED

    assert session_handle.get_error() == "Access denied for alice: no agent identity accepted"
    agent.close.assert_called_once()


def test_agent_auth_empty_agent(session_handle):
    _attach_transport(session_handle)
    session_handle.options_set("identity_agent", "/tmp/agent.sock")
    agent = Mock()
    agent.get_keys.return_value = ()
    with patch("sshbridge.ssh.handles.IdentityAgent", return_value=agent):
        assert session_handle.userauth_agent("alice") == AuthResult.DENIED
    assert session_handle.get_error() == "SSH agent has no identities"


def test_agent_auth_unreachable_socket(session_handle):
    _attach_transport(session_handle)
    session_handle.options_set("identity_agent", "/tmp/agent.sock")
    with patch("sshbridge.ssh.handles.IdentityAgent", side_effect=FileNotFoundError(2, "No such file")):
        assert session_handle.userauth_agent("alice") == AuthResult.ERROR
    assert session_handle.get_error().startswith("Unable to connect to SSH agent at /tmp/agent.sock")


# ----------------------------------------------------------------------
# Channels
# ----------------------------------------------------------------------

def test_channel_requires_connected_session(session_handle):
    channel = session_handle.new_channel()
    assert isinstance(channel, ChannelHandle)
    assert channel.open_session() == Status.ERROR
    assert channel.get_error() == "Session is not connected"


def test_channel_io_before_open(session_handle):
    channel = session_handle.new_channel()
    assert channel.read(bytearray(8), 8) == -1
    assert channel.write(b"x") == -1
    assert channel.request_exec("uptime") == Status.ERROR
    assert session_handle.get_error() == "Channel is not open"


def test_channel_session_lifecycle(session_handle):
    transport = _attach_transport(session_handle)
    paramiko_channel = Mock()
    paramiko_channel.closed = False
    paramiko_channel.recv.return_value = b"abc"
    paramiko_channel.send.return_value = 2
    transport.open_session.return_value = paramiko_channel

    channel = session_handle.new_channel()
    assert channel.open_session() == Status.OK
    assert channel.is_open()
    assert channel.open_session() == Status.ERROR
    assert channel.get_error() == "Channel already opened"

    assert channel.request_exec("uptime") == Status.OK
    paramiko_channel.exec_command.assert_called_once_with("uptime")

    buffer = bytearray(16)
    assert channel.read(buffer, 16) == 3
    assert bytes(buffer[:3]) == b"abc"
    paramiko_channel.recv.assert_called_once_with(16)

    assert channel.write(b"xyz") == 2

    assert channel.send_eof() == Status.OK
    paramiko_channel.shutdown_write.assert_called_once()
    assert channel.close() == Status.OK
    paramiko_channel.close.assert_called_once()

    paramiko_channel.closed = True
    assert not channel.is_open()
    channel.free()
    assert channel.freed
    assert channel.open_session() == Status.ERROR


def test_channel_read_timeout(session_handle):
    transport = _attach_transport(session_handle)
    paramiko_channel = Mock()
    paramiko_channel.recv.side_effect = socket.timeout()
    transport.open_session.return_value = paramiko_channel

    channel = session_handle.new_channel()
    channel.open_session()
    assert channel.read(bytearray(4), 4) == -1
    assert channel.get_error() == "Read failed: TimeoutError"


def test_channel_open_refused(session_handle):
    transport = _attach_transport(session_handle)
    transport.open_session.side_effect = paramiko.ChannelException(1, "Administratively prohibited")
    channel = session_handle.new_channel()
    assert channel.open_session() == Status.ERROR
    assert channel.get_error().startswith("Channel open refused")


def test_channel_forward(session_handle):
    transport = _attach_transport(session_handle)
    session_handle.options_set("timeout", 4)
    channel = session_handle.new_channel()

    assert channel.open_forward("db.internal", 5432, "127.0.0.1", 40000) == Status.OK
    transport.open_channel.assert_called_once_with(
        "direct-tcpip", ("db.internal", 5432), ("127.0.0.1", 40000), timeout=4.0
    )


def test_channel_free_closes_open_channel(session_handle):
    transport = _attach_transport(session_handle)
    paramiko_channel = Mock()
    paramiko_channel.closed = False
    transport.open_session.return_value = paramiko_channel

    channel = session_handle.new_channel()
    channel.open_session()
    channel.free()
    channel.free()
    paramiko_channel.close.assert_called_once()
