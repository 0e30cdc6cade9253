"""
SSH error hierarchy and protocol error translation.

Path: sshbridge/core/errors.py

Every asynchronous failure reaching the caller is built by translate_error()
so that messages read the same way everywhere:

    "<operation message>: <protocol error string>"

Synchronous precondition failures raise the same exception types with a
static message.
"""

import socket
from enum import Enum
from typing import Optional, Type


DEFAULT_ERROR_MESSAGE = "SSH Error"


class SSHErrorCategory(Enum):
    """Categorized SSH error types for better diagnostics."""
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    DNS_FAILURE = "dns_failure"
    AUTH_FAILURE = "auth_failure"
    KEY_EXCHANGE_FAILURE = "key_exchange"
    CHANNEL_ERROR = "channel_error"
    PROTOCOL_ERROR = "protocol_error"
    SOCKET_ERROR = "socket_error"
    UNKNOWN = "unknown"


def categorize_ssh_error(exception: BaseException) -> SSHErrorCategory:
    """
    Categorize an SSH exception for better error reporting.

    Args:
        exception: The caught exception.

    Returns:
        SSHErrorCategory indicating the type of failure.
    """
    error_msg = str(exception).lower()
    error_type = type(exception).__name__

    if "connection refused" in error_msg or "errno 111" in error_msg:
        return SSHErrorCategory.CONNECTION_REFUSED

    if "timed out" in error_msg or "timeout" in error_type.lower():
        return SSHErrorCategory.CONNECTION_TIMEOUT

    if "name or service not known" in error_msg or "getaddrinfo" in error_msg:
        return SSHErrorCategory.DNS_FAILURE

    if any(x in error_msg for x in ["auth", "permission denied", "no supported authentication"]):
        return SSHErrorCategory.AUTH_FAILURE

    if any(x in error_msg for x in ["key exchange", "kex", "incompatible", "no matching"]):
        return SSHErrorCategory.KEY_EXCHANGE_FAILURE

    if "channel" in error_msg or "eof" in error_msg:
        return SSHErrorCategory.CHANNEL_ERROR

    if isinstance(exception, (socket.error, OSError)) or "socket" in error_msg:
        return SSHErrorCategory.SOCKET_ERROR

    if "ssh" in error_type.lower() or "paramiko" in error_type.lower():
        return SSHErrorCategory.PROTOCOL_ERROR

    return SSHErrorCategory.UNKNOWN


class SSHError(Exception):
    """Base class for every error raised or rejected by sshbridge."""

    def __init__(self, message: str, category: Optional[SSHErrorCategory] = None):
        super().__init__(message)
        self.message = message
        self.category = category or categorize_ssh_error(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class SSHConnectionError(SSHError):
    """Connecting, disconnecting or using a session in the wrong state."""


class SSHAuthenticationError(SSHError):
    """Password or agent authentication was refused."""

    def __init__(self, message: str, category: Optional[SSHErrorCategory] = None):
        super().__init__(message, category or SSHErrorCategory.AUTH_FAILURE)


class SSHChannelError(SSHError):
    """Channel open, exec, forward or I/O failure."""


class SSHTunnelError(SSHError):
    """Local tunnel listener failure."""


def translate_error(
    message: Optional[str] = None,
    detail: Optional[str] = None,
    error_cls: Type[SSHError] = SSHError,
) -> SSHError:
    """
    Build the uniform error value for a failed protocol call.

    Args:
        message: Operation-specific text, e.g. "Failed to read from channel".
        detail: The protocol library's last-error string, if it produced one.
        error_cls: SSHError subclass to instantiate.

    Returns:
        An SSHError (not raised) whose text is "<message>: <detail>" when both
        are available, whichever one is available otherwise, and
        DEFAULT_ERROR_MESSAGE when neither is.
    """
    if message and detail:
        text = f"{message}: {detail}"
    else:
        text = message or detail or DEFAULT_ERROR_MESSAGE
    return error_cls(text)
