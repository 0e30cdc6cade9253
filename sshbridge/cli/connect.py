"""
Session setup shared by the exec and tunnel handlers.

Path: sshbridge/cli/connect.py
"""

import getpass
import os
from typing import Optional

from sshbridge.core.errors import SSHAuthenticationError
from sshbridge.ssh.session import SSHSession, SessionOptions


PASSWORD_ENV = "SSHBRIDGE_PASSWORD"


def get_password(args) -> Optional[str]:
    """Password from SSHBRIDGE_PASSWORD or a prompt, when --password is given."""
    if not args.password:
        return None

    password = os.environ.get(PASSWORD_ENV) or getpass.getpass(f"Password for {args.user or args.host}: ")
    if not password:
        raise SSHAuthenticationError("Password must not be empty")
    return password


def build_session(args) -> SSHSession:
    """Create an unconnected session from connection arguments."""
    options = SessionOptions(
        host=args.host,
        port=args.port,
        user=args.user,
        config_file=args.ssh_config,
        agent_socket=args.agent_socket,
        timeout=args.timeout,
    )
    return SSHSession(options)


async def open_session(args, password: Optional[str]) -> SSHSession:
    """Connect and authenticate. The session is disconnected again on failure."""
    session = build_session(args)
    await session.connect()
    try:
        await session.authenticate(
            username=session.user,
            password=password,
            use_agent=password is None,
        )
    except BaseException:
        await session.disconnect()
        raise
    return session
