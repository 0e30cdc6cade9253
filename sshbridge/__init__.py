"""
sshbridge - asyncio interface to blocking SSH sessions and channels.

Usage:
    sshbridge exec example.com "uname -a" -u alice
    sshbridge tunnel db.internal --remote-host localhost --remote-port 5432
    sshbridge agents
"""

__version__ = "0.1.0"

from sshbridge.core.config import Config, get_config
from sshbridge.core.errors import (
    SSHError,
    SSHConnectionError,
    SSHAuthenticationError,
    SSHChannelError,
    SSHTunnelError,
    SSHErrorCategory,
)
from sshbridge.worker.pool import TaskPool, configure_logging
from sshbridge.ssh.session import SSHSession, SessionOptions, SessionState
from sshbridge.ssh.channel import SSHChannel, ChannelState
from sshbridge.ssh.tunnel import SSHTunnel
from sshbridge.ssh.agent import AgentDetector, AgentInfo, AgentType

__all__ = [
    # Version
    "__version__",
    # Config
    "Config",
    "get_config",
    # Errors
    "SSHError",
    "SSHConnectionError",
    "SSHAuthenticationError",
    "SSHChannelError",
    "SSHTunnelError",
    "SSHErrorCategory",
    # Execution
    "TaskPool",
    "configure_logging",
    # SSH
    "SSHSession",
    "SessionOptions",
    "SessionState",
    "SSHChannel",
    "ChannelState",
    "SSHTunnel",
    "AgentDetector",
    "AgentInfo",
    "AgentType",
]
