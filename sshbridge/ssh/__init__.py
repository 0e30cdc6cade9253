"""SSH layer - blocking handles and the asynchronous session, channel and tunnel built on them."""

from sshbridge.ssh.session import SSHSession, SessionOptions, SessionState
from sshbridge.ssh.channel import SSHChannel, ChannelState
from sshbridge.ssh.tunnel import SSHTunnel
from sshbridge.ssh.agent import AgentDetector, AgentInfo, AgentType

__all__ = [
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
