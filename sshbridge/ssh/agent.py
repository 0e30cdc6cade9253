"""
SSH agent discovery.

Looks for agents in priority order:
    1. 1Password
    2. YubiKey (yubikey-agent)
    3. System agent from SSH_AUTH_SOCK

A candidate only counts if its path exists and is a UNIX socket.
"""

import logging
import os
import stat
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional


logger = logging.getLogger(__name__)

ONEPASSWORD_MACOS_GROUP = "2BUA8C4S2C.com.1password"


class AgentType(Enum):
    ONEPASSWORD = "onepassword"
    YUBIKEY = "yubikey"
    SYSTEM = "system"


@dataclass
class AgentInfo:
    """A reachable SSH agent."""
    type: AgentType
    socket_path: str


class AgentDetector:
    """Locate SSH agent sockets on this machine."""

    @staticmethod
    def detect() -> Optional[AgentInfo]:
        """Return the highest-priority available agent, or None."""
        agent = (
            AgentDetector.detect_1password()
            or AgentDetector.detect_yubikey()
            or AgentDetector.detect_system_agent()
        )
        if agent:
            logger.debug(f"Detected {agent.type.value} agent at {agent.socket_path}")
        return agent

    @staticmethod
    def detect_all() -> List[AgentInfo]:
        """Return every available agent in priority order."""
        candidates = [
            AgentDetector.detect_1password(),
            AgentDetector.detect_yubikey(),
            AgentDetector.detect_system_agent(),
        ]
        return [agent for agent in candidates if agent is not None]

    @staticmethod
    def detect_1password() -> Optional[AgentInfo]:
        if sys.platform == "darwin":
            socket_path = (
                Path.home() / "Library" / "Group Containers" / ONEPASSWORD_MACOS_GROUP / "t" / "agent.sock"
            )
        elif sys.platform.startswith("linux"):
            socket_path = Path.home() / ".1password" / "agent.sock"
        else:
            # Windows uses a named pipe, left to the system agent lookup
            return None

        if AgentDetector._socket_exists(str(socket_path)):
            return AgentInfo(type=AgentType.ONEPASSWORD, socket_path=str(socket_path))
        return None

    @staticmethod
    def detect_yubikey() -> Optional[AgentInfo]:
        socket_path = str(Path.home() / ".yubikey-agent.sock")
        if AgentDetector._socket_exists(socket_path):
            return AgentInfo(type=AgentType.YUBIKEY, socket_path=socket_path)
        return None

    @staticmethod
    def detect_system_agent() -> Optional[AgentInfo]:
        socket_path = os.environ.get("SSH_AUTH_SOCK")
        if socket_path and AgentDetector._socket_exists(socket_path):
            return AgentInfo(type=AgentType.SYSTEM, socket_path=socket_path)
        return None

    @staticmethod
    def _socket_exists(socket_path: str) -> bool:
        try:
            return stat.S_ISSOCK(os.stat(socket_path).st_mode)
        except OSError:
            return False
