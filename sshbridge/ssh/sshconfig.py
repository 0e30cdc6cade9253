"""
OpenSSH client config lookup.

Thin layer over paramiko.SSHConfig that answers "what does ~/.ssh/config say
about this host" in a typed form. Used by SessionHandle.options_parse_config().
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import paramiko


logger = logging.getLogger(__name__)

DEFAULT_SSH_CONFIG = Path.home() / ".ssh" / "config"

# Keys lifted into SSHConfigHost attributes; everything else lands in .options
_KNOWN_KEYS = {"hostname", "port", "user", "identityfile", "identityagent", "proxyjump", "forwardagent"}


@dataclass
class SSHConfigHost:
    """Effective settings for one host after config matching."""

    host: str
    hostname: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    identity_file: List[str] = field(default_factory=list)
    identity_agent: Optional[str] = None
    proxy_jump: Optional[str] = None
    forward_agent: Optional[bool] = None
    options: Dict[str, str] = field(default_factory=dict)


def load_ssh_config(path: Optional[Union[str, Path]] = None) -> Optional[paramiko.SSHConfig]:
    """
    Parse an OpenSSH client config file.

    Args:
        path: Config file. None means ~/.ssh/config.

    Returns:
        paramiko.SSHConfig, or None if the file does not exist.

    Raises:
        OSError: File exists but cannot be read.
    """
    config_path = Path(path).expanduser() if path else DEFAULT_SSH_CONFIG
    if not config_path.exists():
        logger.debug(f"SSH config not found: {config_path}")
        return None
    return paramiko.SSHConfig.from_path(str(config_path))


def _expand(value: str) -> str:
    return os.path.expanduser(value) if value.startswith("~") else value


def lookup_host(config: paramiko.SSHConfig, hostname: str) -> Optional[SSHConfigHost]:
    """
    Resolve a hostname against a parsed config.

    Returns:
        SSHConfigHost, or None when no Host block contributed anything.
    """
    data = config.lookup(hostname)
    if set(data.keys()) == {"hostname"} and data["hostname"] == hostname:
        return None

    host = SSHConfigHost(host=hostname, hostname=data.get("hostname"))

    if "port" in data:
        try:
            host.port = int(data["port"])
        except ValueError:
            logger.warning(f"Ignoring invalid Port {data['port']!r} for {hostname}")
    host.user = data.get("user")
    host.identity_file = [_expand(p) for p in data.get("identityfile", [])]
    if "identityagent" in data:
        host.identity_agent = _expand(data["identityagent"])
    host.proxy_jump = data.get("proxyjump")
    if "forwardagent" in data:
        host.forward_agent = str(data["forwardagent"]).lower() == "yes"

    host.options = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
    return host


def find_host_config(hostname: str, path: Optional[Union[str, Path]] = None) -> Optional[SSHConfigHost]:
    """
    Find the effective config for a host.

    Args:
        hostname: Name as typed by the user (may be an alias).
        path: Config file. None means ~/.ssh/config.

    Returns:
        SSHConfigHost, or None if the file is absent or nothing matched.
    """
    config = load_ssh_config(path)
    if config is None:
        return None
    return lookup_host(config, hostname)
