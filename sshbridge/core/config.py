"""
Configuration management for sshbridge.

Handles loading config from ~/.sshbridge/config.yaml and providing
default values for all settings. Explicit session options always win over
values found here.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


# Default paths
DEFAULT_BASE_DIR = Path.home() / ".sshbridge"
DEFAULT_CONFIG_FILE = DEFAULT_BASE_DIR / "config.yaml"
DEFAULT_LOG_DIR = DEFAULT_BASE_DIR / "logs"


@dataclass
class ExecutionConfig:
    """Background execution settings."""

    max_workers: int = 64
    timeout: float = 30


@dataclass
class SessionDefaults:
    """Session defaults."""

    config_file: Optional[Path] = None   # None = ~/.ssh/config discovery
    auto_detect_agent: bool = True


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    file: Optional[Path] = None


@dataclass
class Config:
    """Main configuration container."""

    base_dir: Path = DEFAULT_BASE_DIR
    config_file: Path = DEFAULT_CONFIG_FILE
    log_dir: Path = DEFAULT_LOG_DIR

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    ssh: SessionDefaults = field(default_factory=SessionDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file. If None, uses default location.
                         Can also be set via SSHBRIDGE_CONFIG env var.

        Returns:
            Config instance with values from file merged with defaults.
        """
        if config_path is None:
            config_path = Path(
                os.environ.get("SSHBRIDGE_CONFIG", str(DEFAULT_CONFIG_FILE))
            )
        config_path = Path(config_path).expanduser()

        config = cls()
        config.config_file = config_path

        # A relocated config file carries its own base and log directories
        if config_path != DEFAULT_CONFIG_FILE:
            config.base_dir = config_path.parent
            config.log_dir = config.base_dir / "logs"

        # If config file doesn't exist, return defaults
        if not config_path.exists():
            return config

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config YAML: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config YAML: expected a mapping in {config_path}")

        if "log_dir" in data:
            config.log_dir = Path(data["log_dir"]).expanduser()

        # Execution settings
        if "execution" in data:
            exec_data = data["execution"] or {}
            config.execution = ExecutionConfig(
                max_workers=int(exec_data.get("max_workers", 64)),
                timeout=float(exec_data.get("timeout", 30)),
            )

        # Session defaults
        if "ssh" in data:
            ssh_data = data["ssh"] or {}
            ssh_config_file = ssh_data.get("config_file")
            config.ssh = SessionDefaults(
                config_file=Path(ssh_config_file).expanduser() if ssh_config_file else None,
                auto_detect_agent=bool(ssh_data.get("auto_detect_agent", True)),
            )

        # Logging settings
        if "logging" in data:
            log_data = data["logging"] or {}
            log_file = log_data.get("file")
            config.logging = LoggingConfig(
                level=log_data.get("level", "INFO"),
                file=Path(log_file).expanduser() if log_file else None,
            )

        return config

    def ensure_directories(self):
        """Create required directories if they don't exist."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def save_default_config(self) -> bool:
        """
        Save a default config file if one doesn't exist.

        Returns:
            True if a file was written.
        """
        if self.config_file.exists():
            return False

        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        default_config = f"""\
# sshbridge Configuration

# =============================================================================
# Background Execution
# =============================================================================

execution:
  max_workers: {self.execution.max_workers}          # Threads available for blocking SSH calls
  timeout: {self.execution.timeout:g}              # Connect timeout in seconds (sessions may override)

# =============================================================================
# Session Defaults
# =============================================================================

ssh:
  # config_file: ~/.ssh/config   # OpenSSH client config used for host lookup
  auto_detect_agent: true        # 1Password, YubiKey, then SSH_AUTH_SOCK

# =============================================================================
# Logging
# =============================================================================

logging:
  level: INFO              # DEBUG, INFO, WARNING, ERROR
  file: {self.log_dir / 'sshbridge.log'}
"""

        with open(self.config_file, "w") as f:
            f.write(default_config)
        return True


# Singleton instance
_config: Optional[Config] = None


def get_config(reload: bool = False) -> Config:
    """
    Get the global configuration instance.

    Args:
        reload: Force reload from file.

    Returns:
        Config instance.
    """
    global _config

    if _config is None or reload:
        _config = Config.load()

    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace the global configuration (None forces a reload on next use)."""
    global _config
    _config = config
