"""
Init CLI handler.

Path: sshbridge/cli/init.py

Handles: sshbridge init [--force]
"""

from sshbridge.core.config import Config, get_config


def handle_init(args) -> int:
    """Handle init subcommand."""
    current = get_config()

    if current.config_file.exists():
        if not args.force:
            print(f"Config already exists: {current.config_file}")
            print("Use --force to overwrite")
            return 0
        current.config_file.unlink()

    # Always write defaults, not the values of the file being replaced
    config = Config(
        base_dir=current.base_dir,
        config_file=current.config_file,
        log_dir=current.log_dir,
    )
    config.ensure_directories()
    config.save_default_config()

    print(f"Created {config.config_file}")
    print(f"Log directory: {config.log_dir}")
    return 0
