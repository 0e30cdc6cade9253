"""
sshbridge CLI - Main entry point.

Usage:
    sshbridge init                     # Write default config
    sshbridge agents                   # List detected SSH agents
    sshbridge exec <host> <command> [options]
    sshbridge tunnel <host> --remote-host H --remote-port P [options]
"""

import argparse
import logging
import sys

from sshbridge import __version__


def main(argv=None):
    """Main CLI entry point."""

    parser = argparse.ArgumentParser(
        prog="sshbridge",
        description="Run SSH commands and tunnels from asyncio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  init        Write the default configuration file
  agents      List SSH agents found on this machine
  exec        Run a command on a remote host
  tunnel      Forward a local port through a remote host

Examples:
  # First-time setup
  sshbridge init

  # Run a command with the detected agent
  sshbridge exec example.com "uname -a" -u alice

  # Run a command with a password (prompted, or SSHBRIDGE_PASSWORD)
  sshbridge exec 10.0.0.5 "show version" -u admin --password

  # Reach a remote database on localhost:5433
  sshbridge tunnel bastion --remote-host db.internal --remote-port 5432 --local-port 5433

Use 'sshbridge <command> --help' for more information on a command.
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        help="Config file (default: ~/.sshbridge/config.yaml or SSHBRIDGE_CONFIG)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    # Init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write the default configuration file",
        description="Create ~/.sshbridge and a commented default config.yaml",
    )
    _setup_init_parser(init_parser)

    # Agents subcommand
    subparsers.add_parser(
        "agents",
        help="List detected SSH agents",
        description="List SSH agent sockets in priority order",
    )

    # Exec subcommand
    exec_parser = subparsers.add_parser(
        "exec",
        help="Run a command on a remote host",
        description="Connect, authenticate, run one command and stream its output",
    )
    _setup_connection_args(exec_parser)
    exec_parser.add_argument("command_line", metavar="command", help="Command to run")

    # Tunnel subcommand
    tunnel_parser = subparsers.add_parser(
        "tunnel",
        help="Forward a local port through a remote host",
        description="Listen locally and forward each connection over SSH until interrupted",
    )
    _setup_connection_args(tunnel_parser)
    _setup_tunnel_parser(tunnel_parser)

    # Parse args
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        _setup_environment(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    # Dispatch to subcommand handler
    if args.command == "init":
        from sshbridge.cli.init import handle_init
        return handle_init(args)

    elif args.command == "agents":
        from sshbridge.cli.agents import handle_agents
        return handle_agents(args)

    elif args.command == "exec":
        from sshbridge.cli.exec import handle_exec
        return handle_exec(args)

    elif args.command == "tunnel":
        from sshbridge.cli.tunnel import handle_tunnel
        return handle_tunnel(args)

    else:
        parser.print_help()
        return 1


def _setup_environment(args):
    """Load config and configure logging before dispatch."""
    from sshbridge.core.config import Config, set_config
    from sshbridge.worker.pool import configure_logging

    config = Config.load(args.config)
    set_config(config)

    level = logging.DEBUG if args.debug else getattr(logging, config.logging.level.upper(), logging.INFO)
    configure_logging(level=level)

    if config.logging.file and args.command != "init":
        config.logging.file.parent.mkdir(parents=True, exist_ok=True)
        configure_logging(level=level, handler=logging.FileHandler(config.logging.file))


def _setup_init_parser(parser: argparse.ArgumentParser):
    """Set up init subcommand parser."""
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite an existing config file"
    )


def _setup_connection_args(parser: argparse.ArgumentParser):
    """Arguments shared by every command that opens a session."""
    parser.add_argument("host", help="Host name, user@host, or ssh config alias")

    parser.add_argument(
        "--port", "-p",
        type=int,
        help="SSH port (default: ssh config, then 22)"
    )
    parser.add_argument(
        "--user", "-u",
        help="SSH username (default: ssh config, then local user)"
    )
    parser.add_argument(
        "--ssh-config", "-F",
        help="OpenSSH client config file"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Connect timeout in seconds (default: execution.timeout)"
    )

    # Authentication: agent unless --password is given
    parser.add_argument(
        "--password",
        action="store_true",
        help="Authenticate with a password (prompted, or set SSHBRIDGE_PASSWORD)"
    )
    parser.add_argument(
        "--agent-socket",
        help="Agent socket path (default: auto-detect)"
    )


def _setup_tunnel_parser(parser: argparse.ArgumentParser):
    """Set up tunnel subcommand parser."""
    parser.add_argument(
        "--remote-host",
        required=True,
        help="Destination host, as seen from the SSH server"
    )
    parser.add_argument(
        "--remote-port",
        type=int,
        required=True,
        help="Destination port"
    )
    parser.add_argument(
        "--local-host",
        default="127.0.0.1",
        help="Local listen address (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--local-port",
        type=int,
        default=0,
        help="Local listen port (default: any free port)"
    )


if __name__ == "__main__":
    sys.exit(main())
