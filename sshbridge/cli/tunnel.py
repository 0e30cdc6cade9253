"""
Tunnel CLI handler.

Path: sshbridge/cli/tunnel.py

Handles: sshbridge tunnel <host> --remote-host H --remote-port P [options]

Runs until interrupted with Ctrl+C.
"""

import asyncio
import sys

from sshbridge.cli.connect import get_password, open_session
from sshbridge.core.errors import SSHError
from sshbridge.ssh.tunnel import SSHTunnel


def handle_tunnel(args) -> int:
    """Handle tunnel subcommand."""
    try:
        password = get_password(args)
        asyncio.run(_run_tunnel(args, password))
    except SSHError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nTunnel stopped")
    return 0


async def _run_tunnel(args, password) -> None:
    session = await open_session(args, password)
    tunnel = SSHTunnel(
        session,
        args.remote_host,
        args.remote_port,
        local_host=args.local_host,
        local_port=args.local_port,
    )
    try:
        await tunnel.start()
        host, port = tunnel.local_address
        print(f"Forwarding {host}:{port} -> {args.remote_host}:{args.remote_port} via {session.host}")
        print("Press Ctrl+C to stop...")
        await asyncio.Event().wait()
    finally:
        await tunnel.stop()
        await session.disconnect()
