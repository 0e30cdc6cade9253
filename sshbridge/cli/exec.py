"""
Exec CLI handler.

Path: sshbridge/cli/exec.py

Handles: sshbridge exec <host> <command> [options]

Streams the command's stdout to our stdout as it arrives.
"""

import asyncio
import sys

from sshbridge.cli.connect import get_password, open_session
from sshbridge.core.errors import SSHError


def handle_exec(args) -> int:
    """Handle exec subcommand."""
    try:
        password = get_password(args)
        return asyncio.run(_run_exec(args, password))
    except SSHError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


async def _run_exec(args, password) -> int:
    session = await open_session(args, password)
    try:
        channel = session.create_channel()
        await channel.open_session()
        await channel.request_exec(args.command_line)

        total = 0
        while True:
            data = await channel.read()
            if not data:
                break
            total += len(data)
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()

        await channel.close()
        if args.debug:
            print(f"[{total} bytes from {session.host}]", file=sys.stderr)
        return 0
    finally:
        await session.disconnect()
