"""
SSH Tunnel - local TCP port forwarded through an SSHSession.

Path: sshbridge/ssh/tunnel.py

Each accepted local connection gets its own direct-tcpip channel. Two pumps
copy bytes in each direction; when either side finishes, the socket and the
channel are both closed.

Usage:
    tunnel = SSHTunnel(session, "localhost", 3306, local_port=3307)
    await tunnel.start()
    print(tunnel.local_address)
    ...
    await tunnel.stop()
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sshbridge.core.errors import SSHError, SSHTunnelError
from sshbridge.ssh.channel import DEFAULT_READ_SIZE, DEFAULT_SOURCE_HOST, SSHChannel
from sshbridge.ssh.session import SSHSession


logger = logging.getLogger(__name__)


@dataclass
class _TunnelConnection:
    """One accepted local socket and the channel it is mapped to."""
    conn_id: int
    channel: SSHChannel
    writer: asyncio.StreamWriter
    tasks: List[asyncio.Task] = field(default_factory=list)


class SSHTunnel:
    """
    Forward connections on local_host:local_port to remote_host:remote_port.

    Args:
        session: Connected and authenticated SSHSession.
        remote_host: Destination host, as resolved by the SSH server.
        remote_port: Destination port.
        local_host: Address to listen on.
        local_port: Port to listen on; 0 picks a free port.
    """

    def __init__(
        self,
        session: SSHSession,
        remote_host: str,
        remote_port: int,
        local_host: str = DEFAULT_SOURCE_HOST,
        local_port: int = 0,
    ):
        self.session = session
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.local_host = local_host or DEFAULT_SOURCE_HOST
        self.local_port = local_port or 0

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Dict[int, _TunnelConnection] = {}
        self._ids = itertools.count()

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        """(host, port) being listened on, or None when not running."""
        if not self.is_running:
            return None
        host, port = self._server.sockets[0].getsockname()[:2]
        return host, port

    @property
    def active_connection_count(self) -> int:
        return len(self._connections)

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """
        Start listening.

        Raises:
            SSHTunnelError: Already started, session not connected, or the
                local address could not be bound.
        """
        if self._server is not None:
            raise SSHTunnelError("Tunnel is already started")
        if not self.session.is_connected():
            raise SSHTunnelError("SSH session is not connected")

        try:
            self._server = await asyncio.start_server(
                self._on_client, host=self.local_host, port=self.local_port
            )
        except OSError as e:
            raise SSHTunnelError(f"Server error: {e}") from e

        self.local_port = self.local_address[1]
        logger.info(
            f"Tunnel listening on {self.local_host}:{self.local_port} "
            f"-> {self.remote_host}:{self.remote_port}"
        )

    async def stop(self) -> None:
        """Close every forwarded connection and the listener."""
        if self._server is None:
            return

        server = self._server
        server.close()
        for conn in list(self._connections.values()):
            await self._close_connection(conn)
        await server.wait_closed()
        self._server = None
        logger.info(f"Tunnel on {self.local_host}:{self.local_port} stopped")

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn_id = next(self._ids)
        peer = writer.get_extra_info("peername") or (DEFAULT_SOURCE_HOST, 0)
        source_host, source_port = peer[0], peer[1]

        try:
            channel = self.session.create_channel()
            await channel.request_forward_tcpip(
                self.remote_host, self.remote_port, source_host, source_port
            )
        except SSHError as e:
            logger.warning(f"Tunnel connection {conn_id} from {source_host}:{source_port} failed: {e}")
            writer.close()
            return

        conn = _TunnelConnection(conn_id, channel, writer)
        self._connections[conn_id] = conn
        logger.debug(f"Tunnel connection {conn_id} opened from {source_host}:{source_port}")

        conn.tasks = [
            asyncio.create_task(self._pump_to_channel(conn, reader)),
            asyncio.create_task(self._pump_to_socket(conn)),
        ]
        try:
            await asyncio.wait(conn.tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self._close_connection(conn)

    async def _pump_to_channel(self, conn: _TunnelConnection, reader: asyncio.StreamReader) -> None:
        """Socket -> channel. Short writes are continued until all data is sent."""
        try:
            while True:
                data = await reader.read(DEFAULT_READ_SIZE)
                if not data:
                    return
                view = memoryview(data)
                while view:
                    sent = await conn.channel.write(view)
                    if sent <= 0:
                        return
                    view = view[sent:]
        except (SSHError, OSError) as e:
            logger.debug(f"Tunnel connection {conn.conn_id}: upstream ended: {e}")

    async def _pump_to_socket(self, conn: _TunnelConnection) -> None:
        """Channel -> socket until a zero-length read."""
        try:
            while conn.channel.is_open():
                data = await conn.channel.read()
                if not data:
                    return
                conn.writer.write(data)
                await conn.writer.drain()
        except (SSHError, OSError) as e:
            logger.debug(f"Tunnel connection {conn.conn_id}: downstream ended: {e}")

    async def _close_connection(self, conn: _TunnelConnection) -> None:
        if self._connections.pop(conn.conn_id, None) is None:
            return

        for task in conn.tasks:
            if not task.done():
                task.cancel()

        conn.writer.close()
        try:
            await conn.channel.close()
        except SSHError as e:
            logger.debug(f"Tunnel connection {conn.conn_id}: close failed: {e}")
        logger.debug(f"Tunnel connection {conn.conn_id} closed")

    def __repr__(self) -> str:
        return (
            f"SSHTunnel({self.local_host}:{self.local_port} -> "
            f"{self.remote_host}:{self.remote_port}, connections={self.active_connection_count})"
        )
