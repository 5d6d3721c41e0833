"""TCP broadcast server: connection registry for track subscribers.

Clients connect and then only receive: every published track-batch message
is written to every connected client. Anything a client sends is read and
discarded so the socket notices EOF and errors.

The listening socket is (re)bound by ensure_listening(), which the service
calls on a timer. A port that is busy at startup therefore does not take the
process down; the server just comes up on a later tick.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_PORT = 30155

# Drop subscribers that stop reading once this much output is queued
MAX_CLIENT_BUFFER = 1 << 20


class ConnectionManager:
    """Owns the listening socket and the set of live client writers."""

    def __init__(self, host: str = "0.0.0.0", port: int = DEFAULT_PORT, max_buffer: int = MAX_CLIENT_BUFFER):
        self.host = host
        self.port = port
        self.max_buffer = max_buffer
        self._server: asyncio.AbstractServer | None = None
        self._clients: set[asyncio.StreamWriter] = set()

        self.accepted = 0
        self.dropped = 0

    @property
    def clients(self) -> tuple[asyncio.StreamWriter, ...]:
        return tuple(self._clients)

    @property
    def listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def bound_port(self) -> int | None:
        """Actual port, useful when bound to port 0."""
        if not self.listening:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def ensure_listening(self) -> bool:
        """Bind the listening socket if it is not already serving."""
        if self.listening:
            return True
        if self._server is not None:
            self._server.close()
            self._server = None
        try:
            self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        except OSError as e:
            logger.warning("Cannot listen on %s:%d: %s", self.host, self.port, e)
            return False
        logger.info("Track server listening on %s:%d", self.host, self.bound_port)
        return True

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        self._clients.add(writer)
        self.accepted += 1
        logger.info("Client connected: %s (%d total)", peer, len(self._clients))
        try:
            while await reader.read(4096):
                pass
        except (ConnectionError, OSError) as e:
            logger.info("Client %s error: %s", peer, e)
        finally:
            self.drop(writer)

    def drop(self, writer: asyncio.StreamWriter) -> None:
        """Remove a client from the registry and close its transport."""
        if writer not in self._clients:
            return
        self._clients.discard(writer)
        self.dropped += 1
        logger.info("Client disconnected: %s (%d left)", writer.get_extra_info("peername"), len(self._clients))
        writer.close()

    def broadcast(self, data: bytes) -> int:
        """Queue data on every client. Returns the number of clients written.

        Never blocks: writes go to the transport buffer. Clients that are
        closing, fail the write or have too much unsent output are dropped.
        """
        failed = []
        sent = 0
        for writer in self._clients:
            if writer.is_closing():
                failed.append(writer)
                continue
            try:
                writer.write(data)
            except (ConnectionError, OSError, RuntimeError) as e:
                logger.warning("Can't send TCP packet to %s: %s", writer.get_extra_info("peername"), e)
                failed.append(writer)
                continue
            if writer.transport.get_write_buffer_size() > self.max_buffer:
                logger.warning("Dropping slow client %s", writer.get_extra_info("peername"))
                failed.append(writer)
                continue
            sent += 1
        for writer in failed:
            self.drop(writer)
        return sent

    async def close(self) -> None:
        for writer in list(self._clients):
            self.drop(writer)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
