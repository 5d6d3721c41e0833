"""Publication of track batches to every configured sink.

Each publish() serializes the batch once (see protocol.py) and hands the same
bytes to:
- FileSink:   binary append to the output file
- UdpSink:    datagrams to a fixed loopback port, the batch split so each
              fits in one datagram
- TCP:        every client connected to the ConnectionManager
and, for human inspection, writes one text line per updated track to the
optional TextSink.

Delivery is fire-and-forget. A failing sink logs and is skipped; it never
affects the other sinks or the caller.
"""

from __future__ import annotations

import logging
import socket
import time
from pathlib import Path
from typing import IO, Iterable

from . import protocol
from .server import ConnectionManager
from .tracker import Reason, Track

logger = logging.getLogger(__name__)


class FileSink:
    """Appends binary messages to a file."""

    def __init__(self, path: str | Path, truncate: bool = False):
        self.path = Path(path)
        self._fh: IO[bytes] | None = None
        try:
            self._fh = open(self.path, "wb" if truncate else "ab")
        except OSError as e:
            logger.error("Can't open output file for writing %s: %s", self.path, e)

    @property
    def writable(self) -> bool:
        return self._fh is not None

    def write(self, data: bytes) -> bool:
        if self._fh is None:
            return False
        try:
            self._fh.write(data)
            self._fh.flush()
        except OSError as e:
            logger.warning("Write to %s failed: %s", self.path, e)
            return False
        return True

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


class TextSink:
    """Fixed-width text log of updated tracks.

    Columns: forming time, id, number, bar height, position x/y/h,
    velocity x/y/h. Meters and m/s, three decimals.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._fh: IO[str] | None = None
        try:
            self._fh = open(self.path, "w")
        except OSError as e:
            logger.error("Can't open text file for writing %s: %s", self.path, e)

    @property
    def writable(self) -> bool:
        return self._fh is not None

    @staticmethod
    def format_line(track: Track) -> str:
        p, v = track.position, track.velocity
        return (
            f"{int(track.forming_time)} {track.id} {track.number:4d} "
            f"{track.bar_height:8.3f} "
            f"{p.x:10.3f} {p.y:10.3f} {p.h:10.3f} "
            f"{v.x:8.3f} {v.y:8.3f} {v.h:8.3f}"
        )

    def write(self, tracks: Iterable[Track]) -> None:
        if self._fh is None:
            return
        try:
            for track in tracks:
                self._fh.write(self.format_line(track) + "\n")
            self._fh.flush()
        except OSError as e:
            logger.warning("Write to %s failed: %s", self.path, e)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


class UdpSink:
    """Sends each message as a single datagram."""

    def __init__(self, host: str = "127.0.0.1", port: int = 30155):
        self.address = (host, port)
        self._sock: socket.socket | None = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setblocking(False)

    def send(self, data: bytes) -> bool:
        if self._sock is None:
            return False
        try:
            self._sock.sendto(data, self.address)
        except OSError as e:
            logger.warning("Can't send UDP packet to %s:%d: %s", *self.address, e)
            return False
        return True

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None


class Publisher:
    """Fans a track batch out to all sinks.

    The publisher only borrows the connection manager's client set; removing
    a failed client is the manager's job.
    """

    def __init__(
        self,
        file_sink: FileSink | None = None,
        udp_sink: UdpSink | None = None,
        text_sink: TextSink | None = None,
        clients: ConnectionManager | None = None,
    ):
        self.file_sink = file_sink
        self.udp_sink = udp_sink
        self.text_sink = text_sink
        self.clients = clients

        self.messages = 0
        self.bytes_sent = 0

    def publish(self, emissions: list[tuple[Track, Reason]], timestamp: float | None = None) -> bytes | None:
        """Serialize and send one batch. Returns the message, None if nothing to send."""
        if not emissions:
            return None
        if timestamp is None:
            timestamp = time.time()

        tracks = [track for track, _ in emissions]
        try:
            data = protocol.encode_batch(tracks, timestamp)
        except (protocol.ProtocolError, OverflowError) as e:
            logger.error("Cannot encode batch of %d tracks: %s", len(emissions), e)
            return None

        if self.text_sink is not None:
            self.text_sink.write(track for track, reason in emissions if reason is Reason.UPDATED)
        if self.file_sink is not None:
            self.file_sink.write(data)
        if self.udp_sink is not None:
            if len(tracks) <= protocol.MAX_DATAGRAM_RECORDS:
                self.udp_sink.send(data)
            else:
                for datagram in protocol.encode_chunks(tracks, timestamp, protocol.MAX_DATAGRAM_RECORDS):
                    self.udp_sink.send(datagram)
        if self.clients is not None:
            self.clients.broadcast(data)

        self.messages += 1
        self.bytes_sent += len(data)
        return data

    def close(self) -> None:
        for sink in (self.file_sink, self.udp_sink, self.text_sink):
            if sink is not None:
                sink.close()
