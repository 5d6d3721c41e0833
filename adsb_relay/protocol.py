"""Binary track-batch message: the wire format shared by all sinks.

Every publish produces one message per stream sink; the UDP sink gets it
split into datagram-sized messages when needed. Messages are self-delimiting so
they can be concatenated on a TCP stream or in the output file:

Header (16 bytes, big-endian):
    4s   magic "ADSB"
    B    format version (1)
    B    flags (reserved, 0)
    H    record count
    d    send time, seconds since epoch

Record (54 bytes, big-endian), repeated `count` times:
    I    transponder address (24-bit)
    H    track number (1..512)
    B    target type   (0 undefined, 1 airplane, 2 helicopter, 3 aerostat)
    B    track status  (0 tracking, 1 reset)
    B    misses count  (clamped to 255)
    x    pad
    3f   position x, y, h  (m; x north, y east, NaN = unknown)
    3f   velocity x, y, h  (m/s)
    f    barometric height (m)
    d    forming time (feed seconds)
    d    capture time (feed seconds)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .categories import TargetType
from .tracker import Track, TrackStatus, Vector3

MAGIC = b"ADSB"
VERSION = 1

HEADER = struct.Struct(">4sBBHd")
RECORD = struct.Struct(">IHBBBx7f2d")

# Record count is a uint16
MAX_RECORDS = 0xFFFF

# Largest IPv4 UDP payload, and the records that fit in one datagram
MAX_DATAGRAM = 65507
MAX_DATAGRAM_RECORDS = (MAX_DATAGRAM - HEADER.size) // RECORD.size


class ProtocolError(ValueError):
    """Raised when a byte string is not a valid track-batch message."""


@dataclass
class TrackBatch:
    """A decoded message."""

    sent_at: float
    tracks: list[Track] = field(default_factory=list)


def encode_track(track: Track) -> bytes:
    p, v = track.position, track.velocity
    return RECORD.pack(
        track.id & 0xFFFFFF,
        track.number & 0xFFFF,
        int(track.target_type),
        int(track.status),
        min(max(track.misses_count, 0), 255),
        p.x, p.y, p.h,
        v.x, v.y, v.h,
        track.bar_height,
        track.forming_time,
        track.capture_time,
    )


def decode_track(data: bytes, offset: int = 0) -> Track:
    (addr, number, target_type, status, misses,
     px, py, ph, vx, vy, vh, bar_height,
     forming_time, capture_time) = RECORD.unpack_from(data, offset)
    try:
        target = TargetType(target_type)
        track_status = TrackStatus(status)
    except ValueError as e:
        raise ProtocolError(f"Bad enum value in record at offset {offset}: {e}") from e
    return Track(
        id=addr,
        number=number,
        position=Vector3(px, py, ph),
        velocity=Vector3(vx, vy, vh),
        bar_height=bar_height,
        target_type=target,
        misses_count=misses,
        forming_time=forming_time,
        capture_time=capture_time,
        status=track_status,
    )


def encode_batch(tracks: Iterable[Track], sent_at: float) -> bytes:
    """Serialize tracks into one message."""
    records = [encode_track(t) for t in tracks]
    if len(records) > MAX_RECORDS:
        raise ProtocolError(f"Too many records for one message: {len(records)}")
    return HEADER.pack(MAGIC, VERSION, 0, len(records), sent_at) + b"".join(records)


def encode_chunks(tracks: Iterable[Track], sent_at: float, max_records: int = MAX_RECORDS) -> list[bytes]:
    """Serialize tracks into consecutive messages of at most max_records each."""
    tracks = list(tracks)
    return [
        encode_batch(tracks[i:i + max_records], sent_at)
        for i in range(0, len(tracks), max_records)
    ]


def message_size(count: int) -> int:
    return HEADER.size + count * RECORD.size


def decode_batch(data: bytes, offset: int = 0) -> tuple[TrackBatch, int]:
    """Decode the message starting at offset.

    Returns (batch, bytes consumed). Raises ProtocolError on a bad header
    or truncated message.
    """
    if len(data) - offset < HEADER.size:
        raise ProtocolError("Truncated header")
    magic, version, _flags, count, sent_at = HEADER.unpack_from(data, offset)
    if magic != MAGIC:
        raise ProtocolError(f"Bad magic {magic!r}")
    if version != VERSION:
        raise ProtocolError(f"Unsupported version {version}")

    size = message_size(count)
    if len(data) - offset < size:
        raise ProtocolError(f"Truncated message: need {size} bytes, have {len(data) - offset}")

    pos = offset + HEADER.size
    tracks = []
    for _ in range(count):
        tracks.append(decode_track(data, pos))
        pos += RECORD.size
    return TrackBatch(sent_at=sent_at, tracks=tracks), size


def iter_batches(data: bytes) -> Iterator[TrackBatch]:
    """Decode a stream of concatenated messages (output file, TCP capture)."""
    offset = 0
    while offset < len(data):
        batch, consumed = decode_batch(data, offset)
        offset += consumed
        yield batch
