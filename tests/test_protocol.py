"""Tests for the binary track-batch format."""

import math
import struct

import pytest

from adsb_relay import protocol
from adsb_relay.categories import TargetType
from adsb_relay.tracker import Track, TrackStatus, Vector3


def _track(**kw) -> Track:
    fields = dict(
        id=0x4B1234,
        number=7,
        position=Vector3(-160.5, -166.25, 155.75),
        velocity=Vector3(0.0, 128.5, -2.5),
        bar_height=155.75,
        target_type=TargetType.AIRPLANE,
        misses_count=2,
        forming_time=1000.25,
        capture_time=990.5,
    )
    fields.update(kw)
    return Track(**fields)


class TestLayout:
    def test_sizes(self):
        assert protocol.HEADER.size == 16
        assert protocol.RECORD.size == 54
        assert protocol.message_size(3) == 16 + 3 * 54

    def test_header_fields(self):
        data = protocol.encode_batch([_track(), _track(id=1)], sent_at=1714765200.5)
        magic, version, flags, count, sent_at = struct.unpack_from(">4sBBHd", data)
        assert magic == b"ADSB"
        assert version == 1
        assert flags == 0
        assert count == 2
        assert sent_at == 1714765200.5
        assert len(data) == protocol.message_size(2)

    def test_record_prefix(self):
        data = protocol.encode_batch([_track(status=TrackStatus.RESET)], sent_at=0.0)
        addr, number, target_type, status, misses = struct.unpack_from(">IHBBB", data, 16)
        assert addr == 0x4B1234
        assert number == 7
        assert target_type == 1
        assert status == 1
        assert misses == 2

    def test_empty_batch(self):
        data = protocol.encode_batch([], sent_at=5.0)
        batch, consumed = protocol.decode_batch(data)
        assert consumed == 16
        assert batch.tracks == []
        assert batch.sent_at == 5.0


class TestDecode:
    def test_fields_survive(self):
        data = protocol.encode_batch([_track()], sent_at=12.0)
        batch, _ = protocol.decode_batch(data)
        t = batch.tracks[0]
        assert t.id == 0x4B1234
        assert t.number == 7
        assert t.target_type is TargetType.AIRPLANE
        assert t.status is TrackStatus.TRACKING
        # All chosen values are exact in float32
        assert (t.position.x, t.position.y, t.position.h) == (-160.5, -166.25, 155.75)
        assert (t.velocity.x, t.velocity.y, t.velocity.h) == (0.0, 128.5, -2.5)
        assert t.forming_time == 1000.25
        assert t.capture_time == 990.5

    def test_nan_preserved(self):
        data = protocol.encode_batch([_track(velocity=Vector3(), bar_height=float("nan"))], sent_at=0.0)
        t = protocol.decode_batch(data)[0].tracks[0]
        assert math.isnan(t.velocity.x) and math.isnan(t.velocity.h)
        assert math.isnan(t.bar_height)

    def test_misses_clamped(self):
        data = protocol.encode_batch([_track(misses_count=1000)], sent_at=0.0)
        assert protocol.decode_batch(data)[0].tracks[0].misses_count == 255

    def test_stream_of_messages(self):
        stream = (
            protocol.encode_batch([_track(id=1)], sent_at=1.0)
            + protocol.encode_batch([_track(id=2), _track(id=3)], sent_at=2.0)
        )
        batches = list(protocol.iter_batches(stream))
        assert [b.sent_at for b in batches] == [1.0, 2.0]
        assert [[t.id for t in b.tracks] for b in batches] == [[1], [2, 3]]


class TestErrors:
    def test_bad_magic(self):
        data = bytearray(protocol.encode_batch([_track()], sent_at=0.0))
        data[0:4] = b"XXXX"
        with pytest.raises(protocol.ProtocolError, match="magic"):
            protocol.decode_batch(bytes(data))

    def test_bad_version(self):
        data = bytearray(protocol.encode_batch([], sent_at=0.0))
        data[4] = 9
        with pytest.raises(protocol.ProtocolError, match="version"):
            protocol.decode_batch(bytes(data))

    def test_truncated_header(self):
        with pytest.raises(protocol.ProtocolError):
            protocol.decode_batch(b"ADSB")

    def test_truncated_records(self):
        data = protocol.encode_batch([_track(), _track()], sent_at=0.0)
        with pytest.raises(protocol.ProtocolError, match="Truncated"):
            protocol.decode_batch(data[:-1])

    def test_bad_enum(self):
        data = bytearray(protocol.encode_batch([_track()], sent_at=0.0))
        data[16 + 6] = 42  # target type
        with pytest.raises(protocol.ProtocolError):
            protocol.decode_batch(bytes(data))

    def test_trailing_garbage_in_stream(self):
        stream = protocol.encode_batch([_track()], sent_at=0.0) + b"junk"
        it = protocol.iter_batches(stream)
        assert next(it).tracks[0].id == 0x4B1234
        with pytest.raises(protocol.ProtocolError):
            next(it)


class TestChunks:
    def test_split_by_record_limit(self):
        tracks = [_track(number=n) for n in range(1, 6)]
        messages = protocol.encode_chunks(tracks, 3.0, max_records=2)
        assert len(messages) == 3
        batches = list(protocol.iter_batches(b"".join(messages)))
        assert [len(b.tracks) for b in batches] == [2, 2, 1]
        assert [t.number for b in batches for t in b.tracks] == [1, 2, 3, 4, 5]

    def test_no_tracks_no_messages(self):
        assert protocol.encode_chunks([], 3.0) == []

    def test_datagram_limit(self):
        assert protocol.MAX_DATAGRAM_RECORDS == 1212
        assert protocol.message_size(protocol.MAX_DATAGRAM_RECORDS) <= protocol.MAX_DATAGRAM
        assert protocol.message_size(protocol.MAX_DATAGRAM_RECORDS + 1) > protocol.MAX_DATAGRAM
