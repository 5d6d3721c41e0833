"""Per-aircraft track table with merge and eviction.

Maintains a dictionary of Track objects keyed by 24-bit ICAO address.
Each snapshot from the feed goes through TrackTable.ingest(), which:
- Drops the snapshot if its feed timestamp was already processed
- Resets tracks the feed itself reports as stale (seen > max_misses)
- Projects position/velocity into the radar frame and merges them into the
  live track, keeping the last valid value of every field
- Reports a track as Updated once its geometry is complete
- Resets tracks whose forming time is older than the timeout

Timestamps are feed time ("now" from the snapshot), never wall clock.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from .categories import TargetType, classify
from .projection import FOOT_TO_METER, FPM_TO_MS, KNOT_TO_MS, Projector
from .snapshot import RawAircraftRecord, Snapshot

logger = logging.getLogger(__name__)

# Tracks not advanced for this many feed seconds are reset
DEFAULT_TIMEOUT = 10.0

# Feed "seen" counter above this means the aircraft is gone
MAX_MISSES = 5

# Track numbers cycle through 1..MAX_NUMBER
MAX_NUMBER = 512

NAN = float("nan")

# Position and velocity go out as float32; anything larger counts as unset
FLOAT32_MAX = 3.4028234663852886e38


class TrackStatus(IntEnum):
    TRACKING = 0
    RESET = 1


class Reason(Enum):
    UPDATED = "updated"
    RESET = "reset"


@dataclass
class Vector3:
    """Cartesian triple; NaN marks a component never supplied."""

    x: float = NAN
    y: float = NAN
    h: float = NAN

    def merge(self, other: Vector3) -> None:
        """Take every valid component of other, keep ours where it is NaN."""
        if not math.isnan(other.x):
            self.x = other.x
        if not math.isnan(other.y):
            self.y = other.y
        if not math.isnan(other.h):
            self.h = other.h


@dataclass
class Track:
    """Mutable state for a single tracked aircraft."""

    id: int
    number: int
    position: Vector3 = field(default_factory=Vector3)
    velocity: Vector3 = field(default_factory=Vector3)
    bar_height: float = NAN
    target_type: TargetType = TargetType.UNDEFINED
    misses_count: int = 0
    forming_time: float = 0.0
    capture_time: float = 0.0
    status: TrackStatus = TrackStatus.TRACKING

    @property
    def hex_id(self) -> str:
        return f"{self.id:06x}"

    @property
    def is_complete(self) -> bool:
        """Position x/y/h and horizontal velocity all known."""
        p, v = self.position, self.velocity
        return not any(math.isnan(c) for c in (p.x, p.y, p.h, v.x, v.y))


def _position(projector: Projector, record: RawAircraftRecord) -> Vector3 | None:
    if not record.has_position:
        return None
    alt_m = record.alt_baro * FOOT_TO_METER if record.alt_baro is not None else NAN
    projected = projector.project(math.radians(record.lat), math.radians(record.lon), alt_m)
    if projected is None:
        logger.debug("%06x: unusable fix %s, %s", record.id, record.lat, record.lon)
        return None
    return Vector3(*(_storable(c) for c in projected))


def _storable(value: float) -> float:
    """value, or NaN if it does not fit a float32."""
    return value if abs(value) < FLOAT32_MAX else NAN


def _velocity(record: RawAircraftRecord) -> Vector3:
    v = Vector3()
    if record.has_ground_velocity:
        speed = _storable(record.gs * KNOT_TO_MS)
        if math.isnan(speed):
            logger.debug("%06x: ground speed %s out of range", record.id, record.gs)
        else:
            angle = math.radians(record.track)
            v.x = speed * math.cos(angle)
            v.y = speed * math.sin(angle)
    if record.baro_rate is not None:
        v.h = _storable(record.baro_rate * FPM_TO_MS)
    return v


class TrackTable:
    """Authoritative id → Track mapping fed by feed snapshots.

    Only ingest() mutates the table. Emitted tracks are copies, so callers
    can hold on to them after the next snapshot.
    """

    def __init__(
        self,
        projector: Projector,
        timeout: float = DEFAULT_TIMEOUT,
        max_misses: int = MAX_MISSES,
        max_number: int = MAX_NUMBER,
    ):
        """Initialize track table.

        Args:
            projector: Geodetic projector centred on the radar.
            timeout: Feed seconds without an update before a track is reset.
            max_misses: Feed staleness counter above which a track is reset.
            max_number: Upper bound of the cyclic track number.
        """
        self.tracks: dict[int, Track] = {}
        self.projector = projector
        self.timeout = timeout
        self.max_misses = max_misses
        self.max_number = max_number

        self.last_now: float | None = None
        self._next_number = 0

        # Counters
        self.snapshots = 0
        self.duplicates = 0
        self.records = 0
        self.created = 0
        self.resets = 0

    def __len__(self) -> int:
        return len(self.tracks)

    def __contains__(self, addr: int) -> bool:
        return addr in self.tracks

    def is_duplicate(self, now: float) -> bool:
        """True if a snapshot with this feed timestamp was already ingested."""
        return self.last_now is not None and now == self.last_now

    def _allocate_number(self) -> int:
        # Bare cyclic counter: numbers are not checked against live tracks
        if self._next_number >= self.max_number:
            self._next_number = 0
        self._next_number += 1
        return self._next_number

    def reset_numbering(self) -> None:
        self._next_number = 0

    def _reset(self, track: Track) -> tuple[Track, Reason]:
        del self.tracks[track.id]
        track.status = TrackStatus.RESET
        self.resets += 1
        return track, Reason.RESET

    def ingest(self, snapshot: Snapshot) -> list[tuple[Track, Reason]]:
        """Apply one snapshot and return the (track, reason) emissions.

        Per-record emissions come first in feed order, followed by timeout
        resets. A duplicate snapshot returns an empty list.
        """
        now = snapshot.now
        if self.is_duplicate(now):
            self.duplicates += 1
            return []
        self.last_now = now
        self.snapshots += 1

        emitted: list[tuple[Track, Reason]] = []
        for record in snapshot.aircraft:
            self.records += 1
            result = self._apply(record, now)
            if result is not None:
                emitted.append(result)

        for track in [t for t in self.tracks.values() if now - t.forming_time > self.timeout]:
            logger.debug("%s #%d timed out", track.hex_id, track.number)
            emitted.append(self._reset(track))

        return emitted

    def _apply(self, record: RawAircraftRecord, now: float) -> tuple[Track, Reason] | None:
        misses = max(int(record.seen), 0)
        existing = self.tracks.get(record.id)

        if misses > self.max_misses:
            if existing is None:
                return None
            logger.debug("%s #%d lost (seen=%s)", existing.hex_id, existing.number, record.seen)
            return self._reset(existing)

        position = _position(self.projector, record) or Vector3()
        velocity = _velocity(record)
        target_type = classify(record.category)

        if existing is not None:
            track = existing
            track.position.merge(position)
            track.velocity.merge(velocity)
            track.forming_time = now
            track.misses_count = misses
            # Barometric height follows the merged position height
            track.bar_height = track.position.h
            if target_type is not TargetType.UNDEFINED:
                track.target_type = target_type
        else:
            track = Track(
                id=record.id,
                number=self._allocate_number(),
                position=position,
                velocity=velocity,
                bar_height=position.h,
                target_type=target_type,
                misses_count=misses,
                forming_time=now,
                capture_time=now,
            )
            self.tracks[record.id] = track
            self.created += 1

        if track.is_complete:
            return copy.deepcopy(track), Reason.UPDATED
        return None

    def get_active(self) -> list[Track]:
        """Return all live tracks, sorted by track number."""
        return sorted(self.tracks.values(), key=lambda t: t.number)
