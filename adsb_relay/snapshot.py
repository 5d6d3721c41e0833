"""Decode dump1090 aircraft.json documents into typed snapshots.

Input format (dump1090-fa / readsb):

    {
        "now": 1714765200.3,
        "aircraft": [
            {"hex": "4b1234", "lat": 56.88, "lon": 35.93, "alt_baro": 1000,
             "gs": 250, "track": 90, "baro_rate": 0, "category": "A3",
             "seen": 0},
            ...
        ]
    }

Any aircraft field may be missing; a missing field means "not updated this
cycle", never zero. Presence is kept explicit: absent or unusable values
become None on the RawAircraftRecord.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_NUMERIC_FIELDS = ("lat", "lon", "alt_baro", "gs", "track", "baro_rate")


@dataclass
class RawAircraftRecord:
    """One aircraft entry of a snapshot, before projection."""

    id: int
    lat: float | None = None
    lon: float | None = None
    alt_baro: float | None = None
    gs: float | None = None
    track: float | None = None
    baro_rate: float | None = None
    category: str | None = None
    seen: float = 0.0

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def has_ground_velocity(self) -> bool:
        return self.gs is not None and self.track is not None


@dataclass
class Snapshot:
    """One feed delivery: feed timestamp plus aircraft records in feed order."""

    now: float
    aircraft: list[RawAircraftRecord] = field(default_factory=list)


def _number(value: Any) -> float | None:
    """Return value as a finite float, or None."""
    # bool is an int subclass; "alt_baro": "ground" and friends are not numbers either
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def parse_hex_id(value: Any) -> int | None:
    """Parse a transponder address like "4b1234" (or "~4b1234" for TIS-B)."""
    if not isinstance(value, str):
        return None
    text = value.strip().lstrip("~")
    if not text:
        return None
    try:
        addr = int(text, 16)
    except ValueError:
        return None
    if addr < 0 or addr > 0xFFFFFF:
        return None
    return addr


def parse_record(entry: Any) -> RawAircraftRecord | None:
    """Build a RawAircraftRecord from one JSON aircraft object.

    Returns None when the entry has no usable transponder address. Bad
    optional fields are dropped individually.
    """
    if not isinstance(entry, dict):
        return None
    addr = parse_hex_id(entry.get("hex"))
    if addr is None:
        logger.debug("Skipping aircraft without valid hex id: %r", entry.get("hex"))
        return None

    values = {name: _number(entry.get(name)) for name in _NUMERIC_FIELDS}
    category = entry.get("category")
    seen = _number(entry.get("seen"))

    return RawAircraftRecord(
        id=addr,
        category=category if isinstance(category, str) else None,
        seen=seen if seen is not None else 0.0,
        **values,
    )


def parse_snapshot(body: str | bytes) -> Snapshot | None:
    """Decode a feed document. Malformed documents yield None."""
    try:
        doc = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        logger.info("Discarding malformed snapshot: %s", e)
        return None

    if not isinstance(doc, dict):
        logger.info("Discarding snapshot: top level is not an object")
        return None

    now = _number(doc.get("now"))
    if now is None:
        logger.info("Discarding snapshot without numeric 'now'")
        return None

    raw_aircraft = doc.get("aircraft")
    if not isinstance(raw_aircraft, list):
        raw_aircraft = []

    records = []
    for entry in raw_aircraft:
        record = parse_record(entry)
        if record is not None:
            records.append(record)
    return Snapshot(now=now, aircraft=records)
