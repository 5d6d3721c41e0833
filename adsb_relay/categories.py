"""ADS-B emitter category → target type.

dump1090 reports the emitter category as a two-character code (DO-260B
§2.2.3.2.5.2): set letter A..D followed by a digit. Only the broad class
matters to downstream consumers:

    A1..A6  light .. heavy / high performance  → AIRPLANE
    A7      rotorcraft                         → HELICOPTER
    B2      lighter-than-air                   → AEROSTAT
"""

from __future__ import annotations

from enum import IntEnum


class TargetType(IntEnum):
    UNDEFINED = 0
    AIRPLANE = 1
    HELICOPTER = 2
    AEROSTAT = 3


def classify(category: str | None) -> TargetType:
    """Map an emitter category code to a TargetType."""
    if not category or len(category) != 2:
        return TargetType.UNDEFINED

    if category[0] == "A":
        if "1" <= category[1] <= "6":
            return TargetType.AIRPLANE
        if category[1] >= "7":
            return TargetType.HELICOPTER
    if category == "B2":
        return TargetType.AEROSTAT
    return TargetType.UNDEFINED
