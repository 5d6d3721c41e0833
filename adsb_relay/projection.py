"""Geodetic → local Cartesian projection around the radar reference point.

Aircraft positions arrive as WGS84-ish latitude/longitude/barometric altitude.
Downstream consumers work in a flat frame centred on the radar, so every
fix is pushed through a transverse Mercator projection on the GRS80
ellipsoid whose central meridian and origin latitude sit on the radar:

    +proj=tmerc +lat_0=<lat0> +lon_0=<lon0> +ellps=GRS80 +k_0=1 +x_0=0 +y_0=0

Frame conventions (shared with the velocity conversion in the tracker):
- x: northing from the radar, meters
- y: easting from the radar, meters
- h: height above the radar reference height, meters

Series expansion follows Snyder, "Map Projections: A Working Manual"
(USGS PP 1395), eq. 8-9 .. 8-13. Within a few hundred km of the central
meridian the error is well below a meter.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# GRS80
SEMI_MAJOR_AXIS = 6378137.0
FLATTENING = 1 / 298.257222101

# Feed unit conversions
KNOT_TO_MS = 0.5144444444
FPM_TO_MS = 0.00508
FOOT_TO_METER = 1 / 3.280839895

# |lat| or |lon| below this (radians) means the receiver never filled the field
DEGENERATE_EPSILON = 1e-5


@dataclass(frozen=True)
class _TransverseMercator:
    """Precomputed projection context for one origin."""

    lat0: float  # radians
    lon0: float  # radians
    alt0: float  # meters
    k0: float = 1.0

    @property
    def e2(self) -> float:
        return FLATTENING * (2 - FLATTENING)

    @property
    def ep2(self) -> float:
        return self.e2 / (1 - self.e2)

    def meridian_arc(self, phi: float) -> float:
        """Distance along the meridian from the equator to latitude phi."""
        e2 = self.e2
        e4 = e2 * e2
        e6 = e4 * e2
        return SEMI_MAJOR_AXIS * (
            (1 - e2 / 4 - 3 * e4 / 64 - 5 * e6 / 256) * phi
            - (3 * e2 / 8 + 3 * e4 / 32 + 45 * e6 / 1024) * math.sin(2 * phi)
            + (15 * e4 / 256 + 45 * e6 / 1024) * math.sin(4 * phi)
            - (35 * e6 / 3072) * math.sin(6 * phi)
        )

    def forward(self, phi: float, lam: float) -> tuple[float, float]:
        """Project (lat, lon) in radians to (northing, easting) in meters."""
        e2 = self.e2
        ep2 = self.ep2
        sin_phi = math.sin(phi)
        cos_phi = math.cos(phi)
        tan_phi = math.tan(phi)

        n = SEMI_MAJOR_AXIS / math.sqrt(1 - e2 * sin_phi * sin_phi)
        t = tan_phi * tan_phi
        c = ep2 * cos_phi * cos_phi
        # Longitude difference wrapped to [-pi, pi] across the antimeridian
        a = math.remainder(lam - self.lon0, 2 * math.pi) * cos_phi

        easting = self.k0 * n * (
            a
            + (1 - t + c) * a**3 / 6
            + (5 - 18 * t + t * t + 72 * c - 58 * ep2) * a**5 / 120
        )
        northing = self.k0 * (
            self.meridian_arc(phi)
            - self.meridian_arc(self.lat0)
            + n * tan_phi * (
                a * a / 2
                + (5 - t + 9 * c + 4 * c * c) * a**4 / 24
                + (61 - 58 * t + t * t + 600 * c - 330 * ep2) * a**6 / 720
            )
        )
        return northing, easting


def _build_context(lat0_deg: float, lon0_deg: float, alt0_m: float) -> _TransverseMercator:
    for value in (lat0_deg, lon0_deg, alt0_m):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite radar origin: {lat0_deg}, {lon0_deg}, {alt0_m}")
    if abs(lat0_deg) >= 90.0:
        raise ValueError(f"Radar latitude out of range: {lat0_deg}")
    return _TransverseMercator(
        lat0=math.radians(lat0_deg),
        lon0=math.radians(lon0_deg),
        alt0=alt0_m,
    )


class Projector:
    """Transverse Mercator projector centred on the radar.

    The origin is set once at startup and may be replaced at runtime with
    set_origin(). project() never raises: any input it cannot turn into a
    finite (x, y, h) triple yields None so the caller can drop that field
    group and carry on.
    """

    def __init__(self, lat0_deg: float, lon0_deg: float, alt0_m: float = 0.0):
        self._context: _TransverseMercator | None = None
        self.set_origin(lat0_deg, lon0_deg, alt0_m)

    @property
    def origin(self) -> tuple[float, float, float] | None:
        """Current origin as (lat_deg, lon_deg, alt_m), None if unset."""
        if self._context is None:
            return None
        return (
            math.degrees(self._context.lat0),
            math.degrees(self._context.lon0),
            self._context.alt0,
        )

    @property
    def ready(self) -> bool:
        return self._context is not None

    def set_origin(self, lat0_deg: float, lon0_deg: float, alt0_m: float = 0.0) -> bool:
        """Re-centre the projection. Returns False if the origin is invalid.

        The previous context is dropped before the new one is built, so a
        failed rebuild leaves the projector without a context rather than
        silently projecting around the old origin.
        """
        self._context = None
        try:
            self._context = _build_context(lat0_deg, lon0_deg, alt0_m)
        except ValueError as e:
            logger.error("Cannot set radar position: %s", e)
            return False
        logger.debug("Radar origin set to %.6f, %.6f, %.1f m", lat0_deg, lon0_deg, alt0_m)
        return True

    def project(self, lat_rad: float, lon_rad: float, alt_m: float) -> tuple[float, float, float] | None:
        """Project a geodetic fix to local (x, y, h), or None if unusable.

        alt_m may be NaN (altitude unknown); h is then NaN too while x/y
        are still produced.
        """
        ctx = self._context
        if ctx is None:
            return None
        if not (math.isfinite(lat_rad) and math.isfinite(lon_rad)):
            return None
        if abs(lat_rad) < DEGENERATE_EPSILON or abs(lon_rad) < DEGENERATE_EPSILON:
            return None
        if abs(lat_rad) >= math.pi / 2:
            return None

        try:
            x, y = ctx.forward(lat_rad, lon_rad)
        except (ValueError, ZeroDivisionError, OverflowError):
            return None
        if not (math.isfinite(x) and math.isfinite(y)):
            return None
        return x, y, alt_m - ctx.alt0
