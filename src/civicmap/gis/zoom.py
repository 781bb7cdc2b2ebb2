"""Zoom policy: clamping, the query guard and simplification tolerance."""

from __future__ import annotations

import math

MIN_ZOOM = 0.0
MAX_ZOOM = 22.0
DEFAULT_ZOOM = 12.0

# (exclusive upper zoom bound, tolerance in degrees), coarse to fine.
# Roughly 30 m, 10 m, 5 m, 2 m at Toronto's latitude; 0.5 m above z15.
_TOLERANCE_STEPS: tuple[tuple[float, float], ...] = (
    (9.0, 0.0003),
    (11.0, 0.0001),
    (13.0, 0.00005),
    (15.0, 0.00002),
)
_FINEST_TOLERANCE = 0.000005


def clamp_zoom(z: float | str | None, default: float = DEFAULT_ZOOM) -> float:
    """Coerce *z* into ``[0, 22]``; missing or non-numeric values yield *default*."""
    if z is None:
        return default
    try:
        value = float(z)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value):
        return default
    return max(MIN_ZOOM, min(MAX_ZOOM, value))


def tolerance_for_zoom(z: float) -> float:
    """Return the ST_Simplify tolerance (degrees) for zoom *z*.

    Non-increasing in *z*. A breakpoint value belongs to the finer tier,
    so ``tolerance_for_zoom(13) == 0.00002``.
    """
    for upper, tolerance in _TOLERANCE_STEPS:
        if z < upper:
            return tolerance
    return _FINEST_TOLERANCE


def zoom_permits_query(z: float, min_zoom: float = 10.0) -> bool:
    return z >= min_zoom
