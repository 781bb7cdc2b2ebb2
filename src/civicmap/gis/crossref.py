"""Cross-reference fan-out for a selected address.

Selecting an address looks up nearby schools and libraries concurrently.
The two lookups are independent: one failing never discards the other's
results, it only records an error for its own category.
"""

from __future__ import annotations

import asyncio
import logging

from civicmap.core.errors import CivicMapError, RequestCancelled
from civicmap.gis.models import CrossReference, ProximityKind, ProximityResult
from civicmap.gis.service import SpatialQueryService, validate_point

logger = logging.getLogger(__name__)

CROSS_REFERENCE_RADIUS_M = 2000.0

_CATEGORIES: dict[str, ProximityKind] = {
    "schools": ProximityKind.SCHOOL,
    "libraries": ProximityKind.LIBRARY,
}


class CrossReferenceAggregator:
    """Runs the schools/libraries radius queries around a point."""

    def __init__(self, source: SpatialQueryService, radius_m: float = CROSS_REFERENCE_RADIUS_M) -> None:
        self._source = source
        self._radius_m = radius_m

    @property
    def radius_m(self) -> float:
        return self._radius_m

    async def on_address_selected(self, lon: float, lat: float) -> CrossReference:
        lon, lat = validate_point(lon, lat)
        outcomes = await asyncio.gather(
            *(
                self._source.query_within(lon, lat, kind, self._radius_m)
                for kind in _CATEGORIES.values()
            ),
            return_exceptions=True,
        )

        result = CrossReference()
        for category, outcome in zip(_CATEGORIES, outcomes):
            if isinstance(outcome, (asyncio.CancelledError, RequestCancelled)):
                raise outcome
            if isinstance(outcome, CivicMapError):
                logger.warning("Cross-reference %s failed at (%f, %f): %s", category, lon, lat, outcome.message)
                result.errors[category] = outcome.message
            elif isinstance(outcome, BaseException):
                logger.error(
                    "Cross-reference %s failed at (%f, %f)",
                    category, lon, lat,
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                result.errors[category] = f"Failed to load {category}"
            else:
                setattr(result, category, outcome)

        logger.info(
            "Cross-reference at (%f, %f): %d schools, %d libraries, %d errors",
            lon, lat, len(result.schools), len(result.libraries), len(result.errors),
        )
        return result

    async def nearest_schools(self, lon: float, lat: float, limit: int = 5) -> list[ProximityResult]:
        """The nearest *limit* schools regardless of distance."""
        return await self._source.query_nearest(lon, lat, ProximityKind.SCHOOL, limit)
