"""Spatial query service protocol and PostGIS implementation."""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Protocol, runtime_checkable

from civicmap.core.config import DBConfig, QueryConfig
from civicmap.core.errors import BackendFailure, InvalidInput, NotFound, QueryTimeout
from civicmap.core.types import GeoJSON, HealthStatus
from civicmap.db.engine import DatabaseManager
from civicmap.gis import sql
from civicmap.gis.capabilities import SchemaCapabilities
from civicmap.gis.models import (
    AddressFeature,
    BBox,
    FeatureCollection,
    ParcelFeature,
    ProximityKind,
    ProximityResult,
    SearchResult,
    SnapResult,
)
from civicmap.gis.zoom import tolerance_for_zoom, zoom_permits_query

logger = logging.getLogger(__name__)

COORDS_REQUIRED_MESSAGE = "lat and lng are required"
ADDRESS_MODE_MESSAGE = "Either parcel_id or bbox is required"
SEARCH_REQUIRED_MESSAGE = "q (query) parameter is required"


@runtime_checkable
class SpatialQueryService(Protocol):
    """Protocol for viewport, parcel/address and proximity queries."""

    async def query_parcels(self, bbox: BBox, zoom: float) -> FeatureCollection: ...

    async def query_addresses(
        self,
        parcel_id: int | None = None,
        bbox: BBox | None = None,
        zoom: float | None = None,
    ) -> FeatureCollection: ...

    async def query_parcel_addresses(self, parcel_id: int) -> FeatureCollection: ...

    async def query_parcel_for_address(self, address_id: int) -> int: ...

    async def search_addresses(self, q: str | None, limit: int | None = None) -> list[SearchResult]: ...

    async def query_proximity(
        self,
        lon: float,
        lat: float,
        radius_m: float | None = None,
        kinds: list[ProximityKind] | None = None,
    ) -> list[ProximityResult]: ...

    async def query_within(
        self, lon: float, lat: float, kind: ProximityKind, radius_m: float
    ) -> list[ProximityResult]: ...

    async def query_nearest(
        self, lon: float, lat: float, kind: ProximityKind, limit: int
    ) -> list[ProximityResult]: ...

    async def snap_to_road(self, lon: float, lat: float) -> list[SnapResult]: ...

    async def health(self) -> HealthStatus: ...


# ---------------------------------------------------------------------------
# Input validation shared by implementations
# ---------------------------------------------------------------------------


def validate_point(lon: float | None, lat: float | None) -> tuple[float, float]:
    """Return ``(lon, lat)`` as floats or raise :class:`InvalidInput`."""
    if lon is None or lat is None:
        raise InvalidInput(COORDS_REQUIRED_MESSAGE)
    try:
        lon_f, lat_f = float(lon), float(lat)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(COORDS_REQUIRED_MESSAGE) from exc
    if not (math.isfinite(lon_f) and math.isfinite(lat_f)):
        raise InvalidInput(COORDS_REQUIRED_MESSAGE)
    if not (-180.0 <= lon_f <= 180.0 and -90.0 <= lat_f <= 90.0):
        raise InvalidInput("lat/lng out of range")
    return lon_f, lat_f


def validate_radius(radius_m: float) -> float:
    if not math.isfinite(radius_m) or radius_m <= 0:
        raise InvalidInput("radius must be a positive number of meters")
    return float(radius_m)


def validate_id(value: Any, label: str) -> int:
    """Positive integer identifier, else ``InvalidInput("Invalid <label> ID")``."""
    message = f"Invalid {label} ID"
    if isinstance(value, bool):
        raise InvalidInput(message)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(message) from exc
    if not math.isfinite(number) or number <= 0 or number != int(number):
        raise InvalidInput(message)
    return int(number)


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(maximum, int(limit)))


def _geometry(value: Any) -> GeoJSON | None:
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return value


def _proximity(row: Any) -> ProximityResult:
    return ProximityResult(
        type=ProximityKind(row["type"]),
        name=row["name"],
        distance_m=max(0.0, float(row["distance_m"])),
        geometry=_geometry(row["geom"]),
        address=row["address"],
    )


def _address(row: Any) -> AddressFeature:
    return AddressFeature(
        address_point_id=row["address_point_id"],
        civic_number=row.get("civic_number"),
        street_name=row.get("street_name"),
        full_address=row.get("address_full"),
        geometry=_geometry(row["geom"]),
    )


# ---------------------------------------------------------------------------
# PostGIS implementation
# ---------------------------------------------------------------------------


class PostGISQueryService:
    """Spatial queries against a PostGIS geometry store.

    Every call runs in its own bounded transaction (see
    :meth:`DatabaseManager.transaction`) and is stateless apart from the
    cached schema capabilities.
    """

    def __init__(
        self,
        db: DatabaseManager,
        config: QueryConfig | None = None,
        db_config: DBConfig | None = None,
        capabilities: SchemaCapabilities | None = None,
    ) -> None:
        self._db = db
        self._config = config or QueryConfig()
        db_config = db_config or DBConfig()
        self._timeout_ms = db_config.statement_timeout_ms
        self._search_timeout_ms = db_config.search_timeout_ms
        self._capabilities = capabilities or SchemaCapabilities(db, self._timeout_ms)

    @property
    def capabilities(self) -> SchemaCapabilities:
        return self._capabilities

    async def _fetch(self, stmt: Any, params: dict[str, Any], label: str, timeout_ms: int | None = None) -> list[Any]:
        async with self._db.transaction(timeout_ms or self._timeout_ms, label=label) as conn:
            result = await conn.execute(stmt, params)
            return list(result.mappings().all())

    # -- parcels / addresses -------------------------------------------------

    async def query_parcels(self, bbox: BBox, zoom: float) -> FeatureCollection:
        if not zoom_permits_query(zoom, self._config.min_zoom):
            return FeatureCollection.empty()
        tolerance = tolerance_for_zoom(zoom)
        rows = await self._fetch(
            sql.PARCELS_IN_BBOX,
            {
                "min_x": bbox.min_x,
                "min_y": bbox.min_y,
                "max_x": bbox.max_x,
                "max_y": bbox.max_y,
                "tolerance": tolerance,
                "limit": self._config.parcel_limit,
            },
            label="parcels",
        )
        features = [
            ParcelFeature(parcel_id=r["parcel_id"], f_type=r["f_type"], geometry=_geometry(r["geom"]))
            for r in rows
        ]
        logger.info("[parcels] returned %d features for z=%.2f", len(features), zoom)
        return FeatureCollection.of(features)

    async def query_addresses(
        self,
        parcel_id: int | None = None,
        bbox: BBox | None = None,
        zoom: float | None = None,
    ) -> FeatureCollection:
        if parcel_id is not None:
            return await self.query_parcel_addresses(parcel_id)
        if bbox is None:
            raise InvalidInput(ADDRESS_MODE_MESSAGE)
        zoom = self._config.default_zoom if zoom is None else zoom
        if not zoom_permits_query(zoom, self._config.min_zoom):
            return FeatureCollection.empty()
        rows = await self._fetch(
            sql.ADDRESSES_IN_BBOX,
            {
                "min_x": bbox.min_x,
                "min_y": bbox.min_y,
                "max_x": bbox.max_x,
                "max_y": bbox.max_y,
                "limit": self._config.address_limit,
            },
            label="addresses",
        )
        features = [_address(r) for r in rows]
        logger.info("[addresses] returned %d features for z=%.2f", len(features), zoom)
        return FeatureCollection.of(features)

    async def query_parcel_addresses(self, parcel_id: int) -> FeatureCollection:
        parcel_id = validate_id(parcel_id, "parcel")
        caps = await self._capabilities.get()
        if caps.has_address_parcels:
            enhanced, basic = sql.PARCEL_ADDRESSES_PRECOMPUTED_ENHANCED, sql.PARCEL_ADDRESSES_PRECOMPUTED_BASIC
        else:
            enhanced, basic = sql.PARCEL_ADDRESSES_SPATIAL_ENHANCED, sql.PARCEL_ADDRESSES_SPATIAL_BASIC
        params = {"parcel_id": parcel_id, "limit": self._config.address_limit}

        rows: list[Any] | None = None
        if caps.has_address_attributes:
            try:
                rows = await self._fetch(enhanced, params, label="addresses")
            except (BackendFailure, QueryTimeout) as exc:
                logger.info("[addresses] enhanced query failed for parcel %d, using basic", parcel_id)
                if isinstance(exc, BackendFailure):
                    self._capabilities.downgrade_address_attributes()
        if rows is None:
            rows = await self._fetch(basic, params, label="addresses")

        features = [_address(r) for r in rows]
        logger.info("[addresses] returned %d features for parcel %d", len(features), parcel_id)
        return FeatureCollection.of(features)

    async def query_parcel_for_address(self, address_id: int) -> int:
        address_id = validate_id(address_id, "address")
        caps = await self._capabilities.get()
        stmt = sql.PARCEL_FOR_ADDRESS_PRECOMPUTED if caps.has_address_parcels else sql.PARCEL_FOR_ADDRESS_SPATIAL
        rows = await self._fetch(stmt, {"address_id": address_id}, label="address-parcel")
        if not rows:
            raise NotFound("No parcel found for this address")
        parcel_id = int(rows[0]["parcel_id"])
        logger.info("[address-parcel] address %d -> parcel %d", address_id, parcel_id)
        return parcel_id

    async def search_addresses(self, q: str | None, limit: int | None = None) -> list[SearchResult]:
        query = (q or "").strip()
        if not query:
            raise InvalidInput(SEARCH_REQUIRED_MESSAGE)
        limit = clamp_limit(limit, self._config.search_default_limit, self._config.search_max_limit)
        try:
            rows = await self._fetch(
                sql.SEARCH_ADDRESSES,
                {"q": query, "limit": limit},
                label="search",
                timeout_ms=self._search_timeout_ms,
            )
        except QueryTimeout as exc:
            raise QueryTimeout("Search timeout, try a more specific query") from exc
        except BackendFailure as exc:
            raise BackendFailure("Search failed") from exc
        return [SearchResult(id=r["id"], label=r["label"], lon=r["lon"], lat=r["lat"]) for r in rows]

    # -- proximity -----------------------------------------------------------

    async def query_proximity(
        self,
        lon: float,
        lat: float,
        radius_m: float | None = None,
        kinds: list[ProximityKind] | None = None,
    ) -> list[ProximityResult]:
        lon, lat = validate_point(lon, lat)
        radius = validate_radius(self._config.proximity_radius_m if radius_m is None else radius_m)
        kinds = list(kinds) if kinds else list(ProximityKind)
        stmt = sql.within_statement(kinds, self._config.proximity_per_kind_limit)
        rows = await self._fetch(
            stmt,
            {"lon": lon, "lat": lat, "radius": radius, "limit": self._config.proximity_total_limit},
            label="nearby",
        )
        return [_proximity(r) for r in rows]

    async def query_within(
        self, lon: float, lat: float, kind: ProximityKind, radius_m: float
    ) -> list[ProximityResult]:
        lon, lat = validate_point(lon, lat)
        radius = validate_radius(radius_m)
        rows = await self._fetch(
            sql.within_statement([kind], None),
            {"lon": lon, "lat": lat, "radius": radius, "limit": self._config.proximity_total_limit},
            label=f"{kind.value}-within",
        )
        return [_proximity(r) for r in rows]

    async def query_nearest(
        self, lon: float, lat: float, kind: ProximityKind, limit: int
    ) -> list[ProximityResult]:
        lon, lat = validate_point(lon, lat)
        limit = clamp_limit(limit, self._config.nearest_schools_limit, self._config.proximity_total_limit)
        rows = await self._fetch(
            sql.nearest_statement(kind),
            {"lon": lon, "lat": lat, "limit": limit},
            label=f"{kind.value}-nearest",
        )
        return [_proximity(r) for r in rows]

    async def snap_to_road(self, lon: float, lat: float) -> list[SnapResult]:
        lon, lat = validate_point(lon, lat)
        rows = await self._fetch(sql.SNAP_TO_ROAD, {"lon": lon, "lat": lat}, label="snap-to-road")
        return [
            SnapResult(
                ogc_fid=r["ogc_fid"],
                street=r["street"],
                dist_m=float(r["dist_m"]),
                snap_geojson=r["snap_geojson"],
                offset_line_geojson=r["offset_line_geojson"],
            )
            for r in rows
        ]

    async def health(self) -> HealthStatus:
        try:
            latency_ms = await self._db.ping()
        except (BackendFailure, QueryTimeout) as exc:
            return HealthStatus(service="postgis", healthy=False, details={"error": exc.message})
        return HealthStatus(service="postgis", healthy=True, latency_ms=round(latency_ms, 2))
