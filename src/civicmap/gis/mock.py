"""In-memory spatial query service with fixture data for development/testing.

Geometry operations use shapely; distances are geodesic (WGS84) via
pyproj so they agree with PostGIS ``geography`` results.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict
from pyproj import Geod
from shapely.geometry import LineString, Point, Polygon, box, mapping
from shapely.geometry.base import BaseGeometry
from shapely.ops import nearest_points

from civicmap.core.config import QueryConfig
from civicmap.core.errors import InvalidInput, NotFound
from civicmap.core.types import HealthStatus
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
from civicmap.gis.service import (
    ADDRESS_MODE_MESSAGE,
    SEARCH_REQUIRED_MESSAGE,
    clamp_limit,
    validate_id,
    validate_point,
    validate_radius,
)
from civicmap.gis.zoom import tolerance_for_zoom, zoom_permits_query

_GEOD = Geod(ellps="WGS84")


def geodesic_distance_m(a: Point, b: Point) -> float:
    _, _, dist = _GEOD.inv(a.x, a.y, b.x, b.y)
    return abs(dist)


class _Parcel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    parcel_id: int
    f_type: str | None
    shape: Polygon


class _Address(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    feature: AddressFeature
    point: Point


class _Amenity(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: ProximityKind
    name: str
    shape: BaseGeometry
    address: str | None = None
    # Kinds the radius query caps per source table.
    capped: bool = True

    @property
    def point(self) -> Point:
        return self.shape if isinstance(self.shape, Point) else self.shape.centroid


class _Road(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ogc_fid: int
    street: str
    line: LineString


class MockSpatialQueryService:
    """Fixture-backed spatial service around downtown Toronto."""

    def __init__(self, config: QueryConfig | None = None) -> None:
        self._config = config or QueryConfig()
        self._parcels: dict[int, _Parcel] = {}
        self._addresses: dict[int, _Address] = {}
        self._amenities: list[_Amenity] = []
        self._roads: list[_Road] = []
        self._load_fixtures()

    def _load_fixtures(self) -> None:
        parcels = [
            (1001, "Residential", box(-79.3850, 43.6500, -79.3830, 43.6515)),
            (1002, "Commercial", box(-79.3830, 43.6500, -79.3800, 43.6520)),
            (1003, "Institutional", box(-79.3900, 43.6480, -79.3860, 43.6500)),
            (1004, "Residential", box(-79.3700, 43.6600, -79.3690, 43.6605)),
            (
                1005,
                None,
                Polygon([
                    (-79.3800, 43.6540), (-79.3790, 43.65401), (-79.3780, 43.6540),
                    (-79.3780, 43.6550), (-79.3790, 43.65499), (-79.3800, 43.6550),
                ]),
            ),
        ]
        for parcel_id, f_type, shape in parcels:
            self._parcels[parcel_id] = _Parcel(parcel_id=parcel_id, f_type=f_type, shape=shape)

        addresses = [
            (5001, "100", "Queen St W", "100 Queen St W", (-79.3840, 43.6508)),
            (5002, "102", "Queen St W", "102 Queen St W", (-79.3835, 43.6510)),
            (5003, "200", "Bay St", "200 Bay St", (-79.3815, 43.6510)),
            (5004, "12", "Elm St", None, (-79.3880, 43.6490)),
            (5005, "55", "Front St E", "55 Front St E", (-79.3695, 43.6602)),
            (5006, "1", "Harbour Sq", "1 Harbour Sq", (-79.3770, 43.6400)),
        ]
        for address_id, civic, street, full, (lon, lat) in addresses:
            point = Point(lon, lat)
            feature = AddressFeature(
                address_point_id=address_id,
                civic_number=civic,
                street_name=street,
                full_address=full,
                geometry=mapping(point),
            )
            self._addresses[address_id] = _Address(feature=feature, point=point)

        school, library = ProximityKind.SCHOOL, ProximityKind.LIBRARY
        self._amenities = [
            _Amenity(kind=school, name="Downtown Alternative School", shape=Point(-79.3870, 43.6530),
                     address="85 Lower Jarvis St"),
            _Amenity(kind=school, name="Market Lane Public School", shape=Point(-79.3700, 43.6490),
                     address="246 The Esplanade"),
            _Amenity(kind=school, name="Church Street Public School", shape=Point(-79.3790, 43.6640),
                     address="83 Alexander St"),
            _Amenity(kind=school, name="Jesse Ketchum Public School", shape=Point(-79.3960, 43.6720),
                     address="61 Davenport Rd"),
            _Amenity(kind=school, name="Ryerson Community School", shape=Point(-79.4050, 43.6520),
                     address="96 Denison Ave"),
            _Amenity(kind=school, name="Eastdale Collegiate", shape=Point(-79.3400, 43.6700),
                     address="701 Gerrard St E"),
            _Amenity(kind=library, name="City Hall", shape=Point(-79.3840, 43.6530),
                     address="100 Queen St W"),
            _Amenity(kind=library, name="St. Lawrence", shape=Point(-79.3720, 43.6500),
                     address="171 Front St E"),
            _Amenity(kind=library, name="Toronto Reference Library", shape=Point(-79.3868, 43.6717),
                     address="789 Yonge St"),
            _Amenity(kind=ProximityKind.FIRE_STATION, name="Station 332", shape=Point(-79.3910, 43.6480),
                     capped=False),
            _Amenity(kind=ProximityKind.POLICE_STATION, name="52 Division", shape=Point(-79.3900, 43.6520),
                     capped=False),
            _Amenity(kind=ProximityKind.PARK, name="Nathan Phillips Square",
                     shape=box(-79.3855, 43.6518, -79.3835, 43.6528)),
            _Amenity(kind=ProximityKind.TRANSIT, name="Queen", shape=Point(-79.3792, 43.6523)),
            _Amenity(kind=ProximityKind.TRANSIT, name="King St W at Bay St", shape=Point(-79.3800, 43.6485)),
        ]

        self._roads = [
            _Road(ogc_fid=1, street="Queen St W",
                  line=LineString([(-79.3900, 43.6525), (-79.3780, 43.6520)])),
            _Road(ogc_fid=2, street="Bay St",
                  line=LineString([(-79.3810, 43.6450), (-79.3830, 43.6560)])),
        ]

    # -- parcels / addresses -------------------------------------------------

    async def query_parcels(self, bbox: BBox, zoom: float) -> FeatureCollection:
        if not zoom_permits_query(zoom, self._config.min_zoom):
            return FeatureCollection.empty()
        envelope = box(*bbox.as_list())
        tolerance = tolerance_for_zoom(zoom)
        hits = [p for p in self._parcels.values() if p.shape.intersects(envelope)]
        hits.sort(key=lambda p: p.shape.area, reverse=True)
        features = [
            ParcelFeature(
                parcel_id=p.parcel_id,
                f_type=p.f_type,
                geometry=mapping(p.shape.simplify(tolerance, preserve_topology=False)),
            )
            for p in hits[: self._config.parcel_limit]
        ]
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
        envelope = box(*bbox.as_list())
        hits = [
            AddressFeature(address_point_id=a.feature.address_point_id, geometry=a.feature.geometry)
            for a in self._addresses.values()
            if a.point.intersects(envelope)
        ]
        return FeatureCollection.of(hits[: self._config.address_limit])

    async def query_parcel_addresses(self, parcel_id: int) -> FeatureCollection:
        parcel_id = validate_id(parcel_id, "parcel")
        parcel = self._parcels.get(parcel_id)
        if parcel is None:
            return FeatureCollection.empty()
        hits = [a.feature for a in self._addresses.values() if a.point.intersects(parcel.shape)]
        return FeatureCollection.of(hits[: self._config.address_limit])

    async def query_parcel_for_address(self, address_id: int) -> int:
        address_id = validate_id(address_id, "address")
        address = self._addresses.get(address_id)
        if address is not None:
            for parcel in self._parcels.values():
                if address.point.intersects(parcel.shape):
                    return parcel.parcel_id
        raise NotFound("No parcel found for this address")

    async def search_addresses(self, q: str | None, limit: int | None = None) -> list[SearchResult]:
        query = (q or "").strip().lower()
        if not query:
            raise InvalidInput(SEARCH_REQUIRED_MESSAGE)
        limit = clamp_limit(limit, self._config.search_default_limit, self._config.search_max_limit)
        results = []
        for address in self._addresses.values():
            label = " ".join((address.feature.full_address or "").split())
            if query in label.lower():
                results.append(
                    SearchResult(
                        id=address.feature.address_point_id,
                        label=label,
                        lon=address.point.x,
                        lat=address.point.y,
                    )
                )
        return results[:limit]

    # -- proximity -----------------------------------------------------------

    def _measure(self, origin: Point, kinds: list[ProximityKind]) -> list[tuple[float, _Amenity]]:
        measured = [
            (geodesic_distance_m(origin, amenity.point), amenity)
            for amenity in self._amenities
            if amenity.kind in kinds
        ]
        measured.sort(key=lambda pair: pair[0])
        return measured

    @staticmethod
    def _result(distance: float, amenity: _Amenity) -> ProximityResult:
        return ProximityResult(
            type=amenity.kind,
            name=amenity.name,
            distance_m=distance,
            geometry=mapping(amenity.point),
            address=amenity.address,
        )

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
        per_kind: dict[ProximityKind, int] = {}
        results = []
        for distance, amenity in self._measure(Point(lon, lat), kinds):
            if distance > radius:
                break
            count = per_kind.get(amenity.kind, 0)
            if amenity.capped and count >= self._config.proximity_per_kind_limit:
                continue
            per_kind[amenity.kind] = count + 1
            results.append(self._result(distance, amenity))
        return results[: self._config.proximity_total_limit]

    async def query_within(
        self, lon: float, lat: float, kind: ProximityKind, radius_m: float
    ) -> list[ProximityResult]:
        lon, lat = validate_point(lon, lat)
        radius = validate_radius(radius_m)
        return [
            self._result(distance, amenity)
            for distance, amenity in self._measure(Point(lon, lat), [kind])
            if distance <= radius
        ][: self._config.proximity_total_limit]

    async def query_nearest(
        self, lon: float, lat: float, kind: ProximityKind, limit: int
    ) -> list[ProximityResult]:
        lon, lat = validate_point(lon, lat)
        limit = clamp_limit(limit, self._config.nearest_schools_limit, self._config.proximity_total_limit)
        return [self._result(d, a) for d, a in self._measure(Point(lon, lat), [kind])[:limit]]

    async def snap_to_road(self, lon: float, lat: float) -> list[SnapResult]:
        lon, lat = validate_point(lon, lat)
        click = Point(lon, lat)
        if not self._roads:
            return []
        road = min(self._roads, key=lambda r: r.line.distance(click))
        snap_pt, _ = nearest_points(road.line, click)
        return [
            SnapResult(
                ogc_fid=road.ogc_fid,
                street=road.street,
                dist_m=geodesic_distance_m(click, snap_pt),
                snap_geojson=_dumps(mapping(snap_pt)),
                offset_line_geojson=_dumps(mapping(LineString([snap_pt, click]))),
            )
        ]

    async def health(self) -> HealthStatus:
        return HealthStatus(service="mock", healthy=True, latency_ms=0.0)


def _dumps(geometry: Any) -> str:
    return json.dumps(geometry, separators=(",", ":"))
