"""GIS data models."""

from __future__ import annotations

import json
import math
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from civicmap.core.errors import InvalidInput
from civicmap.core.types import GeoJSON
from civicmap.gis.zoom import DEFAULT_ZOOM, clamp_zoom

BBOX_REQUIRED_MESSAGE = "bbox=minX,minY,maxX,maxY required"


class BBox(BaseModel):
    """Axis-aligned bounding box in longitude/latitude degrees."""

    model_config = ConfigDict(frozen=True)

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @model_validator(mode="after")
    def _check_bounds(self) -> BBox:
        values = (self.min_x, self.min_y, self.max_x, self.max_y)
        if not all(math.isfinite(v) for v in values):
            raise ValueError("bbox coordinates must be finite")
        if self.min_x >= self.max_x or self.min_y >= self.max_y:
            raise ValueError("bbox must satisfy minX < maxX and minY < maxY")
        return self

    @classmethod
    def of(cls, min_x: float, min_y: float, max_x: float, max_y: float) -> BBox:
        try:
            return cls(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)
        except ValidationError as exc:
            raise InvalidInput(BBOX_REQUIRED_MESSAGE) from exc

    @classmethod
    def parse(cls, raw: str | None) -> BBox:
        """Parse the ``minX,minY,maxX,maxY`` query-string form."""
        if not raw:
            raise InvalidInput(BBOX_REQUIRED_MESSAGE)
        parts = raw.split(",")
        if len(parts) != 4:
            raise InvalidInput(BBOX_REQUIRED_MESSAGE)
        try:
            values = [float(p) for p in parts]
        except ValueError as exc:
            raise InvalidInput(BBOX_REQUIRED_MESSAGE) from exc
        return cls.of(*values)

    def as_list(self) -> list[float]:
        return [self.min_x, self.min_y, self.max_x, self.max_y]

    def to_query(self) -> str:
        return ",".join(repr(v) for v in self.as_list())


class Viewport(BaseModel):
    """The visible map extent at a given zoom."""

    model_config = ConfigDict(frozen=True)

    bbox: BBox
    zoom: float = DEFAULT_ZOOM

    @field_validator("zoom", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_zoom(value)


class ProximityKind(StrEnum):
    """Civic amenity categories returned by proximity queries."""

    SCHOOL = "school"
    LIBRARY = "library"
    FIRE_STATION = "fire_station"
    POLICE_STATION = "police_station"
    PARK = "park"
    TRANSIT = "transit"


class ParcelFeature(BaseModel):
    """A polygonal land unit."""

    parcel_id: int
    f_type: str | None = None
    geometry: GeoJSON | None = None

    def to_geojson(self) -> GeoJSON:
        return {
            "type": "Feature",
            "geometry": self.geometry,
            "properties": {"parcel_id": self.parcel_id, "f_type": self.f_type},
        }


class AddressFeature(BaseModel):
    """An address point, usually scoped to a parcel."""

    address_point_id: int
    civic_number: str | None = None
    street_name: str | None = None
    full_address: str | None = None
    geometry: GeoJSON | None = None

    @field_validator("civic_number", mode="before")
    @classmethod
    def _civic_as_text(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @model_validator(mode="after")
    def _derive_full_address(self) -> AddressFeature:
        if not self.full_address and self.civic_number and self.street_name:
            self.full_address = f"{self.civic_number} {self.street_name}".strip()
        return self

    @property
    def lng_lat(self) -> tuple[float, float] | None:
        if not self.geometry or self.geometry.get("type") != "Point":
            return None
        lon, lat = self.geometry["coordinates"][:2]
        return float(lon), float(lat)

    def to_geojson(self) -> GeoJSON:
        return {
            "type": "Feature",
            "geometry": self.geometry,
            "properties": {
                "address_point_id": self.address_point_id,
                "civic_number": self.civic_number,
                "street_name": self.street_name,
                "full_address": self.full_address,
            },
        }

    @classmethod
    def from_geojson(cls, feature: GeoJSON) -> AddressFeature:
        props = feature.get("properties") or {}
        return cls(
            address_point_id=props.get("address_point_id", feature.get("id")),
            civic_number=props.get("civic_number"),
            street_name=props.get("street_name"),
            full_address=props.get("full_address"),
            geometry=feature.get("geometry"),
        )


class FeatureCollection(BaseModel):
    """GeoJSON FeatureCollection envelope."""

    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: list[GeoJSON] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> FeatureCollection:
        return cls()

    @classmethod
    def of(cls, features: list[ParcelFeature] | list[AddressFeature]) -> FeatureCollection:
        return cls(features=[f.to_geojson() for f in features])

    def __len__(self) -> int:
        return len(self.features)

    def ids(self, key: str) -> set[Any]:
        """Identities of the features, read from ``properties[key]``."""
        return {
            (f.get("properties") or {}).get(key)
            for f in self.features
            if (f.get("properties") or {}).get(key) is not None
        }


class ProximityResult(BaseModel):
    """One amenity near a point, with its geodesic distance."""

    type: ProximityKind
    name: str
    distance_m: float = Field(ge=0)
    geometry: GeoJSON
    address: str | None = None

    @property
    def geom_geojson(self) -> str:
        return json.dumps(self.geometry, separators=(",", ":"))

    def to_nearby(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "distance_m": round(self.distance_m),
            "geom_geojson": self.geom_geojson,
        }


class SearchResult(BaseModel):
    """An address search hit."""

    id: int
    label: str
    lon: float
    lat: float


class SnapResult(BaseModel):
    """Projection of a point onto the nearest road centreline."""

    ogc_fid: int | None = None
    street: str | None = None
    dist_m: float
    snap_geojson: str
    offset_line_geojson: str


class CrossReference(BaseModel):
    """Amenities around a selected address, with per-category errors."""

    schools: list[ProximityResult] = Field(default_factory=list)
    libraries: list[ProximityResult] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.errors
