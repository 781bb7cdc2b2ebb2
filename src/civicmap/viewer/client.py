"""HTTP client for the CivicMap API, used by the viewer core."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx
from pydantic import ValidationError

from civicmap.core.config import ViewerConfig
from civicmap.core.errors import BackendFailure, InvalidInput, NotFound, QueryTimeout
from civicmap.gis.models import (
    CrossReference,
    FeatureCollection,
    ProximityKind,
    ProximityResult,
    SearchResult,
    SnapResult,
    Viewport,
)

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: InvalidInput,
    404: NotFound,
    504: QueryTimeout,
}


@contextmanager
def _decoding(path: str) -> Iterator[None]:
    """Turn a 2xx body of the wrong shape into a :class:`BackendFailure`."""
    try:
        yield
    except (ValidationError, AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("GET %s returned an unexpected body: %s", path, exc)
        raise BackendFailure() from exc


def _geometry(geom_geojson: Any) -> dict[str, Any]:
    return json.loads(geom_geojson) if isinstance(geom_geojson, str) else geom_geojson


def _school(row: dict[str, Any]) -> ProximityResult:
    return ProximityResult(
        type=ProximityKind.SCHOOL,
        name=row["name"],
        address=row.get("address_full") or row.get("source_address"),
        distance_m=row["dist_m"],
        geometry=_geometry(row["geom_geojson"]),
    )


def _library(row: dict[str, Any]) -> ProximityResult:
    return ProximityResult(
        type=ProximityKind.LIBRARY,
        name=row["branchname"],
        address=row.get("address"),
        distance_m=row["dist_m"],
        geometry=_geometry(row["geom_geojson"]),
    )


def _nearby(row: dict[str, Any]) -> ProximityResult:
    return ProximityResult(
        type=row["type"],
        name=row["name"],
        distance_m=row["distance_m"],
        geometry=_geometry(row["geom_geojson"]),
    )


class MapApiClient:
    """Talks to the spatial query API over HTTP.

    Non-2xx responses become the matching domain error carrying the
    server's ``error`` message. Transport failures and 2xx bodies that
    cannot be decoded become :class:`BackendFailure`.
    """

    def __init__(self, config: ViewerConfig | None = None, http: httpx.AsyncClient | None = None) -> None:
        self.config = config or ViewerConfig()
        self._http = http or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )

    # -- public API ----------------------------------------------------------

    async def get_parcels(self, viewport: Viewport) -> FeatureCollection:
        path = "/api/parcels"
        data = await self._get(path, {"bbox": viewport.bbox.to_query(), "z": viewport.zoom})
        with _decoding(path):
            return FeatureCollection.model_validate(data)

    async def get_parcel_addresses(self, parcel_id: int) -> FeatureCollection:
        path = f"/api/parcel/{parcel_id}/addresses"
        data = await self._get(path)
        with _decoding(path):
            return FeatureCollection.model_validate(data)

    async def get_parcel_for_address(self, address_id: int) -> int:
        path = f"/api/address/{address_id}/parcel"
        data = await self._get(path)
        with _decoding(path):
            return int(data["parcelId"])

    async def search(self, q: str, limit: int | None = None) -> list[SearchResult]:
        params: dict[str, Any] = {"q": q}
        if limit is not None:
            params["limit"] = limit
        data = await self._get("/api/search", params)
        with _decoding("/api/search"):
            return [SearchResult.model_validate(row) for row in data]

    async def cross_reference(self, lon: float, lat: float) -> CrossReference:
        path = "/api/libraries-and-schools-within-2km"
        data = await self._get(path, {"lat": lat, "lng": lon})
        with _decoding(path):
            return CrossReference(
                schools=[_school(r) for r in data.get("schools", [])],
                libraries=[_library(r) for r in data.get("libraries", [])],
                errors=data.get("errors") or {},
            )

    async def nearest_schools(self, lon: float, lat: float) -> list[ProximityResult]:
        data = await self._get("/api/nearest-5-schools", {"lat": lat, "lng": lon})
        with _decoding("/api/nearest-5-schools"):
            return [_school(r) for r in data]

    async def nearby(
        self,
        lon: float,
        lat: float,
        radius_m: float | None = None,
        kinds: list[ProximityKind] | None = None,
    ) -> list[ProximityResult]:
        params: dict[str, Any] = {"lat": lat, "lng": lon}
        if radius_m is not None:
            params["radius"] = radius_m
        if kinds:
            params["kinds"] = ",".join(kind.value for kind in kinds)
        data = await self._get("/api/nearby", params)
        with _decoding("/api/nearby"):
            return [_nearby(r) for r in data["nearby"]]

    async def snap_to_road(self, lon: float, lat: float) -> list[SnapResult]:
        data = await self._get("/api/snap-to-road", {"lat": lat, "lng": lon})
        with _decoding("/api/snap-to-road"):
            return [SnapResult.model_validate(r) for r in data["snap"]]

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- internal ------------------------------------------------------------

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._http.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("GET %s failed: %s", path, exc)
            raise BackendFailure() from exc

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            message = body.get("error") if isinstance(body, dict) else None
            error_cls = _STATUS_ERRORS.get(resp.status_code, BackendFailure)
            logger.info("GET %s -> %d %s", path, resp.status_code, message)
            raise error_cls(message)

        try:
            return resp.json()
        except ValueError as exc:
            logger.warning("GET %s returned a non-JSON body", path)
            raise BackendFailure() from exc
