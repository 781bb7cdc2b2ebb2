"""FastAPI router for proximity endpoints around a clicked point."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from civicmap.core.errors import InvalidInput
from civicmap.gis.models import ProximityKind, ProximityResult
from civicmap.gis.service import validate_point

router = APIRouter()


def parse_kinds(raw: str | None) -> list[ProximityKind] | None:
    """Comma-separated ``kinds`` filter; None means every kind."""
    if not raw:
        return None
    kinds = []
    for part in raw.split(","):
        name = part.strip()
        if not name:
            continue
        try:
            kinds.append(ProximityKind(name))
        except ValueError as exc:
            raise InvalidInput(f"Unknown kind: {name}") from exc
    return kinds or None


def parse_radius(raw: str | None) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise InvalidInput("radius must be a positive number of meters") from exc


def school_row(result: ProximityResult) -> dict[str, Any]:
    return {
        "name": result.name,
        "address_full": result.address,
        "source_address": result.address,
        "geom_geojson": result.geom_geojson,
        "dist_m": result.distance_m,
    }


def library_row(result: ProximityResult) -> dict[str, Any]:
    return {
        "branchname": result.name,
        "address": result.address,
        "geom_geojson": result.geom_geojson,
        "dist_m": result.distance_m,
    }


# --- School / library cross-reference ---


@router.get("/api/nearest-5-schools")
async def nearest_schools(
    request: Request,
    lat: str | None = None,
    lng: str | None = None,
) -> list[dict[str, Any]]:
    """The five nearest schools, no radius limit."""
    lon, lat_f = validate_point(lng, lat)
    limit = request.app.state.settings.query.nearest_schools_limit
    results = await request.app.state.crossref.nearest_schools(lon, lat_f, limit)
    return [school_row(r) for r in results]


@router.get("/api/libraries-and-schools-within-2km")
async def libraries_and_schools(
    request: Request,
    lat: str | None = None,
    lng: str | None = None,
) -> dict[str, Any]:
    """Schools and libraries within 2 km; one category failing keeps the other."""
    lon, lat_f = validate_point(lng, lat)
    xref = await request.app.state.crossref.on_address_selected(lon, lat_f)
    return {
        "libraries": [library_row(r) for r in xref.libraries],
        "schools": [school_row(r) for r in xref.schools],
        "errors": xref.errors,
    }


# --- General proximity ---


@router.get("/api/nearby")
async def nearby(
    request: Request,
    lat: str | None = None,
    lng: str | None = None,
    lon: str | None = None,
    radius: str | None = None,
    kinds: str | None = None,
) -> dict[str, Any]:
    """Amenities of every (or the requested) kind within ``radius`` meters."""
    lon_f, lat_f = validate_point(lng if lng is not None else lon, lat)
    results = await request.app.state.query_service.query_proximity(
        lon_f, lat_f, radius_m=parse_radius(radius), kinds=parse_kinds(kinds)
    )
    return {"nearby": [r.to_nearby() for r in results]}


@router.get("/api/snap-to-road")
async def snap_to_road(
    request: Request,
    lat: str | None = None,
    lng: str | None = None,
) -> dict[str, Any]:
    """Project the point onto the nearest road centreline."""
    lon, lat_f = validate_point(lng, lat)
    results = await request.app.state.query_service.snap_to_road(lon, lat_f)
    return {"snap": [r.model_dump() for r in results]}
