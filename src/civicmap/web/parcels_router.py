"""FastAPI router for viewport, parcel/address and search endpoints."""

from __future__ import annotations

import math
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from civicmap.core.errors import InvalidInput
from civicmap.gis.models import BBox
from civicmap.gis.service import validate_id
from civicmap.gis.zoom import clamp_zoom, zoom_permits_query

router = APIRouter()

ZOOM_IN_MESSAGE = "Zoom in to load parcels"


def cache_headers(max_age: int) -> dict[str, str]:
    return {"Cache-Control": f"public, max-age={max_age}"}


def parse_limit(raw: str | None) -> int | None:
    """Numeric ``limit`` query value, or None when absent or non-numeric."""
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return int(value) if math.isfinite(value) else None


# --- Viewport queries ---


@router.get("/api/parcels")
async def get_parcels(
    request: Request,
    bbox: str | None = None,
    z: str | None = None,
) -> JSONResponse:
    """Parcels intersecting the viewport, simplified for the zoom level."""
    box = BBox.parse(bbox)
    zoom = clamp_zoom(z)
    settings = request.app.state.settings
    if not zoom_permits_query(zoom, settings.query.min_zoom):
        raise InvalidInput(ZOOM_IN_MESSAGE)

    collection = await request.app.state.query_service.query_parcels(box, zoom)
    max_age = 600 if len(collection) else 300
    return JSONResponse(content=collection.model_dump(), headers=cache_headers(max_age))


@router.get("/api/addresses")
async def get_addresses(
    request: Request,
    bbox: str | None = None,
    z: str | None = None,
    parcel_id: str | None = None,
) -> dict[str, Any]:
    """Addresses for a parcel (``parcel_id``) or a viewport (``bbox``).

    When both are given the parcel wins.
    """
    pid = validate_id(parcel_id, "parcel") if parcel_id else None
    box = BBox.parse(bbox) if bbox and pid is None else None
    collection = await request.app.state.query_service.query_addresses(
        parcel_id=pid, bbox=box, zoom=clamp_zoom(z)
    )
    return collection.model_dump()


# --- Parcel <-> address links ---


@router.get("/api/parcel/{parcel_id}/addresses")
async def get_parcel_addresses(parcel_id: str, request: Request) -> dict[str, Any]:
    """All addresses inside one parcel."""
    collection = await request.app.state.query_service.query_parcel_addresses(
        validate_id(parcel_id, "parcel")
    )
    return collection.model_dump()


@router.get("/api/address/{address_id}/parcel")
async def get_address_parcel(address_id: str, request: Request) -> JSONResponse:
    """The parcel that contains an address."""
    parcel_id = await request.app.state.query_service.query_parcel_for_address(
        validate_id(address_id, "address")
    )
    return JSONResponse(content={"parcelId": parcel_id}, headers=cache_headers(300))


# --- Search ---


@router.get("/api/search")
async def search(
    request: Request,
    q: str | None = None,
    limit: str | None = None,
) -> JSONResponse:
    """Case-insensitive substring search over address labels."""
    results = await request.app.state.query_service.search_addresses(q, parse_limit(limit))
    return JSONResponse(
        content=[r.model_dump() for r in results],
        headers=cache_headers(300),
    )
