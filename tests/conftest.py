"""Shared test fixtures and helpers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest

from civicmap.gis.mock import MockSpatialQueryService
from civicmap.gis.models import AddressFeature, BBox, FeatureCollection, ParcelFeature, Viewport

# Covers every fixture parcel in the mock service.
DOWNTOWN = BBox.of(-79.40, 43.64, -79.36, 43.68)

# 100 Queen St W, inside parcel 1001.
QUEEN_LON, QUEEN_LAT = -79.3840, 43.6508


@pytest.fixture
def mock_service():
    return MockSpatialQueryService()


def viewport(zoom: float = 14, bbox: BBox = DOWNTOWN) -> Viewport:
    return Viewport(bbox=bbox, zoom=zoom)


def parcels(*ids: int) -> FeatureCollection:
    return FeatureCollection.of([ParcelFeature(parcel_id=i) for i in ids])


def addresses(*ids: int) -> FeatureCollection:
    return FeatureCollection.of([AddressFeature(address_point_id=i) for i in ids])


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self._rows = rows

    def mappings(self) -> FakeResult:
        return self

    def all(self) -> list[dict[str, Any]]:
        return self._rows

    def one(self) -> dict[str, Any]:
        return self._rows[0]


class FakeDatabase:
    """Stands in for DatabaseManager; routes each statement to a handler.

    ``handlers`` maps a statement object to a row list or an exception
    instance to raise; anything else gets ``default``.
    """

    def __init__(self, handlers: dict[Any, Any] | None = None, default: Any = None) -> None:
        self.handlers: dict[Any, Any] = handlers or {}
        self.default = default if default is not None else []
        self.executed: list[tuple[Any, dict[str, Any] | None]] = []
        self.timeouts: list[int | None] = []

    @asynccontextmanager
    async def transaction(self, timeout_ms: int | None = None, label: str = "query"):
        self.timeouts.append(timeout_ms)
        yield self

    async def execute(self, stmt: Any, params: dict[str, Any] | None = None) -> FakeResult:
        self.executed.append((stmt, params))
        outcome = self.handlers.get(stmt, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return FakeResult(outcome)

    def statements(self) -> list[Any]:
        return [stmt for stmt, _ in self.executed]

    async def ping(self) -> float:
        return 1.25


class RecordingView:
    """A map view that records every call the viewer core makes on it."""

    def __init__(self) -> None:
        self.layers: list[FeatureCollection] = []
        self.notices: list[bool] = []
        self.messages: list[str | None] = []
        self.hovered: list[int | None] = []
        self.selected: list[int | None] = []
        self.loading: list[tuple[str, bool]] = []
        self.focused: list[tuple[tuple[float, float], float]] = []

    def set_parcels(self, collection: FeatureCollection) -> None:
        self.layers.append(collection)

    def show_zoom_notice(self, visible: bool) -> None:
        self.notices.append(visible)

    def show_message(self, message: str | None) -> None:
        self.messages.append(message)

    def set_hovered(self, parcel_id: int | None) -> None:
        self.hovered.append(parcel_id)

    def set_selected(self, parcel_id: int | None) -> None:
        self.selected.append(parcel_id)

    def show_loading(self, layer: str, visible: bool) -> None:
        self.loading.append((layer, visible))

    def focus(self, lng_lat: tuple[float, float], zoom: float) -> None:
        self.focused.append((lng_lat, zoom))
