"""Tests for the viewer event bus."""

from __future__ import annotations

import asyncio

import pytest

from civicmap.gis.models import AddressFeature
from civicmap.viewer.events import (
    CLOSE_TABLE,
    FOCUS_ADDRESS,
    SELECT_ADDRESS,
    SELECT_PARCEL,
    CloseTable,
    EventBus,
    FocusAddress,
    SelectAddress,
    SelectParcel,
)


@pytest.fixture
def bus():
    return EventBus()


class TestEventBus:
    def test_sync_handler(self, bus):
        seen = []
        bus.on(SELECT_PARCEL, seen.append)
        bus.emit(SELECT_PARCEL, SelectParcel(parcel_id=1001))
        assert seen == [SelectParcel(parcel_id=1001)]

    def test_payload_defaults_for_empty_events(self, bus):
        seen = []
        bus.on(CLOSE_TABLE, seen.append)
        bus.emit(CLOSE_TABLE)
        assert seen == [CloseTable()]

    def test_off(self, bus):
        seen = []
        bus.on(FOCUS_ADDRESS, seen.append)
        bus.off(FOCUS_ADDRESS, seen.append)
        bus.emit(FOCUS_ADDRESS, FocusAddress(id=5001, lng_lat=(-79.384, 43.6508)))
        assert seen == []

    def test_unknown_event(self, bus):
        with pytest.raises(ValueError, match="Unknown event"):
            bus.on("zoom-changed", print)
        with pytest.raises(ValueError):
            bus.emit("zoom-changed")

    def test_wrong_payload_type(self, bus):
        with pytest.raises(TypeError):
            bus.emit(SELECT_PARCEL, CloseTable())

    def test_missing_required_payload(self, bus):
        with pytest.raises(ValueError):
            bus.emit(SELECT_PARCEL)

    async def test_async_handlers_are_tracked(self, bus):
        seen = []

        async def handler(event: SelectAddress) -> None:
            await asyncio.sleep(0)
            seen.append(event.address.address_point_id)

        bus.on(SELECT_ADDRESS, handler)
        bus.emit(SELECT_ADDRESS, SelectAddress(address=AddressFeature(address_point_id=5001)))
        assert bus.pending == 1
        await bus.drain()
        assert seen == [5001]
        assert bus.pending == 0

    async def test_failing_async_handler_does_not_break_drain(self, bus):
        async def boom(event):
            raise RuntimeError("handler bug")

        bus.on(CLOSE_TABLE, boom)
        bus.emit(CLOSE_TABLE)
        await bus.drain()
        assert bus.pending == 0
