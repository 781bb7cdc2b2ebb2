"""Parcel/address selection state for one map instance.

The machine owns hover and selection identity, the address list for the
selected parcel, the cross-reference for the selected address and any
snap-to-road overlay. Loads are tagged with a generation number so a slow
response for a parcel the user has already moved away from is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from civicmap.core.errors import CivicMapError, RequestCancelled
from civicmap.gis.models import AddressFeature, CrossReference, FeatureCollection, SnapResult
from civicmap.viewer.events import (
    CLOSE_SCHOOLS,
    CLOSE_TABLE,
    SELECT_ADDRESS,
    SELECT_PARCEL,
    CloseSchools,
    CloseTable,
    EventBus,
    SelectAddress,
    SelectParcel,
)
from civicmap.viewer.view import ADDRESSES_PANEL, LIBRARIES_PANEL, SCHOOLS_PANEL, MapView

logger = logging.getLogger(__name__)

CrossReferenceFn = Callable[[float, float], Awaitable[CrossReference]]
SnapFn = Callable[[float, float], Awaitable[list[SnapResult]]]


class AddressSource(Protocol):
    async def get_parcel_addresses(self, parcel_id: int) -> FeatureCollection: ...


class SelectionStateMachine:
    """Hover/selection state plus the data hanging off the selection.

    When a view is given, hover and selection highlights and the loading
    indicators of the addresses and schools/libraries panels are pushed
    to it as they change.
    """

    def __init__(
        self,
        addresses: AddressSource,
        cross_reference: CrossReferenceFn | None = None,
        view: MapView | None = None,
        snap_to_road: SnapFn | None = None,
    ) -> None:
        self._addresses_source = addresses
        self._cross_reference_fn = cross_reference
        self._snap_fn = snap_to_road
        self._view = view

        self.hovered_id: int | None = None
        self.selected_id: int | None = None
        self.addresses: FeatureCollection | None = None
        self.address_error: str | None = None
        self.addresses_loading = False
        self.selected_address: AddressFeature | None = None
        self.cross_reference: CrossReference | None = None
        self.cross_reference_loading = False
        self.snap: list[SnapResult] | None = None

        self._address_generation = 0
        self._xref_generation = 0
        self._snap_generation = 0

    # -- view ----------------------------------------------------------------

    def _set_hovered(self, parcel_id: int | None) -> None:
        self.hovered_id = parcel_id
        if self._view is not None:
            self._view.set_hovered(parcel_id)

    def _set_selected(self, parcel_id: int | None) -> None:
        self.selected_id = parcel_id
        if self._view is not None:
            self._view.set_selected(parcel_id)

    def _set_addresses_loading(self, loading: bool) -> None:
        self.addresses_loading = loading
        if self._view is not None:
            self._view.show_loading(ADDRESSES_PANEL, loading)

    def _set_cross_reference_loading(self, loading: bool) -> None:
        self.cross_reference_loading = loading
        if self._view is not None:
            self._view.show_loading(SCHOOLS_PANEL, loading)
            self._view.show_loading(LIBRARIES_PANEL, loading)

    # -- hover ---------------------------------------------------------------

    def hover(self, parcel_id: int) -> None:
        self._set_hovered(parcel_id)

    def leave(self) -> None:
        self._set_hovered(None)

    # -- parcel selection ----------------------------------------------------

    async def click_parcel(self, parcel_id: int) -> None:
        """Clicking the selected parcel deselects it; any other parcel replaces it."""
        if self.selected_id == parcel_id:
            self.close()
            return
        await self.select_parcel(parcel_id)

    async def select_parcel(self, parcel_id: int) -> None:
        self._clear_address_state()
        self._set_selected(parcel_id)
        self._address_generation += 1
        generation = self._address_generation

        self._set_addresses_loading(True)
        try:
            collection = await self._addresses_source.get_parcel_addresses(parcel_id)
        except RequestCancelled:
            return
        except CivicMapError as exc:
            if generation == self._address_generation:
                self.addresses = FeatureCollection.empty()
                self.address_error = exc.message
            return
        finally:
            if generation == self._address_generation:
                self._set_addresses_loading(False)

        if generation != self._address_generation:
            logger.debug("Discarding stale addresses for parcel %s", parcel_id)
            return
        self.addresses = collection

    # -- address selection ---------------------------------------------------

    def find_address(self, address_id: int) -> AddressFeature | None:
        """Look up an address of the selected parcel by id."""
        if self.addresses is None:
            return None
        for feature in self.addresses.features:
            if (feature.get("properties") or {}).get("address_point_id") == address_id:
                return AddressFeature.from_geojson(feature)
        return None

    async def select_address(self, address: AddressFeature) -> None:
        if self.selected_id is None:
            logger.debug("Ignoring address %s selected with no parcel selected", address.address_point_id)
            return

        self.selected_address = address
        self.cross_reference = None
        self._xref_generation += 1
        generation = self._xref_generation

        lng_lat = address.lng_lat
        if self._cross_reference_fn is None or lng_lat is None:
            return

        self._set_cross_reference_loading(True)
        try:
            result = await self._cross_reference_fn(*lng_lat)
        except RequestCancelled:
            return
        except CivicMapError as exc:
            result = CrossReference(errors={"schools": exc.message, "libraries": exc.message})
        finally:
            if generation == self._xref_generation:
                self._set_cross_reference_loading(False)

        if generation == self._xref_generation:
            self.cross_reference = result

    def close_schools(self) -> None:
        self.cross_reference = None
        self._xref_generation += 1
        if self.cross_reference_loading:
            self._set_cross_reference_loading(False)

    # -- snap-to-road overlay -------------------------------------------------

    async def snap_point(self, lon: float, lat: float) -> None:
        """Project a point onto the nearest road and hold it as an overlay."""
        if self._snap_fn is None:
            return
        self._snap_generation += 1
        generation = self._snap_generation
        try:
            result = await self._snap_fn(lon, lat)
        except RequestCancelled:
            return
        except CivicMapError as exc:
            logger.warning("Snap to road failed at (%f, %f): %s", lon, lat, exc.message)
            result = []
        if generation == self._snap_generation:
            self.snap = result

    def clear_snap(self) -> None:
        self.snap = None
        self._snap_generation += 1

    # -- teardown / reconcile ------------------------------------------------

    def _clear_address_state(self) -> None:
        self.addresses = None
        self.address_error = None
        if self.addresses_loading:
            self._set_addresses_loading(False)
        self.selected_address = None
        self.close_schools()
        self.clear_snap()

    def close(self) -> None:
        """Clear the selection and everything derived from it."""
        self._clear_address_state()
        self._set_selected(None)
        self._address_generation += 1

    def reconcile(self, collection: FeatureCollection) -> bool:
        """Re-apply state after the parcel layer was reloaded.

        Hover never survives a reload, and the selection highlight is
        re-applied to the new layer. Returns False when the selected
        parcel is not part of the new layer; the selection is kept so it
        reappears once the parcel is back in view.
        """
        self._set_hovered(None)
        if self.selected_id is None:
            return True
        self._set_selected(self.selected_id)
        if self.selected_id not in collection.ids("parcel_id"):
            logger.info("Selected parcel %s not in reloaded layer", self.selected_id)
            return False
        return True

    # -- event bus -----------------------------------------------------------

    def attach(self, bus: EventBus) -> None:
        bus.on(SELECT_PARCEL, self._on_select_parcel)
        bus.on(SELECT_ADDRESS, self._on_select_address)
        bus.on(CLOSE_TABLE, self._on_close_table)
        bus.on(CLOSE_SCHOOLS, self._on_close_schools)

    def detach(self, bus: EventBus) -> None:
        bus.off(SELECT_PARCEL, self._on_select_parcel)
        bus.off(SELECT_ADDRESS, self._on_select_address)
        bus.off(CLOSE_TABLE, self._on_close_table)
        bus.off(CLOSE_SCHOOLS, self._on_close_schools)

    async def _on_select_parcel(self, event: SelectParcel) -> None:
        await self.select_parcel(event.parcel_id)

    async def _on_select_address(self, event: SelectAddress) -> None:
        await self.select_address(event.address)

    def _on_close_table(self, event: CloseTable) -> None:
        self.close()

    def _on_close_schools(self, event: CloseSchools) -> None:
        self.close_schools()
