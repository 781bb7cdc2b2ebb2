"""What the viewer core needs from whatever renders the map and its panels."""

from __future__ import annotations

from typing import Protocol

from civicmap.core.types import LngLat
from civicmap.gis.models import FeatureCollection

PARCELS_LAYER = "parcels"
ADDRESSES_PANEL = "addresses"
SCHOOLS_PANEL = "schools"
LIBRARIES_PANEL = "libraries"

FOCUS_ZOOM = 16.0


class MapView(Protocol):
    def set_parcels(self, collection: FeatureCollection) -> None: ...

    def show_zoom_notice(self, visible: bool) -> None: ...

    def show_message(self, message: str | None) -> None: ...

    def set_hovered(self, parcel_id: int | None) -> None: ...

    def set_selected(self, parcel_id: int | None) -> None: ...

    def show_loading(self, layer: str, visible: bool) -> None: ...

    def focus(self, lng_lat: LngLat, zoom: float) -> None: ...
