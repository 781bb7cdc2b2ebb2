"""Viewport tracking: debounce, cancellation and the zoom guard.

Every viewport change supersedes whatever was pending. Only the newest
request is allowed to update the parcel layer; older ones are cancelled,
and any result that still slips through is recognised by its generation
number and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import Any, Protocol

from civicmap.core.config import ViewerConfig
from civicmap.core.errors import CivicMapError, RequestCancelled
from civicmap.gis.models import FeatureCollection, Viewport
from civicmap.gis.zoom import zoom_permits_query
from civicmap.viewer.events import FOCUS_ADDRESS, EventBus, FocusAddress
from civicmap.viewer.selection import SelectionStateMachine
from civicmap.viewer.view import FOCUS_ZOOM, PARCELS_LAYER, MapView

logger = logging.getLogger(__name__)


class ViewportState(StrEnum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    QUERYING = "querying"


class ParcelSource(Protocol):
    async def get_parcels(self, viewport: Viewport) -> FeatureCollection: ...


class ViewportController:
    """Turns a stream of viewport changes into at most one live parcel query."""

    def __init__(
        self,
        source: ParcelSource,
        view: MapView,
        selection: SelectionStateMachine | None = None,
        config: ViewerConfig | None = None,
    ) -> None:
        config = config or ViewerConfig()
        self._source = source
        self._view = view
        self._selection = selection
        self._debounce_s = config.debounce_ms / 1000
        self._min_zoom = config.min_zoom

        self.state = ViewportState.IDLE
        self.viewport: Viewport | None = None
        self._generation = 0
        self._task: asyncio.Task[Any] | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def on_viewport_change(self, viewport: Viewport) -> None:
        self._cancel_pending()
        self._generation += 1
        self.viewport = viewport

        if not zoom_permits_query(viewport.zoom, self._min_zoom):
            self._view.show_zoom_notice(True)
            self._view.set_parcels(FeatureCollection.empty())
            self.state = ViewportState.IDLE
            return

        self._view.show_zoom_notice(False)
        self.state = ViewportState.DEBOUNCING
        self._task = asyncio.get_running_loop().create_task(self._load(viewport, self._generation))

    async def _load(self, viewport: Viewport, generation: int) -> None:
        await asyncio.sleep(self._debounce_s)
        if generation != self._generation:
            return
        self.state = ViewportState.QUERYING
        self._view.show_loading(PARCELS_LAYER, True)

        try:
            collection = await self._source.get_parcels(viewport)
        except RequestCancelled:
            return
        except CivicMapError as exc:
            if generation != self._generation:
                return
            logger.warning("Parcel load failed: %s", exc.message)
            self._view.set_parcels(FeatureCollection.empty())
            self._view.show_message(exc.message)
            return
        finally:
            if generation == self._generation:
                self._view.show_loading(PARCELS_LAYER, False)
                self.state = ViewportState.IDLE

        if generation != self._generation:
            logger.debug("Dropping parcels for superseded generation %d", generation)
            return
        self._view.set_parcels(collection)
        self._view.show_message(None)
        if self._selection is not None:
            self._selection.reconcile(collection)

    def _cancel_pending(self) -> None:
        if self.state == ViewportState.QUERYING:
            self._view.show_loading(PARCELS_LAYER, False)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait for the current load (if any) to finish or be cancelled."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def close(self) -> None:
        self._cancel_pending()
        self._generation += 1
        self.state = ViewportState.IDLE

    # -- event bus -----------------------------------------------------------

    def attach(self, bus: EventBus) -> None:
        bus.on(FOCUS_ADDRESS, self._on_focus_address)

    def detach(self, bus: EventBus) -> None:
        bus.off(FOCUS_ADDRESS, self._on_focus_address)

    def _on_focus_address(self, event: FocusAddress) -> None:
        zoom = max(self.viewport.zoom, FOCUS_ZOOM) if self.viewport is not None else FOCUS_ZOOM
        self._view.focus(event.lng_lat, zoom)
