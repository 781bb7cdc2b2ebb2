"""Address search box behaviour: query, pick a result, select its parcel."""

from __future__ import annotations

import logging
from typing import Protocol

from civicmap.core.errors import CivicMapError, NotFound, RequestCancelled
from civicmap.gis.models import SearchResult
from civicmap.viewer.events import FOCUS_ADDRESS, SELECT_PARCEL, EventBus, FocusAddress, SelectParcel

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10


class SearchSource(Protocol):
    async def search(self, q: str, limit: int | None = None) -> list[SearchResult]: ...

    async def get_parcel_for_address(self, address_id: int) -> int: ...


class SearchController:
    """Runs address searches and turns a picked result into a parcel selection.

    Picking a result first focuses the map on the address, then looks up
    the parcel containing it and selects that parcel over the event bus.
    An address with no parcel only gets the focus.
    """

    def __init__(self, source: SearchSource, bus: EventBus, limit: int = SEARCH_LIMIT) -> None:
        self._source = source
        self._bus = bus
        self._limit = limit
        self._generation = 0

        self.results: list[SearchResult] = []
        self.error: str | None = None
        self.loading = False

    async def search(self, q: str) -> list[SearchResult]:
        self._generation += 1
        generation = self._generation
        if not q.strip():
            self.results, self.error, self.loading = [], None, False
            return self.results

        self.loading = True
        self.error = None
        try:
            results = await self._source.search(q, limit=self._limit)
        except RequestCancelled:
            return self.results
        except CivicMapError as exc:
            if generation == self._generation:
                logger.warning("Search for %r failed: %s", q, exc.message)
                self.results, self.error = [], exc.message
            return self.results
        finally:
            if generation == self._generation:
                self.loading = False

        if generation == self._generation:
            self.results = results
        return self.results

    async def choose(self, result: SearchResult) -> int | None:
        """Focus *result* and select its parcel; returns the parcel id if found."""
        self._bus.emit(FOCUS_ADDRESS, FocusAddress(id=result.id, lng_lat=(result.lon, result.lat)))
        try:
            parcel_id = await self._source.get_parcel_for_address(result.id)
        except NotFound:
            logger.info("Address %s has no parcel", result.id)
            return None
        except RequestCancelled:
            return None
        except CivicMapError as exc:
            logger.warning("Parcel lookup for address %s failed: %s", result.id, exc.message)
            return None

        self._bus.emit(SELECT_PARCEL, SelectParcel(parcel_id=parcel_id))
        return parcel_id
