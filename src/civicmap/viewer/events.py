"""Typed in-process event bus for the map viewer.

Panels and the map talk through a fixed vocabulary of events rather than
holding references to each other. Each event name has a payload model;
emitting an unknown name or the wrong payload type is a programming error.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from civicmap.core.types import LngLat
from civicmap.gis.models import AddressFeature

logger = logging.getLogger(__name__)


class FocusAddress(BaseModel):
    id: int
    lng_lat: LngLat


class CloseTable(BaseModel):
    pass


class SelectParcel(BaseModel):
    parcel_id: int


class SelectAddress(BaseModel):
    address: AddressFeature


class CloseSchools(BaseModel):
    pass


FOCUS_ADDRESS = "focus-address"
CLOSE_TABLE = "close-table"
SELECT_PARCEL = "select-parcel"
SELECT_ADDRESS = "select-address"
CLOSE_SCHOOLS = "close-schools"

EVENT_PAYLOADS: dict[str, type[BaseModel]] = {
    FOCUS_ADDRESS: FocusAddress,
    CLOSE_TABLE: CloseTable,
    SELECT_PARCEL: SelectParcel,
    SELECT_ADDRESS: SelectAddress,
    CLOSE_SCHOOLS: CloseSchools,
}

Handler = Callable[[Any], None] | Callable[[Any], Awaitable[None]]


class EventBus:
    """Publish/subscribe over :data:`EVENT_PAYLOADS`.

    Sync handlers run inline during :meth:`emit`. Async handlers are
    scheduled as tasks on the running loop; :meth:`drain` awaits them.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {name: [] for name in EVENT_PAYLOADS}
        self._tasks: set[asyncio.Task[Any]] = set()

    @staticmethod
    def _check_name(name: str) -> type[BaseModel]:
        try:
            return EVENT_PAYLOADS[name]
        except KeyError:
            raise ValueError(f"Unknown event {name!r}") from None

    def on(self, name: str, handler: Handler) -> None:
        self._check_name(name)
        self._handlers[name].append(handler)

    def off(self, name: str, handler: Handler) -> None:
        self._check_name(name)
        if handler in self._handlers[name]:
            self._handlers[name].remove(handler)

    def emit(self, name: str, payload: BaseModel | None = None) -> None:
        payload_type = self._check_name(name)
        if payload is None:
            payload = payload_type()
        if not isinstance(payload, payload_type):
            raise TypeError(f"Event {name!r} expects {payload_type.__name__}, got {type(payload).__name__}")

        logger.debug("emit %s", name)
        for handler in list(self._handlers[name]):
            outcome = handler(payload)
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Event handler failed", exc_info=task.exception())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled async handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
