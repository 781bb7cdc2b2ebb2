"""Optional-schema capability probe.

The geometry store may or may not carry the precomputed ``address_parcels``
join table and the descriptive address columns. The probe runs once per
process and the answer is cached; a runtime failure of an enhanced query
downgrades the cached answer so later requests skip straight to the basic
query.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel

from civicmap.db.engine import DatabaseManager
from civicmap.gis.sql import PROBE_CAPABILITIES

logger = logging.getLogger(__name__)


class Capabilities(BaseModel):
    has_address_parcels: bool = False
    has_address_attributes: bool = False


class SchemaCapabilities:
    """Lazily probed, cached view of which optional tables/columns exist."""

    def __init__(self, db: DatabaseManager, timeout_ms: int = 2500) -> None:
        self._db = db
        self._timeout_ms = timeout_ms
        self._cached: Capabilities | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Capabilities | None:
        return self._cached

    async def get(self) -> Capabilities:
        if self._cached is not None:
            return self._cached
        async with self._lock:
            if self._cached is None:
                self._cached = await self._probe()
        return self._cached

    async def _probe(self) -> Capabilities:
        async with self._db.transaction(self._timeout_ms, label="capabilities") as conn:
            row = (await conn.execute(PROBE_CAPABILITIES)).mappings().one()
        caps = Capabilities(
            has_address_parcels=bool(row["has_address_parcels"]),
            has_address_attributes=bool(row["has_address_attributes"]),
        )
        logger.info(
            "Schema capabilities: address_parcels=%s address_attributes=%s",
            caps.has_address_parcels,
            caps.has_address_attributes,
        )
        return caps

    def downgrade_address_attributes(self) -> None:
        """Stop attempting the enhanced address query for this process."""
        if self._cached is not None and self._cached.has_address_attributes:
            logger.warning("Enhanced address query failed; using basic query from now on")
            self._cached = self._cached.model_copy(update={"has_address_attributes": False})
