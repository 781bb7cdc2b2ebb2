"""Core type definitions shared across all CivicMap modules."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# GeoJSON position, always [longitude, latitude].
LngLat = tuple[float, float]

GeoJSON = dict[str, Any]


class HealthStatus(BaseModel):
    """Health check response for any service."""

    service: str
    healthy: bool
    latency_ms: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)
