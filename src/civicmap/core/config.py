"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class DBConfig(BaseSettings):
    """Geometry store connection configuration."""

    model_config = {"env_prefix": "CIVICMAP_DB_"}

    database_url: str | None = None
    echo: bool = False
    pool_size: int = 5
    statement_timeout_ms: int = 2500
    search_timeout_ms: int = 3000


class QueryConfig(BaseSettings):
    """Spatial query policy: zoom guards, result caps and radii."""

    model_config = {"env_prefix": "CIVICMAP_QUERY_"}

    min_zoom: float = 10.0
    default_zoom: float = 12.0
    parcel_limit: int = 2000
    address_limit: int = 5000
    search_default_limit: int = 10
    search_max_limit: int = 100
    proximity_radius_m: float = 2000.0
    proximity_per_kind_limit: int = 10
    proximity_total_limit: int = 100
    nearest_schools_limit: int = 5


class ViewerConfig(BaseSettings):
    """Viewer core configuration (debounce, backend location)."""

    model_config = {"env_prefix": "CIVICMAP_VIEWER_"}

    base_url: str = "http://localhost:8080"
    debounce_ms: int = 500
    timeout_seconds: float = 10.0
    min_zoom: float = 10.0


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "CIVICMAP_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:3001",
            "http://localhost:5173",
        ]
    )

    db: DBConfig = Field(default_factory=DBConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    viewer: ViewerConfig = Field(default_factory=ViewerConfig)
