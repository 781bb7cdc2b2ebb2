"""Database layer for CivicMap — SQLAlchemy 2.0 async over PostGIS."""

from __future__ import annotations

from civicmap.db.engine import DatabaseManager, is_statement_timeout

__all__ = ["DatabaseManager", "is_statement_timeout"]
