"""Logging setup for the API process."""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=_FORMAT)
    root.setLevel(level.upper())
    # SQL echo is controlled by DBConfig.echo, not the root level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
