"""Logging setup shared by the API and command line entry points."""
import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger.

    Calling this more than once only updates the level.
    """
    root = logging.getLogger()
    resolved = logging.getLevelName((level or "INFO").upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    if not any(getattr(handler, "_estate_energy", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._estate_energy = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    root.setLevel(resolved)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(resolved, logging.WARNING))


__all__ = ["LOG_FORMAT", "configure_logging"]
