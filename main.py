"""ASGI entry point: ``uvicorn main:app``."""
from __future__ import annotations

import logging
import time

from dotenv import load_dotenv

from core.logging_config import configure_logging

_boot_start_time = time.time()
load_dotenv()

from apps.api import create_app  # noqa: E402
from core.config import get_settings  # noqa: E402

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("estate_energy")

app = create_app()

logger.info(
    "API ready in %.2fs (EPC configured: %s, Land App configured: %s)",
    time.time() - _boot_start_time,
    settings.epc_configured,
    bool(settings.land_app_api_key),
)
