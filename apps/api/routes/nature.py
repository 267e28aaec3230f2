"""Nature reporting routes."""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from apps.api.dependencies import get_land_client
from core.clients.land_app import LandAppClient
from core.errors import ConfigurationError, UpstreamError
from domain.land import nature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/nature", tags=["nature"])


def _require_nature(client: LandAppClient) -> None:
    if not client.nature_configured:
        raise ConfigurationError("Nature Reporting API key not configured")


@router.get("/maps")
async def nature_map_names(land_client: LandAppClient = Depends(get_land_client)) -> Dict[str, Any]:
    _require_nature(land_client)
    names = await nature.available_map_names(land_client)
    return {"count": len(names), "map_names": names}


@router.get("/maps/{map_name}")
async def nature_metrics_for_map(
    map_name: str,
    land_client: LandAppClient = Depends(get_land_client),
) -> Dict[str, Any]:
    _require_nature(land_client)
    entries = await nature.all_metrics_for_map(land_client, map_name)
    if not entries:
        raise HTTPException(404, f"No nature reporting data for map {map_name!r}")

    try:
        descriptions = await land_client.nature_metric_descriptions()
    except UpstreamError as exc:
        logger.warning("Metric descriptions unavailable: %s", exc)
        descriptions = []

    return {
        "map_name": map_name,
        "entries": entries,
        "key_metrics": nature.key_metrics(entries[0]),
        "dashboard": nature.process_metrics(entries, descriptions),
    }
