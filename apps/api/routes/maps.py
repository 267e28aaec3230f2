"""Land App map routes: plans, combined map profiles and holding analysis."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from apps.api.dependencies import get_epc_client, get_land_client, get_os_client
from core.clients.epc import EPCClient
from core.clients.land_app import LandAppClient
from core.clients.os_links import OSLinksClient
from core.errors import ConfigurationError, UpstreamError
from domain.epc.services import process_estate
from domain.land.analysis import analyse_holding
from domain.land.services import (
    building_features,
    extract_map_id,
    features_for_plans,
    map_profile,
    plans_for_map,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/maps", tags=["maps"])


def _map_id(map_ref: str) -> str:
    try:
        return extract_map_id(map_ref)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


def _require_land_app(client: LandAppClient) -> None:
    if not client.is_configured:
        raise ConfigurationError("Land App API key not configured")


@router.get("/{map_ref:path}/plans")
async def map_plans(
    map_ref: str,
    land_client: LandAppClient = Depends(get_land_client),
) -> Dict[str, Any]:
    map_id = _map_id(map_ref)
    _require_land_app(land_client)
    plans = await plans_for_map(land_client, map_id)
    return {"map_id": map_id, "count": len(plans), "plans": plans}


@router.get("/{map_ref:path}/profile")
async def get_map_profile(
    map_ref: str,
    include_nature: bool = Query(True, description="Look up nature reporting metrics"),
    include_epc: bool = Query(True, description="Match building features to EPC certificates"),
    land_client: LandAppClient = Depends(get_land_client),
    epc_client: EPCClient = Depends(get_epc_client),
    os_client: OSLinksClient = Depends(get_os_client),
) -> Dict[str, Any]:
    map_id = _map_id(map_ref)
    _require_land_app(land_client)
    profile = await map_profile(
        map_id,
        land_client,
        epc_client=epc_client if include_epc else None,
        os_client=os_client,
        include_nature=include_nature,
    )
    return profile.to_dict()


@router.get("/{map_ref:path}/analysis")
async def get_holding_analysis(
    map_ref: str,
    plan_id: Optional[List[str]] = Query(None, description="Restrict the analysis to these plans"),
    include_epc: bool = Query(False, description="Add energy performance of matched buildings"),
    land_client: LandAppClient = Depends(get_land_client),
    epc_client: EPCClient = Depends(get_epc_client),
    os_client: OSLinksClient = Depends(get_os_client),
) -> Dict[str, Any]:
    map_id = _map_id(map_ref)
    _require_land_app(land_client)
    plans = await plans_for_map(land_client, map_id)
    if plan_id:
        plans = [plan for plan in plans if plan.get("id") in plan_id]
    if not plans:
        raise HTTPException(404, f"No plans found for Map ID: {map_id}")

    plan_features = await features_for_plans(land_client, plans)
    epc = None
    buildings = building_features(plan_features)
    if include_epc and buildings and epc_client.is_configured:
        try:
            epc = await process_estate(buildings, epc_client=epc_client, os_client=os_client)
        except (UpstreamError, ConfigurationError) as exc:
            logger.warning("EPC lookup for map %s failed: %s", map_id, exc)
    return analyse_holding(map_id, plans, plan_features, epc)
