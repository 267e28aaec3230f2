"""Land App plan detail routes."""
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from apps.api.dependencies import get_land_client
from core.clients.land_app import LandAppClient
from core.errors import ConfigurationError
from domain.land.plan_detail import plan_details, plan_summary_text

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("/{plan_id}/details")
async def get_plan_details(
    plan_id: str,
    plan_type: Optional[str] = Query(None, description="Plan type, e.g. SFI2023"),
    name: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    output: Literal["json", "summary"] = Query("json", alias="format"),
    land_client: LandAppClient = Depends(get_land_client),
) -> Any:
    if not land_client.is_configured:
        raise ConfigurationError("Land App API key not configured")

    plan: Dict[str, Any] = {"id": plan_id}
    for key, value in (("planType", plan_type), ("name", name), ("status", status)):
        if value:
            plan[key] = value

    details = await plan_details(plan, land_client)
    if output == "summary":
        return PlainTextResponse(plan_summary_text(details))
    return details
