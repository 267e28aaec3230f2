"""Service status routes."""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from apps.api.dependencies import get_epc_client, get_land_client, get_os_client, get_supabase_client
from core.clients.epc import EPCClient
from core.clients.land_app import LandAppClient
from core.clients.os_links import OSLinksClient
from core.clients.supabase import SupabaseClient

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Estate Energy API", "status": "active"}


@router.get("/health")
async def health(
    epc_client: EPCClient = Depends(get_epc_client),
    land_client: LandAppClient = Depends(get_land_client),
    os_client: OSLinksClient = Depends(get_os_client),
    supabase: SupabaseClient = Depends(get_supabase_client),
) -> Dict[str, Any]:
    services = {
        "epc": epc_client.is_configured,
        "land_app": land_client.is_configured,
        "nature_reporting": land_client.nature_configured,
        "os_linked_identifiers": os_client.is_configured,
        "supabase": supabase.is_configured,
    }
    return {"status": "healthy" if services["epc"] else "degraded", "services": services}
