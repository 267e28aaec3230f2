"""Estate energy performance routes."""
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from apps.api.dependencies import get_epc_client, get_os_client, get_supabase_client
from core.clients.epc import EPCClient
from core.clients.os_links import OSLinksClient
from core.clients.supabase import SupabaseClient
from domain.epc import repository
from domain.epc.export import export_matches_csv
from domain.epc.models import MatchedRecord
from domain.epc.services import chart_data, process_estate
from domain.epc.table import DEFAULT_PAGE_SIZE, filter_options, filter_records, paginate, sort_records

router = APIRouter(prefix="/api/epc", tags=["epc"])


class EstateRequest(BaseModel):
    features: List[Dict[str, Any]] = Field(..., description="GeoJSON building features")
    fuzzy_threshold: Optional[float] = Field(None, gt=0, le=1)
    enrich_uprns: bool = Field(True, description="Resolve TOIDs to UPRNs before searching")
    persist: bool = Field(False, description="Store matched certificates in Supabase")


class RecordsRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list)


class TableRequest(RecordsRequest):
    rating: Optional[str] = None
    property_type: Optional[str] = None
    status: Optional[str] = None
    search: Optional[str] = None
    sort_key: Optional[str] = None
    direction: Literal["asc", "desc"] = "asc"
    page: int = Field(1, ge=1)
    per_page: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=500)


def _records(payload: RecordsRequest) -> List[MatchedRecord]:
    try:
        return [MatchedRecord.from_dict(item) for item in payload.records]
    except (TypeError, ValueError) as exc:
        raise HTTPException(400, f"Invalid matched record: {exc}") from exc


@router.post("/estate")
async def analyse_estate(
    request: EstateRequest,
    epc_client: EPCClient = Depends(get_epc_client),
    os_client: OSLinksClient = Depends(get_os_client),
    supabase: SupabaseClient = Depends(get_supabase_client),
) -> Dict[str, Any]:
    if not request.features:
        raise HTTPException(400, "No building features provided")

    result = await process_estate(
        request.features,
        epc_client=epc_client,
        os_client=os_client if request.enrich_uprns else None,
        fuzzy_threshold=request.fuzzy_threshold,
    )
    response = result.to_dict()
    response["chart_data"] = chart_data(result.records) if result.success else None
    if request.persist and result.success:
        response["stored"] = await repository.save_matches(supabase, result.records)
    return response


@router.post("/table")
async def epc_table(request: TableRequest) -> Dict[str, Any]:
    records = _records(request)
    filtered = filter_records(
        records,
        rating=request.rating,
        property_type=request.property_type,
        status=request.status,
        search=request.search,
    )
    ordered = sort_records(filtered, request.sort_key, request.direction)
    page = paginate(ordered, request.page, request.per_page)
    return {**page.to_dict(), "options": filter_options(records)}


@router.post("/export")
async def export_epc_csv(request: RecordsRequest) -> Response:
    content = export_matches_csv(_records(request))
    filename = f"epc-matches-{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/certificates")
async def stored_certificates(
    postcode: str = Query(..., min_length=2, description="Postcode to look up"),
    supabase: SupabaseClient = Depends(get_supabase_client),
) -> Dict[str, Any]:
    certificates = await repository.certificates_for_postcode(supabase, postcode)
    return {
        "postcode": postcode,
        "count": len(certificates),
        "certificates": [certificate.to_dict() for certificate in certificates],
    }
