"""Agri-environment scheme payment routes."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from domain.land import payments

router = APIRouter(prefix="/api/payments", tags=["payments"])


class ActionArea(BaseModel):
    code: str
    area: float = Field(..., ge=0, description="Hectares, or 100m lengths for linear actions")


class PaymentRequest(BaseModel):
    plan_type: str
    area_ha: float = Field(..., ge=0)
    actions: List[ActionArea] = Field(default_factory=list)
    region: Optional[str] = None
    implementation_costs: float = Field(0.0, ge=0)


@router.get("/schemes/{plan_type}")
async def scheme(plan_type: str) -> Dict[str, Any]:
    return {
        "plan_type": plan_type,
        "scheme": payments.scheme_for_plan_type(plan_type),
        "info": payments.scheme_info(plan_type),
        "actions": payments.available_actions(plan_type),
    }


@router.post("/estimate")
async def estimate(request: PaymentRequest) -> Dict[str, Any]:
    if payments.scheme_for_plan_type(request.plan_type) == payments.UNKNOWN_SCHEME:
        raise HTTPException(400, f"No payment scheme for plan type {request.plan_type!r}")

    actions = [action.model_dump() for action in request.actions]
    breakdown = payments.annual_payment(request.plan_type, request.area_ha, actions, request.region)
    return {
        "plan_type": request.plan_type,
        "payment": breakdown.to_dict(),
        "roi": payments.return_on_investment(
            request.plan_type, request.area_ha, actions, request.implementation_costs
        ),
    }
