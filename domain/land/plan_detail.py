"""Detailed view of one Land App plan: areas, scheme payments, data quality and recommendations."""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from core.clients.land_app import LandAppClient
from core.errors import LandAppAPIError
from . import payments
from .services import feature_area_m2, format_area_m2, format_currency

logger = logging.getLogger(__name__)

HECTARES_TO_ACRES = 2.47105
# Share of the plan area assumed for each recommended action
ACTION_COVERAGE = 0.25
TOP_ACTIONS = 5
LISTED_ACTIONS = 10
# £/ha assumed to put the recommended actions in place
IMPLEMENTATION_COST_PER_HA = 200

PLAN_FULL_NAMES = {
    "BPS": "Basic Payment Scheme",
    "CSS": "Countryside Stewardship Scheme",
    "CSS_2025": "Countryside Stewardship Scheme 2025",
    "SFI2022": "Sustainable Farming Incentive 2022",
    "SFI2023": "Sustainable Farming Incentive 2023",
    "SFI2024": "Sustainable Farming Incentive 2024",
    "UKHAB": "UK Habitat Classification",
    "UKHAB_V2": "UK Habitat Classification V2",
    "LAND_MANAGEMENT": "Land Management Plan",
    "LAND_MANAGEMENT_V2": "Land Management Plan V2",
    "PEAT_ASSESSMENT": "Peat Assessment",
    "OSMM": "Ordnance Survey MasterMap",
    "USER": "User Defined Plan",
    "ESS": "Environmental Stewardship Scheme",
    "FER": "Farm Environment Record",
    "HEALTHY_HEDGEROWS": "Healthy Hedgerows",
}

PRIORITY_ORDER = {"urgent": 3, "high": 2, "medium": 1, "low": 0}


def plan_full_name(plan_type: Optional[str]) -> Optional[str]:
    return PLAN_FULL_NAMES.get(plan_type or "", plan_type)


def group_features_by_type(features: Sequence[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Feature counts and areas keyed by descriptive group, then theme."""
    groups: Dict[str, Dict[str, Any]] = {}
    for feature in features:
        properties = feature.get("properties") or {}
        key = properties.get("descriptiveGroup") or properties.get("theme") or "Unknown"
        group = groups.setdefault(str(key), {"count": 0, "total_area": 0.0})
        group["count"] += 1
        group["total_area"] += feature_area_m2(feature)
    return groups


def plan_geometry(features: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    areas = [feature_area_m2(feature) for feature in features]
    total = sum(areas)
    hectares = total / 10000
    return {
        "total_area": total,
        "total_area_ha": hectares,
        "total_area_acres": hectares * HECTARES_TO_ACRES,
        "total_area_formatted": format_area_m2(total),
        "feature_groups": group_features_by_type(features),
        "summary": {
            "total_features": len(features),
            "valid_features": sum(1 for area in areas if area > 0),
            "area_calculated": total > 0,
        },
    }


def payment_potential(
    plan: Dict[str, Any], geometry: Dict[str, Any], *, year: Optional[int] = None
) -> Dict[str, Any]:
    """Current and potential scheme payments for the plan area.

    The potential adds the five best-paying high priority actions, each on a
    quarter of the plan. Returns are costed at £200/ha.
    """
    plan_type = plan.get("planType")
    area_ha = geometry.get("total_area_ha") or 0.0
    info = payments.scheme_info(plan_type)

    if not area_ha or payments.scheme_for_plan_type(plan_type) == payments.UNKNOWN_SCHEME:
        empty = {"total": 0.0, "error": "No area or unknown scheme"}
        return {
            "area_ha": 0.0,
            "current_payment": dict(empty),
            "potential_payment": dict(empty),
            "available_actions": [],
            "upscale_potential": 0.0,
            "roi": None,
            "scheme": info,
        }

    current = payments.annual_payment(plan_type, area_ha, year=year)
    actions = payments.available_actions(plan_type)
    top_actions = [
        {"code": action["code"], "area": area_ha * ACTION_COVERAGE}
        for action in actions
        if action["priority"] == "High"
    ][:TOP_ACTIONS]
    potential = payments.annual_payment(plan_type, area_ha, top_actions, year=year)
    roi = payments.return_on_investment(
        plan_type, area_ha, top_actions, area_ha * IMPLEMENTATION_COST_PER_HA, year=year
    )
    return {
        "area_ha": area_ha,
        "current_payment": current.to_dict(),
        "potential_payment": potential.to_dict(),
        "available_actions": actions[:LISTED_ACTIONS],
        "upscale_potential": potential.total - current.total,
        "roi": roi,
        "scheme": info,
    }


def _recommendation(kind, priority, title, description, actions, value) -> Dict[str, Any]:
    return {
        "type": kind,
        "priority": priority,
        "title": title,
        "description": description,
        "actions": actions,
        "potential_value": format_currency(value),
    }


def recommendations(
    plan: Dict[str, Any], geometry: Dict[str, Any], payment: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """Actionable suggestions for the plan, most urgent first."""
    area_ha = geometry.get("total_area_ha") or 0.0
    current_total = payment["current_payment"].get("total") or 0.0
    results = []

    if 0 < area_ha < 5:
        results.append(
            _recommendation(
                "optimization",
                "medium",
                "Small Holding Focus",
                f"At {area_ha:.1f}ha, focus on high-value actions like species-rich grassland "
                "or hedgerow management.",
                ["Prioritize premium rate actions", "Consider intensive management options"],
                area_ha * 500,
            )
        )
    elif area_ha > 50:
        results.append(
            _recommendation(
                "opportunity",
                "high",
                "Large Area Advantage",
                f"With {area_ha:.1f}ha, you can maximize scheme diversity and management payments.",
                ["Mix of premium and standard actions", "Consider Higher Tier applications"],
                area_ha * 300,
            )
        )

    scheme = payments.scheme_for_plan_type(plan.get("planType"))
    if scheme == "SFI":
        results.append(
            _recommendation(
                "scheme",
                "high",
                "SFI Management Payment",
                "Ensure you claim the £20/ha management payment for your first 50 hectares.",
                ["Submit SFI application", "Plan 3-year management cycle"],
                min(area_ha, 50) * 20,
            )
        )
        if any(action["rate"] > 500 for action in payment["available_actions"]):
            results.append(
                _recommendation(
                    "premium",
                    "high",
                    "High-Value Actions Available",
                    "Premium actions like species-rich grassland (£646/ha) could significantly increase returns.",
                    ["Assess land suitability", "Consider biodiversity potential"],
                    area_ha * 0.1 * 646,
                )
            )
    elif scheme == "CSS":
        results.append(
            _recommendation(
                "scheme",
                "high",
                "CSS 10% Rate Increase",
                "2024 saw 10% average payment increases. Review your agreement for better rates.",
                ["Check agreement renewal options", "Consider additional options"],
                current_total * 0.1,
            )
        )
    elif scheme == "BPS":
        results.append(
            _recommendation(
                "urgent",
                "high",
                "BPS Phase-Out Planning",
                "BPS payments are reducing each year. Plan transition to SFI/CSS immediately.",
                ["Calculate BPS reduction impact", "Apply for replacement schemes", "Seek advice on transition"],
                current_total * 0.3,
            )
        )

    if payment["upscale_potential"] > 1000:
        results.append(
            _recommendation(
                "financial",
                "high",
                "Significant Upscale Potential",
                "Implementing optimal actions could increase annual payments by "
                f"{format_currency(payment['upscale_potential'])}.",
                ["Detailed feasibility assessment", "Professional scheme advice", "Phased implementation plan"],
                payment["upscale_potential"],
            )
        )

    return sorted(results, key=lambda item: PRIORITY_ORDER[item["priority"]], reverse=True)


def data_quality(features: Sequence[Dict[str, Any]], geometry: Dict[str, Any]) -> Dict[str, Any]:
    """Score out of 100 from feature presence, valid areas, total area and attribute coverage."""
    total = len(features)
    valid = geometry["summary"]["valid_features"]
    score = 0
    issues = []

    if total:
        score += 25
    else:
        issues.append("No features found")

    validity = valid / total if total else 0
    if validity > 0.9:
        score += 25
    elif validity > 0.7:
        score += 15
        issues.append("Some invalid geometries")
    else:
        issues.append("Many invalid geometries")

    if geometry["summary"]["area_calculated"]:
        score += 25
    else:
        issues.append("Area calculation failed")

    attributed = sum(
        1
        for feature in features
        if (feature.get("properties") or {}).get("theme")
        and (feature.get("properties") or {}).get("descriptiveGroup")
    )
    completeness = attributed / max(total, 1)
    if completeness > 0.8:
        score += 25
    elif completeness > 0.5:
        score += 15
        issues.append("Some features lack detailed attributes")
    else:
        issues.append("Many features lack attributes")

    return {
        "score": score,
        "grade": "High" if score >= 80 else "Medium" if score >= 60 else "Low",
        "issues": issues,
        "summary": f"{valid}/{total} valid features, {completeness * 100:.0f}% attribute completeness",
    }


async def _plan_record(client: LandAppClient, plan_id: str) -> Dict[str, Any]:
    try:
        return await client.plan_detail(plan_id)
    except LandAppAPIError as exc:
        logger.warning("Could not fetch plan record %s: %s", plan_id, exc)
        return {}


async def plan_details(
    plan: Dict[str, Any], client: LandAppClient, *, year: Optional[int] = None
) -> Dict[str, Any]:
    """Features, payments, recommendations and data quality for one plan.

    ``plan`` needs an ``id``; name, type and status missing from it are
    taken from the plan record the Land App returns.
    """
    started = time.monotonic()
    plan_id = plan["id"]
    features, record = await asyncio.gather(client.plan_features(plan_id), _plan_record(client, plan_id))

    plan = {**plan}
    for key, fallback in (("name", "name"), ("planType", "type"), ("status", "status")):
        if not plan.get(key):
            value = record.get(key) or record.get(fallback)
            if value:
                plan[key] = value
    plan["fullName"] = plan_full_name(plan.get("planType"))

    geometry = plan_geometry(features)
    payment = payment_potential(plan, geometry, year=year)
    logger.info(
        "Plan %s (%s): %d features, %.2f ha",
        plan_id,
        plan.get("planType"),
        len(features),
        geometry["total_area_ha"],
    )
    return {
        "plan": plan,
        "geometry": geometry,
        "financial": payment,
        "recommendations": recommendations(plan, geometry, payment),
        "features": {
            "total": len(features),
            "geojson": {"type": "FeatureCollection", "features": list(features)},
        },
        "metadata": {
            "processing_time_ms": round((time.monotonic() - started) * 1000),
            "data_quality": data_quality(features, geometry),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        },
        "record": record,
    }


def plan_summary_text(details: Dict[str, Any]) -> str:
    """Plain text report of ``plan_details`` output."""
    plan = details["plan"]
    geometry = details["geometry"]
    financial = details["financial"]
    roi = financial.get("roi")
    lines = [
        "PLAN ANALYSIS SUMMARY",
        "=====================",
        "",
        f"Plan: {plan.get('name') or plan['id']}",
        f"Type: {plan.get('fullName')} ({plan.get('planType')})",
        f"Status: {plan.get('status') or 'Unknown'}",
        "",
        "AREA ANALYSIS",
        "-------------",
        f"Total Area: {geometry['total_area_formatted']}",
        f"Features: {geometry['summary']['total_features']} ({geometry['summary']['valid_features']} valid)",
        f"Data Quality: {details['metadata']['data_quality']['grade']}",
        "",
        "FINANCIAL ANALYSIS",
        "------------------",
        f"Current Estimated Payment: {format_currency(financial['current_payment']['total'])}/year",
        f"Potential Payment: {format_currency(financial['potential_payment']['total'])}/year",
        f"Upscale Potential: {format_currency(financial['upscale_potential'])}/year",
        f"ROI: {roi['roi']:.1f}%" if roi else "ROI: n/a",
        "",
        f"RECOMMENDATIONS ({len(details['recommendations'])})",
        "------------------",
    ]
    for index, item in enumerate(details["recommendations"], start=1):
        lines.append(f"{index}. {item['title']} ({item['priority']})")
        lines.append(f"   {item['description']}")
    return "\n".join(lines)


__all__ = [
    "PLAN_FULL_NAMES",
    "data_quality",
    "group_features_by_type",
    "payment_potential",
    "plan_details",
    "plan_full_name",
    "plan_geometry",
    "plan_summary_text",
    "recommendations",
]
