"""Agri-environment scheme payment rates, annual payment estimates and returns."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .services import format_currency

UNKNOWN_SCHEME = "UNKNOWN"

PLAN_SCHEMES: Dict[str, str] = {
    "SFI2022": "SFI",
    "SFI2023": "SFI",
    "SFI2024": "SFI",
    "CSS": "CSS",
    "CSS_2025": "CSS",
    "BPS": "BPS",
    "ESS": "ESS",
}


def _actions(rows: Mapping[str, tuple]) -> Dict[str, Dict[str, Any]]:
    return {code: {"rate": rate, "name": name, "unit": unit} for code, (rate, name, unit) in rows.items()}


# 2024 rates
PAYMENT_RATES: Dict[str, Dict[str, Any]] = {
    "SFI": {
        "management_payment": {"rate": 20, "first_year_rate": 40, "max_area": 50},
        "premium_actions": _actions(
            {
                "SAM3": (646, "Species-rich grassland management", "£/ha"),
                "WBD1": (765, "Lapwing nesting plots", "£/ha"),
                "WBD2": (1242, "Connecting river and floodplain habitats", "£/ha"),
                "NUM3": (58, "Legume fallow", "£/ha"),
                "IPM4": (55, "Flower-rich grass margins, blocks or in-field strips", "£/ha"),
                "AHL3": (590, "Maintain woodland", "£/ha"),
                "SCR1": (129, "Take archaeological features out of cultivation", "£/ha"),
            }
        ),
        "standard_actions": _actions(
            {
                "AHL1": (58, "Hedgerow management", "£/100m"),
                "AHL2": (372, "Hedgerow tree management", "£/100m"),
                "BFS1": (22, "Beetle banks", "£/100m"),
                "GS6": (646, "Management of species-rich grassland", "£/ha"),
                "GS15": (353, "Grassland with areas of rush pasture", "£/ha"),
                "IPM1": (45, "Pollen and nectar plots", "£/ha"),
                "IPM2": (614, "Winter bird food on improved grassland", "£/ha"),
                "LIG1": (382, "Permanent grassland with very low inputs", "£/ha"),
                "LIG2": (151, "Permanent grassland with low inputs", "£/ha"),
                "NUM1": (108, "Herbal leys", "£/ha"),
                "NUM2": (515, "Multi-species winter cover crops", "£/ha"),
                "SAM1": (28, "Assess soil, test soil organic matter and pH", "£/ha"),
                "SAM2": (40, "Minimise soil disturbance on arable land", "£/ha"),
                "UP1": (30, "Varied seed application rates to reduce wind erosion", "£/ha"),
                "UP2": (58, "Reduced height, varied seed application or buffer strips on slopes", "£/ha"),
            }
        ),
        # share of the farm area many actions are limited to
        "restricted_to_percent": 25,
    },
    "CSS": {
        "mid_tier": _actions(
            {
                "AB1": (522, "Nectar flower mix", "£/ha"),
                "AB4": (539, "Nectar flower mix on cultivated land", "£/ha"),
                "AB8": (596, "Flower rich margins and plots", "£/ha"),
                "AB15": (853, "Two year sown legume fallow", "£/ha"),
                "BE3": (58, "Management of field corners", "£/ha"),
                "GS2": (76, "Permanent grassland with low inputs", "£/ha"),
                "GS4": (129, "Legume and herb rich swards", "£/ha"),
                "GS6": (646, "Management of species-rich grassland", "£/ha"),
                "GS10": (640, "Rough grazing", "£/ha"),
                "GS13": (170, "Coastal saltmarsh", "£/ha"),
                "OT3": (640, "Management of lowland heath", "£/ha"),
                "SW1": (77, "Permanent grassland with very low inputs", "£/ha"),
                "SW2": (151, "Permanent grassland with low inputs (outside SDAs)", "£/ha"),
                "SW3": (215, "Management of moorland", "£/ha"),
                "UP1": (22, "Undersowing spring cereals", "£/ha"),
                "UP2": (114, "Winter cover crops", "£/ha"),
            }
        ),
        "higher_tier": _actions(
            {
                "BE1": (640, "Management of hedgerows", "£/100m"),
                "BE2": (372, "Hedgerow tree management", "£/100m"),
                "FG1": (353, "Bracken control", "£/ha"),
                "OT1": (255, "Upland livestock exclusion supplement", "£/ha"),
                "WD1": (590, "Maintenance of woodland", "£/ha"),
                "WT1": (518, "Buffering in-field ponds and ditches", "£/ha"),
                "WT2": (474, "Buffering watercourses", "£/ha"),
                "WT3": (640, "Buffering of sensitive water features", "£/ha"),
            }
        ),
    },
    "BPS": {
        "base_rate": 255.73,
        "greening_rate": 89.84,
        "phase_out": {2021: 1.0, 2022: 0.95, 2023: 0.85, 2024: 0.70, 2025: 0.50, 2026: 0.25, 2027: 0.0},
    },
    "ESS": {
        "entry_level": {"rate": 30, "points": 30},
        "higher_level": {"rate": 60},
    },
}

# (category, priority) for each action table, in listing order
ACTION_CATEGORIES = (
    ("premium_actions", "Premium Actions", "High"),
    ("standard_actions", "Standard Actions", "Medium"),
    ("mid_tier", "Mid Tier", "Medium"),
    ("higher_tier", "Higher Tier", "High"),
)

REGIONAL_MULTIPLIERS: Dict[str, float] = {
    "London": 2.2,
    "South East": 1.8,
    "South West": 1.4,
    "East of England": 1.5,
    "West Midlands": 1.1,
    "East Midlands": 1.0,
    "Yorkshire and The Humber": 0.9,
    "North West": 0.85,
    "North East": 0.75,
    "Wales": 0.9,
    "Scotland": 0.7,
    "Northern Ireland": 0.6,
}

AGREEMENT_YEARS = {"SFI": 3, "CSS": 5, "BPS": 1, "ESS": 5}
DEFAULT_AGREEMENT_YEARS = 5

SCHEME_INFO: Dict[str, Dict[str, Any]] = {
    "SFI": {
        "full_name": "Sustainable Farming Incentive",
        "description": "Payment for sustainable farming practices that benefit the environment",
        "status": "Active",
        "application_status": "Limited reopening for eligible applicants",
        "key_features": [
            "Management payment for first 50 hectares",
            "Premium rates for high-priority environmental actions",
            "Focus on water quality and biodiversity",
            "Flexible 3-year agreements",
        ],
    },
    "CSS": {
        "full_name": "Countryside Stewardship Scheme",
        "description": "Environmental land management scheme with Mid Tier and Higher Tier options",
        "status": "Active",
        "application_status": "Open for applications",
        "key_features": [
            "Mid Tier: 5-year agreements for wildlife habitats",
            "Higher Tier: tailored agreements for complex environmental outcomes",
            "10% average payment increase in 2024",
            "Capital grants available for infrastructure",
        ],
    },
    "BPS": {
        "full_name": "Basic Payment Scheme",
        "description": "Area-based payment scheme being phased out by 2027",
        "status": "Phasing out",
        "application_status": "Closed to new applications",
        "key_features": [
            "Payment reduction each year until 2027",
            "Based on eligible hectares and entitlements",
            "Includes greening payment requirements",
            "Being replaced by SFI and CSS",
        ],
    },
    "ESS": {
        "full_name": "Environmental Stewardship Scheme",
        "description": "Legacy environmental scheme closed to new applications",
        "status": "Legacy",
        "application_status": "Closed",
        "key_features": [
            "Entry Level and Higher Level options",
            "Point-based system for environmental management",
            "Existing agreements continue until expiry",
            "Being replaced by CSS and SFI",
        ],
    },
}
UNKNOWN_SCHEME_INFO = {
    "full_name": "Unknown Scheme",
    "description": "Scheme information not available",
    "status": "Unknown",
    "key_features": [],
}


def scheme_for_plan_type(plan_type: Optional[str]) -> str:
    return PLAN_SCHEMES.get(plan_type or "", UNKNOWN_SCHEME)


def scheme_rates(plan_type: Optional[str]) -> Dict[str, Any]:
    return PAYMENT_RATES.get(scheme_for_plan_type(plan_type), {})


def scheme_info(plan_type: Optional[str]) -> Dict[str, Any]:
    return dict(SCHEME_INFO.get(scheme_for_plan_type(plan_type), UNKNOWN_SCHEME_INFO))


@dataclass
class ActionPayment:
    code: str
    name: str
    area: float
    rate: float
    payment: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "area": self.area,
            "rate": self.rate,
            "payment": self.payment,
        }


@dataclass
class PaymentBreakdown:
    base_payment: float = 0.0
    management_payment: float = 0.0
    action_payments: List[ActionPayment] = field(default_factory=list)
    total: float = 0.0
    region: Optional[str] = None
    regional_multiplier: Optional[float] = None
    error: Optional[str] = None
    currency: str = "GBP"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "base_payment": self.base_payment,
            "management_payment": self.management_payment,
            "action_payments": [action.to_dict() for action in self.action_payments],
            "total": self.total,
            "currency": self.currency,
        }
        if self.region is not None:
            data["region"] = self.region
            data["regional_multiplier"] = self.regional_multiplier
        if self.error is not None:
            data["error"] = self.error
        return data


def _action_payments(
    tables: Sequence[Mapping[str, Dict[str, Any]]], actions: Sequence[Mapping[str, Any]]
) -> List[ActionPayment]:
    """Price each ``{"code", "area"}`` action against the first table that lists its code."""
    payments = []
    for action in actions:
        code = action.get("code")
        area = float(action.get("area") or 0)
        rate = next((table[code] for table in tables if code in table), None)
        if rate is None or not area:
            continue
        payments.append(
            ActionPayment(code=code, name=rate["name"], area=area, rate=rate["rate"], payment=area * rate["rate"])
        )
    return payments


def annual_payment(
    plan_type: Optional[str],
    area_ha: float,
    actions: Sequence[Mapping[str, Any]] = (),
    region: Optional[str] = None,
    *,
    year: Optional[int] = None,
) -> PaymentBreakdown:
    """Estimate the yearly payment for ``area_ha`` hectares under a plan's scheme.

    Actions with codes the scheme does not list, or without an area, are
    ignored. BPS payments are scaled by the phase-out factor for ``year``
    (the current year by default); years outside the table pay nothing.
    """
    scheme = scheme_for_plan_type(plan_type)
    rates = PAYMENT_RATES.get(scheme)
    breakdown = PaymentBreakdown()
    if rates is None:
        breakdown.error = "Unknown scheme type"
        return breakdown

    if scheme == "SFI":
        management = rates["management_payment"]
        breakdown.management_payment = min(area_ha, management["max_area"]) * management["rate"]
        breakdown.action_payments = _action_payments(
            (rates["premium_actions"], rates["standard_actions"]), actions
        )
        total = breakdown.management_payment + sum(a.payment for a in breakdown.action_payments)
    elif scheme == "CSS":
        breakdown.action_payments = _action_payments((rates["mid_tier"], rates["higher_tier"]), actions)
        total = sum(a.payment for a in breakdown.action_payments)
    elif scheme == "BPS":
        factor = rates["phase_out"].get(year or date.today().year, 0.0)
        breakdown.base_payment = area_ha * rates["base_rate"] * factor
        greening_rate = rates["greening_rate"] * factor
        breakdown.action_payments = [
            ActionPayment(
                code="GREENING",
                name="Greening Payment",
                area=area_ha,
                rate=greening_rate,
                payment=area_ha * greening_rate,
            )
        ]
        total = breakdown.base_payment + area_ha * greening_rate
    else:
        breakdown.base_payment = area_ha * rates["entry_level"]["rate"]
        total = breakdown.base_payment

    multiplier = REGIONAL_MULTIPLIERS.get(region or "")
    if multiplier:
        total *= multiplier
        breakdown.region = region
        breakdown.regional_multiplier = multiplier

    breakdown.total = total
    return breakdown


def available_actions(plan_type: Optional[str]) -> List[Dict[str, Any]]:
    """Every action the plan's scheme pays for, highest rate first."""
    rates = scheme_rates(plan_type)
    actions = []
    for key, category, priority in ACTION_CATEGORIES:
        for code, action in (rates.get(key) or {}).items():
            actions.append({"code": code, **action, "category": category, "priority": priority})
    return sorted(actions, key=lambda action: action["rate"], reverse=True)


def return_on_investment(
    plan_type: Optional[str],
    area_ha: float,
    actions: Sequence[Mapping[str, Any]] = (),
    implementation_costs: float = 0.0,
    *,
    year: Optional[int] = None,
) -> Dict[str, Any]:
    """Payments over a typical agreement term against up-front costs.

    ``roi`` is a percentage and is 0 when there are no costs.
    """
    annual = annual_payment(plan_type, area_ha, actions, year=year).total
    years = AGREEMENT_YEARS.get(scheme_for_plan_type(plan_type), DEFAULT_AGREEMENT_YEARS)
    total_payments = annual * years
    net_return = total_payments - implementation_costs
    roi = net_return / implementation_costs * 100 if implementation_costs > 0 else 0.0
    return {
        "annual_payment": annual,
        "agreement_length": years,
        "total_payments": total_payments,
        "implementation_costs": implementation_costs,
        "net_return": net_return,
        "roi": roi,
        "formatted_annual_payment": format_currency(annual),
        "formatted_total_payments": format_currency(total_payments),
        "formatted_net_return": format_currency(net_return),
    }


__all__ = [
    "ActionPayment",
    "PAYMENT_RATES",
    "PLAN_SCHEMES",
    "PaymentBreakdown",
    "REGIONAL_MULTIPLIERS",
    "UNKNOWN_SCHEME",
    "annual_payment",
    "available_actions",
    "return_on_investment",
    "scheme_for_plan_type",
    "scheme_info",
    "scheme_rates",
]
