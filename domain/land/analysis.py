"""Holding analysis: land use areas, building portfolio and an indicative valuation."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from domain.epc.models import EstateResult, MatchedRecord
from .services import AREA_PROPERTIES, clean_osmm_value, feature_area_m2, format_currency

logger = logging.getLogger(__name__)

SQUARE_METRES_PER_HECTARE = 10000
SQUARE_METRES_PER_ACRE = 4046.86

# Land values in £/ha, building values in £/m²
VALUATION_RATES: Dict[str, Any] = {
    "agricultural_land": {"arable": 25000, "pasture": 20000, "rough_grazing": 5000, "woodland": 12000},
    "residential_potential": {"high": 1250000, "medium": 625000, "low": 125000},
    "garden_recreation": 30000,
    "natural_land": 8000,
    "transport": 5000,
    "water": 2000,
    "buildings": {
        "residential_building": {"detached": 2500, "semidetached": 2000, "terraced": 1800, "flat": 1500},
        "commercial_building": {"office": 3000, "retail": 2500, "industrial": 1000, "warehouse": 800},
        "agricultural_building": {"modern": 500, "traditional": 300},
    },
}
DEFAULT_LAND_RATE = 15000
DEFAULT_BUILDING_RATE = 1000
# Share of a sparsely built holding assumed developable at the low residential rate
DEVELOPABLE_SHARE = 0.1

DISPLAY_NAMES = {
    "residential_building": "Residential Buildings",
    "commercial_building": "Commercial Buildings",
    "agricultural_building": "Agricultural Buildings",
    "building": "Other Buildings",
    "agricultural_land": "Agricultural Land",
    "garden_recreation": "Gardens & Recreation",
    "natural_land": "Natural Areas",
    "land": "Other Land",
    "water": "Water Features",
    "transport": "Roads & Paths",
    "unknown": "Unclassified Features",
}


def _contains_any(text: str, words: Sequence[str]) -> bool:
    return any(word in text for word in words)


def classify_feature(properties: Optional[Dict[str, Any]]) -> str:
    """Land use class of an OS MasterMap feature from its theme and descriptive fields."""
    if not properties:
        return "unknown"
    theme = clean_osmm_value(properties.get("theme"))
    group = clean_osmm_value(properties.get("descriptiveGroup"))
    term = clean_osmm_value(properties.get("descriptiveTerm"))

    if theme in ("buildings", "building") or "building" in group:
        if _contains_any(term, ("house", "residential", "dwelling")):
            return "residential_building"
        if _contains_any(term, ("commercial", "office", "shop", "retail")):
            return "commercial_building"
        if _contains_any(term, ("agricultural", "farm", "barn")):
            return "agricultural_building"
        return "building"

    if theme == "land":
        if "agricultural" in group:
            return "agricultural_land"
        if "garden" in group or "recreation" in group:
            return "garden_recreation"
        if "natural" in group:
            return "natural_land"
        return "land"

    if theme == "water" or "water" in group:
        return "water"
    if theme == "transport" or "road" in group or "path" in group:
        return "transport"
    return properties.get("theme") or "unknown"


def display_name(feature_type: str) -> str:
    return DISPLAY_NAMES.get(feature_type) or feature_type.replace("_", " ").title()


def format_hectares(area_m2: float) -> str:
    return f"{area_m2 / SQUARE_METRES_PER_HECTARE:.2f} ha"


# ============================================================================
# Geometry
# ============================================================================


@dataclass
class AnalysedFeature:
    type: str
    area: float
    area_source: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_feature(cls, feature: Dict[str, Any]) -> "AnalysedFeature":
        properties = feature.get("properties") or {}
        reported = any(properties.get(key) for key in AREA_PROPERTIES)
        return cls(
            type=classify_feature(properties),
            area=feature_area_m2(feature),
            area_source="Land App API" if reported else "calculated from geometry",
            properties=properties,
        )


@dataclass
class FeatureGroup:
    type: str
    features: List[AnalysedFeature] = field(default_factory=list)
    total_area: float = 0.0

    @property
    def hectares(self) -> float:
        return self.total_area / SQUARE_METRES_PER_HECTARE

    @property
    def acres(self) -> float:
        return self.total_area / SQUARE_METRES_PER_ACRE


def group_features(features: Sequence[AnalysedFeature]) -> Dict[str, FeatureGroup]:
    groups: Dict[str, FeatureGroup] = {}
    for feature in features:
        group = groups.setdefault(feature.type, FeatureGroup(type=feature.type))
        group.features.append(feature)
        group.total_area += feature.area
    return groups


@dataclass
class HoldingGeometry:
    """Features of the selected plans grouped by land use, overall and per plan."""

    groups: Dict[str, FeatureGroup] = field(default_factory=dict)
    plans: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_area(self) -> float:
        return sum(group.total_area for group in self.groups.values())

    @property
    def total_features(self) -> int:
        return sum(len(group.features) for group in self.groups.values())


def analyse_geometry(
    plans: Sequence[Dict[str, Any]], plan_features: Sequence[Dict[str, Any]]
) -> HoldingGeometry:
    """Group the features of ``plans``.

    ``plan_features`` holds ``{"plan_id", "features"}`` collections as
    returned by ``features_for_plans``. Areas are summed per land use, so
    features that overlap across plans are counted once per plan.
    """
    by_plan = {collection.get("plan_id"): collection.get("features") or [] for collection in plan_features}
    geometry = HoldingGeometry()
    everything: List[AnalysedFeature] = []
    for plan in plans:
        if not plan or not plan.get("id"):
            continue
        features = [AnalysedFeature.from_feature(feature) for feature in by_plan.get(plan["id"], [])]
        if not features:
            logger.warning("No features loaded for plan %s", plan["id"])
        everything.extend(features)
        geometry.plans.append(
            {"plan": plan, "groups": group_features(features), "feature_count": len(features)}
        )
    geometry.groups = group_features(everything)
    return geometry


def area_summary(geometry: HoldingGeometry) -> Dict[str, Any]:
    total = geometry.total_area
    return {
        "total": {
            "area": total,
            "hectares": total / SQUARE_METRES_PER_HECTARE,
            "acres": total / SQUARE_METRES_PER_ACRE,
            "features": geometry.total_features,
        },
        "by_type": [
            {
                "type": feature_type,
                "display_name": display_name(feature_type),
                "area": group.total_area,
                "hectares": group.hectares,
                "acres": group.acres,
                "features": len(group.features),
                "percentage": round(group.total_area / total * 100, 1) if total > 0 else 0.0,
            }
            for feature_type, group in geometry.groups.items()
        ],
        "by_plan": [
            {
                "plan_id": entry["plan"].get("id"),
                "plan_name": entry["plan"].get("name") or "Unknown Plan",
                "plan_type": entry["plan"].get("planType") or "Unknown",
                "area": sum(group.total_area for group in entry["groups"].values()),
                "hectares": sum(group.hectares for group in entry["groups"].values()),
                "features": entry["feature_count"],
            }
            for entry in geometry.plans
        ],
    }


# ============================================================================
# Buildings
# ============================================================================


def energy_performance(records: Sequence[MatchedRecord]) -> Dict[str, Any]:
    """Ratings, efficiency and CO2 totals over the records that carry a certificate."""
    certificates = [record.certificate for record in records if record.certificate is not None]
    ratings: Dict[str, int] = {}
    efficiencies: List[float] = []
    improvements: List[float] = []
    total_co2 = 0.0
    for certificate in certificates:
        if certificate.current_energy_rating:
            rating = certificate.current_energy_rating
            ratings[rating] = ratings.get(rating, 0) + 1
        if certificate.energy_efficiency:
            efficiencies.append(certificate.energy_efficiency)
            try:
                potential = float(certificate.raw.get("potential-energy-efficiency") or 0)
            except (TypeError, ValueError):
                potential = 0
            if potential:
                improvements.append(potential - certificate.energy_efficiency)
        total_co2 += certificate.co2_emissions or 0

    return {
        "rating_distribution": ratings,
        "average_efficiency": round(sum(efficiencies) / len(efficiencies), 1) if efficiencies else None,
        "total_co2_emissions": round(total_co2, 1),
        "average_co2_per_building": round(total_co2 / len(certificates), 1) if certificates else 0.0,
        "potential_efficiency_improvement": (
            round(sum(improvements) / len(efficiencies), 1) if efficiencies else 0.0
        ),
        "buildings_with_epc": len(certificates),
    }


def building_portfolio(geometry: HoldingGeometry, epc: Optional[EstateResult] = None) -> Dict[str, Any]:
    buildings = [
        feature
        for feature_type, group in geometry.groups.items()
        if "building" in feature_type
        for feature in group.features
    ]
    types: Dict[str, Dict[str, Any]] = {}
    for building in buildings:
        entry = types.setdefault(building.type, {"count": 0, "total_area": 0.0})
        entry["count"] += 1
        entry["total_area"] += building.area
    for entry in types.values():
        entry["average_area"] = entry["total_area"] / entry["count"]

    matched = [record for record in epc.records if record.certificate] if epc and epc.success else []
    return {
        "total_buildings": len(buildings),
        "total_building_area": sum(building.area for building in buildings),
        "building_types": types,
        "buildings": [
            {
                "type": building.type,
                "area": building.area,
                "area_formatted": f"{building.area:.0f} m²" if building.area else "Unknown",
                "area_source": building.area_source,
                "theme": building.properties.get("theme") or "Unknown",
                "descriptive_group": building.properties.get("descriptiveGroup") or "Unknown",
                "descriptive_term": building.properties.get("descriptiveTerm") or "Unknown",
                "fid": building.properties.get("fid") or "Unknown",
            }
            for building in buildings
        ],
        "energy_performance": energy_performance(matched) if matched else None,
    }


# ============================================================================
# Valuation
# ============================================================================


def _land_rate(feature_type: str) -> float:
    if feature_type == "agricultural_land":
        return VALUATION_RATES["agricultural_land"]["arable"]
    rate = VALUATION_RATES.get(feature_type)
    return rate if isinstance(rate, (int, float)) else DEFAULT_LAND_RATE


def _building_rate(feature_type: str) -> float:
    rates = VALUATION_RATES["buildings"]
    return {
        "residential_building": rates["residential_building"]["detached"],
        "commercial_building": rates["commercial_building"]["office"],
        "agricultural_building": rates["agricultural_building"]["modern"],
    }.get(feature_type, DEFAULT_BUILDING_RATE)


def land_valuation(geometry: HoldingGeometry, portfolio: Dict[str, Any]) -> Dict[str, Any]:
    """Indicative value from land use areas and building floor areas.

    A holding over one hectare with under 10% building cover gains
    development potential on a tenth of its area at the low residential rate.
    """
    by_land_use: Dict[str, Dict[str, float]] = {}
    for feature_type, group in geometry.groups.items():
        if "building" in feature_type:
            continue
        rate = _land_rate(feature_type)
        by_land_use[feature_type] = {
            "area": group.hectares,
            "value_per_ha": rate if group.hectares else 0.0,
            "total_value": group.hectares * rate,
        }

    by_building_type: Dict[str, Dict[str, float]] = {}
    for feature_type, entry in portfolio["building_types"].items():
        rate = _building_rate(feature_type)
        by_building_type[feature_type] = {
            "count": entry["count"],
            "total_area": entry["total_area"],
            "average_area": entry["average_area"],
            "value_per_sqm": rate if entry["total_area"] else 0.0,
            "total_value": entry["total_area"] * rate,
        }

    hectares = geometry.total_area / SQUARE_METRES_PER_HECTARE
    development = 0.0
    if hectares > 1:
        coverage = portfolio["total_building_area"] / (hectares * SQUARE_METRES_PER_HECTARE)
        if coverage < 0.1:
            development = hectares * DEVELOPABLE_SHARE * VALUATION_RATES["residential_potential"]["low"]

    land_value = sum(entry["total_value"] for entry in by_land_use.values())
    building_value = sum(entry["total_value"] for entry in by_building_type.values())
    return {
        "land_value": land_value,
        "building_value": building_value,
        "development_potential": development,
        "total_value": land_value + building_value + development,
        "by_land_use": by_land_use,
        "by_building_type": by_building_type,
    }


def confidence_level(geometry: HoldingGeometry) -> str:
    """High above 90% classified features, Medium above 70%, otherwise Low."""
    total = geometry.total_features
    if not total:
        return "Low"
    classified = sum(
        len(group.features) for feature_type, group in geometry.groups.items() if feature_type != "unknown"
    )
    rate = classified / total
    if rate > 0.9:
        return "High"
    if rate > 0.7:
        return "Medium"
    return "Low"


def key_insights(summary: Dict[str, Any], portfolio: Dict[str, Any], valuation: Dict[str, Any]) -> List[str]:
    insights = []
    hectares = summary["total"]["hectares"]

    if summary["by_type"]:
        largest = max(summary["by_type"], key=lambda entry: entry["area"])
        insights.append(
            f"{largest['display_name']} comprises {largest['percentage']:.1f}% of total area "
            f"({format_hectares(largest['area'])})"
        )

    if portfolio["total_buildings"] and hectares > 0:
        density = portfolio["total_buildings"] / hectares
        insights.append(
            f"{portfolio['total_buildings']} buildings across {hectares:.1f} hectares "
            f"({density:.1f} buildings/ha)"
        )

    if hectares > 0:
        insights.append(f"Average land value: {format_currency(valuation['total_value'] / hectares)} per hectare")

    if valuation["development_potential"] > 0:
        insights.append(
            f"Development potential adds {format_currency(valuation['development_potential'])} to total value"
        )
    return insights


# ============================================================================
# Report
# ============================================================================


def analyse_holding(
    map_name: str,
    plans: Sequence[Dict[str, Any]],
    plan_features: Sequence[Dict[str, Any]],
    epc: Optional[EstateResult] = None,
) -> Dict[str, Any]:
    """Area, building and valuation report for the selected plans of a map."""
    started = time.monotonic()
    geometry = analyse_geometry(plans, plan_features)
    summary = area_summary(geometry)
    portfolio = building_portfolio(geometry, epc)
    valuation = land_valuation(geometry, portfolio)
    hectares = summary["total"]["hectares"]

    report = {
        "executive": {
            "map_name": map_name,
            "total_plans": len(plans),
            "total_area": {
                "hectares": round(hectares, 2),
                "acres": round(summary["total"]["acres"], 2),
                "formatted": format_hectares(summary["total"]["area"]),
            },
            "total_features": summary["total"]["features"],
            "total_value": {
                "land": valuation["land_value"],
                "buildings": valuation["building_value"],
                "development": valuation["development_potential"],
                "total": valuation["total_value"],
                "formatted": format_currency(valuation["total_value"]),
            },
            "average_value_per_hectare": valuation["total_value"] / hectares if hectares else 0.0,
            "key_insights": key_insights(summary, portfolio, valuation),
        },
        "land_use_breakdown": [
            {
                **entry,
                "value": valuation["by_land_use"].get(entry["type"], {}).get("total_value", 0.0),
                "value_per_ha": valuation["by_land_use"].get(entry["type"], {}).get("value_per_ha", 0.0),
                "formatted_value": format_currency(
                    valuation["by_land_use"].get(entry["type"], {}).get("total_value", 0.0)
                ),
            }
            for entry in summary["by_type"]
        ],
        "building_portfolio": {
            "summary": portfolio,
            "valuation": valuation["by_building_type"],
            "energy_performance": portfolio["energy_performance"],
        },
        "plan_breakdown": summary["by_plan"],
        "valuation": {
            "base_rates": VALUATION_RATES,
            "confidence_level": confidence_level(geometry),
        },
        "metadata": {"processing_time_ms": round((time.monotonic() - started) * 1000)},
    }
    logger.info(
        "Analysed %d plans for %s: %.2f ha, %d buildings, value %s",
        len(plans),
        map_name,
        hectares,
        portfolio["total_buildings"],
        report["executive"]["total_value"]["formatted"],
    )
    return report


__all__ = [
    "AnalysedFeature",
    "FeatureGroup",
    "HoldingGeometry",
    "VALUATION_RATES",
    "analyse_geometry",
    "analyse_holding",
    "area_summary",
    "building_portfolio",
    "classify_feature",
    "confidence_level",
    "display_name",
    "energy_performance",
    "key_insights",
    "land_valuation",
    "format_hectares",
]
