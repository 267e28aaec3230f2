"""Map profiles: plans, plan geometry, nature reporting and EPC data for one Land App map."""
from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from core.clients.epc import EPCClient
from core.clients.land_app import LandAppClient
from core.clients.os_links import OSLinksClient
from core.errors import ConfigurationError, LandAppAPIError, UpstreamError
from domain.epc.models import EstateResult
from domain.epc.services import process_estate
from . import nature

logger = logging.getLogger(__name__)

LAND_APP_HOSTS = ("go.thelandapp.com", "thelandapp.com")
OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
MAP_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# Web Mercator half-circumference in metres
MERCATOR_EXTENT = 20037508.34
AREA_PROPERTIES = ("area_m2", "area", "calculatedArea")


# ============================================================================
# Map identifiers
# ============================================================================


def is_valid_map_id(value: str) -> bool:
    return bool(value) and bool(OBJECT_ID_RE.match(value) or MAP_ID_RE.match(value))


def extract_map_id(text: Optional[str]) -> str:
    """Return the map id from a Land App map URL, any URL's last path segment, or a bare id.

    Raises ``ValueError`` when no valid id can be found.
    """
    if not text or not text.strip():
        raise ValueError("Map ID or URL is required")
    value = text.strip()

    if value.startswith(("http://", "https://")):
        parsed = urlparse(value)
        segments = [segment for segment in parsed.path.split("/") if segment]
        if parsed.hostname in LAND_APP_HOSTS and "map" in segments:
            position = segments.index("map")
            if position + 1 < len(segments):
                return segments[position + 1]
        if segments and is_valid_map_id(segments[-1]):
            return segments[-1]
        raise ValueError("Could not extract Map ID from URL")

    if not is_valid_map_id(value):
        raise ValueError("Invalid Map ID format")
    return value


# ============================================================================
# Plans and features
# ============================================================================


def plan_matches(plan: Dict[str, Any], map_id: str) -> bool:
    """A plan belongs to a map when any of its string fields equals or contains the id."""
    for value in plan.values():
        if value == map_id:
            return True
        if isinstance(value, str) and map_id in value:
            return True
    return False


async def plans_for_map(client: LandAppClient, map_id: str) -> List[Dict[str, Any]]:
    plans = await client.iter_projects()
    if not plans:
        raise LandAppAPIError("No plans were fetched from any plan type")

    matching = [plan for plan in plans if plan_matches(plan, map_id)]
    logger.info("Found %d of %d plans for map %s", len(matching), len(plans), map_id)
    return matching


async def features_for_plans(
    client: LandAppClient, plans: Sequence[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Fetch the features of every plan concurrently; a failing plan yields no features."""
    collections = await asyncio.gather(*(client.plan_features(plan.get("id")) for plan in plans))
    return [
        {"plan_id": plan.get("id"), "plan_name": plan.get("name"), "features": features}
        for plan, features in zip(plans, collections)
    ]


def clean_osmm_value(value: Any) -> str:
    return str(value or "").replace("{", "").replace("}", "").strip().lower()


def is_building_feature(feature: Dict[str, Any]) -> bool:
    properties = feature.get("properties") or {}
    theme = clean_osmm_value(properties.get("theme"))
    group = clean_osmm_value(properties.get("descriptiveGroup") or properties.get("descriptivegroup"))
    feature_type = clean_osmm_value(properties.get("type") or properties.get("featureType"))
    return theme in ("buildings", "building") or "building" in group or "building" in feature_type


def building_features(plan_features: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    buildings: List[Dict[str, Any]] = []
    for collection in plan_features:
        buildings.extend(
            feature for feature in collection.get("features") or [] if is_building_feature(feature)
        )
    return buildings


# ============================================================================
# Geometry
# ============================================================================


def to_web_mercator(lon: float, lat: float) -> tuple:
    x = lon * MERCATOR_EXTENT / 180
    y = math.log(math.tan((90 + lat) * math.pi / 360)) / (math.pi / 180)
    return x, y * MERCATOR_EXTENT / 180


def polygon_area_m2(coordinates: Sequence[Sequence[float]]) -> float:
    """Shoelace area of a ``[lon, lat]`` ring, projected to Web Mercator."""
    if not coordinates or len(coordinates) < 3:
        return 0.0
    projected = [to_web_mercator(point[0], point[1]) for point in coordinates]
    area = 0.0
    for index, (x1, y1) in enumerate(projected):
        x2, y2 = projected[(index + 1) % len(projected)]
        area += x1 * y2 - x2 * y1
    return abs(area) / 2


def feature_area_m2(feature: Dict[str, Any]) -> float:
    """Area reported by the Land App, falling back to the feature geometry."""
    properties = feature.get("properties") or {}
    for key in AREA_PROPERTIES:
        try:
            area = float(properties.get(key) or 0)
        except (TypeError, ValueError):
            continue
        if area:
            return area

    if "area" in feature:
        try:
            return float(feature["area"] or 0)
        except (TypeError, ValueError):
            pass

    geometry = feature.get("geometry") or {}
    rings = geometry.get("coordinates") or []
    if geometry.get("type") == "Polygon" and rings:
        return polygon_area_m2(rings[0])
    if geometry.get("type") == "MultiPolygon":
        return sum(polygon_area_m2(polygon[0]) for polygon in rings if polygon)
    return 0.0


# ============================================================================
# Profile
# ============================================================================


@dataclass
class MapProfile:
    map_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    plans: List[Dict[str, Any]] = field(default_factory=list)
    plan_features: List[Dict[str, Any]] = field(default_factory=list)
    total_area: float = 0.0
    building_count: int = 0
    nature_reporting: Optional[Dict[str, Any]] = None
    epc: Optional[EstateResult] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_nature_reporting(self) -> bool:
        return self.nature_reporting is not None

    @property
    def has_epc_data(self) -> bool:
        return bool(self.epc and self.epc.success)

    def summary(self) -> Dict[str, Any]:
        return {
            "total_plans": len(self.plans),
            "total_area": self.total_area,
            "total_area_formatted": format_area_m2(self.total_area),
            "building_count": self.building_count,
            "has_nature_reporting": self.has_nature_reporting,
            "has_epc_data": self.has_epc_data,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "map_id": self.map_id,
            "timestamp": self.timestamp,
            "plans": self.plans,
            "plan_features": self.plan_features,
            "nature_reporting": self.nature_reporting,
            "epc": self.epc.to_dict() if self.epc else None,
            "summary": self.summary(),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


async def _nature_for_names(
    client: LandAppClient, names: Sequence[str], plans: Sequence[Dict[str, Any]] = ()
) -> Optional[Dict[str, Any]]:
    for name in names:
        try:
            entries = await nature.all_metrics_for_map(client, name)
        except UpstreamError as exc:
            logger.warning("Nature reporting lookup for %r failed: %s", name, exc)
            continue
        if entries:
            return {
                "map_name": name,
                "data": entries,
                "key_metrics": nature.key_metrics(entries[0]),
                "processed": nature.process_metrics(entries),
                "plans": nature.plans_with_nature_reporting(plans, [name]),
            }
    return None


async def _attach_nature_reporting(profile: MapProfile, client: LandAppClient) -> None:
    plan_names = []
    for plan in profile.plans:
        name = plan.get("mapName") or plan.get("name")
        if name and name not in plan_names:
            plan_names.append(name)

    profile.nature_reporting = await _nature_for_names(client, plan_names + [profile.map_id], profile.plans)
    if profile.nature_reporting is not None:
        return

    try:
        available = await nature.available_map_names(client)
    except UpstreamError as exc:
        profile.warnings.append(f"Could not search available nature maps: {exc}")
        return

    wanted = profile.map_id.lower()
    similar = [name for name in available if wanted in name.lower() or name.lower() in wanted]
    if not similar:
        profile.warnings.append("No nature reporting data found for this map")
        return

    profile.nature_reporting = await _nature_for_names(client, similar[:1], profile.plans)
    if profile.nature_reporting is not None:
        profile.warnings.append(f"Found nature data using similar map name: {similar[0]}")


async def map_profile(
    map_id: str,
    land_client: LandAppClient,
    *,
    epc_client: Optional[EPCClient] = None,
    os_client: Optional[OSLinksClient] = None,
    include_nature: bool = True,
    today: Optional[date] = None,
) -> MapProfile:
    """Collect everything known about a map.

    Each stage records its failures on the profile and the next stage still
    runs, so a profile is always returned.
    """
    profile = MapProfile(map_id=map_id)

    try:
        profile.plans = await plans_for_map(land_client, map_id)
    except (UpstreamError, ConfigurationError) as exc:
        profile.errors.append(f"Plans fetch failed: {exc}")
    if not profile.plans:
        profile.warnings.append(f"No plans found for Map ID: {map_id}")

    if profile.plans:
        profile.plan_features = await features_for_plans(land_client, profile.plans)
        profile.total_area = sum(
            feature_area_m2(feature)
            for collection in profile.plan_features
            for feature in collection["features"]
        )

    if include_nature:
        if land_client.nature_configured:
            await _attach_nature_reporting(profile, land_client)
        else:
            profile.warnings.append("Nature Reporting API key not provided")

    buildings = building_features(profile.plan_features)
    profile.building_count = len(buildings)
    if buildings:
        if epc_client is None or not epc_client.is_configured:
            profile.warnings.append("EPC API credentials not provided; skipping energy data")
        else:
            try:
                profile.epc = await process_estate(
                    buildings, epc_client=epc_client, os_client=os_client, today=today
                )
            except (UpstreamError, ConfigurationError) as exc:
                profile.errors.append(f"Failed to fetch EPC data: {exc}")

    if not profile.plans and profile.has_nature_reporting:
        profile.warnings.append(
            "Found environmental data via Nature Reporting even though no plans were located"
        )

    logger.info(
        "Map profile %s: %d plans, %d buildings, nature=%s, epc=%s, %d errors",
        map_id,
        len(profile.plans),
        profile.building_count,
        profile.has_nature_reporting,
        profile.has_epc_data,
        len(profile.errors),
    )
    return profile


# ============================================================================
# Formatting
# ============================================================================


def format_area_m2(area: Optional[float]) -> str:
    if not area:
        return "0 m²"
    if area >= 10000:
        return f"{area / 10000:.2f} ha"
    return f"{area:.0f} m²"


def format_currency(value: Optional[float]) -> str:
    if not value:
        return "£0"
    if value >= 1_000_000:
        return f"£{value / 1_000_000:.2f}M"
    if value >= 1000:
        return f"£{value / 1000:.0f}k"
    return f"£{value:.0f}"


__all__ = [
    "MapProfile",
    "building_features",
    "clean_osmm_value",
    "extract_map_id",
    "feature_area_m2",
    "features_for_plans",
    "format_area_m2",
    "format_currency",
    "is_building_feature",
    "map_profile",
    "plan_matches",
    "plans_for_map",
    "polygon_area_m2",
]
