"""Nature reporting metrics: per-map lookup, key metrics and dashboard aggregates."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.clients.land_app import LandAppClient

logger = logging.getLogger(__name__)

METRICS_PAGE_SIZE = 100
MAX_MAP_PAGES = 10
MAX_NAME_PAGES = 20

BNG_UNITS = "habitat_bng_units"
CARBON_SEQUESTRATION = "carbon_sequestration_tco2e"


def _baseline(entry: Dict[str, Any], key: str, default: Any = 0) -> Any:
    for metric in entry.get("metrics") or []:
        if metric.get("key") == key:
            value = metric.get("baseline")
            return value if value not in (None, "", 0) else default
    return default


def _as_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


async def all_metrics_for_map(
    client: LandAppClient, map_name: str, *, max_pages: int = MAX_MAP_PAGES
) -> List[Dict[str, Any]]:
    """Return every metrics entry whose map name equals ``map_name`` (case-insensitive).

    The API search is a substring match, so results are filtered again here.
    """
    entries: List[Dict[str, Any]] = []
    page = 0
    has_next = True
    while has_next and page < max_pages:
        payload = await client.nature_metrics(page=page, size=METRICS_PAGE_SIZE, search=map_name)
        entries.extend(payload.get("data") or [])
        has_next = payload.get("hasNext") is True
        page += 1

    wanted = map_name.lower()
    matches = [entry for entry in entries if (entry.get("mapName") or "").lower() == wanted]
    logger.debug("Nature metrics for %r: %d of %d entries match", map_name, len(matches), len(entries))
    return matches


async def available_map_names(client: LandAppClient, *, max_pages: int = MAX_NAME_PAGES) -> List[str]:
    names = set()
    page = 0
    has_next = True
    while has_next and page < max_pages:
        payload = await client.nature_metrics(page=page, size=METRICS_PAGE_SIZE)
        for entry in payload.get("data") or []:
            if entry.get("mapName"):
                names.add(entry["mapName"])
        has_next = payload.get("hasNext") is True
        page += 1
    return sorted(names)


def plans_with_nature_reporting(
    plans: Iterable[Dict[str, Any]], map_names: Iterable[str]
) -> List[Dict[str, Any]]:
    available = set(map_names)
    return [plan for plan in plans if plan.get("mapName") in available]


def key_metrics(entry: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Headline metric baselines for a single map, grouped by theme."""
    if not entry or not entry.get("metrics"):
        return {}

    return {
        "biodiversity": {
            "bng_units": _baseline(entry, BNG_UNITS),
            "bng_density": _baseline(entry, "habitat_bng_density"),
            "habitat_cover": _baseline(entry, "habitat_cover_percentage"),
            "number_of_habitats": _baseline(entry, "number_of_habitats"),
            "connectedness": _baseline(entry, "connectedness_percentage"),
        },
        "carbon": {
            "sequestration": _baseline(entry, CARBON_SEQUESTRATION),
            "value": _baseline(entry, "carbon_sequestration_asset_value"),
        },
        "water_quality": {
            "condition": _baseline(entry, "wfd_minimum_ecological_condition", "Unknown"),
            "poor_percentage": _baseline(entry, "wfd_poor_percentage"),
            "good_percentage": _baseline(entry, "wfd_good_percentage"),
        },
        "land_use": {
            "productive_area": _baseline(entry, "total_productive_area"),
            "cropped_area": _baseline(entry, "total_cropped_area"),
            "baseline_area": entry.get("baseLineArea") or 0,
        },
        "ecosystem": {
            "air_quality_value": _baseline(entry, "air_quality_regulation_asset_value"),
            "recreation_value": _baseline(entry, "recreation_welfare_asset_value"),
            "timber_value": _baseline(entry, "timber_asset_value"),
        },
    }


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def process_metrics(
    entries: Sequence[Dict[str, Any]],
    descriptions: Optional[Sequence[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Summarise metrics entries for the nature dashboard.

    Returns ``summary``, ``chart_data`` and ``table_data``; each table row
    carries its metrics annotated with the matching description.
    """
    described = {item.get("key"): item for item in descriptions or [] if item.get("key")}

    counties: Counter = Counter()
    biodiversity: List[float] = []
    carbon: List[float] = []
    table_data: List[Dict[str, Any]] = []

    for entry in entries:
        county = entry.get("county")
        if isinstance(county, list):
            counties.update(county)

        metrics = entry.get("metrics") or []
        for key, bucket in ((BNG_UNITS, biodiversity), (CARBON_SEQUESTRATION, carbon)):
            metric = next((item for item in metrics if item.get("key") == key), None)
            if metric is not None and "baseline" in metric:
                bucket.append(_as_number(metric["baseline"]) or 0.0)

        table_data.append(
            {
                **entry,
                "processed_metrics": [
                    {**metric, "description": described.get(metric.get("key"))}
                    for metric in metrics
                ],
            }
        )

    chart_data = {
        "biodiversity": [
            {
                "map_name": entry.get("mapName"),
                "bng_units": _baseline(entry, BNG_UNITS),
                "bng_density": _baseline(entry, "habitat_bng_density"),
                "habitat_cover": _baseline(entry, "habitat_cover_percentage"),
            }
            for entry in entries
        ],
        "carbon": [
            {
                "map_name": entry.get("mapName"),
                "carbon_sequestration": _baseline(entry, CARBON_SEQUESTRATION),
                "carbon_value": _baseline(entry, "carbon_sequestration_asset_value"),
            }
            for entry in entries
        ],
        "water_quality": [
            {
                "map_name": entry.get("mapName"),
                "wfd_condition": _baseline(entry, "wfd_minimum_ecological_condition", "Unknown"),
                "poor_percentage": _baseline(entry, "wfd_poor_percentage"),
                "good_percentage": _baseline(entry, "wfd_good_percentage"),
            }
            for entry in entries
        ],
        "habitat": [
            {
                "map_name": entry.get("mapName"),
                "number_of_habitats": _baseline(entry, "number_of_habitats"),
                "connectedness": _baseline(entry, "connectedness_percentage"),
                "largest_connected_area": _baseline(entry, "largest_connected_area"),
            }
            for entry in entries
        ],
    }

    return {
        "summary": {
            "total_farms": len(entries),
            "total_maps": len({entry.get("mapName") for entry in entries}) if entries else 0,
            "avg_biodiversity_score": _average(biodiversity),
            "avg_carbon_sequestration": _average(carbon),
            "coverage_by_county": dict(counties),
            "unique_counties": len(counties),
        },
        "chart_data": chart_data,
        "table_data": table_data,
    }


__all__ = [
    "all_metrics_for_map",
    "available_map_names",
    "key_metrics",
    "plans_with_nature_reporting",
    "process_metrics",
]
