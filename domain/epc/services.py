"""Estate EPC workflow: identifier extraction, certificate lookup, matching and summaries."""
from __future__ import annotations

import asyncio
import calendar
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.matching import reconcile
from core.clients.epc import EPCClient
from core.clients.os_links import OSLinksClient
from core.config import get_settings
from core.errors import ConfigurationError, UpstreamError
from .models import (
    RATING_BANDS,
    BuildingFeature,
    BuildingIdentifier,
    Certificate,
    EPCSummary,
    EstateResult,
    MatchedRecord,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]

RATING_COLOURS: Dict[str, str] = {
    "A": "#00a651",
    "B": "#19b459",
    "C": "#8cc63f",
    "D": "#ffd700",
    "E": "#f57c00",
    "F": "#e53e3e",
    "G": "#c53030",
}
DEFAULT_RATING_COLOUR = "#9ca3af"

# SAP score lower bounds for each band
EFFICIENCY_BANDS: Tuple[Tuple[int, str], ...] = (
    (92, "A"),
    (81, "B"),
    (69, "C"),
    (55, "D"),
    (39, "E"),
    (21, "F"),
)

EXPIRY_WARNING_MONTHS = 6


@dataclass
class CandidatePool:
    certificates: List[Certificate] = field(default_factory=list)
    searches: int = 0
    failed: int = 0


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _report_progress(on_progress: Optional[ProgressCallback], completed: int, total: int) -> None:
    if on_progress is None or total <= 0:
        return
    on_progress(
        {
            "completed": completed,
            "total": total,
            "percentage": int(_round_half_up(completed / total * 100)),
        }
    )


def rating_colour(rating: Optional[str]) -> str:
    return RATING_COLOURS.get((rating or "").upper(), DEFAULT_RATING_COLOUR)


def efficiency_band(score: Optional[float]) -> Optional[str]:
    if score is None:
        return None
    for lower_bound, band in EFFICIENCY_BANDS:
        if score >= lower_bound:
            return band
    return "G"


# ============================================================================
# Identifier extraction and UPRN enrichment
# ============================================================================


def extract_identifiers(buildings: Iterable[BuildingFeature]) -> List[BuildingIdentifier]:
    """Collect EPC lookup keys for each building.

    UPRNs are always used. Postcode and address are only used for buildings
    that carry no UPRN at all.
    """
    identifiers: List[BuildingIdentifier] = []
    for building in buildings:
        props = building.properties
        primary = building.primary_uprn

        if primary:
            identifiers.append(
                BuildingIdentifier("uprn", primary, building, 1.0, "OS Linked Identifiers API (primary)")
            )
        for uprn in props.get("uprns") or []:
            if uprn and str(uprn) != primary:
                identifiers.append(
                    BuildingIdentifier(
                        "uprn", str(uprn), building, 0.95, "OS Linked Identifiers API (secondary)"
                    )
                )
        original = props.get("uprn")
        if original and str(original) != primary:
            identifiers.append(BuildingIdentifier("uprn", str(original), building, 1.0, "OSMasterMap"))

        if not building.uprns():
            if building.postcode:
                identifiers.append(
                    BuildingIdentifier("postcode", building.postcode, building, 0.8, "OSMasterMap")
                )
            if building.address:
                identifiers.append(
                    BuildingIdentifier("address", building.address, building, 0.6, "OSMasterMap")
                )
    return identifiers


async def enrich_with_uprns(
    buildings: Sequence[BuildingFeature],
    client: OSLinksClient,
    *,
    batch_size: Optional[int] = None,
    batch_delay: Optional[float] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[List[BuildingFeature], Dict[str, int]]:
    """Attach OS Linked Identifiers UPRNs to buildings that carry a TOID.

    Returns new building objects in the original order plus enrichment stats.
    """
    settings = get_settings()
    batch_size = batch_size or settings.os_batch_size
    batch_delay = settings.epc_batch_delay if batch_delay is None else batch_delay

    with_toid = [(position, building) for position, building in enumerate(buildings) if building.toid]
    enriched: List[BuildingFeature] = list(buildings)
    stats = {"total": len(buildings), "with_toids": len(with_toid), "with_uprns": 0}
    if not with_toid:
        return enriched, stats

    logger.info("Enhancing %d buildings with UPRNs", len(with_toid))

    async def enrich_one(building: BuildingFeature) -> BuildingFeature:
        lookup = await client.uprns_for_toid(str(building.toid))
        uprns = [linked.uprn for linked in lookup.uprns]
        return BuildingFeature(
            id=building.id,
            geometry=building.geometry,
            properties={
                **building.properties,
                "uprns": uprns,
                "primaryUPRN": uprns[0] if uprns else None,
                "osLinkedIdentifiers": {"success": lookup.success, "error": lookup.error},
            },
        )

    for start in range(0, len(with_toid), batch_size):
        batch = with_toid[start : start + batch_size]
        results = await asyncio.gather(*(enrich_one(building) for _, building in batch))
        for (position, _), building in zip(batch, results):
            enriched[position] = building

        completed = min(start + batch_size, len(with_toid))
        _report_progress(on_progress, completed, len(with_toid))
        if completed < len(with_toid) and batch_delay:
            await asyncio.sleep(batch_delay)

    stats["with_uprns"] = sum(1 for building in enriched if building.primary_uprn)
    logger.info("UPRN enhancement completed: %s", stats)
    return enriched, stats


# ============================================================================
# Certificate lookup
# ============================================================================


async def fetch_candidates(
    identifiers: Sequence[BuildingIdentifier],
    client: EPCClient,
    *,
    batch_size: Optional[int] = None,
    batch_delay: Optional[float] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CandidatePool:
    """Run one EPC search per distinct identifier and pool the certificates."""
    settings = get_settings()
    batch_size = batch_size or settings.epc_batch_size
    batch_delay = settings.epc_batch_delay if batch_delay is None else batch_delay

    searches: List[Tuple[str, str]] = []
    for identifier in identifiers:
        key = (identifier.type, identifier.value)
        if key not in searches:
            searches.append(key)

    pool = CandidatePool(searches=len(searches))
    seen_hashes: set[str] = set()

    async def run_search(identifier_type: str, value: str) -> List[Dict[str, Any]]:
        try:
            return await client.search_both(identifier_type, value)  # type: ignore[arg-type]
        except UpstreamError as exc:
            logger.warning("EPC lookup failed for %s=%s: %s", identifier_type, value, exc)
            pool.failed += 1
            return []

    for start in range(0, len(searches), batch_size):
        batch = searches[start : start + batch_size]
        results = await asyncio.gather(*(run_search(kind, value) for kind, value in batch))
        for rows in results:
            for row in rows:
                certificate = Certificate.from_api_row(row)
                if certificate.certificate_hash not in seen_hashes:
                    seen_hashes.add(certificate.certificate_hash)
                    pool.certificates.append(certificate)

        completed = min(start + batch_size, len(searches))
        _report_progress(on_progress, completed, len(searches))
        if completed < len(searches) and batch_delay:
            await asyncio.sleep(batch_delay)

    logger.info(
        "Fetched %d candidate certificates from %d searches (%d failed)",
        len(pool.certificates),
        pool.searches,
        pool.failed,
    )
    return pool


# ============================================================================
# Summaries and chart data
# ============================================================================


def generate_summary(records: Sequence[MatchedRecord], today: Optional[date] = None) -> EPCSummary:
    today = today or date.today()
    expiry_cutoff = _add_months(today, EXPIRY_WARNING_MONTHS)
    summary = EPCSummary(total_buildings=len(records))

    efficiencies: List[int] = []
    emissions: List[float] = []

    for record in records:
        method = record.method.value
        summary.match_methods[method] = summary.match_methods.get(method, 0) + 1

        certificate = record.certificate
        if certificate is None or not record.is_matched:
            continue
        summary.with_epc += 1

        rating = (certificate.current_energy_rating or "").upper()
        if rating not in RATING_BANDS:
            # band from the SAP score when the certificate carries no letter
            rating = efficiency_band(certificate.energy_efficiency) or ""
        if rating in summary.rating_distribution:
            summary.rating_distribution[rating] += 1

        if certificate.energy_efficiency:
            efficiencies.append(certificate.energy_efficiency)
        if certificate.co2_emissions:
            emissions.append(certificate.co2_emissions)

        property_type = certificate.property_type or "Unknown"
        summary.property_types[property_type] = summary.property_types.get(property_type, 0) + 1

        expiry = certificate.expiry_date
        if expiry is not None and expiry <= expiry_cutoff:
            summary.expiring_certificates += 1

    if summary.total_buildings:
        summary.coverage_percent = int(
            _round_half_up(summary.with_epc / summary.total_buildings * 100)
        )
    if efficiencies:
        summary.average_efficiency = int(_round_half_up(sum(efficiencies) / len(efficiencies)))
    if emissions:
        summary.average_co2 = _round_half_up(sum(emissions) / len(emissions), 2)
    return summary


def chart_data(records: Sequence[MatchedRecord]) -> Dict[str, Any]:
    """Aggregate matched certificates into the series the dashboard charts plot."""
    matched = [record for record in records if record.is_matched and record.certificate]

    ratings = {band: 0 for band in RATING_BANDS}
    property_types: Dict[str, int] = defaultdict(int)
    co2_totals: Dict[str, List[float]] = defaultdict(list)
    by_year: Dict[int, int] = defaultdict(int)
    scatter: List[Dict[str, Any]] = []

    for record in matched:
        certificate = record.certificate
        assert certificate is not None
        rating = (certificate.current_energy_rating or "").upper()
        if rating not in ratings:
            # band from the SAP score when the certificate carries no letter
            rating = efficiency_band(certificate.energy_efficiency) or ""
        if rating in ratings:
            ratings[rating] += 1
        property_type = certificate.property_type or "Unknown"
        property_types[property_type] += 1
        if certificate.co2_emissions is not None:
            co2_totals[property_type].append(certificate.co2_emissions)
        if certificate.lodgement_date:
            by_year[certificate.lodgement_date.year] += 1
        if certificate.energy_efficiency is not None and certificate.total_floor_area is not None:
            scatter.append(
                {
                    "x": certificate.total_floor_area,
                    "y": certificate.energy_efficiency,
                    "rating": rating or None,
                    "address": record.display_address,
                    "colour": rating_colour(rating),
                }
            )

    return {
        "rating_distribution": [
            {"rating": band, "count": count, "colour": rating_colour(band)}
            for band, count in ratings.items()
        ],
        "property_types": dict(property_types),
        "co2_by_property_type": {
            property_type: _round_half_up(sum(values) / len(values), 2)
            for property_type, values in co2_totals.items()
        },
        "certificates_by_year": [
            {"year": year, "count": by_year[year]} for year in sorted(by_year)
        ],
        "efficiency_scatter": scatter,
    }


# ============================================================================
# Estate pipeline
# ============================================================================


def _count_osmm_buildings(buildings: Iterable[BuildingFeature]) -> int:
    return sum(1 for building in buildings if building.is_osmm_building)


async def process_estate(
    features: Sequence[Dict[str, Any]],
    *,
    epc_client: EPCClient,
    os_client: Optional[OSLinksClient] = None,
    fuzzy_threshold: Optional[float] = None,
    batch_size: Optional[int] = None,
    batch_delay: Optional[float] = None,
    on_progress: Optional[ProgressCallback] = None,
    today: Optional[date] = None,
) -> EstateResult:
    """Match an estate's building features to EPC certificates.

    ``features`` are GeoJSON-like feature dicts. When ``os_client`` is
    configured, buildings with TOIDs are first enriched with linked UPRNs.
    """
    if not epc_client.is_configured:
        raise ConfigurationError("EPC API credentials not configured")

    threshold = get_settings().fuzzy_match_threshold if fuzzy_threshold is None else fuzzy_threshold
    buildings = [BuildingFeature.from_geojson(feature, index) for index, feature in enumerate(features)]
    osmm_count = _count_osmm_buildings(buildings)

    if os_client is not None and os_client.is_configured:
        buildings, _ = await enrich_with_uprns(
            buildings, os_client, batch_delay=batch_delay, on_progress=None
        )

    identifiers = extract_identifiers(buildings)
    if not identifiers:
        return EstateResult(
            success=False,
            error=(
                f"Found {osmm_count} building features in OSMasterMap data, but none contain "
                "the address identifiers (UPRN, postcode, or address) needed for EPC lookup."
            ),
            total_features=len(features),
            osmm_buildings_found=osmm_count,
        )

    pool = await fetch_candidates(
        identifiers,
        epc_client,
        batch_size=batch_size,
        batch_delay=batch_delay,
        on_progress=on_progress,
    )
    records = reconcile(buildings, pool.certificates, threshold)

    return EstateResult(
        success=True,
        records=records,
        summary=generate_summary(records, today=today),
        total_features=len(features),
        osmm_buildings_found=osmm_count,
        processed_identifiers=len(identifiers),
        candidate_certificates=len(pool.certificates),
        failed_lookups=pool.failed,
    )


__all__ = [
    "CandidatePool",
    "DEFAULT_RATING_COLOUR",
    "EFFICIENCY_BANDS",
    "RATING_COLOURS",
    "chart_data",
    "efficiency_band",
    "enrich_with_uprns",
    "extract_identifiers",
    "fetch_candidates",
    "generate_summary",
    "process_estate",
    "rating_colour",
]
