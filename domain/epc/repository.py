"""Persistence of reconciled certificates and building links in Supabase."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from backend.matching import normalize_postcode
from core.clients.supabase import SupabaseClient
from .models import RATING_BANDS, Certificate, MatchedRecord

logger = logging.getLogger(__name__)

CERTIFICATES_TABLE = "epc_certificates"
LINKS_TABLE = "osmm_epc_links"


def _band(value: Optional[str]) -> Optional[str]:
    band = (value or "").upper()
    return band if band in RATING_BANDS else None


def _efficiency(value: Optional[int]) -> Optional[int]:
    return value if value is not None and 1 <= value <= 100 else None


def certificate_row(certificate: Certificate) -> Dict[str, Any]:
    return {
        "uprn": certificate.uprn,
        "address": certificate.address,
        "postcode": normalize_postcode(certificate.postcode),
        "current_energy_rating": _band(certificate.current_energy_rating),
        "current_energy_efficiency": _efficiency(certificate.energy_efficiency),
        "potential_energy_rating": _band(certificate.potential_energy_rating),
        "co2_emissions": certificate.co2_emissions,
        "property_type": certificate.property_type,
        "inspection_date": certificate.inspection_date.isoformat() if certificate.inspection_date else None,
        "lodgement_date": certificate.lodgement_date.isoformat() if certificate.lodgement_date else None,
        "certificate_hash": certificate.certificate_hash,
        "total_floor_area": certificate.total_floor_area,
        "lmk_key": certificate.lmk_key,
    }


def certificate_from_row(row: Dict[str, Any]) -> Certificate:
    return Certificate.from_dict({**row, "energy_efficiency": row.get("current_energy_efficiency")})


async def save_matches(client: SupabaseClient, records: Sequence[MatchedRecord]) -> Dict[str, int]:
    """Upsert matched certificates and their building links.

    Certificates without a postcode cannot be stored and are skipped.
    """
    matched = [record for record in records if record.is_matched and record.certificate]
    rows: Dict[str, Dict[str, Any]] = {}
    for record in matched:
        assert record.certificate is not None
        if not record.certificate.postcode:
            continue
        rows.setdefault(record.certificate.certificate_hash, certificate_row(record.certificate))

    stored = await client.upsert(
        CERTIFICATES_TABLE, list(rows.values()), on_conflict="certificate_hash"
    )
    ids_by_hash = {row["certificate_hash"]: row["id"] for row in stored if "id" in row}

    links: List[Dict[str, Any]] = []
    for record in matched:
        assert record.certificate is not None
        certificate_id = ids_by_hash.get(record.certificate.certificate_hash)
        if certificate_id is None:
            continue
        links.append(
            {
                "osmm_feature_id": record.building.id,
                "epc_certificate_id": certificate_id,
                "match_confidence": round(record.confidence, 3),
                "match_method": record.method.value,
            }
        )
    await client.upsert(LINKS_TABLE, links, on_conflict="osmm_feature_id,epc_certificate_id")

    logger.info("Stored %d certificates and %d building links", len(ids_by_hash), len(links))
    return {"certificates": len(ids_by_hash), "links": len(links)}


async def certificates_for_postcode(client: SupabaseClient, postcode: str) -> List[Certificate]:
    normalized = normalize_postcode(postcode)
    rows = await client.fetch(
        f"{CERTIFICATES_TABLE}?select=*&postcode=eq.{quote(normalized)}&order=lodgement_date.desc"
    )
    return [certificate_from_row(row) for row in rows or []]


__all__ = [
    "CERTIFICATES_TABLE",
    "LINKS_TABLE",
    "certificate_from_row",
    "certificate_row",
    "certificates_for_postcode",
    "save_matches",
]
