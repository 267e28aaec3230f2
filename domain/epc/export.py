"""CSV export of matched EPC records."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import pandas as pd

from .models import MatchedRecord

EXPORT_COLUMNS: List[str] = [
    "Building ID",
    "Address",
    "UPRN",
    "Current Energy Rating",
    "Energy Efficiency Score",
    "Potential Rating",
    "CO2 Emissions",
    "Property Type",
    "Floor Area",
    "Inspection Date",
    "Certificate Status",
    "Match Confidence",
    "Match Method",
]
MISSING = "N/A"


def _or_missing(value: Any) -> Any:
    return MISSING if value is None or value == "" else value


def _export_row(record: MatchedRecord) -> List[Any]:
    certificate = record.certificate
    building = record.building
    inspected = None
    if certificate is not None:
        inspected = certificate.inspection_date or certificate.lodgement_date

    return [
        building.id,
        (certificate.address if certificate and certificate.address else building.address) or "",
        (certificate.uprn if certificate and certificate.uprn else building.properties.get("uprn")) or "",
        _or_missing(certificate.current_energy_rating if certificate else None),
        _or_missing(certificate.energy_efficiency if certificate else None),
        _or_missing(certificate.potential_energy_rating if certificate else None),
        _or_missing(certificate.co2_emissions if certificate else None),
        _or_missing(certificate.property_type if certificate else None),
        _or_missing(certificate.total_floor_area if certificate else None),
        _or_missing(inspected.isoformat() if inspected else None),
        record.status.value,
        record.confidence,
        record.method.value,
    ]


def matches_to_frame(records: Sequence[MatchedRecord]) -> pd.DataFrame:
    return pd.DataFrame([_export_row(record) for record in records], columns=EXPORT_COLUMNS, dtype=object)


def export_matches_csv(
    records: Sequence[MatchedRecord], path: Optional[Union[str, Path]] = None
) -> str:
    """Render ``records`` as CSV with every cell quoted, optionally writing it to ``path``."""
    frame = matches_to_frame(records)
    content = frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    if path is not None:
        Path(path).write_text(content, encoding="utf-8")
    return content


__all__ = ["EXPORT_COLUMNS", "MISSING", "export_matches_csv", "matches_to_frame"]
