"""Filtering, sorting and pagination of matched records for the EPC table view."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

from .models import MatchedRecord

SortDirection = Literal["asc", "desc"]

DEFAULT_PAGE_SIZE = 25


@dataclass
class Page:
    items: List[MatchedRecord]
    page: int
    per_page: int
    total: int
    total_pages: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [record.to_dict() for record in self.items],
            "page": self.page,
            "per_page": self.per_page,
            "total": self.total,
            "total_pages": self.total_pages,
        }


def _rating(record: MatchedRecord) -> Optional[str]:
    return record.certificate.current_energy_rating if record.certificate else None


def _property_type(record: MatchedRecord) -> Optional[str]:
    return record.certificate.property_type if record.certificate else None


SORT_KEYS: Dict[str, Callable[[MatchedRecord], Any]] = {
    "address": lambda record: record.display_address.lower(),
    "uprn": lambda record: record.display_uprn,
    "rating": lambda record: _rating(record) or "Z",
    "efficiency": lambda record: (record.certificate.energy_efficiency or 0) if record.certificate else 0,
    "co2": lambda record: (record.certificate.co2_emissions or 0.0) if record.certificate else 0.0,
    "property_type": lambda record: _property_type(record) or "",
    "floor_area": lambda record: (record.certificate.total_floor_area or 0.0) if record.certificate else 0.0,
    "inspection_date": lambda record: (
        (record.certificate.inspection_date or record.certificate.lodgement_date or date.min)
        if record.certificate
        else date.min
    ),
    "confidence": lambda record: record.confidence or 0.0,
}


def filter_options(records: Sequence[MatchedRecord]) -> Dict[str, List[str]]:
    ratings = {rating for rating in map(_rating, records) if rating}
    property_types = {kind for kind in map(_property_type, records) if kind}
    statuses = {record.status.value for record in records}
    return {
        "ratings": sorted(ratings),
        "property_types": sorted(property_types),
        "statuses": sorted(statuses),
    }


def filter_records(
    records: Sequence[MatchedRecord],
    *,
    rating: Optional[str] = None,
    property_type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[MatchedRecord]:
    needle = (search or "").strip().lower()
    filtered: List[MatchedRecord] = []
    for record in records:
        if needle and needle not in record.display_address.lower() and needle not in record.display_uprn.lower():
            continue
        if rating and _rating(record) != rating:
            continue
        if property_type and _property_type(record) != property_type:
            continue
        if status and record.status.value != status:
            continue
        filtered.append(record)
    return filtered


def sort_records(
    records: Sequence[MatchedRecord],
    key: Optional[str],
    direction: SortDirection = "asc",
) -> List[MatchedRecord]:
    """Stable sort by one of ``SORT_KEYS``; unknown keys keep the input order."""
    getter = SORT_KEYS.get(key or "")
    if getter is None:
        return list(records)
    return sorted(records, key=getter, reverse=direction == "desc")


def paginate(records: Sequence[MatchedRecord], page: int = 1, per_page: int = DEFAULT_PAGE_SIZE) -> Page:
    """Slice out a 1-based page; pages outside ``1..total_pages`` are empty."""
    if per_page < 1:
        raise ValueError("per_page must be at least 1")
    total = len(records)
    start = (page - 1) * per_page
    items = list(records[start : start + per_page]) if page >= 1 else []
    return Page(
        items=items,
        page=page,
        per_page=per_page,
        total=total,
        total_pages=math.ceil(total / per_page),
    )


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "Page",
    "SORT_KEYS",
    "filter_options",
    "filter_records",
    "paginate",
    "sort_records",
]
