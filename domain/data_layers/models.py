"""Structures for parsed Land App data layers reports."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class DataLayer:
    name: str
    count: Optional[int] = None
    area: Optional[float] = None
    area_formatted: Optional[str] = None
    percentage: Optional[float] = None
    length: Optional[float] = None
    length_formatted: Optional[str] = None
    source: Optional[str] = None
    has_data: bool = True


@dataclass
class DataLayerCategory:
    name: str
    layers: List[DataLayer] = field(default_factory=list)
    total_count: int = 0
    total_area: float = 0.0
    has_data: bool = True


@dataclass
class ReportMetadata:
    title: Optional[str] = None
    total_area: Optional[float] = None
    total_area_formatted: Optional[str] = None
    centroid_grid_ref: Optional[str] = None
    number_of_data_layers: Optional[int] = None


@dataclass
class ReportSummary:
    total_categories: int = 0
    categories_with_data: int = 0
    total_data_layers: int = 0
    total_area_covered: float = 0.0
    coverage_percentage: float = 0.0


@dataclass
class DataLayersReport:
    metadata: ReportMetadata = field(default_factory=ReportMetadata)
    categories: List[DataLayerCategory] = field(default_factory=list)
    summary: ReportSummary = field(default_factory=ReportSummary)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def category(self, name: str) -> Optional[DataLayerCategory]:
        for category in self.categories:
            if category.name == name:
                return category
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "DataLayer",
    "DataLayerCategory",
    "DataLayersReport",
    "ReportMetadata",
    "ReportSummary",
]
