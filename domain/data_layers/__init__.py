"""Land App data layers report parsing."""

from .models import DataLayer, DataLayerCategory, DataLayersReport, ReportMetadata, ReportSummary
from .parser import format_area, format_percentage, parse_report, validate_report

__all__ = [
    "DataLayer",
    "DataLayerCategory",
    "DataLayersReport",
    "ReportMetadata",
    "ReportSummary",
    "format_area",
    "format_percentage",
    "parse_report",
    "validate_report",
]
