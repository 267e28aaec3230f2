"""
Data Layers Report Parser
=========================

Interprets the first worksheet of a Land App data layers report
(.xlsx / .xls) into categories of data layers with counts, areas and
sources. The workbook itself is read with pandas; this module only
understands the report layout:

    <title>
    Total area          | 123.45 ha
    Centroid grid ref   | SU 12345 67890
    Number of data layers | 250
    ...
    Category | Data layer | Count | Area (ha) | % of area | Source
    Access   | Public Rights of Way | 3 | 1.2 ha | 0.9% | Surrey CC
             | Open Access Land     | 1 | ...
    ...
    No results | ...
    Water    | Main rivers |  |  |  | Environment Agency
"""

from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Tuple, Union

import pandas as pd

from core.errors import ReportParseError
from .models import DataLayer, DataLayerCategory, DataLayersReport, ReportMetadata, ReportSummary

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xls")
METADATA_ROWS = 15
MIN_HEADER_CELLS = 4
# The layer count row also carries small numbers (e.g. section numbering)
MIN_LAYER_COUNT = 10
NO_RESULTS = "no results"
SUBTOTAL = "Sub-Total"
MISSING_VALUES = {"", "n/a", "N/A"}

_NUMBER_RE = re.compile(r"([0-9]+\.?[0-9]*)")
_AREA_HA_RE = re.compile(r"([0-9.]+)\s*ha")
_INTEGER_RE = re.compile(r"([0-9]+)")

ReportSource = Union[str, Path, bytes, BinaryIO]


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def read_rows(source: ReportSource) -> List[List[str]]:
    """Read the first worksheet as rows of cell text, dropping blank rows."""
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        frame = pd.read_excel(source, sheet_name=0, header=None, dtype=object)
    except Exception as exc:
        logger.error("Failed to read workbook: %s", exc)
        raise ReportParseError(f"Failed to parse Excel file: {exc}") from exc

    rows: List[List[str]] = []
    for values in frame.itertuples(index=False, name=None):
        row = [_cell_text(value) for value in values]
        if any(row):
            rows.append(row)
    return rows


def parse_report(source: ReportSource, filename: Optional[str] = None) -> DataLayersReport:
    """Parse a data layers report from a path, bytes or file object.

    ``filename`` is required for in-memory sources so the extension can be
    checked.
    """
    name = filename or (str(source) if isinstance(source, (str, Path)) else "")
    if not name:
        raise ReportParseError("No file provided")
    if not name.lower().endswith(SUPPORTED_EXTENSIONS):
        raise ReportParseError("File must be an Excel file (.xlsx or .xls)")

    rows = read_rows(source)
    report = parse_rows(rows)
    logger.info(
        "Parsed data layers report %s: %d categories, %d layers",
        name,
        report.summary.total_categories,
        report.summary.total_data_layers,
    )
    return report


def parse_rows(rows: List[List[str]]) -> DataLayersReport:
    report = DataLayersReport()
    if not rows:
        report.warnings.append("Excel file appears to be empty")
        report.summary = generate_summary(report)
        return report

    report.metadata = parse_metadata(rows)

    header_index = find_header_row(rows)
    if header_index is None:
        report.warnings.append("Could not find data table header")
    else:
        parse_data_rows(rows, header_index, report)

    report.summary = generate_summary(report)
    return report


# ============================================================================
# Metadata
# ============================================================================


def parse_metadata(rows: List[List[str]]) -> ReportMetadata:
    metadata = ReportMetadata()

    for position, row in enumerate(rows[:METADATA_ROWS]):
        row_text = " ".join(row).lower()
        first_cell = row[0] if row else ""

        if position < 3 and metadata.title is None and "report" in first_cell.lower():
            metadata.title = first_cell
            continue

        if "total area" in row_text and metadata.total_area is None:
            metadata.total_area, metadata.total_area_formatted = _parse_total_area(row)
            continue

        if "centroid" in row_text and "grid" in row_text:
            for cell in row[1:]:
                if len(cell) > 5 and re.search(r"[A-Z0-9]", cell):
                    metadata.centroid_grid_ref = cell
                    break
            continue

        if "data layers" in row_text:
            for cell in row[1:]:
                match = _INTEGER_RE.search(cell)
                if match and int(match.group(1)) > MIN_LAYER_COUNT:
                    metadata.number_of_data_layers = int(match.group(1))
                    break
            continue

    logger.debug("Report metadata: %s", metadata)
    return metadata


def _parse_total_area(row: List[str]) -> Tuple[Optional[float], Optional[str]]:
    for cell in row:
        match = _AREA_HA_RE.search(cell)
        if match:
            try:
                return float(match.group(1)), f"{match.group(1)} ha"
            except ValueError:
                continue
    # "Total area (ha)" label with a bare numeric value
    if "ha" in " ".join(row).lower():
        for cell in row[1:]:
            try:
                value = float(cell)
            except ValueError:
                continue
            return value, f"{cell} ha"
    return None, None


# ============================================================================
# Data table
# ============================================================================


def find_header_row(rows: List[List[str]]) -> Optional[int]:
    for position, row in enumerate(rows):
        if len(row) < MIN_HEADER_CELLS:
            continue
        row_text = " ".join(row).lower()
        if "category" in row_text and "data layer" in row_text and (
            "count" in row_text or "area" in row_text
        ):
            return position
    return None


def create_column_map(header: List[str]) -> Dict[str, int]:
    columns: Dict[str, int] = {}
    for position, cell in enumerate(header):
        label = cell.lower().strip()
        if not label:
            continue
        if "sub-category" in label:
            columns.setdefault("sub_category", position)
        elif "category" in label:
            columns.setdefault("category", position)
        elif "data layer" in label:
            columns.setdefault("data_layer", position)
        elif "count" in label:
            columns.setdefault("count", position)
        elif "% of area" in label or "area %" in label:
            columns.setdefault("percentage", position)
        elif "area" in label and "ha" in label:
            columns.setdefault("area", position)
        elif "length" in label:
            columns.setdefault("length", position)
        elif "source" in label:
            columns.setdefault("source", position)
    return columns


def _cell(row: List[str], columns: Dict[str, int], key: str) -> str:
    position = columns.get(key)
    if position is None or position >= len(row):
        return ""
    return row[position].strip()


def _leading_number(text: str) -> Optional[float]:
    if text in MISSING_VALUES:
        return None
    match = _NUMBER_RE.search(text.replace(",", ""))
    return float(match.group(1)) if match else None


def parse_layer_row(row: List[str], columns: Dict[str, int], name: str) -> DataLayer:
    layer = DataLayer(name=name)

    count_text = _cell(row, columns, "count")
    if count_text:
        try:
            layer.count = int(float(count_text))
        except ValueError:
            layer.count = None

    area_text = _cell(row, columns, "area")
    area = _leading_number(area_text)
    if area is not None:
        layer.area = area
        layer.area_formatted = area_text if "ha" in area_text else f"{_cell_text(area)} ha"

    layer.percentage = _leading_number(_cell(row, columns, "percentage"))

    length_text = _cell(row, columns, "length")
    length = _leading_number(length_text)
    if length is not None:
        layer.length = length
        layer.length_formatted = length_text if "m" in length_text else f"{_cell_text(length)} m"

    source = _cell(row, columns, "source")
    layer.source = source or None
    return layer


def _category_for(report: DataLayersReport, name: str, has_data: bool) -> DataLayerCategory:
    category = report.category(name)
    if category is None:
        category = DataLayerCategory(name=name, has_data=has_data)
        report.categories.append(category)
    return category


def parse_data_rows(rows: List[List[str]], header_index: int, report: DataLayersReport) -> None:
    columns = create_column_map(rows[header_index])
    if "category" not in columns and "data_layer" not in columns:
        report.warnings.append("Data table header has no category or data layer column")
        return

    current_category: Optional[str] = None
    processed = 0

    for position in range(header_index + 1, len(rows)):
        row = rows[position]
        category_name = _cell(row, columns, "category")
        layer_name = _cell(row, columns, "data_layer")
        if not category_name and not layer_name:
            continue

        if category_name.lower() == NO_RESULTS or layer_name.lower() == NO_RESULTS:
            parse_no_results(rows, position, columns, report)
            break

        if category_name:
            current_category = category_name
        if current_category is None:
            continue

        name = layer_name or category_name
        if not name or name == SUBTOTAL:
            continue

        category = _category_for(report, current_category, has_data=True)
        layer = parse_layer_row(row, columns, name)
        category.layers.append(layer)
        category.total_count += layer.count or 0
        category.total_area += layer.area or 0.0
        processed += 1

    logger.debug("Processed %d data rows into %d categories", processed, len(report.categories))


def parse_no_results(
    rows: List[List[str]], start: int, columns: Dict[str, int], report: DataLayersReport
) -> None:
    """Record the layers listed under the "No results" section as empty."""
    for row in rows[start:]:
        category_name = _cell(row, columns, "category")
        layer_name = _cell(row, columns, "data_layer")
        if not category_name or not layer_name:
            continue
        if NO_RESULTS in (category_name.lower(), layer_name.lower()):
            continue
        category = _category_for(report, category_name, has_data=False)
        category.layers.append(
            DataLayer(
                name=layer_name,
                source=_cell(row, columns, "source") or "Unknown",
                has_data=False,
            )
        )


# ============================================================================
# Summary, validation and formatting
# ============================================================================


def generate_summary(report: DataLayersReport) -> ReportSummary:
    summary = ReportSummary(
        total_categories=len(report.categories),
        categories_with_data=sum(1 for category in report.categories if category.has_data),
        total_data_layers=sum(len(category.layers) for category in report.categories),
        total_area_covered=sum(category.total_area or 0.0 for category in report.categories),
    )
    total_area = report.metadata.total_area
    if total_area and summary.total_area_covered > 0:
        summary.coverage_percentage = min(100.0, summary.total_area_covered / total_area * 100)
    return summary


def validate_report(report: DataLayersReport) -> List[str]:
    errors: List[str] = []
    if not report.metadata.total_area:
        errors.append("Total area not found in report")
    if not report.metadata.number_of_data_layers:
        errors.append("Number of data layers not found in report")
    if not report.categories:
        errors.append("No data categories found in report")
    return errors


def format_area(hectares: Optional[float]) -> str:
    if hectares is None:
        return "N/A"
    if hectares < 1:
        return f"{hectares * 10000:.0f} m²"
    return f"{hectares:.2f} ha"


def format_percentage(percentage: Optional[float]) -> str:
    if percentage is None:
        return "N/A"
    return f"{percentage:.1f}%"


__all__ = [
    "SUPPORTED_EXTENSIONS",
    "create_column_map",
    "find_header_row",
    "format_area",
    "format_percentage",
    "generate_summary",
    "parse_data_rows",
    "parse_layer_row",
    "parse_metadata",
    "parse_no_results",
    "parse_report",
    "parse_rows",
    "read_rows",
    "validate_report",
]
