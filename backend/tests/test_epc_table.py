"""Tests for domain/epc/table.py and domain/epc/export.py."""

import csv
import io
import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[2]))

from domain.epc.export import EXPORT_COLUMNS, MISSING, export_matches_csv, matches_to_frame
from domain.epc.models import BuildingFeature, MatchedRecord, MatchMethod, MatchStatus
from domain.epc.table import filter_options, filter_records, paginate, sort_records


@pytest.fixture
def records(make_certificate):
    """Three matched records and one building without a certificate."""

    def matched(building_id, **overrides):
        return MatchedRecord(
            building=BuildingFeature(id=building_id),
            certificate=make_certificate(lmk_key=building_id, **overrides),
            confidence=1.0,
            method=MatchMethod.UPRN,
            status=MatchStatus.MATCHED,
        )

    return [
        matched("b1", address="12 High Street", uprn="111", current_energy_rating="C", energy_efficiency=72),
        matched(
            "b2",
            address="3 Mill Lane",
            uprn="222",
            current_energy_rating="A",
            energy_efficiency=93,
            property_type="Flat",
        ),
        matched("b3", address="Rose Cottage", uprn="333", current_energy_rating="E", energy_efficiency=45),
        MatchedRecord(
            building=BuildingFeature(id="b4", properties={"address": "The Barn", "uprn": "444"}),
            status=MatchStatus.NO_EPC_FOUND,
        ),
    ]


# ============================================================================
# Table operations
# ============================================================================


class TestFilterOptions:
    def test_distinct_sorted_values(self, records):
        options = filter_options(records)
        assert options["ratings"] == ["A", "C", "E"]
        assert options["property_types"] == ["Flat", "House"]
        assert options["statuses"] == ["matched", "no_epc_found"]


class TestFilterRecords:
    """Test record filtering."""

    def test_search_matches_address_case_insensitively(self, records):
        assert [r.building.id for r in filter_records(records, search="MILL")] == ["b2"]

    def test_search_matches_uprn(self, records):
        assert [r.building.id for r in filter_records(records, search="444")] == ["b4"]

    def test_exact_filters(self, records):
        assert [r.building.id for r in filter_records(records, rating="E")] == ["b3"]
        assert [r.building.id for r in filter_records(records, property_type="Flat")] == ["b2"]
        assert [r.building.id for r in filter_records(records, status="no_epc_found")] == ["b4"]

    def test_no_filters_returns_everything(self, records):
        assert len(filter_records(records)) == 4


class TestSortRecords:
    """Test record sorting."""

    def test_rating_sorts_missing_last(self, records):
        ordered = sort_records(records, "rating")
        assert [r.building.id for r in ordered] == ["b2", "b1", "b3", "b4"]

    def test_descending_efficiency(self, records):
        ordered = sort_records(records, "efficiency", "desc")
        assert [r.building.id for r in ordered] == ["b2", "b1", "b3", "b4"]

    def test_address(self, records):
        ordered = sort_records(records, "address")
        assert [r.building.id for r in ordered] == ["b1", "b2", "b3", "b4"]

    def test_unknown_key_keeps_order(self, records):
        assert sort_records(list(reversed(records)), "colour") == list(reversed(records))


class TestPaginate:
    """Test pagination."""

    def test_pages(self, records):
        page = paginate(records, page=2, per_page=3)
        assert [r.building.id for r in page.items] == ["b4"]
        assert page.total == 4
        assert page.total_pages == 2

    def test_out_of_range_page_is_empty(self, records):
        assert paginate(records, page=5, per_page=3).items == []

    @pytest.mark.parametrize("page", [0, -1])
    def test_pages_below_one_are_empty(self, records, page):
        result = paginate(records, page=page, per_page=3)
        assert result.items == []
        assert result.page == page

    def test_invalid_page_size(self, records):
        with pytest.raises(ValueError):
            paginate(records, per_page=0)

    def test_to_dict(self, records):
        data = paginate(records, per_page=2).to_dict()
        assert data["page"] == 1
        assert len(data["items"]) == 2
        assert data["items"][0]["certificate"]["lmk_key"] == "b1"


# ============================================================================
# CSV export
# ============================================================================


class TestExport:
    """Test CSV export of matched records."""

    def test_frame_columns(self, records):
        frame = matches_to_frame(records)
        assert list(frame.columns) == EXPORT_COLUMNS
        assert len(frame) == 4

    def test_missing_certificate_values(self, records):
        row = matches_to_frame(records).iloc[3]
        assert row["Address"] == "The Barn"
        assert row["UPRN"] == "444"
        assert row["Current Energy Rating"] == MISSING
        assert row["Certificate Status"] == "no_epc_found"
        assert row["Match Method"] == "none"

    def test_every_cell_is_quoted(self, records):
        content = export_matches_csv(records)
        header, first = content.splitlines()[:2]
        assert header.startswith('"Building ID","Address","UPRN"')
        assert first.startswith('"b1","12 High Street","111","C","72"')

    def test_csv_parses_back(self, records):
        rows = list(csv.DictReader(io.StringIO(export_matches_csv(records))))
        assert len(rows) == 4
        assert rows[1]["Inspection Date"] == date(2020, 5, 1).isoformat()

    def test_writes_file(self, records, tmp_path):
        target = tmp_path / "matches.csv"
        content = export_matches_csv(records, target)
        assert target.read_text(encoding="utf-8") == content
