"""Tests for domain/epc/services.py.

Exercises identifier extraction, batched certificate lookup, UPRN
enrichment, the estate pipeline and the dashboard summaries using
in-memory stand-ins for the EPC and OS Linked Identifiers clients.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[2]))

from core.clients.os_links import LinkedUPRN, TOIDLookup
from core.errors import ConfigurationError, EPCAPIError
from domain.epc.models import (
    BuildingFeature,
    MatchedRecord,
    MatchMethod,
    MatchStatus,
)
from domain.epc.services import (
    DEFAULT_RATING_COLOUR,
    chart_data,
    efficiency_band,
    enrich_with_uprns,
    extract_identifiers,
    fetch_candidates,
    generate_summary,
    process_estate,
    rating_colour,
)


# ============================================================================
# Client stand-ins
# ============================================================================


class FakeEPCClient:
    """Returns canned rows per searched value; values in ``failing`` raise."""

    def __init__(self, rows_by_value=None, failing=(), configured=True):
        self.rows_by_value = rows_by_value or {}
        self.failing = set(failing)
        self.is_configured = configured
        self.calls = []

    async def search_both(self, identifier_type, value):
        self.calls.append((identifier_type, value))
        if value in self.failing:
            raise EPCAPIError("EPC error 500: boom", status_code=500)
        return [{**row, "property_class": "domestic"} for row in self.rows_by_value.get(value, [])]


class FakeOSClient:
    def __init__(self, uprns_by_toid, configured=True):
        self.uprns_by_toid = uprns_by_toid
        self.is_configured = configured

    async def uprns_for_toid(self, toid):
        uprns = self.uprns_by_toid.get(toid)
        if uprns is None:
            return TOIDLookup(toid=toid, success=False, error="not found")
        return TOIDLookup(toid=toid, uprns=[LinkedUPRN(uprn=uprn) for uprn in uprns])


# ============================================================================
# Identifier extraction
# ============================================================================


class TestExtractIdentifiers:
    """Test lookup key extraction and source confidences."""

    def test_uprn_sources(self, make_building):
        building = make_building(primaryUPRN="1", uprns=["1", "2"], uprn="3")
        identifiers = extract_identifiers([building])
        assert [(i.type, i.value, i.confidence) for i in identifiers] == [
            ("uprn", "1", 1.0),
            ("uprn", "2", 0.95),
            ("uprn", "3", 1.0),
        ]

    def test_postcode_and_address_only_without_uprn(self, make_building):
        building = make_building(postcode="GU1 3AA", address="12 High Street")
        identifiers = extract_identifiers([building])
        assert [(i.type, i.confidence) for i in identifiers] == [("postcode", 0.8), ("address", 0.6)]

    def test_uprn_suppresses_address_lookups(self, make_building):
        building = make_building(uprn="3", postcode="GU1 3AA", address="12 High Street")
        assert [i.type for i in extract_identifiers([building])] == ["uprn"]

    def test_building_without_identifiers(self, make_building):
        assert extract_identifiers([make_building(theme="Buildings")]) == []


# ============================================================================
# Certificate lookup
# ============================================================================


class TestFetchCandidates:
    """Test batched EPC searches."""

    @pytest.mark.asyncio
    async def test_duplicate_searches_run_once(self, make_building, domestic_row):
        buildings = [make_building("a", uprn="100023336956"), make_building("b", uprn="100023336956")]
        client = FakeEPCClient({"100023336956": [domestic_row]})
        pool = await fetch_candidates(extract_identifiers(buildings), client, batch_delay=0)
        assert client.calls == [("uprn", "100023336956")]
        assert pool.searches == 1
        assert len(pool.certificates) == 1

    @pytest.mark.asyncio
    async def test_certificates_are_deduplicated(self, make_building, domestic_row):
        buildings = [
            make_building("a", uprn="100023336956"),
            make_building("b", postcode="GU1 3AA"),
        ]
        client = FakeEPCClient({"100023336956": [domestic_row], "GU1 3AA": [domestic_row]})
        pool = await fetch_candidates(extract_identifiers(buildings), client, batch_delay=0)
        assert pool.searches == 2
        assert len(pool.certificates) == 1

    @pytest.mark.asyncio
    async def test_failed_searches_are_counted(self, make_building, domestic_row):
        buildings = [make_building("a", uprn="1"), make_building("b", uprn="100023336956")]
        client = FakeEPCClient({"100023336956": [domestic_row]}, failing={"1"})
        pool = await fetch_candidates(extract_identifiers(buildings), client, batch_delay=0)
        assert pool.failed == 1
        assert len(pool.certificates) == 1

    @pytest.mark.asyncio
    async def test_progress_is_reported_per_batch(self, make_building):
        buildings = [make_building(str(n), uprn=str(n)) for n in range(1, 4)]
        progress = []
        await fetch_candidates(
            extract_identifiers(buildings),
            FakeEPCClient(),
            batch_size=2,
            batch_delay=0,
            on_progress=progress.append,
        )
        assert progress == [
            {"completed": 2, "total": 3, "percentage": 67},
            {"completed": 3, "total": 3, "percentage": 100},
        ]


class TestEnrichWithUprns:
    """Test OS Linked Identifiers enrichment."""

    @pytest.mark.asyncio
    async def test_buildings_with_toids_gain_uprns(self, make_building):
        buildings = [make_building("a", fid="osgb1000"), make_building("b", address="No TOID")]
        client = FakeOSClient({"osgb1000": ["100023336956", "100023336957"]})
        enriched, stats = await enrich_with_uprns(buildings, client, batch_delay=0)

        assert enriched[0].primary_uprn == "100023336956"
        assert enriched[0].properties["uprns"] == ["100023336956", "100023336957"]
        assert enriched[1] is buildings[1]
        assert stats == {"total": 2, "with_toids": 1, "with_uprns": 1}

    @pytest.mark.asyncio
    async def test_failed_lookup_is_recorded(self, make_building):
        enriched, stats = await enrich_with_uprns(
            [make_building("a", toid="osgb9")], FakeOSClient({}), batch_delay=0
        )
        assert enriched[0].properties["osLinkedIdentifiers"] == {"success": False, "error": "not found"}
        assert enriched[0].primary_uprn is None
        assert stats["with_uprns"] == 0

    @pytest.mark.asyncio
    async def test_original_buildings_are_not_mutated(self, make_building):
        building = make_building("a", fid="osgb1000")
        await enrich_with_uprns([building], FakeOSClient({"osgb1000": ["1"]}), batch_delay=0)
        assert "uprns" not in building.properties


# ============================================================================
# Summaries
# ============================================================================


def _matched(certificate, method=MatchMethod.UPRN):
    return MatchedRecord(
        building=BuildingFeature(id="b"),
        certificate=certificate,
        confidence=1.0,
        method=method,
        status=MatchStatus.MATCHED,
    )


class TestGenerateSummary:
    """Test dashboard summary statistics."""

    def test_summary_statistics(self, make_certificate):
        records = [
            _matched(make_certificate(lodgement_date=date(2016, 1, 1))),
            _matched(
                make_certificate(
                    lmk_key="2",
                    current_energy_rating="D",
                    energy_efficiency=65,
                    co2_emissions=3.1,
                    property_type="Flat",
                    lodgement_date=date(2020, 1, 1),
                ),
                method=MatchMethod.POSTCODE,
            ),
            MatchedRecord(building=BuildingFeature(id="c")),
        ]
        summary = generate_summary(records, today=date(2025, 10, 1))

        assert summary.total_buildings == 3
        assert summary.with_epc == 2
        assert summary.coverage_percent == 67
        assert summary.average_efficiency == 69
        assert summary.average_co2 == pytest.approx(2.75)
        assert summary.rating_distribution["C"] == 1
        assert summary.rating_distribution["D"] == 1
        assert summary.expiring_certificates == 1
        assert summary.property_types == {"House": 1, "Flat": 1}
        assert summary.match_methods == {"uprn": 1, "postcode": 1, "none": 1}

    def test_expired_certificates_count_as_expiring(self, make_certificate):
        records = [_matched(make_certificate(lodgement_date=date(2005, 3, 1)))]
        assert generate_summary(records, today=date(2025, 1, 1)).expiring_certificates == 1

    def test_empty_records(self):
        summary = generate_summary([])
        assert summary.coverage_percent == 0
        assert summary.average_efficiency == 0
        assert set(summary.rating_distribution) == set("ABCDEFG")


class TestChartData:
    """Test chart series aggregation."""

    def test_rating_distribution_has_every_band(self, make_certificate):
        data = chart_data([_matched(make_certificate())])
        bands = {item["rating"]: item["count"] for item in data["rating_distribution"]}
        assert list(bands) == list("ABCDEFG")
        assert bands["C"] == 1

    def test_series(self, make_certificate):
        records = [
            _matched(make_certificate()),
            _matched(make_certificate(lmk_key="2", co2_emissions=3.6, lodgement_date=date(2021, 2, 2))),
        ]
        data = chart_data(records)
        assert data["property_types"] == {"House": 2}
        assert data["co2_by_property_type"]["House"] == pytest.approx(3.0)
        assert data["certificates_by_year"] == [
            {"year": 2020, "count": 1},
            {"year": 2021, "count": 1},
        ]
        assert len(data["efficiency_scatter"]) == 2

    def test_missing_rating_uses_efficiency_band(self, make_certificate):
        data = chart_data([_matched(make_certificate(current_energy_rating=None, energy_efficiency=85))])
        bands = {item["rating"]: item["count"] for item in data["rating_distribution"]}
        assert bands["B"] == 1
        assert data["efficiency_scatter"][0]["rating"] == "B"

    def test_unmatched_records_are_ignored(self):
        data = chart_data([MatchedRecord(building=BuildingFeature(id="x"))])
        assert data["efficiency_scatter"] == []
        assert data["property_types"] == {}


class TestRatingHelpers:
    """Test rating colour and band lookups."""

    @pytest.mark.parametrize(
        "score,band",
        [(92, "A"), (91, "B"), (69, "C"), (55, "D"), (39, "E"), (21, "F"), (20, "G"), (None, None)],
    )
    def test_efficiency_band(self, score, band):
        assert efficiency_band(score) == band

    def test_rating_colour(self):
        assert rating_colour("c") == "#8cc63f"
        assert rating_colour(None) == DEFAULT_RATING_COLOUR


# ============================================================================
# Estate pipeline
# ============================================================================


class TestProcessEstate:
    """Test the end-to-end estate workflow."""

    @pytest.mark.asyncio
    async def test_matches_buildings(self, domestic_row):
        features = [
            {"id": "f1", "properties": {"uprn": "100023336956"}},
            {"id": "f2", "properties": {"postcode": "ZZ1 1ZZ"}},
        ]
        client = FakeEPCClient({"100023336956": [domestic_row]})
        result = await process_estate(features, epc_client=client, batch_delay=0)

        assert result.success
        assert result.total_features == 2
        assert result.processed_identifiers == 2
        assert result.candidate_certificates == 1
        assert [record.status for record in result.records] == [
            MatchStatus.MATCHED,
            MatchStatus.NO_EPC_FOUND,
        ]
        assert result.summary.with_epc == 1

    @pytest.mark.asyncio
    async def test_explicit_zero_threshold_is_respected(self, domestic_row):
        features = [{"id": "f1", "properties": {"postcode": "GU1 3AA", "address": "14 Mill Lane"}}]
        client = FakeEPCClient({"GU1 3AA": [domestic_row]})

        default = await process_estate(features, epc_client=client, batch_delay=0)
        permissive = await process_estate(features, epc_client=client, fuzzy_threshold=0.0, batch_delay=0)

        assert default.records[0].status is MatchStatus.NO_MATCH
        assert permissive.records[0].method is MatchMethod.FUZZY_ADDRESS

    @pytest.mark.asyncio
    async def test_enriches_osmm_buildings(self, domestic_row):
        features = [{"properties": {"fid": "osgb1000", "theme": "Buildings"}}]
        result = await process_estate(
            features,
            epc_client=FakeEPCClient({"100023336956": [domestic_row]}),
            os_client=FakeOSClient({"osgb1000": ["100023336956"]}),
            batch_delay=0,
        )
        assert result.records[0].method is MatchMethod.UPRN
        assert result.osmm_buildings_found == 1

    @pytest.mark.asyncio
    async def test_no_identifiers(self):
        features = [{"properties": {"fid": "osgb1", "theme": "Buildings"}}]
        result = await process_estate(features, epc_client=FakeEPCClient(), batch_delay=0)
        assert not result.success
        assert result.error.startswith("Found 1 building features in OSMasterMap data")
        assert result.records == []

    @pytest.mark.asyncio
    async def test_requires_epc_credentials(self):
        with pytest.raises(ConfigurationError):
            await process_estate([], epc_client=FakeEPCClient(configured=False))
