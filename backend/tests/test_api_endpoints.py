"""Integration tests for the API routes.

Routes run against stand-in clients installed through
``app.dependency_overrides``; domain services are patched where a route
would otherwise reach an external API.
"""

import io
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

sys.path.append(str(Path(__file__).resolve().parents[2]))

from apps.api import create_app
from apps.api.dependencies import get_epc_client, get_land_client, get_os_client, get_supabase_client
from core.clients.supabase import SupabaseClient
from core.errors import ConfigurationError, EPCAPIError, LandAppAPIError
from domain.epc.models import BuildingFeature, EPCSummary, EstateResult, MatchedRecord, MatchMethod, MatchStatus
from domain.land.services import MapProfile

MAP_ID = "5e99633806bf1a001983c881"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ============================================================================
# Fixtures and Test Setup
# ============================================================================


@pytest.fixture
def stubs():
    """Configured stand-ins for every external API client."""
    return SimpleNamespace(
        epc=SimpleNamespace(is_configured=True),
        os=SimpleNamespace(is_configured=False),
        land=SimpleNamespace(
            is_configured=True,
            nature_configured=True,
            nature_metric_descriptions=AsyncMock(return_value=[]),
        ),
        supabase=SimpleNamespace(
            is_configured=True,
            upsert=AsyncMock(return_value=[]),
            fetch=AsyncMock(return_value=[]),
        ),
    )


@pytest.fixture
def app_client(stubs):
    app = create_app()
    app.dependency_overrides[get_epc_client] = lambda: stubs.epc
    app.dependency_overrides[get_os_client] = lambda: stubs.os
    app.dependency_overrides[get_land_client] = lambda: stubs.land
    app.dependency_overrides[get_supabase_client] = lambda: stubs.supabase
    return TestClient(app)


@pytest.fixture
def matched_record(make_certificate):
    return MatchedRecord(
        building=BuildingFeature(id="b1", properties={"uprn": "100023336956"}),
        certificate=make_certificate(),
        confidence=1.0,
        method=MatchMethod.UPRN,
        status=MatchStatus.MATCHED,
    )


def _report_bytes():
    workbook = Workbook()
    sheet = workbook.active
    for row in [
        ["Data Layers Report"],
        ["Total area", "10 ha"],
        ["Number of data layers", "25"],
        ["Category", "Data layer", "Count", "Area (ha)", "Source"],
        ["Water", "Main rivers", 2, "3.3 ha", "Environment Agency"],
    ]:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ============================================================================
# Test Health and Root Endpoints
# ============================================================================


class TestHealthEndpoints:
    """Test health check and root endpoints."""

    def test_root_endpoint_returns_message(self, app_client):
        response = app_client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Estate Energy API", "status": "active"}

    def test_health_reports_configured_services(self, app_client):
        data = app_client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["services"]["epc"] is True
        assert data["services"]["os_linked_identifiers"] is False

    def test_health_degraded_without_epc(self, app_client, stubs):
        stubs.epc.is_configured = False
        assert app_client.get("/health").json()["status"] == "degraded"


# ============================================================================
# Test EPC Endpoints
# ============================================================================


class TestEstateEndpoint:
    """Test POST /api/epc/estate."""

    def test_returns_matches_and_chart_data(self, app_client, matched_record):
        result = EstateResult(success=True, records=[matched_record], summary=EPCSummary(total_buildings=1))
        with patch("apps.api.routes.epc.process_estate", new_callable=AsyncMock) as mock_process:
            mock_process.return_value = result
            response = app_client.post("/api/epc/estate", json={"features": [{"properties": {"uprn": "1"}}]})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["records"][0]["status"] == "matched"
        assert data["chart_data"]["property_types"] == {"House": 1}
        assert "stored" not in data

    def test_enrichment_can_be_disabled(self, app_client, stubs):
        with patch("apps.api.routes.epc.process_estate", new_callable=AsyncMock) as mock_process:
            mock_process.return_value = EstateResult(success=False, error="none")
            app_client.post("/api/epc/estate", json={"features": [{}], "enrich_uprns": False})

        assert mock_process.await_args.kwargs["os_client"] is None
        assert mock_process.await_args.kwargs["epc_client"] is stubs.epc

    def test_persist_stores_matches(self, app_client, matched_record):
        result = EstateResult(success=True, records=[matched_record], summary=EPCSummary())
        with patch("apps.api.routes.epc.process_estate", new_callable=AsyncMock) as mock_process, patch(
            "domain.epc.repository.save_matches", new_callable=AsyncMock
        ) as mock_save:
            mock_process.return_value = result
            mock_save.return_value = {"certificates": 1, "links": 1}
            response = app_client.post("/api/epc/estate", json={"features": [{}], "persist": True})

        assert response.json()["stored"] == {"certificates": 1, "links": 1}
        mock_save.assert_awaited_once()

    def test_empty_features_rejected(self, app_client):
        response = app_client.post("/api/epc/estate", json={"features": []})
        assert response.status_code == 400

    def test_invalid_threshold_rejected(self, app_client):
        response = app_client.post("/api/epc/estate", json={"features": [{}], "fuzzy_threshold": 1.5})
        assert response.status_code == 422

    def test_missing_credentials_is_503(self, app_client):
        with patch("apps.api.routes.epc.process_estate", new_callable=AsyncMock) as mock_process:
            mock_process.side_effect = ConfigurationError("EPC API credentials not configured")
            response = app_client.post("/api/epc/estate", json={"features": [{}]})

        assert response.status_code == 503
        assert response.json()["detail"] == "EPC API credentials not configured"

    def test_upstream_failure_is_502(self, app_client):
        with patch("apps.api.routes.epc.process_estate", new_callable=AsyncMock) as mock_process:
            mock_process.side_effect = EPCAPIError("EPC error 500: boom", status_code=500)
            response = app_client.post("/api/epc/estate", json={"features": [{}]})

        assert response.status_code == 502
        assert response.json()["detail"] == "EPC API error: EPC error 500: boom"


class TestTableAndExport:
    """Test table and CSV export endpoints."""

    def test_table_filters_and_pages(self, app_client, matched_record):
        unmatched = MatchedRecord(building=BuildingFeature(id="b2", properties={"address": "The Barn"}))
        payload = {
            "records": [matched_record.to_dict(), unmatched.to_dict()],
            "status": "matched",
            "per_page": 10,
        }
        data = app_client.post("/api/epc/table", json=payload).json()

        assert data["total"] == 1
        assert data["items"][0]["building"]["id"] == "b1"
        assert data["options"]["statuses"] == ["matched", "no_epc_found"]

    def test_table_rejects_invalid_records(self, app_client):
        response = app_client.post("/api/epc/table", json={"records": [{"status": "bogus"}]})
        assert response.status_code == 400

    def test_export_returns_csv_attachment(self, app_client, matched_record):
        response = app_client.post("/api/epc/export", json={"records": [matched_record.to_dict()]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="epc-matches-' in response.headers["content-disposition"]
        assert response.text.splitlines()[0].startswith('"Building ID"')

    def test_stored_certificates(self, app_client, stubs):
        stubs.supabase.fetch.return_value = [
            {"lmk_key": "lmk-1", "postcode": "GU1 3AA", "current_energy_rating": "C", "current_energy_efficiency": 72}
        ]
        data = app_client.get("/api/epc/certificates", params={"postcode": "gu13aa"}).json()

        assert data["count"] == 1
        assert data["certificates"][0]["energy_efficiency"] == 72

    def test_unreachable_supabase_is_502(self, app_client, stubs, test_settings):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        stubs.supabase = SupabaseClient(
            url="https://db.test", key="anon", settings=test_settings, transport=httpx.MockTransport(refuse)
        )
        response = app_client.get("/api/epc/certificates", params={"postcode": "GU1 3AA"})

        assert response.status_code == 502
        assert response.json()["detail"].startswith("Supabase API error")


# ============================================================================
# Test Data Layers Endpoint
# ============================================================================


class TestDataLayersEndpoint:
    """Test POST /api/data-layers/report."""

    def test_upload_report(self, app_client):
        response = app_client.post(
            "/api/data-layers/report",
            files={"file": ("layers.xlsx", _report_bytes(), XLSX)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["filename"] == "layers.xlsx"
        assert data["report"]["categories"][0]["name"] == "Water"
        assert data["validation_errors"] == []

    def test_rejects_non_excel_upload(self, app_client):
        response = app_client.post(
            "/api/data-layers/report",
            files={"file": ("layers.txt", b"plain text", "text/plain")},
        )
        assert response.status_code == 400

    def test_rejects_empty_upload(self, app_client):
        response = app_client.post("/api/data-layers/report", files={"file": ("layers.xlsx", b"", XLSX)})
        assert response.status_code == 400


# ============================================================================
# Test Map and Nature Endpoints
# ============================================================================


class TestMapEndpoints:
    """Test Land App map routes."""

    def test_plans_for_map(self, app_client):
        with patch("apps.api.routes.maps.plans_for_map", new_callable=AsyncMock) as mock_plans:
            mock_plans.return_value = [{"id": "p1", "mapId": MAP_ID}]
            data = app_client.get(f"/api/maps/{MAP_ID}/plans").json()

        assert data == {"map_id": MAP_ID, "count": 1, "plans": [{"id": "p1", "mapId": MAP_ID}]}

    def test_invalid_map_id(self, app_client):
        assert app_client.get("/api/maps/bad!id/plans").status_code == 400

    def test_land_app_not_configured(self, app_client, stubs):
        stubs.land.is_configured = False
        assert app_client.get(f"/api/maps/{MAP_ID}/plans").status_code == 503

    def test_land_app_failure_is_502(self, app_client):
        with patch("apps.api.routes.maps.plans_for_map", new_callable=AsyncMock) as mock_plans:
            mock_plans.side_effect = LandAppAPIError("No plans were fetched from any plan type")
            response = app_client.get(f"/api/maps/{MAP_ID}/plans")

        assert response.status_code == 502
        assert response.json()["detail"].startswith("Land App API error")

    def test_profile(self, app_client):
        profile = MapProfile(map_id=MAP_ID, warnings=["No plans found for Map ID: x"])
        with patch("apps.api.routes.maps.map_profile", new_callable=AsyncMock) as mock_profile:
            mock_profile.return_value = profile
            response = app_client.get(f"/api/maps/{MAP_ID}/profile", params={"include_epc": "false"})

        assert response.status_code == 200
        data = response.json()
        assert data["map_id"] == MAP_ID
        assert data["summary"]["total_plans"] == 0
        assert mock_profile.await_args.kwargs["epc_client"] is None
        assert mock_profile.await_args.kwargs["include_nature"] is True


class TestNatureEndpoints:
    """Test nature reporting routes."""

    def test_map_names(self, app_client):
        with patch("domain.land.nature.available_map_names", new_callable=AsyncMock) as mock_names:
            mock_names.return_value = ["Abbey Estate", "Home Farm"]
            data = app_client.get("/api/nature/maps").json()

        assert data == {"count": 2, "map_names": ["Abbey Estate", "Home Farm"]}

    def test_metrics_for_map(self, app_client, stubs):
        entry = {"mapName": "Home Farm", "metrics": [{"key": "habitat_bng_units", "baseline": 8}]}
        stubs.land.nature_metric_descriptions.side_effect = LandAppAPIError("unavailable")
        with patch("domain.land.nature.all_metrics_for_map", new_callable=AsyncMock) as mock_metrics:
            mock_metrics.return_value = [entry]
            response = app_client.get("/api/nature/maps/Home Farm")

        assert response.status_code == 200
        data = response.json()
        assert data["key_metrics"]["biodiversity"]["bng_units"] == 8
        assert data["dashboard"]["summary"]["total_farms"] == 1

    def test_unknown_map_is_404(self, app_client):
        with patch("domain.land.nature.all_metrics_for_map", new_callable=AsyncMock) as mock_metrics:
            mock_metrics.return_value = []
            assert app_client.get("/api/nature/maps/Nowhere").status_code == 404

    def test_nature_not_configured(self, app_client, stubs):
        stubs.land.nature_configured = False
        assert app_client.get("/api/nature/maps").status_code == 503


# ============================================================================
# Test Holding Analysis, Plan Detail and Payment Endpoints
# ============================================================================


def _collections(plans):
    return [
        {
            "plan_id": plan["id"],
            "plan_name": plan.get("name"),
            "features": [
                {
                    "type": "Feature",
                    "properties": {"theme": "Land", "descriptiveGroup": "Agricultural Land", "area_m2": 20000},
                }
            ],
        }
        for plan in plans
    ]


class TestAnalysisEndpoint:
    """Test holding analysis for a map."""

    def test_analysis_of_selected_plans(self, app_client):
        plans = [{"id": "p1", "name": "North"}, {"id": "p2", "name": "South"}]
        with patch("apps.api.routes.maps.plans_for_map", new_callable=AsyncMock) as mock_plans, patch(
            "apps.api.routes.maps.features_for_plans", new_callable=AsyncMock
        ) as mock_features:
            mock_plans.return_value = plans
            mock_features.side_effect = lambda client, selected: _collections(selected)
            response = app_client.get(f"/api/maps/{MAP_ID}/analysis", params={"plan_id": "p2"})

        assert response.status_code == 200
        executive = response.json()["executive"]
        assert executive["map_name"] == MAP_ID
        assert executive["total_plans"] == 1
        assert executive["total_area"]["formatted"] == "2.00 ha"
        assert executive["total_value"]["total"] == pytest.approx(2 * 25000 + 2 * 0.1 * 125000)

    def test_no_matching_plans_is_404(self, app_client):
        with patch("apps.api.routes.maps.plans_for_map", new_callable=AsyncMock) as mock_plans:
            mock_plans.return_value = [{"id": "p1"}]
            response = app_client.get(f"/api/maps/{MAP_ID}/analysis", params={"plan_id": "missing"})
        assert response.status_code == 404


class TestPlanDetailEndpoint:
    """Test single plan details."""

    @pytest.fixture(autouse=True)
    def plan_client(self, stubs):
        stubs.land.plan_features = AsyncMock(
            return_value=[
                {
                    "type": "Feature",
                    "properties": {"theme": "Land", "descriptiveGroup": "Agricultural Land", "area_m2": 30000},
                }
            ]
        )
        stubs.land.plan_detail = AsyncMock(return_value={"status": "Active"})

    def test_details(self, app_client, stubs):
        response = app_client.get("/api/plans/p1/details", params={"plan_type": "SFI2023", "name": "Home Farm"})

        assert response.status_code == 200
        data = response.json()
        assert data["plan"] == {
            "id": "p1",
            "planType": "SFI2023",
            "name": "Home Farm",
            "status": "Active",
            "fullName": "Sustainable Farming Incentive 2023",
        }
        assert data["financial"]["current_payment"]["total"] == 60
        assert data["recommendations"][0]["title"] == "SFI Management Payment"
        stubs.land.plan_features.assert_awaited_once_with("p1")

    def test_summary_format(self, app_client):
        response = app_client.get("/api/plans/p1/details", params={"plan_type": "ESS", "format": "summary"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "Current Estimated Payment: £90/year" in response.text

    def test_unknown_format_rejected(self, app_client):
        assert app_client.get("/api/plans/p1/details", params={"format": "pdf"}).status_code == 422

    def test_land_app_not_configured(self, app_client, stubs):
        stubs.land.is_configured = False
        assert app_client.get("/api/plans/p1/details").status_code == 503


class TestPaymentEndpoints:
    """Test scheme lookups and payment estimates."""

    def test_scheme(self, app_client):
        data = app_client.get("/api/payments/schemes/SFI2024").json()
        assert data["scheme"] == "SFI"
        assert data["info"]["full_name"] == "Sustainable Farming Incentive"
        assert data["actions"][0]["code"] == "WBD2"

    def test_estimate(self, app_client):
        response = app_client.post(
            "/api/payments/estimate",
            json={
                "plan_type": "SFI2023",
                "area_ha": 10,
                "actions": [{"code": "SAM3", "area": 1}],
                "region": "Wales",
                "implementation_costs": 1000,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["payment"]["total"] == pytest.approx((200 + 646) * 0.9)
        assert data["payment"]["region"] == "Wales"
        assert data["roi"]["total_payments"] == pytest.approx((200 + 646) * 3)

    def test_unknown_plan_type_rejected(self, app_client):
        response = app_client.post("/api/payments/estimate", json={"plan_type": "UKHAB", "area_ha": 5})
        assert response.status_code == 400

    def test_negative_area_rejected(self, app_client):
        response = app_client.post("/api/payments/estimate", json={"plan_type": "ESS", "area_ha": -1})
        assert response.status_code == 422
