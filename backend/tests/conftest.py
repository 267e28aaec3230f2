"""Pytest configuration and shared fixtures for backend tests."""

import sys
from datetime import date
from pathlib import Path

import httpx
import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from core.config import Settings  # noqa: E402
from domain.epc.models import BuildingFeature, Certificate  # noqa: E402


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


# ============================================================================
# Shared Fixtures - Configuration
# ============================================================================


@pytest.fixture
def test_settings():
    """Settings with credentials present and no retry back-off."""
    return Settings(
        epc_api_email="tester@example.com",
        epc_api_key="epc-key",
        land_app_api_key="land-key",
        nature_reporting_api_key="nature-key",
        os_links_api_key="os-key",
        http_retries=1,
        http_backoff=0,
        epc_batch_delay=0,
    )


@pytest.fixture
def mock_transport():
    """Build an ``httpx.MockTransport`` that records every request it serves."""

    def factory(handler):
        requests = []

        def record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        transport = httpx.MockTransport(record)
        transport.requests = requests
        return transport

    return factory


# ============================================================================
# Shared Fixtures - Buildings and Certificates
# ============================================================================


@pytest.fixture
def make_building():
    """Create a building feature from keyword properties."""

    def factory(feature_id="bldg-1", **properties):
        return BuildingFeature(id=feature_id, properties=properties)

    return factory


@pytest.fixture
def make_certificate():
    """Create a certificate with sensible defaults."""

    def factory(**overrides):
        values = {
            "lmk_key": "lmk-1",
            "uprn": "100023336956",
            "address": "12 High Street, Guildford",
            "postcode": "GU1 3AA",
            "current_energy_rating": "C",
            "potential_energy_rating": "B",
            "energy_efficiency": 72,
            "co2_emissions": 2.4,
            "property_type": "House",
            "total_floor_area": 95.0,
            "inspection_date": date(2020, 5, 1),
            "lodgement_date": date(2020, 5, 4),
        }
        values.update(overrides)
        return Certificate(**values)

    return factory


@pytest.fixture
def domestic_row():
    """A row as returned by the domestic EPC search endpoint."""
    return {
        "lmk-key": "1234567890123456789012345678901",
        "uprn": "100023336956",
        "address": "12 High Street, Guildford",
        "address1": "12 High Street",
        "postcode": "GU1 3AA",
        "current-energy-rating": "C",
        "potential-energy-rating": "B",
        "current-energy-efficiency": "72",
        "co2-emissions-current": "2.4",
        "property-type": "House",
        "total-floor-area": "95.0",
        "inspection-date": "2020-05-01",
        "lodgement-date": "2020-05-04",
    }


@pytest.fixture
def non_domestic_row():
    """A row as returned by the non-domestic EPC search endpoint."""
    return {
        "lmk-key": "nd-0001",
        "uprn": "200004567890",
        "address1": "Unit 4",
        "address2": "Riverside Business Park",
        "postcode": "GU2 7XH",
        "asset-rating": "88",
        "asset-rating-band": "D",
        "asset-rating-numeric": "88",
        "building-category": "Offices",
        "floor-area": "410",
        "inspection-date": "2018-02-10",
        "lodgement-date": "2018-02-12",
    }
