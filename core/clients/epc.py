"""Client for the EPC open data communities search API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

import httpx

from core.cache import TTLCache
from core.clients.http import request_with_retries
from core.config import Settings, get_settings
from core.errors import ConfigurationError, EPCAPIError

logger = logging.getLogger(__name__)

PropertyClass = Literal["domestic", "non-domestic"]
IdentifierType = Literal["uprn", "postcode", "address"]

SEARCH_ENDPOINTS: Dict[str, str] = {
    "domestic": "/domestic/search",
    "non-domestic": "/non-domestic/search",
}
SEARCH_PAGE_SIZE = 100


class EPCClient:
    """Async client for domestic and non-domestic certificate searches."""

    def __init__(
        self,
        *,
        email: Optional[str] = None,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._email = email or self._settings.epc_api_email
        self._api_key = api_key or self._settings.epc_api_key
        self._base_url = self._settings.epc_api_base_url.rstrip("/")
        self._transport = transport
        self.cache = TTLCache(self._settings.epc_cache_ttl)

    @property
    def is_configured(self) -> bool:
        return bool(self._email and self._api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            auth=(str(self._email), str(self._api_key)),
            headers={"Accept": "application/json"},
            timeout=self._settings.http_timeout,
            transport=self._transport,
        )

    async def search(
        self,
        identifier_type: IdentifierType,
        value: str,
        property_class: PropertyClass = "domestic",
    ) -> List[Dict[str, Any]]:
        """Return raw certificate rows for one identifier and property class."""
        if not self.is_configured:
            raise ConfigurationError("EPC API credentials not configured")

        cache_key = f"{identifier_type}-{value}-{property_class}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        params = {identifier_type: value, "size": SEARCH_PAGE_SIZE}
        async with self._client() as client:
            response = await request_with_retries(
                client,
                "GET",
                SEARCH_ENDPOINTS[property_class],
                params=params,
                retries=self._settings.http_retries,
                backoff=self._settings.http_backoff,
                error_cls=EPCAPIError,
            )

        rows = _rows_from_response(response)
        logger.debug(
            "EPC %s search for %s=%s returned %d rows",
            property_class,
            identifier_type,
            value,
            len(rows),
        )
        self.cache.set(cache_key, rows)
        return rows

    async def search_both(self, identifier_type: IdentifierType, value: str) -> List[Dict[str, Any]]:
        """Search domestic and non-domestic registers, tagging each row with its class.

        A failure in one register is logged and does not discard the other's rows.
        """
        results: List[Dict[str, Any]] = []
        failures: List[EPCAPIError] = []
        for property_class in ("domestic", "non-domestic"):
            try:
                rows = await self.search(identifier_type, value, property_class)  # type: ignore[arg-type]
            except EPCAPIError as exc:
                logger.warning(
                    "%s EPC search failed for %s: %s", property_class, value, exc
                )
                failures.append(exc)
                continue
            results.extend({**row, "property_class": property_class} for row in rows)

        if len(failures) == len(SEARCH_ENDPOINTS):
            raise failures[-1]
        return results


def _rows_from_response(response: httpx.Response) -> List[Dict[str, Any]]:
    # The API answers an empty search with 200 and no body
    if not response.content or not response.content.strip():
        return []
    try:
        payload = response.json()
    except ValueError as exc:
        raise EPCAPIError(f"EPC API returned invalid JSON: {exc}") from exc
    rows = payload.get("rows") if isinstance(payload, dict) else None
    return list(rows or [])


__all__ = ["EPCClient", "IdentifierType", "PropertyClass", "SEARCH_ENDPOINTS"]
