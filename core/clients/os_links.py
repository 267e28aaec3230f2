"""OS Linked Identifiers client: resolves MasterMap TOIDs to UPRNs."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from core.cache import TTLCache
from core.clients.http import request_with_retries
from core.config import Settings, get_settings
from core.errors import ConfigurationError, OSLinksAPIError

logger = logging.getLogger(__name__)

PLACEHOLDER_KEYS = frozenset({"undefined", "your_os_linked_identifiers_api_key_here"})


@dataclass
class LinkedUPRN:
    uprn: str
    address: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None


@dataclass
class TOIDLookup:
    toid: str
    uprns: List[LinkedUPRN] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None


class OSLinksClient:
    """Async client for the ``/uprn`` lookup of the OS Linked Identifiers API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._api_key = api_key or self._settings.os_links_api_key
        self._base_url = self._settings.os_links_base_url.rstrip("/")
        self._transport = transport
        self.cache = TTLCache(self._settings.os_cache_ttl)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key) and self._api_key not in PLACEHOLDER_KEYS

    async def uprns_for_toid(self, toid: str) -> TOIDLookup:
        """Look up the UPRNs linked to ``toid``.

        API failures are reported on the returned lookup rather than raised.
        """
        if not self.is_configured:
            raise ConfigurationError("OS Linked Identifiers API key not configured")

        toid = str(toid)
        cached = self.cache.get(toid)
        if cached is not None:
            return cached

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._settings.http_timeout,
                transport=self._transport,
            ) as client:
                response = await request_with_retries(
                    client,
                    "GET",
                    "/uprn",
                    params={"key": self._api_key, "toid": toid},
                    retries=self._settings.http_retries,
                    backoff=self._settings.http_backoff,
                    error_cls=OSLinksAPIError,
                )
            payload = response.json()
        except (OSLinksAPIError, ValueError) as exc:
            logger.warning("OS Linked Identifiers lookup failed for TOID %s: %s", toid, exc)
            return TOIDLookup(toid=toid, success=False, error=str(exc))

        lookup = TOIDLookup(toid=toid, uprns=_parse_results(payload))
        self.cache.set(toid, lookup)
        return lookup


def _parse_results(payload: Any) -> List[LinkedUPRN]:
    results = payload.get("results") if isinstance(payload, dict) else None
    linked: List[LinkedUPRN] = []
    for item in results or []:
        if not isinstance(item, dict):
            continue
        lpi = item.get("LPI") or {}
        uprn = lpi.get("UPRN") or item.get("uprn") or item.get("UPRN")
        if not uprn:
            continue
        linked.append(
            LinkedUPRN(
                uprn=str(uprn),
                address=lpi.get("ADDRESS") or item.get("address"),
                geometry=item.get("geometry"),
            )
        )
    return linked


__all__ = ["LinkedUPRN", "OSLinksClient", "TOIDLookup"]
