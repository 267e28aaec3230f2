"""Land App integration API client (plans, features and nature reporting)."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from core.cache import TTLCache
from core.clients.http import request_with_retries
from core.config import Settings, get_settings
from core.errors import ConfigurationError, LandAppAPIError

logger = logging.getLogger(__name__)

PLAN_TYPES: Tuple[str, ...] = (
    "BPS",
    "CSS",
    "CSS_2025",
    "SFI2023",
    "SFI2022",
    "SFI2024",
    "UKHAB",
    "UKHAB_V2",
    "LAND_MANAGEMENT",
    "LAND_MANAGEMENT_V2",
    "PEAT_ASSESSMENT",
    "OSMM",
    "USER",
    "ESS",
    "FER",
    "HEALTHY_HEDGEROWS",
)
PROJECTS_FROM_DATE = "2020-01-01T00:00:00.000Z"
PROJECTS_PAGE_SIZE = 1000
MAX_PROJECT_PAGES = 10


class LandAppClient:
    """Async client for the Land App integration API.

    ``api_key`` authenticates plan and feature requests; nature reporting
    endpoints use ``nature_api_key`` when one is configured.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        nature_api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._api_key = api_key or self._settings.land_app_api_key
        self._nature_api_key = (
            nature_api_key or self._settings.nature_reporting_api_key or self._api_key
        )
        self._base_url = self._settings.land_app_base_url.rstrip("/")
        self._transport = transport
        self.plans_cache = TTLCache(self._settings.plans_cache_ttl)
        self.nature_cache = TTLCache(self._settings.nature_cache_ttl)
        self.detail_cache = TTLCache(self._settings.plan_detail_cache_ttl)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def nature_configured(self) -> bool:
        return bool(self._nature_api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._settings.http_timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        async with self._client() as client:
            response = await request_with_retries(
                client,
                "GET",
                path,
                params=params,
                retries=self._settings.http_retries,
                backoff=self._settings.http_backoff,
                error_cls=LandAppAPIError,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise LandAppAPIError(f"Land App returned invalid JSON for {path}") from exc

    def _require_key(self) -> str:
        if not self._api_key:
            raise ConfigurationError("Land App API key not configured")
        return self._api_key

    def _require_nature_key(self) -> str:
        if not self._nature_api_key:
            raise ConfigurationError("Nature Reporting API key not configured")
        return self._nature_api_key

    # ------------------------------------------------------------------
    # Plans and features
    # ------------------------------------------------------------------

    async def list_projects(
        self,
        plan_type: str,
        *,
        page: int = 0,
        size: int = PROJECTS_PAGE_SIZE,
        from_date: str = PROJECTS_FROM_DATE,
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """Return one page of plans of ``plan_type`` and whether more pages exist."""
        payload = await self._get(
            "/projects",
            {
                "apiKey": self._require_key(),
                "type": plan_type,
                "page": page,
                "size": size,
                "from": from_date,
                "excludeArchived": "true",
            },
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            return [], False
        rows = [{**row, "planType": plan_type} for row in payload["data"]]
        return rows, payload.get("hasNext") is True

    async def iter_projects(
        self,
        plan_types: Iterable[str] = PLAN_TYPES,
        *,
        max_pages: int = MAX_PROJECT_PAGES,
    ) -> List[Dict[str, Any]]:
        """Fetch every page of every plan type, skipping plan types that fail."""
        plan_types = tuple(plan_types)
        cache_key = ("projects", plan_types, max_pages)
        cached = self.plans_cache.get(cache_key)
        if cached is not None:
            return cached

        plans: List[Dict[str, Any]] = []
        for plan_type in plan_types:
            page = 0
            has_next = True
            while has_next and page < max_pages:
                try:
                    rows, has_next = await self.list_projects(plan_type, page=page)
                except LandAppAPIError as exc:
                    logger.warning("Failed to fetch %s plans page %d: %s", plan_type, page, exc)
                    break
                if not rows:
                    break
                plans.extend(rows)
                page += 1
            if has_next and page >= max_pages:
                logger.info("Reached page limit for %s plans", plan_type)

        logger.info("Fetched %d plans across %d plan types", len(plans), len(plan_types))
        self.plans_cache.set(cache_key, plans)
        return plans

    async def plan_features(self, plan_id: str) -> List[Dict[str, Any]]:
        """Return the GeoJSON features of a plan, or ``[]`` when they cannot be fetched."""
        try:
            payload = await self._get(f"/plan/{plan_id}/features", {"apiKey": self._require_key()})
        except LandAppAPIError as exc:
            logger.warning("Failed to fetch features for plan %s: %s", plan_id, exc)
            return []
        if isinstance(payload, dict):
            if isinstance(payload.get("features"), list):
                return payload["features"]
            if isinstance(payload.get("data"), list):
                return payload["data"]
            return []
        return list(payload or [])

    async def plan_detail(self, plan_id: str) -> Dict[str, Any]:
        """Return the plan record itself; cached for ``plan_detail_cache_ttl`` seconds."""
        cache_key = ("plan", plan_id)
        cached = self.detail_cache.get(cache_key)
        if cached is not None:
            return cached
        payload = await self._get(f"/plan/{plan_id}", {"apiKey": self._require_key()})
        detail = payload if isinstance(payload, dict) else {}
        self.detail_cache.set(cache_key, detail)
        return detail

    # ------------------------------------------------------------------
    # Nature reporting
    # ------------------------------------------------------------------

    async def nature_metrics(
        self,
        *,
        page: int = 0,
        size: int = 50,
        search: Optional[str] = None,
        as_of_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return one page of nature reporting metrics (``data`` and ``hasNext``)."""
        cache_key = ("metrics", page, size, search or "", as_of_date or "")
        cached = self.nature_cache.get(cache_key)
        if cached is not None:
            return cached

        params: Dict[str, Any] = {"apiKey": self._require_nature_key(), "page": page, "size": size}
        if search:
            params["search"] = search
        if as_of_date:
            params["asOfDate"] = as_of_date

        payload = await self._get("/nature-reporting/metrics", params)
        if not isinstance(payload, dict):
            payload = {"data": list(payload or []), "hasNext": False}
        self.nature_cache.set(cache_key, payload)
        return payload

    async def nature_metric_descriptions(self) -> List[Dict[str, Any]]:
        cached = self.nature_cache.get("descriptions")
        if cached is not None:
            return cached
        payload = await self._get(
            "/nature-reporting/metrics/description", {"apiKey": self._require_nature_key()}
        )
        if isinstance(payload, dict):
            descriptions = payload.get("data") or []
        else:
            descriptions = list(payload or [])
        self.nature_cache.set("descriptions", descriptions)
        return descriptions

    def clear_cache(self) -> None:
        self.plans_cache.clear()
        self.nature_cache.clear()
        self.detail_cache.clear()


__all__ = ["LandAppClient", "PLAN_TYPES"]
