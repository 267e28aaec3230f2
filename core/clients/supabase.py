"""Supabase client helpers."""
import json
from typing import Any, Dict, List, Optional

import httpx

from core.clients.http import request_with_retries
from core.config import Settings, get_settings
from core.errors import ConfigurationError, SupabaseError


class SupabaseClient:
    """Lightweight async client for Supabase REST endpoints."""

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        key: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._url = url or self._settings.supabase_url
        self._key = key or self._settings.supabase_anon_key
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        if not self._url or not self._key:
            return False
        return self._url != "undefined" and self._key != "undefined"

    def _headers(self) -> Dict[str, str]:
        if not self.is_configured:
            raise ConfigurationError("Supabase credentials not configured")
        return {
            "apikey": str(self._key),
            "Authorization": f"Bearer {self._key}",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.http_timeout, transport=self._transport)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            return await request_with_retries(
                client,
                method,
                f"{self._url}/rest/v1/{path}",
                retries=self._settings.http_retries,
                backoff=self._settings.http_backoff,
                error_cls=SupabaseError,
                **kwargs,
            )

    async def fetch(self, endpoint: str) -> Any:
        response = await self._request("GET", endpoint, headers=self._headers())
        return response.json()

    async def upsert(
        self, table: str, rows: List[Dict[str, Any]], *, on_conflict: str
    ) -> List[Dict[str, Any]]:
        """Insert ``rows`` into ``table``, merging on the ``on_conflict`` columns.

        Returns the stored representation of the rows.
        """
        if not rows:
            return []
        headers = {
            **self._headers(),
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=representation",
        }
        response = await self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            headers=headers,
            content=json.dumps(rows, default=str),
        )
        return response.json()
