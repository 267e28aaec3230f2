"""Shared request helper with simple retry handling for transient failures."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Type

import httpx

from core.errors import UpstreamError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int,
    backoff: float,
    error_cls: Type[UpstreamError] = UpstreamError,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying connection errors, 429 and 5xx responses.

    Returns the first non-retryable response. Raises ``error_cls`` when the
    final attempt still fails or returns an error status.
    """
    attempt = 0
    while True:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= retries:
                raise error_cls(f"{error_cls.service} request failed: {exc}") from exc
            logger.warning(
                "%s request to %s failed (%s), retry %d/%d",
                error_cls.service,
                url,
                exc.__class__.__name__,
                attempt + 1,
                retries,
            )
        else:
            if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= retries:
                if response.is_error:
                    raise error_cls(
                        f"{error_cls.service} error {response.status_code}: {response.text[:200]}",
                        status_code=response.status_code,
                    )
                return response
            logger.warning(
                "%s returned %d for %s, retry %d/%d",
                error_cls.service,
                response.status_code,
                url,
                attempt + 1,
                retries,
            )

        attempt += 1
        await asyncio.sleep(backoff * attempt)


__all__ = ["RETRYABLE_STATUS_CODES", "request_with_retries"]
