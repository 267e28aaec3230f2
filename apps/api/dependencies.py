"""Shared API client instances for route dependencies.

Clients are created once per process so their response caches survive
between requests. Tests replace them through ``app.dependency_overrides``.
"""
from functools import lru_cache

from core.clients.epc import EPCClient
from core.clients.land_app import LandAppClient
from core.clients.os_links import OSLinksClient
from core.clients.supabase import SupabaseClient


@lru_cache()
def get_epc_client() -> EPCClient:
    return EPCClient()


@lru_cache()
def get_os_client() -> OSLinksClient:
    return OSLinksClient()


@lru_cache()
def get_land_client() -> LandAppClient:
    return LandAppClient()


@lru_cache()
def get_supabase_client() -> SupabaseClient:
    return SupabaseClient()


__all__ = ["get_epc_client", "get_land_client", "get_os_client", "get_supabase_client"]
