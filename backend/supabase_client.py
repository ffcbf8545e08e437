"""Supabase client initialization and request-scoped store helpers."""

from functools import lru_cache

from supabase import Client, create_client

from backend.config import get_settings
from backend.services.store import DailyStore


@lru_cache
def get_supabase_client() -> Client:
    """Return a cached Supabase client using the effective secret key."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.effective_supabase_secret_key)


def get_daily_store() -> DailyStore:
    """Return a DailyStore bound to the shared client (FastAPI dependency)."""
    return DailyStore(get_supabase_client())
