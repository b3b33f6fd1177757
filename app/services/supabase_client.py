"""Supabase client shared by the CRM and conversation repositories."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from app.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Supabase 클라이언트 싱글톤 반환."""
    settings = get_settings()

    if not settings.supabase_enabled:
        raise ValueError("Supabase credentials not configured")

    logger.info("Creating Supabase client for %s", settings.supabase_url)
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )
