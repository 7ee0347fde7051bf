#!/usr/bin/env python3
"""
Supabase client utility.

Provides the service-role client used by the valuation backend. The service
role bypasses row-level security, so every query issued through it MUST be
scoped explicitly by owner (`.eq("user_id", ...)`) by the caller.
"""

import logging
from typing import Optional

from supabase import create_client, Client

from utils.settings import get_settings

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Create (once) and return a Supabase client using the service role key.

    Returns:
        Client: Initialized Supabase client

    Raises:
        RuntimeError: If the Supabase URL or service role key is not configured
    """
    global _client

    if _client is not None:
        return _client

    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_role_key:
        logger.error("Supabase URL or service role key not found in environment variables")
        raise RuntimeError("Supabase is not configured")

    try:
        _client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        return _client
    except Exception as e:
        logger.error(f"Failed to create Supabase client: {e}")
        raise
