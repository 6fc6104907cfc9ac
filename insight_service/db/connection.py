"""
Supabase Database Connection

Manages the Supabase client used for insight storage.
The client is created on first use so that importing the pipeline does not
require database credentials (tests and dry runs never touch it).
"""

from typing import Optional

from supabase import create_client, Client

from insight_service.config import settings

_client: Optional[Client] = None


def get_client() -> Client:
    """
    Get the shared Supabase client, creating it on first call
    Raises:
        Exception: SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is not configured
    """
    global _client
    if _client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise Exception('Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY; cannot connect to insight storage')

        # Service role key for server-side operations
        _client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    return _client

