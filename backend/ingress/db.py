"""
Database client configuration.
Uses Supabase for PostgreSQL + Storage of ingested emails.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()


@lru_cache(maxsize=1)
def get_supabase_admin() -> Client:
    """
    Admin client for service-level operations (bypasses RLS).

    Created on first use so the webhook can answer 401/404 without
    database credentials being present.
    """
    url = os.getenv("SUPABASE_URL")
    service_key = os.getenv("SUPABASE_SERVICE_KEY")
    if not url or not service_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")
    return create_client(url, service_key)
