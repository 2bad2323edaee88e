from supabase import create_client, Client  # type: ignore
from functools import lru_cache
from app.config import settings


@lru_cache()
def get_supabase_client(use_service_role: bool = True) -> Client:
    """
    Get Supabase client.

    Created on first use so the application can start without credentials;
    only the violation write path needs a live client.

    Args:
        use_service_role: When True (default), use the service role key if available
            so backend inserts bypass RLS restrictions intended for public clients.
    """
    if use_service_role and settings.supabase_service_role_key:
        key = settings.supabase_service_role_key
    else:
        key = settings.supabase_key
    return create_client(settings.supabase_url, key)
