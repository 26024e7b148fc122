"""
Supabase client for the durable-store and content-index collaborators.
"""
from typing import Optional

from supabase import Client, create_client

from learnassist.core.config import get_settings
from learnassist.core.logging import get_logger

logger = get_logger(__name__)

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Optional[Client]:
    """
    Create (once) and return the Supabase client.

    Returns:
        Client instance, or None when credentials are missing or invalid
    """
    global _supabase_client
    if _supabase_client is not None:
        return _supabase_client

    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning(
            "supabase_credentials_missing",
            message="Set SUPABASE_URL and SUPABASE_SERVICE_KEY to enable durable storage",
        )
        return None

    if not settings.supabase_url.startswith("http"):
        logger.error(
            "supabase_url_invalid",
            url=settings.supabase_url,
            message="Should start with http:// or https://",
        )
        return None

    try:
        logger.info("supabase_client_creating", url_prefix=settings.supabase_url[:30])
        _supabase_client = create_client(settings.supabase_url, settings.supabase_key)
        logger.info("supabase_client_created")
    except Exception as e:
        logger.error(
            "supabase_client_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return None
    return _supabase_client
