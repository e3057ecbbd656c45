import logging
from functools import lru_cache

from supabase import Client, create_client

from timetable.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Shared client, created on first use so importing the app needs no credentials."""
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    except Exception as e:
        logger.error("Error connecting to Supabase: %s", e)
        raise
