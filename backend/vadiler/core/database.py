"""
PostgreSQL access for the storefront (hosted on Supabase)

Two entry points:
- psycopg2 with RealDictCursor for every repository query
- Supabase client for the RPC functions (order number sequence)

Author: TM3
Date: 2025-12-04
"""
import logging
import time
from typing import Optional

import psycopg2
from psycopg2.extras import RealDictCursor
from supabase import Client, create_client

from .config import settings

logger = logging.getLogger(__name__)

# Seconds; Supabase pooler connections occasionally hang on cold starts
CONNECT_TIMEOUT = 10
APPLICATION_NAME = "vadiler-api"


def _database_url() -> str:
    if not settings.DATABASE_URL:
        raise Exception("DATABASE_URL not configured")
    return settings.DATABASE_URL


# ============================================================================
# psycopg2 (repositories)
# ============================================================================

def get_db_connection_dict():
    """
    Connection whose cursors return rows as dicts

    Callers own the connection:
        conn = get_db_connection_dict()
        cursor = conn.cursor()
        try:
            cursor.execute("SELECT * FROM orders WHERE id = %s", (order_id,))
            row = cursor.fetchone()
        finally:
            cursor.close()
            conn.close()
    """
    return psycopg2.connect(
        _database_url(),
        cursor_factory=RealDictCursor,
        connect_timeout=CONNECT_TIMEOUT,
        application_name=APPLICATION_NAME,
    )


def get_db_connection_with_retry(max_retries: int = 3, retry_delay: float = 1.0):
    """
    Connection verified with SELECT 1, retried with exponential backoff

    Used by /health, where a dropped SSL session should not report the
    database as down on the first attempt.

    Raises:
        psycopg2.OperationalError once every attempt has failed
    """
    database_url = _database_url()
    last_error: Optional[Exception] = None

    for attempt in range(1, max_retries + 1):
        try:
            conn = psycopg2.connect(
                database_url,
                connect_timeout=CONNECT_TIMEOUT,
                application_name=APPLICATION_NAME,
            )
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()
            return conn

        except psycopg2.OperationalError as e:
            last_error = e
            logger.warning(f"Database connection attempt {attempt}/{max_retries} failed: {e}")

            if attempt < max_retries:
                time.sleep(retry_delay * (2 ** (attempt - 1)))

    logger.error(f"All {max_retries} database connection attempts failed")
    raise last_error


# ============================================================================
# Supabase client (RPC)
# ============================================================================

_supabase: Optional[Client] = None


def get_supabase() -> Client:
    """Service-role client, created on first use"""
    global _supabase
    if _supabase is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise Exception("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not configured")
        _supabase = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    return _supabase
