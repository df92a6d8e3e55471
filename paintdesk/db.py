# paintdesk/db.py
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, HTTPException
from supabase import Client, create_client

from .config import Config, get_config


@lru_cache(maxsize=4)
def _client_for(url: str, key: str) -> Client:
    return create_client(url, key)


def get_admin_client(config: Config = Depends(get_config)) -> Client:
    """Service-role Supabase client; bypasses RLS so every caller must be authorized first."""
    if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
        raise HTTPException(status_code=503, detail="Database not configured")
    return _client_for(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)


def first(resp) -> Optional[Dict[str, Any]]:
    rows = resp.data or []
    return rows[0] if rows else None


def fetch_one(client: Client, table: str, columns: str = "*", **filters) -> Optional[Dict[str, Any]]:
    q = client.table(table).select(columns)
    for col, value in filters.items():
        q = q.eq(col, value)
    return first(q.limit(1).execute())


def fetch_all(client: Client, table: str, columns: str = "*", **filters) -> List[Dict[str, Any]]:
    q = client.table(table).select(columns)
    for col, value in filters.items():
        q = q.eq(col, value)
    return q.execute().data or []


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat()
