# paintdesk/routers/health.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..db import get_admin_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def read_root():
    return {"ok": True, "service": "paintdesk-api"}


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/health/db")
async def health_db(sb: Client = Depends(get_admin_client)):
    """Ping Supabase with the service-role client."""
    try:
        sb.table("companies").select("id").limit(1).execute()
    except Exception as e:
        logger.error("DB health check failed: %s", e)
        raise HTTPException(status_code=503, detail=f"DB check failed: {e}")
    return {"ok": True, "db": "up"}
