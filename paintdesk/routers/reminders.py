# paintdesk/routers/reminders.py
"""Follow-up reminders for estimates the customer has not answered."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_one, get_admin_client, utcnow
from ..models import DismissReminderIn
from ..subscription import parse_timestamp
from ..tenancy import get_user_company_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])

NUDGE_PREFIX = "followup_"


def _by_id(sb: Client, table: str, columns: str, ids) -> Dict[str, Dict[str, Any]]:
    ids = sorted({i for i in ids if i})
    if not ids:
        return {}
    return {row["id"]: row for row in sb.table(table).select(columns).in_("id", ids).execute().data or []}


def build_reminders(
    estimates: List[Dict[str, Any]],
    jobs: Dict[str, Dict[str, Any]],
    customers: Dict[str, Dict[str, Any]],
    dismissed: set,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    now = now or utcnow()
    reminders = []
    for est in estimates:
        if est["id"] in dismissed:
            continue
        job = jobs.get(est.get("job_id")) or {}
        customer = customers.get(job.get("customer_id")) or {}
        reminders.append({
            "id": est["id"],
            "jobId": est.get("job_id"),
            "jobTitle": job.get("title") or "Untitled Job",
            "customerName": customer.get("name") or "Unknown Customer",
            "customerPhone": customer.get("phone"),
            "customerEmail": customer.get("email"),
            "sentAt": est["sent_at"],
            "daysAgo": (now - parse_timestamp(est["sent_at"])).days,
        })
    return reminders


@router.get("")
async def list_reminders(
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    membership = fetch_one(sb, "company_users", "company_id", user_id=user["id"])
    if not membership:
        return {"reminders": []}
    company_id = membership["company_id"]

    cutoff = (utcnow() - timedelta(days=config.REMINDER_AFTER_DAYS)).isoformat()
    estimates = (
        sb.table("estimates")
        .select("id,job_id,sent_at,status,created_at")
        .eq("company_id", company_id)
        .eq("status", "sent")
        .lt("sent_at", cutoff)
        .order("sent_at")
        .execute()
        .data
        or []
    )
    # only estimates attached to a job
    estimates = [e for e in estimates if e.get("job_id")]

    jobs = _by_id(sb, "jobs", "id,title,customer_id", (e["job_id"] for e in estimates))
    estimates = [e for e in estimates if e["job_id"] in jobs]
    customers = _by_id(sb, "customers", "id,name,phone,email", (j.get("customer_id") for j in jobs.values()))

    dismissals = (
        sb.table("nudge_dismissals")
        .select("nudge_type")
        .eq("user_id", user["id"])
        .eq("company_id", company_id)
        .execute()
        .data
        or []
    )
    dismissed = {
        d["nudge_type"][len(NUDGE_PREFIX):] for d in dismissals if (d.get("nudge_type") or "").startswith(NUDGE_PREFIX)
    }

    return {"reminders": build_reminders(estimates, jobs, customers, dismissed)}


@router.post("")
async def dismiss_reminder(
    payload: DismissReminderIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company_id = get_user_company_id(sb, user["id"])
    sb.table("nudge_dismissals").insert({
        "user_id": user["id"],
        "company_id": company_id,
        "nudge_type": f"{NUDGE_PREFIX}{payload.estimateId}",
    }).execute()
    return {"success": True}
