# paintdesk/routers/jobs.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from ..auth import get_current_user
from ..db import fetch_one, first, get_admin_client, now_iso
from ..estimates import recalculate_estimate_totals
from ..models import JobCreate, JobPaymentIn, JobUpdate, MarkPaidIn, PhotoIn, ProgressIn
from ..subscription import require_active_subscription
from ..tenancy import (
    get_user_company_id,
    require_company_customer,
    require_company_user,
    require_member,
    require_resource_member,
)
from ..tokens import new_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

PHOTO_BUCKET = "job-photos"


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _with_customer(sb: Client, job: Dict[str, Any]) -> Dict[str, Any]:
    customer = None
    if job.get("customer_id"):
        customer = fetch_one(sb, "customers", "*", id=job["customer_id"])
    return {**job, "customer": customer}


def _load_job(sb: Client, user: Dict[str, Any], job_id: str) -> Dict[str, Any]:
    return require_resource_member(sb, user["id"], "jobs", job_id, label="Job")


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/jobs: create a job with fresh public tokens
# ──────────────────────────────────────────────────────────────────────────────
@router.post("")
async def create_job(payload: JobCreate, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    require_member(sb, user["id"], payload.company_id)
    require_company_customer(sb, payload.company_id, payload.customer_id)
    require_company_user(sb, payload.company_id, payload.assigned_user_id)

    row = payload.model_dump()
    row["title"] = payload.title.strip()
    row.update(
        unified_job_token=new_token(),
        schedule_token=new_token(),
        payment_token=new_token(),
    )
    job = first(sb.table("jobs").insert(row).execute())
    if not job:
        raise HTTPException(status_code=500, detail="Failed to create job")

    logger.info("Job %s created for company %s", job["id"], payload.company_id)
    return _with_customer(sb, job)


# ──────────────────────────────────────────────────────────────────────────────
# GET /api/jobs: board listing for one company
# ──────────────────────────────────────────────────────────────────────────────
@router.get("")
async def list_jobs(
    company_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
) -> List[Dict[str, Any]]:
    company_id = company_id or get_user_company_id(sb, user["id"])
    require_member(sb, user["id"], company_id)

    q = sb.table("jobs").select("*").eq("company_id", company_id)
    if status:
        q = q.eq("status", status)
    return q.order("created_at", desc=True).execute().data or []


@router.get("/{job_id}")
async def get_job(job_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    return _with_customer(sb, _load_job(sb, user, job_id))


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /api/jobs/{id}: whitelisted update, paid feature
# ──────────────────────────────────────────────────────────────────────────────
@router.patch("/{job_id}")
async def update_job(
    job_id: str,
    payload: JobUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    job = _load_job(sb, user, job_id)
    require_active_subscription(sb, job["company_id"])

    changes = payload.model_dump(exclude_unset=True)
    require_company_customer(sb, job["company_id"], changes.get("customer_id"))
    require_company_user(sb, job["company_id"], changes.get("assigned_user_id"))
    changes["updated_at"] = now_iso()

    updated = first(sb.table("jobs").update(changes).eq("id", job_id).execute())
    if not updated:
        raise HTTPException(status_code=500, detail="Failed to update job")
    return _with_customer(sb, updated)


@router.delete("/{job_id}")
async def delete_job(job_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    job = _load_job(sb, user, job_id)

    # Paid jobs are financial records
    if job.get("status") == "paid":
        raise HTTPException(status_code=400, detail="Cannot delete a paid job. Archive it instead.")

    sb.table("jobs").delete().eq("id", job_id).execute()
    logger.info("Job %s deleted by %s", job_id, user["id"])
    return {"success": True}


@router.post("/{job_id}/mark-paid")
async def mark_paid(
    job_id: str,
    payload: MarkPaidIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    _load_job(sb, user, job_id)

    paid_at = now_iso()
    sb.table("jobs").update({
        "payment_state": "paid",
        "payment_paid_at": paid_at,
        "payment_method": payload.payment_method,
        "status": "paid",
        "updated_at": paid_at,
    }).eq("id", job_id).execute()
    return {"success": True, "paidAt": paid_at}


@router.post("/{job_id}/progress")
async def update_progress(
    job_id: str,
    payload: ProgressIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    _load_job(sb, user, job_id)
    sb.table("jobs").update({
        "progress_percentage": payload.progress_percentage,
        "updated_at": now_iso(),
    }).eq("id", job_id).execute()
    return {"success": True, "progress_percentage": payload.progress_percentage}


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/jobs/{id}/payment: propose a price and (re)issue the estimate
# ──────────────────────────────────────────────────────────────────────────────
def _latest_estimate(sb: Client, job_id: str) -> Optional[Dict[str, Any]]:
    return first(
        sb.table("estimates")
        .select("id,public_token,status")
        .eq("job_id", job_id)
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )


def _issue_estimate(sb: Client, job: Dict[str, Any], customer_id: Optional[str], token: str) -> Dict[str, Any]:
    estimate = first(sb.table("estimates").insert({
        "company_id": job["company_id"],
        "job_id": job["id"],
        "customer_id": customer_id,
        "status": "sent",
        "public_token": token,
        "sent_at": now_iso(),
    }).execute())
    if not estimate:
        raise HTTPException(status_code=500, detail="Failed to create estimate")
    return estimate


@router.post("/{job_id}/payment")
async def save_payment(
    job_id: str,
    payload: JobPaymentIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    """
    Replace the job's payment line items and send the customer an estimate.

    An estimate the customer already answered is kept as history and a
    new revision with a fresh token is sent; an open one is reset to sent.
    Any earlier approval is withdrawn.
    """
    job = _load_job(sb, user, job_id)
    require_active_subscription(sb, job["company_id"])
    customer_id = payload.customerId or job.get("customer_id")
    require_company_customer(sb, job["company_id"], customer_id)

    amount = payload.totalAmount
    if amount is None:
        amount = sum(item.price for item in payload.jobPaymentLineItems)

    existing = _latest_estimate(sb, job_id)
    answered = bool(existing) and existing.get("status") in ("accepted", "denied")

    now = now_iso()
    changes = {"payment_state": "proposed", "payment_amount": amount, "updated_at": now}
    # A new price withdraws any earlier approval
    if answered or job.get("payment_state") == "approved":
        changes["payment_approved_at"] = None
        if job.get("status") == "quoted":
            changes["status"] = "new"
    sb.table("jobs").update(changes).eq("id", job_id).execute()

    sb.table("job_payment_line_items").delete().eq("job_id", job_id).execute()
    if payload.jobPaymentLineItems:
        sb.table("job_payment_line_items").insert([
            {**item.model_dump(), "job_id": job_id} for item in payload.jobPaymentLineItems
        ]).execute()

    if existing is None:
        estimate = _issue_estimate(sb, job, customer_id, payload.existingToken or new_token())
    elif answered:
        estimate = _issue_estimate(sb, job, customer_id, new_token())
        logger.info("Job %s: estimate %s answered, issued revision %s", job_id, existing["id"], estimate["id"])
    else:
        estimate = first(sb.table("estimates").update({
            "status": "sent",
            "sent_at": now,
            "accepted_at": None,
            "denied_at": None,
            "denial_reason": None,
            "updated_at": now,
        }).eq("id", existing["id"]).execute()) or existing

    if payload.estimateLineItems:
        sb.table("estimate_line_items").delete().eq("estimate_id", estimate["id"]).execute()
        sb.table("estimate_line_items").insert([
            {**item.model_dump(exclude_none=True), "estimate_id": estimate["id"]}
            for item in payload.estimateLineItems
        ]).execute()
        recalculate_estimate_totals(sb, estimate["id"])

    return {
        "success": True,
        "estimate": {"id": estimate["id"], "public_token": estimate.get("public_token")},
        "estimateId": estimate["id"],
    }


# ──────────────────────────────────────────────────────────────────────────────
# Photos (files live in storage; rows hold the metadata)
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/{job_id}/photos")
async def add_photo(
    job_id: str,
    payload: PhotoIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    job = _load_job(sb, user, job_id)
    require_active_subscription(sb, job["company_id"])

    photo = first(sb.table("job_photos").insert({
        "job_id": job_id,
        "company_id": job["company_id"],
        "url": payload.url,
        "storage_path": payload.storage_path,
        "caption": payload.caption,
        "uploaded_by_user_id": user["id"],
    }).execute())
    if not photo:
        raise HTTPException(status_code=500, detail="Failed to save photo")
    return photo


@router.delete("/{job_id}/photos/{photo_id}")
async def delete_photo(
    job_id: str,
    photo_id: str,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    _load_job(sb, user, job_id)

    photo = fetch_one(sb, "job_photos", "id,storage_path", id=photo_id, job_id=job_id)
    if not photo:
        raise HTTPException(status_code=404, detail="Photo not found")

    sb.table("job_photos").delete().eq("id", photo_id).execute()

    if photo.get("storage_path"):
        try:
            sb.storage.from_(PHOTO_BUCKET).remove([photo["storage_path"]])
        except Exception as e:
            # Orphaned file is acceptable; the row is already gone
            logger.warning("Failed to remove photo file %s: %s", photo["storage_path"], e)

    return {"success": True}
