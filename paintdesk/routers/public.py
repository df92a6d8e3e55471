# paintdesk/routers/public.py
"""
Customer-facing routes reached through public links.

No session is required; the token in the path is the credential. The
exception is mark-paid, which records an offline payment and so needs a
member of the job's company. Every lookup goes through `paintdesk.tokens`
so all link generations resolve.
"""
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_all, fetch_one, get_admin_client, now_iso
from ..models import DenyIn, PublicMarkPaidIn
from ..rate_limit import enforce_rate_limit
from ..stripe_gateway import StripeGateway, get_stripe_gateway
from ..tenancy import require_member
from ..tokens import ResolvedJob, resolve_estimate_by_token, resolve_job_by_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["public"])

COMPANY_SUMMARY = "id,name,logo_url,contact_phone,contact_email,theme_id"

checkout_rate_limit = enforce_rate_limit(
    "payment_checkout",
    lambda c: c.CHECKOUT_RATE_LIMIT,
    lambda c: c.CHECKOUT_RATE_WINDOW_SECONDS,
)


def _resolve_job(sb: Client, token: str, not_found: str = "Job not found") -> ResolvedJob:
    resolved = resolve_job_by_token(sb, token)
    if resolved is None:
        raise HTTPException(status_code=404, detail=not_found)
    return resolved


def _estimate_with_items(sb: Client, estimate: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not estimate:
        return None
    return {
        **estimate,
        "line_items": fetch_all(sb, "estimate_line_items", "*", estimate_id=estimate["id"]),
        "materials": fetch_all(sb, "estimate_materials", "*", estimate_id=estimate["id"]),
    }


def _payment_amount(sb: Client, job: Dict[str, Any]) -> int:
    amount = job.get("payment_amount") or 0
    if amount > 0:
        return int(amount)
    items = fetch_all(sb, "job_payment_line_items", "price", job_id=job["id"])
    return int(sum(item.get("price") or 0 for item in items))


# ──────────────────────────────────────────────────────────────────────────────
# Views
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/api/public/jobs/{token}")
async def public_job(token: str, sb: Client = Depends(get_admin_client)):
    resolved = _resolve_job(sb, token)
    job = resolved.job

    customer = None
    if job.get("customer_id"):
        customer = fetch_one(sb, "customers", "id,name,email,phone,address1,address2,city,state,zip",
                             id=job["customer_id"])

    payment_items = (
        sb.table("job_payment_line_items").select("*").eq("job_id", job["id"]).order("sort_order").execute().data
        or []
    )

    return {
        "job": job,
        "customer": customer,
        "company": fetch_one(sb, "companies", COMPANY_SUMMARY, id=job["company_id"]),
        "estimate": _estimate_with_items(sb, fetch_one(sb, "estimates", "*", job_id=job["id"])),
        "invoice": fetch_one(sb, "invoices", "*", job_id=job["id"]),
        "payment_line_items": payment_items,
        "matched_by": resolved.matched_by,
    }


@router.get("/api/public/estimates/{token}")
async def public_estimate(token: str, sb: Client = Depends(get_admin_client)):
    estimate = resolve_estimate_by_token(sb, token)
    if not estimate:
        raise HTTPException(status_code=404, detail="Estimate not found")

    customer = None
    if estimate.get("customer_id"):
        customer = fetch_one(sb, "customers", "id,name,email,phone", id=estimate["customer_id"])

    return {
        "estimate": _estimate_with_items(sb, estimate),
        "customer": customer,
        "company": fetch_one(sb, "companies", COMPANY_SUMMARY, id=estimate["company_id"]),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Schedule responses
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/api/schedules/{token}/accept")
async def accept_schedule(token: str, sb: Client = Depends(get_admin_client)):
    job = _resolve_job(sb, token, "Schedule not found").job

    if job.get("schedule_state") == "accepted":
        return {"success": True, "message": "Already accepted"}

    accepted_at = now_iso()
    sb.table("jobs").update({
        "schedule_state": "accepted",
        "schedule_accepted_at": accepted_at,
        "status": "scheduled",
        "updated_at": accepted_at,
    }).eq("id", job["id"]).execute()
    return {"success": True}


@router.post("/api/schedules/{token}/deny")
async def deny_schedule(token: str, payload: Optional[DenyIn] = None, sb: Client = Depends(get_admin_client)):
    job = _resolve_job(sb, token, "Schedule not found").job

    if job.get("schedule_state") == "denied":
        return {"success": True, "message": "Already denied"}

    denied_at = now_iso()
    changes = {
        "schedule_state": "denied",
        "schedule_denied_at": denied_at,
        "updated_at": denied_at,
    }
    if payload and payload.reason:
        changes["schedule_denial_reason"] = payload.reason
    sb.table("jobs").update(changes).eq("id", job["id"]).execute()
    return {"success": True}


# ──────────────────────────────────────────────────────────────────────────────
# Payment link checkout
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/api/payments/{token}/checkout", dependencies=[Depends(checkout_rate_limit)])
async def payment_checkout(
    token: str,
    sb: Client = Depends(get_admin_client),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    config: Config = Depends(get_config),
):
    job = _resolve_job(sb, token, "Payment not found").job

    if job.get("payment_state") == "paid":
        raise HTTPException(status_code=400, detail="Payment already completed")

    amount = _payment_amount(sb, job)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Invalid payment amount")

    company = fetch_one(sb, "companies", "name", id=job["company_id"]) or {}
    page = f"{config.APP_URL}/p/{token}"

    try:
        session = gateway.create_payment_checkout(
            name=job.get("title") or "Job Payment",
            amount_cents=amount,
            success_url=f"{page}?success=true",
            cancel_url=f"{page}?canceled=true",
            metadata={"job_id": job["id"], "payment_token": token},
            description=f"Payment for {company['name']}" if company.get("name") else "Job payment",
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout create failed for job %s: %s", job["id"], e)
        raise HTTPException(status_code=500, detail="Failed to create payment session")

    logger.info("Checkout session %s created for job %s", session["id"], job["id"])
    return {"url": session["url"]}


@router.post("/api/payments/{token}/mark-paid")
async def mark_paid(
    token: str,
    payload: Optional[PublicMarkPaidIn] = None,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    """Record an offline payment (cash, check) against a payment link."""
    job = _resolve_job(sb, token, "Payment not found").job
    require_member(sb, user["id"], job.get("company_id"))

    if job.get("payment_state") == "paid":
        return {"success": True, "message": "Already paid"}

    paid_at = now_iso()
    sb.table("jobs").update({
        "payment_state": "paid",
        "payment_paid_at": paid_at,
        "payment_method": payload.payment_method if payload else "manual",
        "status": "paid",
        "updated_at": paid_at,
    }).eq("id", job["id"]).execute()

    logger.info("Job %s marked paid by %s", job["id"], user["id"])
    return {"success": True}
