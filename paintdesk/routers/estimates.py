# paintdesk/routers/estimates.py
"""
Estimate routes.

Member routes address estimates by id; customer-facing routes address
them by public token and need no session.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..db import fetch_all, fetch_one, first, get_admin_client, now_iso
from ..estimates import (
    copy_materials_to_job,
    material_line_total,
    recalculate_estimate_totals,
    regenerate_estimate_materials,
)
from ..models import DenyIn, EstimateMaterialIn, EstimateMaterialUpdate, EstimateRespondIn, SignoffIn
from ..tenancy import require_resource_member
from ..tokens import new_token, resolve_estimate_by_token, resolve_job_by_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["estimates"])

LOCKED_MESSAGES = {
    "accepted": "Cannot modify an accepted estimate. Create a new estimate instead.",
    "denied": "Cannot modify a denied estimate. Revert it to draft first.",
}


def _estimate_for_member(sb: Client, user: Dict[str, Any], estimate_id: str) -> Dict[str, Any]:
    return require_resource_member(sb, user["id"], "estimates", estimate_id, label="Estimate")


def _editable_estimate(sb: Client, user: Dict[str, Any], estimate_id: str) -> Dict[str, Any]:
    estimate = _estimate_for_member(sb, user, estimate_id)
    locked = LOCKED_MESSAGES.get(estimate.get("status"))
    if locked:
        raise HTTPException(status_code=403, detail=locked)
    return estimate


def _estimate_for_token(sb: Client, token: str) -> Dict[str, Any]:
    estimate = resolve_estimate_by_token(sb, token)
    if not estimate:
        raise HTTPException(status_code=404, detail="Estimate not found")
    return estimate


# ──────────────────────────────────────────────────────────────────────────────
# Member routes
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/api/estimates/{estimate_id}")
async def get_estimate(estimate_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    estimate = _estimate_for_member(sb, user, estimate_id)
    return {
        **estimate,
        "line_items": fetch_all(sb, "estimate_line_items", "*", estimate_id=estimate_id),
        "materials": fetch_all(sb, "estimate_materials", "*", estimate_id=estimate_id),
    }


@router.post("/api/estimates/{estimate_id}/recalculate")
async def recalculate(estimate_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    _estimate_for_member(sb, user, estimate_id)
    return recalculate_estimate_totals(sb, estimate_id)


@router.get("/api/estimate-materials/{estimate_id}")
async def list_materials(estimate_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    _estimate_for_member(sb, user, estimate_id)
    return fetch_all(sb, "estimate_materials", "*", estimate_id=estimate_id)


@router.post("/api/estimate-materials/{estimate_id}")
async def add_material(
    estimate_id: str,
    payload: EstimateMaterialIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    _editable_estimate(sb, user, estimate_id)

    row = payload.model_dump()
    row.update(
        estimate_id=estimate_id,
        name=payload.name.strip(),
        line_total=material_line_total(payload.quantity, payload.cost_per_unit),
        is_auto_generated=False,
    )
    material = first(sb.table("estimate_materials").insert(row).execute())
    if not material:
        raise HTTPException(status_code=500, detail="Failed to add material")

    totals = recalculate_estimate_totals(sb, estimate_id)
    return {"material": material, "totals": totals}


@router.post("/api/estimate-materials/{estimate_id}/generate")
async def generate_materials(
    estimate_id: str,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    estimate = _estimate_for_member(sb, user, estimate_id)
    if estimate.get("status") == "accepted":
        raise HTTPException(status_code=400, detail="Cannot modify materials for accepted estimates")

    materials = regenerate_estimate_materials(sb, estimate_id)
    recalculate_estimate_totals(sb, estimate_id)
    return {"success": True, "materials": materials, "count": len(materials)}


@router.patch("/api/estimate-materials/{estimate_id}/{material_id}")
async def update_material(
    estimate_id: str,
    material_id: str,
    payload: EstimateMaterialUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    _editable_estimate(sb, user, estimate_id)
    existing = fetch_one(sb, "estimate_materials", "*", id=material_id, estimate_id=estimate_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Material not found")

    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is None:
        del changes["name"]
    quantity = changes.get("quantity", existing.get("quantity"))
    cost = changes.get("cost_per_unit", existing.get("cost_per_unit"))
    changes["line_total"] = material_line_total(quantity or 0, cost)
    changes["updated_at"] = now_iso()

    material = first(sb.table("estimate_materials").update(changes).eq("id", material_id).execute())
    if not material:
        raise HTTPException(status_code=500, detail="Failed to update material")
    return {"material": material, "totals": recalculate_estimate_totals(sb, estimate_id)}


@router.delete("/api/estimate-materials/{estimate_id}/{material_id}")
async def delete_material(
    estimate_id: str,
    material_id: str,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    _editable_estimate(sb, user, estimate_id)
    if not fetch_one(sb, "estimate_materials", "id", id=material_id, estimate_id=estimate_id):
        raise HTTPException(status_code=404, detail="Material not found")

    sb.table("estimate_materials").delete().eq("id", material_id).execute()
    return {"success": True, "totals": recalculate_estimate_totals(sb, estimate_id)}


# ──────────────────────────────────────────────────────────────────────────────
# Accept / deny, shared by the token routes and /respond
# ──────────────────────────────────────────────────────────────────────────────
def _payment_line_total(sb: Client, job_id: Optional[str]) -> int:
    """Sum of the job's payment line items in cents; the only source of the agreed price."""
    if not job_id:
        return 0
    items = fetch_all(sb, "job_payment_line_items", "price", job_id=job_id)
    return sum(item.get("price") or 0 for item in items)


def _create_job_for_estimate(sb: Client, estimate: Dict[str, Any], approved: Dict[str, Any]) -> Dict[str, Any]:
    customer = None
    if estimate.get("customer_id"):
        customer = fetch_one(sb, "customers", "*", id=estimate["customer_id"])
    customer = customer or {}

    job = first(sb.table("jobs").insert({
        "company_id": estimate["company_id"],
        "customer_id": estimate.get("customer_id"),
        "title": f"{customer['name']} Project" if customer.get("name") else "New Project",
        "status": "quoted",
        "address1": customer.get("address1"),
        "city": customer.get("city"),
        "state": customer.get("state"),
        "zip": customer.get("zip"),
        "unified_job_token": new_token(),
        "schedule_token": new_token(),
        "payment_token": new_token(),
        **approved,
    }).execute())
    if not job:
        raise HTTPException(status_code=500, detail="Failed to create job")
    return job


def accept(sb: Client, estimate: Dict[str, Any]) -> Dict[str, Any]:
    """
    Accept an estimate: approve (or create) its job and seed the job's materials.

    The job's payment amount comes from its payment line items only; when
    there are none an existing job keeps its amount and a new job gets null.
    """
    if estimate.get("requires_signoff") and not estimate.get("signoff_completed_at"):
        raise HTTPException(
            status_code=400,
            detail="Customer signoff is required before accepting this estimate",
        )

    accepted_at = now_iso()
    job_id = estimate.get("job_id")
    customer_id = estimate.get("customer_id")
    approved = {"payment_state": "approved", "payment_approved_at": accepted_at}

    job = fetch_one(sb, "jobs", "id,customer_id", id=job_id) if job_id else None
    if job:
        customer_id = customer_id or job.get("customer_id")
        changes = {**approved, "status": "quoted", "updated_at": accepted_at}
        amount = _payment_line_total(sb, job_id)
        if amount > 0:
            changes["payment_amount"] = amount
        sb.table("jobs").update(changes).eq("id", job_id).execute()
    else:
        job_id = _create_job_for_estimate(sb, estimate, {**approved, "payment_amount": None})["id"]

    sb.table("estimates").update({
        "status": "accepted",
        "accepted_at": accepted_at,
        "denied_at": None,
        "denial_reason": None,
        "job_id": job_id,
        "customer_id": customer_id,
        "updated_at": accepted_at,
    }).eq("id", estimate["id"]).execute()

    materials_count = copy_materials_to_job(sb, estimate["id"], job_id)
    logger.info("Estimate %s accepted (job %s, %d materials)", estimate["id"], job_id, materials_count)
    return {"jobId": job_id, "materialsCount": materials_count}


def deny(sb: Client, estimate: Dict[str, Any], reason: Optional[str]) -> None:
    denied_at = now_iso()
    sb.table("estimates").update({
        "status": "denied",
        "denied_at": denied_at,
        "accepted_at": None,
        "denial_reason": reason,
        "updated_at": denied_at,
    }).eq("id", estimate["id"]).execute()


# ──────────────────────────────────────────────────────────────────────────────
# Customer-facing routes (public token)
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/api/estimates/respond")
async def respond_to_estimate(payload: EstimateRespondIn, sb: Client = Depends(get_admin_client)):
    """Portal accept/deny: the job's token picks its latest pending estimate."""
    resolved = resolve_job_by_token(sb, payload.token)
    if resolved is None:
        raise HTTPException(status_code=404, detail="Invalid token")

    estimate = first(
        sb.table("estimates")
        .select("*")
        .eq("job_id", resolved.job["id"])
        .in_("status", ["sent", "draft"])
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    if not estimate:
        raise HTTPException(status_code=404, detail="No pending estimate found")
    if estimate.get("status") != "sent":
        raise HTTPException(status_code=400, detail="Estimate is not in a state that can be responded to")

    if payload.action == "accept":
        accept(sb, estimate)
        return {"success": True, "status": "accepted"}

    deny(sb, estimate, payload.denialReason)
    return {"success": True, "status": "denied"}


@router.post("/api/estimates/{token}/accept")
async def accept_estimate(token: str, sb: Client = Depends(get_admin_client)):
    estimate = _estimate_for_token(sb, token)

    if estimate.get("status") == "accepted":
        return {"success": True, "message": "Already accepted"}

    return {"success": True, **accept(sb, estimate)}


@router.post("/api/estimates/{token}/deny")
async def deny_estimate(token: str, payload: Optional[DenyIn] = None, sb: Client = Depends(get_admin_client)):
    estimate = _estimate_for_token(sb, token)

    if estimate.get("status") == "accepted":
        raise HTTPException(status_code=400, detail="Estimate has already been accepted")
    if estimate.get("status") == "denied":
        return {"success": True, "message": "Already denied"}

    deny(sb, estimate, payload.reason if payload else None)
    return {"success": True}


@router.post("/api/estimates/{token}/signoff")
async def signoff_estimate(token: str, payload: SignoffIn, sb: Client = Depends(get_admin_client)):
    estimate = _estimate_for_token(sb, token)

    if estimate.get("signoff_completed_at"):
        return {"success": True, "message": "Already signed"}

    signed_at = now_iso()
    sb.table("estimates").update({
        "signoff_completed_at": signed_at,
        "signoff_name": payload.name.strip(),
        "updated_at": signed_at,
    }).eq("id", estimate["id"]).execute()
    return {"success": True, "signedAt": signed_at}
