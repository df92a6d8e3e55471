# paintdesk/routers/admin.py
"""Super-admin back office: affiliate enrolment and commission payouts."""
import logging
import secrets
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_one, get_admin_client, now_iso
from ..models import MarkCommissionsPaidIn, ToggleAffiliateIn, UpdateAffiliateCodeIn
from ..tenancy import is_super_admin
from .affiliate import CODE_TAKEN, normalize_code, require_valid_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


async def require_super_admin(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    if not is_super_admin(sb, user["id"]):
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


def group_commissions(referrals: List[Dict[str, Any]], codes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Group converted referrals per creator code, splitting paid from unpaid."""
    code_map = {c["id"]: c for c in codes}
    groups: Dict[str, Dict[str, Any]] = {}

    for ref in referrals:
        code = code_map.get(ref.get("creator_code_id"))
        if not code:
            continue

        group = groups.setdefault(code["id"], {
            "codeId": code["id"],
            "code": code.get("code"),
            "creatorName": code.get("creator_name"),
            "creatorEmail": code.get("creator_email"),
            "unpaid": 0.0,
            "paid": 0.0,
            "unpaidCount": 0,
            "paidCount": 0,
            "referralIds": [],
        })
        owed = float(ref.get("commission_owed") or 0)
        if ref.get("commission_paid"):
            group["paid"] += owed
            group["paidCount"] += 1
        else:
            group["unpaid"] += owed
            group["unpaidCount"] += 1
            group["referralIds"].append(ref["id"])

    affiliates = list(groups.values())
    for group in affiliates:
        group["paid"] = round(group["paid"], 2)
        group["unpaid"] = round(group["unpaid"], 2)

    return {
        "affiliates": affiliates,
        "totals": {
            "unpaid": round(sum(a["unpaid"] for a in affiliates), 2),
            "paid": round(sum(a["paid"] for a in affiliates), 2),
        },
    }


@router.get("/commissions")
async def list_commissions(_admin=Depends(require_super_admin), sb: Client = Depends(get_admin_client)):
    referrals = (
        sb.table("referrals")
        .select("id,creator_code_id,commission_owed,commission_paid,converted_at,created_at")
        .not_.is_("converted_at", "null")
        .order("converted_at", desc=True)
        .execute()
        .data
        or []
    )

    code_ids = sorted({r["creator_code_id"] for r in referrals if r.get("creator_code_id")})
    if not code_ids:
        return {"affiliates": [], "totals": {"unpaid": 0, "paid": 0}}

    codes = (
        sb.table("creator_codes")
        .select("id,code,creator_name,creator_email,user_id")
        .in_("id", code_ids)
        .execute()
        .data
        or []
    )
    return group_commissions(referrals, codes)


@router.post("/commissions")
async def mark_commissions_paid(
    payload: MarkCommissionsPaidIn,
    admin=Depends(require_super_admin),
    sb: Client = Depends(get_admin_client),
):
    sb.table("referrals").update({
        "commission_paid": True,
        "commission_paid_at": now_iso(),
    }).in_("id", payload.referralIds).execute()

    logger.info("%s commissions marked paid by %s", len(payload.referralIds), admin["id"])
    return {"success": True, "markedPaid": len(payload.referralIds)}


# ──────────────────────────────────────────────────────────────────────────────
# Affiliate enrolment
# ──────────────────────────────────────────────────────────────────────────────
def suggest_code(full_name: Optional[str], email: str) -> str:
    """Default creator code from a name (or the email's local part)."""
    base = normalize_code(full_name or email.split("@")[0])[:12]
    return base if len(base) >= 3 else f"AFF{base}"


@router.post("/toggle-affiliate")
async def toggle_affiliate(
    payload: ToggleAffiliateIn,
    admin=Depends(require_super_admin),
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    """Flip a user's affiliate flag, issuing or (de)activating their creator code."""
    profile = fetch_one(sb, "user_profiles", "id,email,full_name,is_affiliate", email=payload.email.strip().lower())
    if not profile:
        raise HTTPException(status_code=404, detail="No user found with that email")

    enabled = not profile.get("is_affiliate")
    sb.table("user_profiles").update({"is_affiliate": enabled}).eq("id", profile["id"]).execute()

    if not enabled:
        sb.table("creator_codes").update({"is_active": False}).eq("user_id", profile["id"]).execute()
    elif fetch_one(sb, "creator_codes", "id", user_id=profile["id"]):
        sb.table("creator_codes").update({"is_active": True}).eq("user_id", profile["id"]).execute()
    else:
        code = suggest_code(profile.get("full_name"), profile["email"])
        if fetch_one(sb, "creator_codes", "id", code=code):
            code = f"{code}{secrets.randbelow(999)}"
        sb.table("creator_codes").insert({
            "code": code,
            "creator_name": profile.get("full_name") or profile["email"],
            "creator_email": profile["email"],
            "user_id": profile["id"],
            "discount_percent": config.AFFILIATE_DISCOUNT_PERCENT,
            "commission_percent": config.AFFILIATE_COMMISSION_PERCENT,
            "is_active": True,
        }).execute()

    logger.info("Affiliate %s for %s by %s", "enabled" if enabled else "disabled", profile["id"], admin["id"])
    return {"success": True, "isAffiliate": enabled, "email": profile["email"]}


@router.post("/update-affiliate-code")
async def update_affiliate_code(
    payload: UpdateAffiliateCodeIn,
    _admin=Depends(require_super_admin),
    sb: Client = Depends(get_admin_client),
):
    code = require_valid_code(payload.newCode)
    taken = fetch_one(sb, "creator_codes", "id,user_id", code=code)
    if taken and taken.get("user_id") != payload.userId:
        raise HTTPException(status_code=400, detail=CODE_TAKEN)

    updated = (
        sb.table("creator_codes")
        .update({"code": code, "updated_at": now_iso()})
        .eq("user_id", payload.userId)
        .execute()
        .data
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Creator code not found")
    return {"success": True, "code": code}
