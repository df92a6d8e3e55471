# paintdesk/routers/affiliate.py
import logging
import re
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_one, first, get_admin_client, now_iso, utcnow
from ..errors import is_unique_violation
from ..models import AffiliateCodeIn, ReferralVisitIn
from ..rate_limit import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/affiliate", tags=["affiliate"])

referral_rate_limit = enforce_rate_limit(
    "referral_visit",
    lambda c: c.CHECKOUT_RATE_LIMIT,
    lambda c: c.CHECKOUT_RATE_WINDOW_SECONDS,
)

CODE_FORMAT_ERROR = "Code must be 3-20 alphanumeric characters"
CODE_TAKEN = "This code is already taken"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize_code(raw: str) -> str:
    """Uppercase and strip everything but A-Z and 0-9."""
    return _NON_ALNUM.sub("", raw.upper())


def require_valid_code(raw: str) -> str:
    code = normalize_code(raw)
    if not 3 <= len(code) <= 20:
        raise HTTPException(status_code=400, detail=CODE_FORMAT_ERROR)
    return code


def find_active_code(sb: Client, code: str, columns: str = "*"):
    return fetch_one(sb, "creator_codes", columns, code=code.strip().upper(), is_active=True)


@router.get("")
async def validate_code(code: Optional[str] = Query(default=None), sb: Client = Depends(get_admin_client)):
    if not code or not code.strip():
        raise HTTPException(status_code=400, detail="Code is required")

    creator_code = find_active_code(sb, code, "code,creator_name,discount_percent")
    if not creator_code:
        return {"valid": False}
    return {
        "valid": True,
        "code": creator_code["code"],
        "creatorName": creator_code.get("creator_name"),
        "discountPercent": creator_code.get("discount_percent"),
    }


@router.post("", dependencies=[Depends(referral_rate_limit)])
async def track_visit(
    payload: ReferralVisitIn,
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    creator_code = find_active_code(sb, payload.code, "id")
    if not creator_code:
        raise HTTPException(status_code=404, detail="Invalid code")

    if fetch_one(sb, "referrals", "id", creator_code_id=creator_code["id"], visitor_id=payload.visitorId):
        return {"success": True, "alreadyTracked": True}

    expires_at = utcnow() + timedelta(days=config.REFERRAL_EXPIRY_DAYS)
    try:
        sb.table("referrals").insert({
            "creator_code_id": creator_code["id"],
            "visitor_id": payload.visitorId,
            "expires_at": expires_at.isoformat(),
        }).execute()
    except APIError as e:
        # Concurrent first visits race on the (code, visitor) pair
        if is_unique_violation(e):
            return {"success": True, "alreadyTracked": True}
        raise

    # total_referrals is maintained by a database trigger
    return {"success": True}


# ──────────────────────────────────────────────────────────────────────────────
# /me: an affiliate managing their own code
# ──────────────────────────────────────────────────────────────────────────────
def _code_summary(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "code": row["code"],
        "discountPercent": row.get("discount_percent"),
        "commissionPercent": row.get("commission_percent"),
        "totalReferrals": row.get("total_referrals") or 0,
        "totalConversions": row.get("total_conversions") or 0,
        "isActive": row.get("is_active", True),
    }


def _require_affiliate(sb: Client, user_id: str) -> Dict[str, Any]:
    profile = fetch_one(sb, "user_profiles", "is_affiliate,email,full_name", id=user_id)
    if not profile or not profile.get("is_affiliate"):
        raise HTTPException(status_code=403, detail="You are not an affiliate")
    return profile


@router.get("/me")
async def my_affiliate(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    profile = fetch_one(sb, "user_profiles", "is_affiliate,email,full_name", id=user["id"])
    if not profile or not profile.get("is_affiliate"):
        return {"isAffiliate": False}

    creator_code = fetch_one(sb, "creator_codes", "*", user_id=user["id"])
    recent = []
    if creator_code:
        recent = (
            sb.table("referrals")
            .select("converted_at,created_at")
            .eq("creator_code_id", creator_code["id"])
            .order("created_at", desc=True)
            .limit(10)
            .execute()
            .data
            or []
        )

    summary = None
    if creator_code:
        summary = {**_code_summary(creator_code), "createdAt": creator_code.get("created_at")}
    return {
        "isAffiliate": True,
        "profile": {"email": profile.get("email"), "fullName": profile.get("full_name")},
        "creatorCode": summary,
        "recentReferrals": recent,
    }


@router.post("/me")
async def create_my_code(
    payload: AffiliateCodeIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    profile = _require_affiliate(sb, user["id"])
    if fetch_one(sb, "creator_codes", "id", user_id=user["id"]):
        raise HTTPException(status_code=400, detail="You already have a creator code")

    code = require_valid_code(payload.code)
    if fetch_one(sb, "creator_codes", "id", code=code):
        raise HTTPException(status_code=400, detail=CODE_TAKEN)

    try:
        row = first(sb.table("creator_codes").insert({
            "code": code,
            "creator_name": profile.get("full_name") or profile.get("email"),
            "creator_email": profile.get("email"),
            "user_id": user["id"],
            "discount_percent": config.AFFILIATE_DISCOUNT_PERCENT,
            "commission_percent": config.AFFILIATE_COMMISSION_PERCENT,
            "is_active": True,
        }).execute())
    except APIError as e:
        if is_unique_violation(e):
            raise HTTPException(status_code=400, detail=CODE_TAKEN)
        raise

    logger.info("Creator code %s created by %s", code, user["id"])
    return {"success": True, "creatorCode": _code_summary(row)}


@router.put("/me")
async def update_my_code(payload: AffiliateCodeIn, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    _require_affiliate(sb, user["id"])
    existing = fetch_one(sb, "creator_codes", "id", user_id=user["id"])
    if not existing:
        raise HTTPException(status_code=400, detail="You don't have a creator code yet")

    code = require_valid_code(payload.code)
    taken = first(sb.table("creator_codes").select("id").eq("code", code).neq("id", existing["id"]).limit(1).execute())
    if taken:
        raise HTTPException(status_code=400, detail=CODE_TAKEN)

    try:
        row = first(
            sb.table("creator_codes").update({"code": code, "updated_at": now_iso()}).eq("id", existing["id"]).execute()
        )
    except APIError as e:
        if is_unique_violation(e):
            raise HTTPException(status_code=400, detail=CODE_TAKEN)
        raise
    return {"success": True, "creatorCode": _code_summary(row)}
