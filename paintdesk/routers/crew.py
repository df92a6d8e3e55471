# paintdesk/routers/crew.py
"""
Crew management: invite links and user removal.

An invite link is valid until it expires or is revoked; anyone signed in
who holds it may join the company as a member.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError
from supabase import AuthApiError, Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_all, first, get_admin_client, now_iso, utcnow
from ..models import InviteCreate, JoinIn
from ..tenancy import link_member, require_company_owner
from ..tokens import is_valid_token, new_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["crew"])


def find_open_invite(sb: Client, token: str):
    if not is_valid_token(token):
        return None
    return first(
        sb.table("invite_links")
        .select("*")
        .eq("token", token)
        .is_("revoked_at", "null")
        .gt("expires_at", now_iso())
        .limit(1)
        .execute()
    )


# ──────────────────────────────────────────────────────────────────────────────
# Invite links
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/api/invites")
async def create_invite(
    payload: InviteCreate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    require_company_owner(sb, user["id"], payload.company_id)

    token = new_token()
    expires_at = (utcnow() + timedelta(days=config.INVITE_EXPIRY_DAYS)).isoformat()
    sb.table("invite_links").insert({
        "company_id": payload.company_id,
        "token": token,
        "created_by_user_id": user["id"],
        "expires_at": expires_at,
    }).execute()
    return {"token": token, "url": f"{config.APP_URL}/join/{token}", "expires_at": expires_at}


@router.delete("/api/invites/{token}")
async def revoke_invite(token: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    invite = find_open_invite(sb, token)
    if not invite:
        raise HTTPException(status_code=404, detail="Invalid or expired invite")
    require_company_owner(sb, user["id"], invite["company_id"])

    sb.table("invite_links").update({"revoked_at": now_iso()}).eq("id", invite["id"]).execute()
    return {"success": True}


@router.get("/api/invites/{token}")
async def check_invite(token: str, sb: Client = Depends(get_admin_client)):
    invite = find_open_invite(sb, token)
    if not invite:
        return JSONResponse(status_code=404, content={"valid": False})

    company = first(sb.table("companies").select("name").eq("id", invite["company_id"]).execute()) or {}
    return {"valid": True, "company_name": company.get("name"), "expires_at": invite["expires_at"]}


@router.post("/api/invites/{token}/join")
async def join_company(
    token: str,
    payload: Optional[JoinIn] = None,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    invite = find_open_invite(sb, token)
    if not invite:
        raise HTTPException(status_code=404, detail="Invalid or expired invite")

    profile = {"id": user["id"], "email": user.get("email")}
    if payload and payload.full_name:
        profile["full_name"] = payload.full_name.strip()
    sb.table("user_profiles").upsert(profile).execute()
    if not link_member(sb, invite["company_id"], user["id"]):
        return {"success": True, "message": "Already a member"}

    logger.info("User %s joined company %s by invite", user["id"], invite["company_id"])
    return {"success": True, "company_id": invite["company_id"]}


# ──────────────────────────────────────────────────────────────────────────────
# User removal
# ──────────────────────────────────────────────────────────────────────────────
def _owns_company_of(sb: Client, owner_id: str, user_id: str) -> bool:
    owned = {c["id"] for c in fetch_all(sb, "companies", "id", owner_user_id=owner_id)}
    return any(m["company_id"] in owned for m in fetch_all(sb, "company_users", "company_id", user_id=user_id))


@router.delete("/api/users/{user_id}")
async def delete_user(user_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    """Delete an account; allowed for the user themself or an owner of one of their companies."""
    if user["id"] != user_id and not _owns_company_of(sb, user["id"], user_id):
        raise HTTPException(
            status_code=403,
            detail="Forbidden: You can only delete yourself or team members from your company",
        )

    try:
        found = sb.auth.admin.get_user_by_id(user_id)
    except AuthApiError:
        found = None
    if not found or not found.user:
        raise HTTPException(status_code=404, detail="User not found")

    owned = fetch_all(sb, "companies", "id,name", owner_user_id=user_id)
    if owned:
        names = ", ".join(c.get("name") or c["id"] for c in owned)
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete user: They own {len(owned)} company/companies ({names})",
        )

    sb.table("company_users").delete().eq("user_id", user_id).execute()
    try:
        sb.table("user_profiles").delete().eq("id", user_id).execute()
    except APIError as e:
        # non-critical; the auth user is the account of record
        logger.warning("Profile for %s not deleted: %s", user_id, e.message)
    sb.auth.admin.delete_user(user_id)

    logger.info("User %s deleted by %s", user_id, user["id"])
    return {"success": True}
