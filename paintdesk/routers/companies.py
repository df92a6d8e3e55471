# paintdesk/routers/companies.py
"""Company onboarding, settings and logo."""
import logging
import uuid
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_one, first, get_admin_client, now_iso, utcnow
from ..models import CompanyCreate, CompanyLinkIn, CompanyUpdate
from ..tenancy import link_member, require_company_owner, require_member

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/companies", tags=["companies"])

LOGO_BUCKET = "company-logos"
MAX_LOGO_BYTES = 5 * 1024 * 1024
LOGO_TYPES = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


def logo_storage_path(company_id: str, filename: Optional[str], content_type: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else LOGO_TYPES[content_type]
    return f"{company_id}/logo/{uuid.uuid4()}.{ext}"


def logo_path_from_url(url: Optional[str]) -> Optional[str]:
    """Storage path of a logo we uploaded; None for external URLs."""
    marker = f"/storage/v1/object/public/{LOGO_BUCKET}/"
    if not url or marker not in url:
        return None
    return url.split(marker, 1)[1]


@router.post("")
async def create_company(
    payload: CompanyCreate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    """Create the caller's company on a fresh trial and make them its owner."""
    trial_ends_at = (utcnow() + timedelta(days=config.TRIAL_DAYS)).isoformat()
    company = first(sb.table("companies").insert({
        "name": payload.company_name.strip(),
        "owner_user_id": user["id"],
        "subscription_status": "trialing",
        "trial_ends_at": trial_ends_at,
    }).execute())
    if not company:
        raise HTTPException(status_code=500, detail="Failed to create company")

    sb.table("user_profiles").upsert({
        "id": user["id"],
        "email": user.get("email"),
        "full_name": payload.owner_name or None,
    }).execute()
    link_member(sb, company["id"], user["id"], role="owner")

    try:
        sb.table("estimating_config").insert({"company_id": company["id"]}).execute()
    except APIError as e:
        # non-critical; the company is usable without it
        logger.warning("Default estimating config for %s not created: %s", company["id"], e.message)

    logger.info("Company %s created by %s", company["id"], user["id"])
    return {"company_id": company["id"], "trial_ends_at": trial_ends_at}


@router.get("/check")
async def check_company(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    membership = fetch_one(sb, "company_users", "company_id", user_id=user["id"])
    if membership:
        return {"hasCompany": True, "companyId": membership["company_id"]}

    # An owner whose membership row never got written
    owned = fetch_one(sb, "companies", "id", owner_user_id=user["id"])
    if owned:
        link_member(sb, owned["id"], user["id"], role="owner")
        logger.warning("Relinked owner %s to orphaned company %s", user["id"], owned["id"])
        return {"hasCompany": True, "companyId": owned["id"]}

    return {"hasCompany": False}


@router.post("/link")
async def link_user(payload: CompanyLinkIn, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    require_company_owner(
        sb, user["id"], payload.company_id,
        forbidden="Forbidden - not authorized to add members to this company",
    )
    linked = link_member(sb, payload.company_id, payload.user_id)
    return {"success": True, "alreadyLinked": not linked}


@router.patch("/{company_id}")
async def update_company(
    company_id: str,
    payload: CompanyUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    require_member(sb, user["id"], company_id)

    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        if changes["name"] is None:
            del changes["name"]
        else:
            changes["name"] = changes["name"].strip()
    if not changes:
        raise HTTPException(status_code=400, detail="No changes provided")

    company = first(sb.table("companies").update({**changes, "updated_at": now_iso()}).eq("id", company_id).execute())
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


@router.post("/{company_id}/logo")
async def upload_logo(
    company_id: str,
    file: UploadFile = File(...),
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company = require_company_owner(sb, user["id"], company_id)

    if file.content_type not in LOGO_TYPES:
        raise HTTPException(status_code=400, detail="Invalid file type. Allowed: JPEG, PNG, WebP")
    data = await file.read()
    if len(data) > MAX_LOGO_BYTES:
        raise HTTPException(status_code=400, detail="File too large (max 5MB)")

    bucket = sb.storage.from_(LOGO_BUCKET)
    path = logo_storage_path(company_id, file.filename, file.content_type)
    bucket.upload(path, data, {"content-type": file.content_type, "upsert": "false"})
    logo_url = bucket.get_public_url(path)

    try:
        sb.table("companies").update({"logo_url": logo_url, "updated_at": now_iso()}).eq("id", company_id).execute()
    except APIError:
        bucket.remove([path])
        raise

    old_path = logo_path_from_url(company.get("logo_url"))
    if old_path:
        try:
            bucket.remove([old_path])
        except Exception:
            logger.warning("Old logo %s for company %s not removed", old_path, company_id, exc_info=True)

    return {"logo_url": logo_url}
