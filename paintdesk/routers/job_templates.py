# paintdesk/routers/job_templates.py
"""
Reusable job templates.

A template is captured from an existing job (notes, material checklist,
latest estimate's line items) and later applied to another job.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import get_current_user
from ..db import fetch_all, fetch_one, first, get_admin_client, now_iso
from ..errors import is_unique_violation
from ..models import JobTemplateCreate, JobTemplateUpdate, UseTemplateIn
from ..tenancy import get_user_company_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/job-templates", tags=["job-templates"])

TEMPLATE_LIMIT = 50
DUPLICATE_NAME = "A template with this name already exists"


def _with_children(sb: Client, template: Dict[str, Any]) -> Dict[str, Any]:
    def ordered(table):
        return sorted(fetch_all(sb, table, "*", template_id=template["id"]), key=lambda r: r.get("sort_order") or 0)

    return {
        **template,
        "template_materials": ordered("template_materials"),
        "template_estimate_items": ordered("template_estimate_items"),
    }


def _company_template(sb: Client, company_id: str, template_id: str) -> Dict[str, Any]:
    template = fetch_one(sb, "job_templates", "*", id=template_id, company_id=company_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def _company_job(sb: Client, company_id: str, job_id: str) -> Dict[str, Any]:
    job = fetch_one(sb, "jobs", "*", id=job_id, company_id=company_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("")
async def list_templates(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    company_id = get_user_company_id(sb, user["id"])
    templates = (
        sb.table("job_templates")
        .select("*")
        .eq("company_id", company_id)
        .order("name")
        .limit(TEMPLATE_LIMIT)
        .execute()
        .data
        or []
    )
    return [_with_children(sb, t) for t in templates]


@router.post("")
async def create_template(
    payload: JobTemplateCreate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company_id = get_user_company_id(sb, user["id"])
    job = _company_job(sb, company_id, payload.job_id)

    if len(fetch_all(sb, "job_templates", "id", company_id=company_id)) >= TEMPLATE_LIMIT:
        raise HTTPException(status_code=400, detail=f"Template limit reached ({TEMPLATE_LIMIT} per company)")

    try:
        template = first(sb.table("job_templates").insert({
            "company_id": company_id,
            "name": payload.name.strip(),
            "description": payload.description or None,
            "notes": job.get("notes") if payload.include_notes else None,
            "created_by_user_id": user["id"],
        }).execute())
    except APIError as e:
        if is_unique_violation(e):
            raise HTTPException(status_code=400, detail=DUPLICATE_NAME)
        raise

    if payload.include_materials:
        materials = fetch_all(sb, "job_materials", "*", job_id=job["id"])
        if materials:
            sb.table("template_materials").insert([
                {
                    "template_id": template["id"],
                    "name": m["name"],
                    # job checklist notes carry the quantity ("3 gal", "2 rolls")
                    "quantity": m.get("notes"),
                    "notes": None,
                    "sort_order": i,
                }
                for i, m in enumerate(materials)
            ]).execute()

    if payload.include_estimate_structure:
        estimate = first(
            sb.table("estimates").select("id").eq("job_id", job["id"]).order("created_at", desc=True).limit(1).execute()
        )
        items = fetch_all(sb, "estimate_line_items", "*", estimate_id=estimate["id"]) if estimate else []
        items.sort(key=lambda li: li.get("sort_order") or 0)
        if items:
            sb.table("template_estimate_items").insert([
                {
                    "template_id": template["id"],
                    "service_type": li.get("service_type"),
                    "name": li.get("name"),
                    "description": li.get("description"),
                    "sort_order": i,
                }
                for i, li in enumerate(items)
            ]).execute()

    logger.info("Template %s created from job %s", template["id"], job["id"])
    return _with_children(sb, template)


@router.patch("/{template_id}")
async def update_template(
    template_id: str,
    payload: JobTemplateUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company_id = get_user_company_id(sb, user["id"])
    _company_template(sb, company_id, template_id)

    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        if changes["name"] is None:
            del changes["name"]
        else:
            changes["name"] = changes["name"].strip()

    try:
        template = first(
            sb.table("job_templates").update({**changes, "updated_at": now_iso()}).eq("id", template_id).execute()
        )
    except APIError as e:
        if is_unique_violation(e):
            raise HTTPException(status_code=400, detail=DUPLICATE_NAME)
        raise
    return _with_children(sb, template)


@router.delete("/{template_id}")
async def delete_template(template_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    company_id = get_user_company_id(sb, user["id"])
    _company_template(sb, company_id, template_id)

    # materials and estimate items cascade
    sb.table("job_templates").delete().eq("id", template_id).eq("company_id", company_id).execute()
    return {"success": True}


@router.post("/{template_id}/use")
async def use_template(
    template_id: str,
    payload: UseTemplateIn,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    """Apply a template to a job: copy its notes and append its materials."""
    company_id = get_user_company_id(sb, user["id"])
    template = _with_children(sb, _company_template(sb, company_id, template_id))
    job = _company_job(sb, company_id, payload.job_id)

    if template.get("notes"):
        sb.table("jobs").update({"notes": template["notes"], "updated_at": now_iso()}).eq("id", job["id"]).execute()

    materials = template["template_materials"]
    if materials:
        sb.table("job_materials").insert([
            {"job_id": job["id"], "name": m["name"], "notes": m.get("quantity") or m.get("notes"), "checked": False}
            for m in materials
        ]).execute()

    return {"success": True, "jobId": job["id"]}
