# paintdesk/routers/message_templates.py
import re
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..db import fetch_one, first, get_admin_client, now_iso
from ..models import MessageTemplateCreate, MessageTemplateUpdate
from ..tenancy import get_user_company_id

router = APIRouter(prefix="/api/message-templates", tags=["message-templates"])

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

NOT_NULL_COLUMNS = ("name", "body", "type")


def extract_variables(body: str) -> List[str]:
    """`"Hi {{customer_name}}"` -> `["customer_name"]`, in order of appearance."""
    return _PLACEHOLDER.findall(body or "")


@router.get("")
async def list_templates(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    company_id = get_user_company_id(sb, user["id"])
    return (
        sb.table("message_templates").select("*").eq("company_id", company_id).order("created_at").execute().data
        or []
    )


@router.post("", status_code=201)
async def create_template(
    payload: MessageTemplateCreate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company_id = get_user_company_id(sb, user["id"])
    template = first(sb.table("message_templates").insert({
        "company_id": company_id,
        "name": payload.name,
        "body": payload.body,
        "type": payload.type,
        "subject": payload.subject,
        "variables": extract_variables(payload.body),
    }).execute())
    if not template:
        raise HTTPException(status_code=500, detail="Failed to create template")
    return template


@router.put("")
async def update_template(
    payload: MessageTemplateUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company_id = get_user_company_id(sb, user["id"])
    if not fetch_one(sb, "message_templates", "id", id=payload.id, company_id=company_id):
        raise HTTPException(status_code=404, detail="Template not found")

    changes = payload.model_dump(exclude_unset=True, exclude={"id"})
    # NOT NULL columns; an explicit null means "leave as is"
    for column in NOT_NULL_COLUMNS:
        if column in changes and changes[column] is None:
            del changes[column]
    if payload.body is not None:
        changes["variables"] = extract_variables(payload.body)
    changes["updated_at"] = now_iso()

    updated = first(sb.table("message_templates").update(changes).eq("id", payload.id).execute())
    if not updated:
        raise HTTPException(status_code=500, detail="Failed to update template")
    return updated
