# paintdesk/routers/customers.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from ..auth import get_current_user
from ..db import first, get_admin_client, now_iso
from ..models import CustomerCreate, CustomerUpdate
from ..tenancy import get_user_company_id, require_member, require_resource_member

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.get("")
async def list_customers(
    company_id: Optional[str] = Query(default=None),
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    company_id = company_id or get_user_company_id(sb, user["id"])
    require_member(sb, user["id"], company_id)
    r = sb.table("customers").select("*").eq("company_id", company_id).order("name").execute()
    return r.data or []


@router.post("")
async def create_customer(payload: CustomerCreate, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    require_member(sb, user["id"], payload.company_id)

    row = payload.model_dump()
    row["name"] = payload.name.strip()
    customer = first(sb.table("customers").insert(row).execute())
    if not customer:
        raise HTTPException(status_code=500, detail="Failed to create customer")
    return customer


@router.patch("/{customer_id}")
async def update_customer(
    customer_id: str,
    payload: CustomerUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    require_resource_member(sb, user["id"], "customers", customer_id, label="Customer")

    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No updatable fields supplied")
    changes["updated_at"] = now_iso()

    updated = first(sb.table("customers").update(changes).eq("id", customer_id).execute())
    if not updated:
        raise HTTPException(status_code=500, detail="Failed to update customer")
    return updated


@router.delete("/{customer_id}")
async def delete_customer(customer_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    require_resource_member(sb, user["id"], "customers", customer_id, label="Customer")
    sb.table("customers").delete().eq("id", customer_id).execute()
    return {"success": True}
