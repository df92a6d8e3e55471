# paintdesk/routers/inventory.py
from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..db import first, get_admin_client, now_iso
from ..models import InventoryItemCreate, InventoryItemUpdate
from ..tenancy import get_user_company_id, require_resource_member

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.get("")
async def list_items(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    company_id = get_user_company_id(sb, user["id"])
    return sb.table("inventory_items").select("*").eq("company_id", company_id).order("name").execute().data or []


@router.post("", status_code=201)
async def create_item(payload: InventoryItemCreate, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    row = payload.model_dump()
    row["company_id"] = get_user_company_id(sb, user["id"])
    row["name"] = payload.name.strip()

    item = first(sb.table("inventory_items").insert(row).execute())
    if not item:
        raise HTTPException(status_code=500, detail="Failed to create item")
    return item


@router.patch("/{item_id}")
async def update_item(
    item_id: str,
    payload: InventoryItemUpdate,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
):
    require_resource_member(sb, user["id"], "inventory_items", item_id, label="Item")

    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No updatable fields supplied")
    changes["updated_at"] = now_iso()

    updated = first(sb.table("inventory_items").update(changes).eq("id", item_id).execute())
    if not updated:
        raise HTTPException(status_code=500, detail="Failed to update item")
    return updated


@router.delete("/{item_id}")
async def delete_item(item_id: str, user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    require_resource_member(sb, user["id"], "inventory_items", item_id, label="Item")
    sb.table("inventory_items").delete().eq("id", item_id).execute()
    return {"success": True}
