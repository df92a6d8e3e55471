"""
Tenant resolution and membership checks.

Every tenant-scoped mutation goes through `load_tenant_context` so the
membership join is checked the same way in every route.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException
from postgrest.exceptions import APIError
from supabase import Client

from .db import fetch_one
from .errors import is_unique_violation

NOT_A_MEMBER = "Unauthorized - not a member of this company"


class Access(str, Enum):
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class TenantAccess:
    outcome: Access
    company_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def authorized(self) -> bool:
        return self.outcome is Access.AUTHORIZED


def load_tenant_context(client: Client, user_id: str, company_id: Optional[str]) -> TenantAccess:
    if not company_id:
        return TenantAccess(Access.NOT_FOUND)

    membership = fetch_one(
        client, "company_users", "company_id,role", user_id=user_id, company_id=company_id
    )
    if membership:
        return TenantAccess(Access.AUTHORIZED, company_id, membership.get("role"))

    # Distinguish "no such company" from "not yours"
    if fetch_one(client, "companies", "id", id=company_id) is None:
        return TenantAccess(Access.NOT_FOUND, company_id)
    return TenantAccess(Access.FORBIDDEN, company_id)


def require_member(client: Client, user_id: str, company_id: Optional[str]) -> TenantAccess:
    access = load_tenant_context(client, user_id, company_id)
    if access.outcome is Access.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Company not found")
    if access.outcome is Access.FORBIDDEN:
        raise HTTPException(status_code=403, detail=NOT_A_MEMBER)
    return access


def require_resource_member(
    client: Client,
    user_id: str,
    table: str,
    resource_id: str,
    columns: str = "*",
    label: str = "Resource",
) -> Dict[str, Any]:
    """Load a tenant-scoped row and verify the caller belongs to its company."""
    row = fetch_one(client, table, columns, id=resource_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    require_member(client, user_id, row.get("company_id"))
    return row


def get_user_company_id(client: Client, user_id: str) -> str:
    membership = fetch_one(client, "company_users", "company_id", user_id=user_id)
    if not membership:
        raise HTTPException(status_code=404, detail="No company found")
    return membership["company_id"]


def is_super_admin(client: Client, user_id: str) -> bool:
    profile = fetch_one(client, "user_profiles", "is_super_admin", id=user_id)
    return bool(profile and profile.get("is_super_admin"))


def link_member(client: Client, company_id: str, user_id: str, role: str = "member") -> bool:
    """Add a membership row. Returns False when the user was already linked."""
    try:
        client.table("company_users").insert({
            "company_id": company_id,
            "user_id": user_id,
            "role": role,
        }).execute()
    except APIError as e:
        if is_unique_violation(e):
            return False
        raise
    return True


def require_company_customer(client: Client, company_id: str, customer_id: Optional[str]) -> None:
    """A job may only point at a customer of its own company."""
    if customer_id and not fetch_one(client, "customers", "id", id=customer_id, company_id=company_id):
        raise HTTPException(status_code=400, detail="Customer not found or not yours")


def require_company_user(client: Client, company_id: str, user_id: Optional[str]) -> None:
    if user_id and not fetch_one(client, "company_users", "user_id", user_id=user_id, company_id=company_id):
        raise HTTPException(status_code=400, detail="Assigned user is not a member of this company")


def require_company_owner(
    client: Client, user_id: str, company_id: str, forbidden: str = "Forbidden"
) -> Dict[str, Any]:
    company = fetch_one(client, "companies", "*", id=company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    if company.get("owner_user_id") != user_id:
        raise HTTPException(status_code=403, detail=forbidden)
    return company
