# paintdesk/routers/invoices.py
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_one, get_admin_client, now_iso
from ..stripe_gateway import StripeGateway, get_stripe_gateway
from ..subscription import require_active_subscription
from ..tenancy import require_resource_member

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.post("/{invoice_id}/checkout")
async def create_invoice_checkout(
    invoice_id: str,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    config: Config = Depends(get_config),
):
    invoice = require_resource_member(sb, user["id"], "invoices", invoice_id, label="Invoice")
    require_active_subscription(sb, invoice["company_id"])

    if invoice.get("status") == "paid":
        raise HTTPException(status_code=400, detail="Invoice is already paid")

    # An open session is still payable
    if invoice.get("stripe_checkout_url"):
        return {"url": invoice["stripe_checkout_url"]}

    amount = invoice.get("amount_total") or 0
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Invoice has no amount due")

    customer = None
    if invoice.get("customer_id"):
        customer = fetch_one(sb, "customers", "name,email", id=invoice["customer_id"])
    customer = customer or {}

    company = fetch_one(sb, "companies", "name", id=invoice["company_id"]) or {}
    public_url = f"{config.APP_URL}/i/{invoice.get('public_token') or invoice_id}"

    try:
        session = gateway.create_payment_checkout(
            name=f"Invoice from {company.get('name') or 'your painter'}",
            amount_cents=int(amount),
            success_url=f"{public_url}?success=true",
            cancel_url=public_url,
            metadata={"invoice_id": invoice_id, "company_id": invoice["company_id"]},
            customer_email=customer.get("email"),
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout create failed for invoice %s: %s", invoice_id, e)
        raise HTTPException(status_code=500, detail="Failed to create checkout session")

    sb.table("invoices").update({
        "stripe_checkout_session_id": session["id"],
        "stripe_checkout_url": session["url"],
        "updated_at": now_iso(),
    }).eq("id", invoice_id).execute()

    logger.info("Checkout session %s created for invoice %s", session["id"], invoice_id)
    return {"url": session["url"]}
