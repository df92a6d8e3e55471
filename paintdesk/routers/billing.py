# paintdesk/routers/billing.py
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from ..auth import get_current_user
from ..config import Config, get_config
from ..db import fetch_one, get_admin_client
from ..models import BillingCheckoutIn, CheckoutOut
from ..rate_limit import enforce_rate_limit
from ..stripe_gateway import StripeGateway, get_stripe_gateway
from ..subscription import get_subscription_status
from ..tenancy import get_user_company_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])

checkout_rate_limit = enforce_rate_limit(
    "billing_checkout",
    lambda c: c.CHECKOUT_RATE_LIMIT,
    lambda c: c.CHECKOUT_RATE_WINDOW_SECONDS,
)


def _active_creator_code(sb: Client, code: Optional[str]):
    if not code or not code.strip():
        return None
    return fetch_one(sb, "creator_codes", "*", code=code.strip().upper(), is_active=True)


@router.post("/checkout", response_model=CheckoutOut, dependencies=[Depends(checkout_rate_limit)])
async def create_subscription_checkout(
    payload: Optional[BillingCheckoutIn] = None,
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    config: Config = Depends(get_config),
):
    if not config.STRIPE_PRICE_ID:
        raise HTTPException(status_code=503, detail="Subscription price not configured")

    payload = payload or BillingCheckoutIn()
    company_id = get_user_company_id(sb, user["id"])
    company = fetch_one(sb, "companies", "*", id=company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")

    if company.get("subscription_status") == "active":
        raise HTTPException(status_code=400, detail="Already subscribed")

    creator_code = _active_creator_code(sb, payload.referralCode)
    creator_code_id = creator_code["id"] if creator_code else ""
    discount_percent = (creator_code or {}).get("discount_percent") or 0

    try:
        customer_id = company.get("stripe_customer_id")
        if not customer_id:
            customer_id = gateway.create_customer(
                user.get("email"), {"company_id": company_id, "user_id": user["id"]}
            )
            sb.table("companies").update({"stripe_customer_id": customer_id}).eq("id", company_id).execute()

        discounts = None
        if discount_percent > 0:
            coupon_id = gateway.create_coupon(discount_percent, {
                "creator_code_id": creator_code_id,
                "referral_code": creator_code["code"],
            })
            discounts = [{"coupon": coupon_id}]

        session = gateway.create_subscription_checkout(
            customer_id=customer_id,
            price_id=config.STRIPE_PRICE_ID,
            success_url=f"{config.APP_URL}/app/board?billing=success",
            cancel_url=f"{config.APP_URL}/app/settings?billing=canceled",
            metadata={
                "company_id": company_id,
                "user_id": user["id"],
                "creator_code_id": creator_code_id,
                "visitor_id": payload.visitorId or "",
            },
            discounts=discounts,
        )
    except stripe.StripeError as e:
        logger.error("Subscription checkout failed for company %s: %s", company_id, e)
        raise HTTPException(status_code=500, detail="Failed to create checkout session")

    logger.info("Subscription checkout %s created for company %s", session["id"], company_id)
    return {"url": session["url"]}


@router.post("/portal", response_model=CheckoutOut)
async def create_portal_session(
    user=Depends(get_current_user),
    sb: Client = Depends(get_admin_client),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    config: Config = Depends(get_config),
):
    company_id = get_user_company_id(sb, user["id"])
    company = fetch_one(sb, "companies", "stripe_customer_id", id=company_id) or {}
    if not company.get("stripe_customer_id"):
        raise HTTPException(status_code=404, detail="No billing account found")

    try:
        url = gateway.create_billing_portal_session(
            company["stripe_customer_id"], f"{config.APP_URL}/app/settings"
        )
    except stripe.StripeError as e:
        logger.error("Billing portal failed for company %s: %s", company_id, e)
        raise HTTPException(status_code=500, detail="Failed to create portal session")
    return {"url": url}


@router.get("/status")
async def billing_status(user=Depends(get_current_user), sb: Client = Depends(get_admin_client)):
    return get_subscription_status(sb, get_user_company_id(sb, user["id"]))
