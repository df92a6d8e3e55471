# paintdesk/routers/webhooks.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from supabase import Client

from ..config import Config, get_config
from ..db import get_admin_client
from ..stripe_gateway import StripeGateway, WebhookVerificationError, get_webhook_gateway
from ..webhooks import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_webhook_gateway),
    sb: Client = Depends(get_admin_client),
    config: Config = Depends(get_config),
):
    # Signature covers the exact bytes, so read the raw body
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = gateway.construct_event(payload, signature)
    except WebhookVerificationError as e:
        logger.warning("Stripe webhook verification failed: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Stripe webhook received: %s (%s)", event["type"], event["id"])

    processor = WebhookProcessor(sb, config)
    try:
        result = await run_in_threadpool(processor.handle, event)
    except Exception:
        # Ledger already says "failed"; a 5xx makes Stripe redeliver
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    if result.in_flight:
        # Non-2xx so Stripe redelivers once the current claim settles
        raise HTTPException(status_code=409, detail="Event is already being processed")
    if result.duplicate:
        return {"received": True, "duplicate": True}
    return {"received": True}
