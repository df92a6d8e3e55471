# paintdesk/stripe_gateway.py
import json
import logging
from typing import Any, Dict, List, Optional

import stripe
from fastapi import Depends, HTTPException

from .config import Config, get_config

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    pass


class StripeGateway:
    """
    Thin wrapper over the stripe library.

    The API key is passed on every call so nothing is stored on the
    `stripe` module itself.
    """

    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None, currency: str = "usd"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the signature header and return the event as a plain dict."""
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret)
            event = json.loads(body)
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise WebhookVerificationError(str(e)) from e

        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise WebhookVerificationError("Malformed event payload")
        return event

    def create_customer(self, email: Optional[str], metadata: Dict[str, str]) -> str:
        customer = stripe.Customer.create(api_key=self.secret_key, email=email, metadata=metadata)
        return customer.id

    def create_coupon(self, percent_off: float, metadata: Dict[str, str]) -> str:
        coupon = stripe.Coupon.create(
            api_key=self.secret_key,
            percent_off=percent_off,
            duration="once",
            metadata=metadata,
        )
        return coupon.id

    def create_subscription_checkout(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        discounts: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, str]:
        params: Dict[str, Any] = dict(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": {"company_id": metadata.get("company_id", "")}},
        )
        if discounts:
            params["discounts"] = discounts
        session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        return {"id": session.id, "url": session.url}

    def create_payment_checkout(
        self,
        name: str,
        amount_cents: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Dict[str, str]:
        product_data: Dict[str, str] = {"name": name}
        if description:
            product_data["description"] = description
        params: Dict[str, Any] = dict(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": self.currency,
                    "product_data": product_data,
                    "unit_amount": amount_cents,
                },
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        if customer_email:
            params["customer_email"] = customer_email
        session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        return {"id": session.id, "url": session.url}

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        session = stripe.billing_portal.Session.create(
            api_key=self.secret_key, customer=customer_id, return_url=return_url
        )
        return session.url


def get_stripe_gateway(config: Config = Depends(get_config)) -> StripeGateway:
    if not config.stripe_configured:
        raise HTTPException(status_code=503, detail="Stripe not configured")
    return StripeGateway(
        config.STRIPE_SECRET_KEY,
        webhook_secret=config.STRIPE_WEBHOOK_SECRET,
        currency=config.STRIPE_CURRENCY,
    )


def get_webhook_gateway(config: Config = Depends(get_config)) -> StripeGateway:
    """Webhook verification only needs the signing secret."""
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook secret missing (STRIPE_WEBHOOK_SECRET)")
        raise HTTPException(status_code=503, detail="Webhook secret not configured")
    return StripeGateway(config.STRIPE_SECRET_KEY or "", webhook_secret=config.STRIPE_WEBHOOK_SECRET)
