"""
Idempotent processing of Stripe webhook events.

The `webhook_events` ledger records an attempt before dispatch and a
result after it:

    processing  -> a delivery has claimed the event at `claimed_at`
    processed   -> side effects applied; later deliveries are duplicates
    failed      -> the handler raised; the next delivery claims it again

A `processing` claim older than WEBHOOK_CLAIM_LEASE_SECONDS is treated as
abandoned (the worker died, or recording the failure failed too) and is
reclaimed like a failed one. While a claim is live, other deliveries get
an in-flight answer so Stripe keeps retrying.

Handlers are also safe to re-run on their own: company and job updates set
absolute values, and a referral converts only while `converted_at` is null.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

from postgrest.exceptions import APIError
from supabase import Client

from .config import Config
from .db import fetch_one, utcnow
from .errors import is_unique_violation
from .subscription import parse_timestamp

logger = logging.getLogger(__name__)

LEDGER = "webhook_events"


class Claim(str, Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class WebhookResult:
    duplicate: bool = False
    in_flight: bool = False


def compute_commission(subscription_price: float, commission_percent: float) -> float:
    amount = Decimal(str(subscription_price)) * Decimal(str(commission_percent)) / Decimal(100)
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _from_unix(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


class WebhookProcessor:
    def __init__(self, client: Client, config: Config, clock: Callable[[], datetime] = utcnow):
        self.client = client
        self.config = config
        self.clock = clock
        self.handlers: Dict[str, Callable[[Dict[str, Any]], None]] = {
            "checkout.session.completed": self._checkout_completed,
            "checkout.session.expired": self._checkout_expired,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_failed": self._payment_failed,
        }

    def _now(self) -> str:
        return self.clock().isoformat()

    # ──────────────────────────────────────────────────────────────────────
    # Ledger
    # ──────────────────────────────────────────────────────────────────────
    def _claim_expired(self, row: Dict[str, Any]) -> bool:
        claimed_at = parse_timestamp(row.get("claimed_at"))
        if claimed_at is None:
            return True
        lease = timedelta(seconds=self.config.WEBHOOK_CLAIM_LEASE_SECONDS)
        return self.clock() - claimed_at > lease

    def record_attempt(self, event_id: str, event_type: str) -> Claim:
        """Claim the event for this delivery, or say why it can't be claimed."""
        try:
            self.client.table(LEDGER).insert({
                "event_id": event_id,
                "event_type": event_type,
                "status": "processing",
                "attempts": 1,
                "claimed_at": self._now(),
            }).execute()
            return Claim.CLAIMED
        except APIError as e:
            if not is_unique_violation(e):
                raise

        existing = fetch_one(self.client, LEDGER, "event_id,status,attempts,claimed_at", event_id=event_id)
        if not existing:
            return Claim.IN_FLIGHT
        status = existing.get("status")
        if status == "processed":
            return Claim.DUPLICATE
        if status == "processing" and not self._claim_expired(existing):
            return Claim.IN_FLIGHT

        # Compare-and-set on (status, claimed_at): one delivery wins the reclaim
        q = (
            self.client.table(LEDGER)
            .update({
                "status": "processing",
                "attempts": (existing.get("attempts") or 1) + 1,
                "claimed_at": self._now(),
            })
            .eq("event_id", event_id)
            .eq("status", status)
        )
        if existing.get("claimed_at") is None:
            q = q.is_("claimed_at", "null")
        else:
            q = q.eq("claimed_at", existing["claimed_at"])

        if not q.execute().data:
            return Claim.IN_FLIGHT
        if status == "processing":
            logger.warning("Reclaiming abandoned webhook %s after lease expiry", event_id)
        return Claim.CLAIMED
    def mark_processed(self, event_id: str) -> None:
        self.client.table(LEDGER).update({
            "status": "processed",
            "processed_at": self._now(),
            "last_error": None,
        }).eq("event_id", event_id).execute()

    def mark_failed(self, event_id: str, error: str) -> None:
        try:
            self.client.table(LEDGER).update({
                "status": "failed",
                "last_error": error[:500],
            }).eq("event_id", event_id).execute()
        except APIError as e:
            # The row stays "processing" until its claim lease runs out
            logger.error("Could not mark webhook %s failed: %s", event_id, e)

    # ──────────────────────────────────────────────────────────────────────
    # Entry point
    # ──────────────────────────────────────────────────────────────────────
    def handle(self, event: Dict[str, Any]) -> WebhookResult:
        event_id, event_type = event["id"], event["type"]

        claim = self.record_attempt(event_id, event_type)
        if claim is Claim.DUPLICATE:
            logger.info("Skipping duplicate webhook %s (%s)", event_id, event_type)
            return WebhookResult(duplicate=True)
        if claim is Claim.IN_FLIGHT:
            logger.info("Webhook %s (%s) is being processed elsewhere", event_id, event_type)
            return WebhookResult(in_flight=True)

        try:
            self.dispatch(event)
        except Exception as e:
            logger.exception("Webhook %s (%s) failed", event_id, event_type)
            self.mark_failed(event_id, str(e))
            raise

        self.mark_processed(event_id)
        return WebhookResult()

    def dispatch(self, event: Dict[str, Any]) -> None:
        handler = self.handlers.get(event["type"])
        if handler is None:
            logger.debug("Ignoring webhook type %s", event["type"])
            return
        obj = (event.get("data") or {}).get("object") or {}
        handler(obj)

    # ──────────────────────────────────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────────────────────────────────
    def _checkout_completed(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}

        if session.get("mode") == "subscription" and metadata.get("company_id"):
            self._activate_subscription(session, metadata)
        elif metadata.get("invoice_id"):
            self._invoice_paid(session, metadata["invoice_id"])
        elif metadata.get("job_id"):
            self._job_paid(metadata["job_id"])
        else:
            logger.warning("checkout.session.completed %s carried no routable metadata", session.get("id"))

    def _activate_subscription(self, session: Dict[str, Any], metadata: Dict[str, str]) -> None:
        company_id = metadata["company_id"]
        self.client.table("companies").update({
            "subscription_status": "active",
            "subscription_id": session.get("subscription"),
        }).eq("id", company_id).execute()
        logger.info("Company %s subscription activated", company_id)

        creator_code_id = metadata.get("creator_code_id")
        visitor_id = metadata.get("visitor_id")
        if creator_code_id and visitor_id:
            self._convert_referral(company_id, creator_code_id, visitor_id)

    def _convert_referral(self, company_id: str, creator_code_id: str, visitor_id: str) -> None:
        code = fetch_one(self.client, "creator_codes", "id,commission_percent", id=creator_code_id)
        if not code:
            logger.warning("Referral conversion for unknown creator code %s", creator_code_id)
            return

        percent = code.get("commission_percent")
        if percent is None:
            percent = self.config.AFFILIATE_COMMISSION_PERCENT
        commission = compute_commission(self.config.SUBSCRIPTION_PRICE, percent)

        converted = (
            self.client.table("referrals")
            .update({
                "converted_at": self._now(),
                "company_id": company_id,
                "commission_owed": commission,
            })
            .eq("creator_code_id", creator_code_id)
            .eq("visitor_id", visitor_id)
            .is_("converted_at", "null")
            .execute()
        )
        if not converted.data:
            logger.info("Referral %s/%s already converted or missing", creator_code_id, visitor_id)
            return

        self.client.rpc("increment_total_conversions", {"code_id": creator_code_id}).execute()
        logger.info("Referral converted for code %s: commission %.2f", creator_code_id, commission)

    def _job_paid(self, job_id: str) -> None:
        paid_at = self._now()
        self.client.table("jobs").update({
            "payment_state": "paid",
            "status": "paid",
            "payment_method": "stripe",
            "payment_paid_at": paid_at,
            "updated_at": paid_at,
        }).eq("id", job_id).execute()
        logger.info("Job %s marked paid via Stripe", job_id)

    def _invoice_paid(self, session: Dict[str, Any], invoice_id: str) -> None:
        invoice = fetch_one(self.client, "invoices", "*", id=invoice_id)
        if not invoice:
            logger.error("Invoice not found: %s", invoice_id)
            return

        paid_at = self._now()
        if invoice.get("status") != "paid":
            self.client.table("invoices").update({
                "status": "paid",
                "paid_at": paid_at,
                "updated_at": paid_at,
            }).eq("id", invoice_id).execute()

            try:
                self.client.table("invoice_payments").insert({
                    "invoice_id": invoice_id,
                    "stripe_payment_intent_id": session.get("payment_intent"),
                    "amount": session.get("amount_total") or invoice.get("amount_total"),
                    "paid_at": paid_at,
                }).execute()
            except APIError as e:
                logger.warning("Could not record payment for invoice %s: %s", invoice_id, e)

        if invoice.get("job_id"):
            self._job_paid(invoice["job_id"])

    def _checkout_expired(self, session: Dict[str, Any]) -> None:
        invoice_id = (session.get("metadata") or {}).get("invoice_id")
        if not invoice_id:
            return
        self.client.table("invoices").update({
            "stripe_checkout_url": None,
            "stripe_checkout_session_id": None,
            "updated_at": self._now(),
        }).eq("id", invoice_id).execute()
        logger.info("Checkout session expired for invoice %s", invoice_id)

    def _company_query(self, subscription: Dict[str, Any], values: Dict[str, Any]):
        q = self.client.table("companies").update(values)
        company_id = (subscription.get("metadata") or {}).get("company_id")
        if company_id:
            return q.eq("id", company_id)
        return q.eq("subscription_id", subscription.get("id"))

    def _subscription_updated(self, subscription: Dict[str, Any]) -> None:
        period_end = subscription.get("current_period_end")
        if period_end is None:
            items = (subscription.get("items") or {}).get("data") or []
            period_end = items[0].get("current_period_end") if items else None

        values = {"subscription_status": subscription.get("status")}
        if period_end is not None:
            values["subscription_current_period_end"] = _from_unix(period_end)
        self._company_query(subscription, values).execute()

    def _subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        self._company_query(subscription, {
            "subscription_status": "canceled",
            "subscription_id": None,
        }).execute()

    def _payment_failed(self, invoice: Dict[str, Any]) -> None:
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            details = ((invoice.get("parent") or {}).get("subscription_details") or {})
            subscription_id = details.get("subscription")
        if not subscription_id:
            logger.info("invoice.payment_failed %s has no subscription", invoice.get("id"))
            return
        self.client.table("companies").update({
            "subscription_status": "past_due",
        }).eq("subscription_id", subscription_id).execute()
        logger.warning("Subscription %s payment failed; marked past_due", subscription_id)
