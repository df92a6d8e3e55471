"""
Subscription gating for paid functionality.

`evaluate_subscription` is a pure function of the two company fields; the
route-facing helpers only fetch them and translate a block into a 402.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi import HTTPException
from supabase import Client

from .db import fetch_one, utcnow

ALLOWED_STATUSES = ("active", "past_due")  # past_due keeps a grace period

TRIAL_EXPIRED = "TRIAL_EXPIRED"
SUBSCRIPTION_REQUIRED = "SUBSCRIPTION_REQUIRED"

_BLOCK_MESSAGES = {
    TRIAL_EXPIRED: ("Trial expired", "Your free trial has ended. Subscribe to continue."),
    SUBSCRIPTION_REQUIRED: (
        "Subscription required",
        "An active subscription is required to use this feature.",
    ),
}


@dataclass(frozen=True)
class SubscriptionDecision:
    allowed: bool
    status: str
    code: Optional[str] = None


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def evaluate_subscription(
    status: Optional[str],
    trial_ends_at: Union[str, datetime, None],
    now: Optional[datetime] = None,
) -> SubscriptionDecision:
    status = status or "trialing"
    now = now or utcnow()

    if status in ALLOWED_STATUSES:
        return SubscriptionDecision(True, status)

    if status == "trialing":
        trial_end = parse_timestamp(trial_ends_at)
        if trial_end is not None and trial_end > now:
            return SubscriptionDecision(True, status)
        return SubscriptionDecision(False, status, TRIAL_EXPIRED)

    # canceled, incomplete, unknown
    return SubscriptionDecision(False, status, SUBSCRIPTION_REQUIRED)


def payment_required(code: str) -> HTTPException:
    error, message = _BLOCK_MESSAGES[code]
    return HTTPException(
        status_code=402,
        detail={"error": error, "message": message, "code": code},
    )


def require_active_subscription(
    client: Client, company_id: str, now: Optional[datetime] = None
) -> SubscriptionDecision:
    company = fetch_one(client, "companies", "subscription_status,trial_ends_at", id=company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")

    decision = evaluate_subscription(
        company.get("subscription_status"), company.get("trial_ends_at"), now
    )
    if not decision.allowed:
        raise payment_required(decision.code)
    return decision


def get_subscription_status(client: Client, company_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Subscription summary for display; never blocks."""
    company = fetch_one(client, "companies", "subscription_status,trial_ends_at", id=company_id) or {}
    status = company.get("subscription_status") or "trialing"
    trial_ends_at = company.get("trial_ends_at")
    trial_end = parse_timestamp(trial_ends_at)
    now = now or utcnow()

    is_trial = status == "trialing"
    return {
        "status": status,
        "is_active": status in ALLOWED_STATUSES,
        "is_trial": is_trial,
        "is_expired": (is_trial and trial_end is not None and trial_end <= now)
        or status in ("canceled", "incomplete"),
        "trial_ends_at": trial_ends_at,
    }
