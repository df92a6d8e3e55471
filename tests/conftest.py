"""
Pytest configuration and fixtures

The app runs against an in-memory Supabase fake and a Stripe gateway that
records calls instead of reaching the network. Webhook signatures are
still checked by the real stripe library.
"""
import hashlib
import hmac
import json
import os
import time
from datetime import timedelta
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["SUPABASE_URL"] = "https://test-project.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "service-role-test-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_ID"] = "price_test_monthly"
os.environ["APP_URL"] = "https://app.paintdesk.test"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from paintdesk.auth import get_current_user
from paintdesk.config import Config, get_config
from paintdesk.db import get_admin_client, utcnow
from paintdesk.main import app
from paintdesk.rate_limit import RateLimiter, get_rate_limiter
from paintdesk.stripe_gateway import StripeGateway, get_stripe_gateway, get_webhook_gateway

from tests.fake_supabase import FakeSupabase

TEST_ENV = {
    "ENV": "test",
    "SUPABASE_URL": os.environ["SUPABASE_URL"],
    "SUPABASE_SERVICE_ROLE_KEY": os.environ["SUPABASE_SERVICE_ROLE_KEY"],
    "STRIPE_SECRET_KEY": os.environ["STRIPE_SECRET_KEY"],
    "STRIPE_WEBHOOK_SECRET": os.environ["STRIPE_WEBHOOK_SECRET"],
    "STRIPE_PRICE_ID": os.environ["STRIPE_PRICE_ID"],
    "APP_URL": os.environ["APP_URL"],
    "CHECKOUT_RATE_LIMIT": "3",
    "CHECKOUT_RATE_WINDOW_SECONDS": "60",
}

USER = {"id": "user-1", "email": "owner@example.com"}
OTHER_USER = {"id": "user-2", "email": "stranger@example.com"}


class RecordingGateway(StripeGateway):
    """Verifies webhooks for real; records outbound calls instead of sending them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[Dict[str, Any]] = []

    def create_customer(self, email, metadata):
        self.calls.append({"op": "customer", "email": email, "metadata": metadata})
        return "cus_test_1"

    def create_coupon(self, percent_off, metadata):
        self.calls.append({"op": "coupon", "percent_off": percent_off, "metadata": metadata})
        return "coupon_test_1"

    def create_subscription_checkout(self, **kwargs):
        self.calls.append({"op": "subscription_checkout", **kwargs})
        return {"id": "cs_sub_1", "url": "https://checkout.stripe.test/cs_sub_1"}

    def create_payment_checkout(self, **kwargs):
        self.calls.append({"op": "payment_checkout", **kwargs})
        n = len(self.calls)
        return {"id": f"cs_pay_{n}", "url": f"https://checkout.stripe.test/cs_pay_{n}"}

    def create_billing_portal_session(self, customer_id, return_url):
        self.calls.append({"op": "portal", "customer_id": customer_id, "return_url": return_url})
        return "https://billing.stripe.test/session"


def sign_payload(payload: str, secret: str = TEST_ENV["STRIPE_WEBHOOK_SECRET"], timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    t = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{t}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={t},v1={digest}"


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> str:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


def increment_total_conversions(db: FakeSupabase):
    def handler(params):
        code = db.get("creator_codes", id=params["code_id"])
        code["total_conversions"] = (code.get("total_conversions") or 0) + 1
    return handler


@pytest.fixture
def test_config():
    return Config(environ=dict(TEST_ENV))


@pytest.fixture
def db():
    fake = FakeSupabase()
    fake.rpc_handlers["increment_total_conversions"] = increment_total_conversions(fake)
    return fake


@pytest.fixture
def gateway(test_config):
    return RecordingGateway(
        test_config.STRIPE_SECRET_KEY,
        webhook_secret=test_config.STRIPE_WEBHOOK_SECRET,
        currency=test_config.STRIPE_CURRENCY,
    )


@pytest.fixture
def limiter():
    return RateLimiter(rng=lambda: 1.0)


@pytest.fixture
def current_user():
    return dict(USER)


@pytest.fixture
def client(db, test_config, gateway, limiter, current_user):
    """TestClient with every external dependency swapped out"""
    app.dependency_overrides[get_admin_client] = lambda: db
    app.dependency_overrides[get_config] = lambda: test_config
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    app.dependency_overrides[get_webhook_gateway] = lambda: gateway
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_current_user] = lambda: current_user

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(db, test_config, gateway, limiter):
    """TestClient without a signed-in user"""
    app.dependency_overrides[get_admin_client] = lambda: db
    app.dependency_overrides[get_config] = lambda: test_config
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    app.dependency_overrides[get_webhook_gateway] = lambda: gateway
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def company(db):
    """An active company owned by USER"""
    row = db.seed("companies", {
        "id": "company-1",
        "name": "Brush & Roll Painting",
        "owner_user_id": USER["id"],
        "subscription_status": "active",
        "trial_ends_at": None,
    })[0]
    db.seed("company_users", {"user_id": USER["id"], "company_id": row["id"], "role": "owner"})
    return row


@pytest.fixture
def other_company(db):
    row = db.seed("companies", {
        "id": "company-2",
        "name": "Someone Else Painting",
        "subscription_status": "active",
    })[0]
    db.seed("company_users", {"user_id": OTHER_USER["id"], "company_id": row["id"], "role": "owner"})
    return row


@pytest.fixture
def job(db, company):
    return db.seed("jobs", {
        "id": "job-1",
        "company_id": company["id"],
        "title": "Exterior repaint",
        "status": "new",
        "unified_job_token": "unified-token-1",
        "schedule_token": "schedule-token-1",
        "payment_token": "payment-token-1",
        "payment_state": None,
        "payment_amount": None,
    })[0]


@pytest.fixture
def future_iso():
    return (utcnow() + timedelta(days=7)).isoformat()


@pytest.fixture
def past_iso():
    return (utcnow() - timedelta(days=1)).isoformat()
