"""
Tests for subscription gating
"""
from datetime import datetime, timedelta, timezone

import pytest

from paintdesk.subscription import (
    SUBSCRIPTION_REQUIRED,
    TRIAL_EXPIRED,
    evaluate_subscription,
    get_subscription_status,
    parse_timestamp,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestEvaluateSubscription:
    @pytest.mark.parametrize("status", ["active", "past_due"])
    def test_paying_statuses_allowed(self, status):
        decision = evaluate_subscription(status, None, NOW)
        assert decision.allowed
        assert decision.code is None

    def test_trial_in_future_allowed(self):
        assert evaluate_subscription("trialing", NOW + timedelta(days=3), NOW).allowed

    def test_trial_ended_blocked(self):
        decision = evaluate_subscription("trialing", "2026-02-28T00:00:00Z", NOW)
        assert not decision.allowed
        assert decision.code == TRIAL_EXPIRED

    def test_trial_ending_exactly_now_blocked(self):
        assert evaluate_subscription("trialing", NOW, NOW).code == TRIAL_EXPIRED

    def test_trial_without_end_date_blocked(self):
        assert evaluate_subscription("trialing", None, NOW).code == TRIAL_EXPIRED

    def test_missing_status_treated_as_trial(self):
        assert evaluate_subscription(None, NOW + timedelta(hours=1), NOW).allowed

    @pytest.mark.parametrize("status", ["canceled", "incomplete", "unpaid", "something_new"])
    def test_other_statuses_require_subscription(self, status):
        decision = evaluate_subscription(status, NOW + timedelta(days=30), NOW)
        assert not decision.allowed
        assert decision.code == SUBSCRIPTION_REQUIRED


class TestParseTimestamp:
    def test_naive_timestamp_is_utc(self):
        assert parse_timestamp("2026-03-01T12:00:00") == NOW

    def test_zulu_suffix(self):
        assert parse_timestamp("2026-03-01T12:00:00Z") == NOW

    def test_empty_is_none(self):
        assert parse_timestamp("") is None


class TestSubscriptionStatus:
    def test_expired_trial_summary(self, db):
        db.seed("companies", {"id": "c1", "subscription_status": "trialing", "trial_ends_at": "2026-02-01T00:00:00Z"})
        summary = get_subscription_status(db, "c1", NOW)

        assert summary["status"] == "trialing"
        assert summary["is_trial"] is True
        assert summary["is_expired"] is True
        assert summary["is_active"] is False

    def test_billing_status_route(self, client, company):
        response = client.get("/api/billing/status")

        assert response.status_code == 200
        assert response.json()["is_active"] is True


class TestGatedRoutes:
    def test_expired_trial_gets_402(self, client, db, company, job, past_iso):
        db.get("companies", id=company["id"]).update(subscription_status="trialing", trial_ends_at=past_iso)

        response = client.patch(f"/api/jobs/{job['id']}", json={"title": "New title"})

        assert response.status_code == 402
        body = response.json()
        assert body["code"] == TRIAL_EXPIRED
        assert body["error"] == "Trial expired"
        assert "message" in body
        assert db.get("jobs", id=job["id"])["title"] == "Exterior repaint"

    def test_canceled_gets_subscription_required(self, client, db, company, job):
        db.get("companies", id=company["id"]).update(subscription_status="canceled")

        response = client.post(f"/api/jobs/{job['id']}/photos", json={"url": "https://cdn.test/p.jpg"})

        assert response.status_code == 402
        assert response.json()["code"] == SUBSCRIPTION_REQUIRED

    def test_active_trial_passes(self, client, db, company, job, future_iso):
        db.get("companies", id=company["id"]).update(subscription_status="trialing", trial_ends_at=future_iso)

        response = client.patch(f"/api/jobs/{job['id']}", json={"title": "New title"})

        assert response.status_code == 200
        assert response.json()["title"] == "New title"

    def test_past_due_keeps_access(self, client, db, company, job):
        db.get("companies", id=company["id"]).update(subscription_status="past_due")

        assert client.patch(f"/api/jobs/{job['id']}", json={"notes": "Bring ladders"}).status_code == 200
