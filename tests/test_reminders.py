"""
Tests for estimate follow-up reminders
"""
from datetime import timedelta

import pytest

from paintdesk.db import utcnow


def days_ago(days: float) -> str:
    return (utcnow() - timedelta(days=days)).isoformat()


@pytest.fixture
def stale_estimate(db, company, job):
    db.seed("customers", {"id": "cust-1", "company_id": company["id"], "name": "Pat Lee", "phone": "555-0100"})
    db.get("jobs", id=job["id"])["customer_id"] = "cust-1"
    return db.seed("estimates", {
        "id": "est-1", "company_id": company["id"], "job_id": job["id"], "status": "sent", "sent_at": days_ago(3.5),
    })[0]


class TestReminders:
    def test_lists_stale_sent_estimates(self, client, db, company, job, stale_estimate):
        db.seed("estimates",
                {"id": "est-fresh", "company_id": company["id"], "job_id": job["id"],
                 "status": "sent", "sent_at": days_ago(1)},
                {"id": "est-accepted", "company_id": company["id"], "job_id": job["id"],
                 "status": "accepted", "sent_at": days_ago(10)})

        reminders = client.get("/api/reminders").json()["reminders"]

        assert reminders == [{
            "id": "est-1",
            "jobId": job["id"],
            "jobTitle": "Exterior repaint",
            "customerName": "Pat Lee",
            "customerPhone": "555-0100",
            "customerEmail": None,
            "sentAt": stale_estimate["sent_at"],
            "daysAgo": 3,
        }]

    def test_other_companies_hidden(self, client, db, company, other_company):
        db.seed("jobs", {"id": "job-9", "company_id": other_company["id"], "title": "Theirs"})
        db.seed("estimates", {"id": "est-9", "company_id": other_company["id"], "job_id": "job-9",
                              "status": "sent", "sent_at": days_ago(5)})

        assert client.get("/api/reminders").json() == {"reminders": []}

    def test_dismissed_reminder_hidden(self, client, db, stale_estimate):
        assert client.post("/api/reminders", json={"estimateId": "est-1"}).json() == {"success": True}

        assert db.get("nudge_dismissals", nudge_type="followup_est-1")["user_id"] == "user-1"
        assert client.get("/api/reminders").json() == {"reminders": []}

    def test_no_company(self, client):
        assert client.get("/api/reminders").json() == {"reminders": []}
        assert client.post("/api/reminders", json={"estimateId": "est-1"}).status_code == 404

    def test_estimate_id_required(self, client, company):
        assert client.post("/api/reminders", json={}).status_code == 400
