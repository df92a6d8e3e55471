"""
Tests for invite links and user removal
"""
import pytest

from paintdesk.tokens import is_valid_token


@pytest.fixture
def invite(db, company, future_iso):
    return db.seed("invite_links", {
        "company_id": company["id"],
        "token": "invite-token-1",
        "expires_at": future_iso,
        "revoked_at": None,
    })[0]


class TestInvites:
    def test_owner_creates_invite(self, client, db, company):
        response = client.post("/api/invites", json={"company_id": company["id"]})

        assert response.status_code == 200
        body = response.json()
        assert is_valid_token(body["token"])
        assert body["url"] == f"https://app.paintdesk.test/join/{body['token']}"
        assert db.get("invite_links", token=body["token"])["company_id"] == company["id"]

    def test_member_cannot_create_invite(self, client, db, other_company):
        db.seed("company_users", {"user_id": "user-1", "company_id": other_company["id"], "role": "member"})

        assert client.post("/api/invites", json={"company_id": other_company["id"]}).status_code == 403
        assert db.rows("invite_links") == []

    def test_check_valid_invite(self, anon_client, invite, future_iso):
        response = anon_client.get("/api/invites/invite-token-1")

        assert response.json() == {"valid": True, "company_name": "Brush & Roll Painting", "expires_at": future_iso}

    def test_check_expired_invite(self, anon_client, db, invite, past_iso):
        db.get("invite_links", token="invite-token-1")["expires_at"] = past_iso

        response = anon_client.get("/api/invites/invite-token-1")

        assert response.status_code == 404
        assert response.json() == {"valid": False}

    def test_revoked_invite_is_closed(self, client, db, invite):
        assert client.delete("/api/invites/invite-token-1").json() == {"success": True}

        assert client.get("/api/invites/invite-token-1").json() == {"valid": False}
        assert client.post("/api/invites/invite-token-1/join").status_code == 404


class TestJoin:
    def test_join_adds_member(self, client, db, invite, current_user):
        current_user["id"] = "user-7"
        current_user["email"] = "crew@example.com"

        response = client.post("/api/invites/invite-token-1/join", json={"full_name": " Alex "})

        assert response.json() == {"success": True, "company_id": invite["company_id"]}
        assert db.get("company_users", user_id="user-7", company_id=invite["company_id"])["role"] == "member"
        profile = db.get("user_profiles", id="user-7")
        assert (profile["email"], profile["full_name"]) == ("crew@example.com", "Alex")

    def test_existing_member(self, client, db, invite):
        response = client.post("/api/invites/invite-token-1/join")

        assert response.json() == {"success": True, "message": "Already a member"}
        assert len(db.rows("company_users")) == 1

    def test_unknown_invite(self, client):
        response = client.post("/api/invites/no-such-invite/join")

        assert response.status_code == 404
        assert response.json() == {"error": "Invalid or expired invite"}


class TestDeleteUser:
    @pytest.fixture
    def crew_member(self, db, company):
        db.seed("company_users", {"user_id": "user-7", "company_id": company["id"], "role": "member"})
        db.seed("user_profiles", {"id": "user-7", "email": "crew@example.com"})
        db.auth_users["user-7"] = {"id": "user-7", "email": "crew@example.com"}

    def test_owner_removes_crew_member(self, client, db, crew_member):
        assert client.delete("/api/users/user-7").json() == {"success": True}

        assert db.get("company_users", user_id="user-7") is None
        assert db.get("user_profiles", id="user-7") is None
        assert db.deleted_users == ["user-7"]

    def test_stranger_forbidden(self, client, db, other_company):
        db.auth_users["user-2"] = {"id": "user-2"}

        response = client.delete("/api/users/user-2")

        assert response.status_code == 403
        assert db.deleted_users == []

    def test_owner_of_a_company_cannot_be_deleted(self, client, db, company):
        db.auth_users["user-1"] = {"id": "user-1"}

        response = client.delete("/api/users/user-1")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Cannot delete user: They own 1 company/companies (Brush & Roll Painting)"
        }
        assert db.deleted_users == []

    def test_unknown_auth_user(self, client, db, company):
        db.seed("company_users", {"user_id": "user-8", "company_id": company["id"], "role": "member"})

        response = client.delete("/api/users/user-8")

        assert response.status_code == 404
        assert db.get("company_users", user_id="user-8")
