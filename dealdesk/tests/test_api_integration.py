"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database shared through StaticPool.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from dealdesk.config import get_settings
from dealdesk.models import Brand, Credential, Partner, User
from dealdesk.notifications import Notifier


@pytest.fixture()
def client(monkeypatch, session_factory):
    """FastAPI TestClient using the in-memory test database."""
    monkeypatch.setenv("DEALDESK_DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("DEALDESK_PUBLIC_BASE_URL", "https://desk.example")
    get_settings.cache_clear()
    from dealdesk.app import app, db_session, get_notifier

    def override_db_session():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    app.dependency_overrides[get_notifier] = lambda: Notifier(session_factory)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture()
def seeded(session):
    """Two staff users and one partner with a brand and a stored credential."""
    staff = User(name="Ops", email="ops@example.com")
    colleague = User(name="Sales", email="sales@example.com")
    partner = Partner(name="Lucky Partners")
    session.add_all([staff, colleague, partner])
    session.flush()
    brand = Brand(partner_id=partner.id, name="LuckySpin")
    cred = Credential(partner_id=partner.id, label="Portal", username="ops", password="hunter2")
    session.add_all([brand, cred])
    session.commit()
    return {
        "headers": {"X-User-Id": str(staff.id)},
        "colleague_headers": {"X-User-Id": str(colleague.id)},
        "partner_id": partner.id, "brand_id": brand.id, "credential_id": cred.id,
    }


class TestAuth:
    def test_missing_header(self, client):
        resp = client.get("/api/stats")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_unknown_user(self, client, seeded):
        resp = client.get("/api/stats", headers={"X-User-Id": "999"})
        assert resp.status_code == 401


class TestInventoryEndpoints:
    def test_asset_page_position_flow(self, client, seeded):
        h = seeded["headers"]
        asset = client.post("/api/assets", json={"name": "Casino Guide", "asset_domain": "cg.example"}, headers=h)
        assert asset.status_code == 201
        asset_id = asset.json()["id"]

        page = client.post(f"/api/assets/{asset_id}/pages", json={"name": "Reviews", "path": "/reviews"}, headers=h)
        assert page.status_code == 201
        page_id = page.json()["id"]

        dup = client.post(f"/api/assets/{asset_id}/pages", json={"name": "Reviews"}, headers=h)
        assert dup.status_code == 409
        assert "already exists" in dup.json()["error"]

        pages = client.get(f"/api/assets/{asset_id}/pages", headers=h).json()
        assert {p["name"]: p["position_count"] for p in pages} == {"Homepage": 1, "Reviews": 1}

        pos = client.post(f"/api/assets/{asset_id}/pages/{page_id}/positions", json={"name": "Sidebar"}, headers=h)
        assert pos.status_code == 201
        listed = client.get(f"/api/assets/{asset_id}/pages/{page_id}/positions", headers=h).json()
        assert {p["name"] for p in listed} == {"Sidebar", "N/A"}

        legacy = client.post(f"/api/assets/{asset_id}/positions", json={"name": "Footer"}, headers=h)
        assert legacy.status_code == 201
        assert [p["name"] for p in client.get(f"/api/assets/{asset_id}/positions", headers=h).json()] == ["Footer"]

        archived = client.post(f"/api/assets/{asset_id}/pages/{page_id}/archive", headers=h)
        assert archived.json()["status"] == "Archived"

    def test_asset_listing_edits_and_archive(self, client, seeded):
        h = seeded["headers"]
        guide = client.post("/api/assets", json={"name": "Casino Guide", "asset_domain": "cg.example"}, headers=h)
        client.post("/api/assets", json={"name": "Slots Hub", "asset_domain": "sh.example"}, headers=h)
        asset_id = guide.json()["id"]

        found = client.get("/api/assets", params={"search": "slots"}, headers=h).json()
        assert [a["name"] for a in found] == ["Slots Hub"]

        taken = client.put(f"/api/assets/{asset_id}", json={"asset_domain": "sh.example"}, headers=h)
        assert taken.status_code == 409
        edited = client.put(f"/api/assets/{asset_id}", json={"description": "UK edition"}, headers=h)
        assert edited.json()["description"] == "UK edition"

        page_id = client.post(f"/api/assets/{asset_id}/pages", json={"name": "Reviews"}, headers=h).json()["id"]
        clash = client.put(f"/api/assets/{asset_id}/pages/{page_id}", json={"name": "Homepage"}, headers=h)
        assert clash.status_code == 409
        renamed = client.put(f"/api/assets/{asset_id}/pages/{page_id}", json={"name": "Casino Reviews"}, headers=h)
        assert renamed.json()["name"] == "Casino Reviews"

        slot_id = client.get(f"/api/assets/{asset_id}/pages/{page_id}/positions", headers=h).json()[0]["id"]
        moved = client.put(f"/api/positions/{slot_id}", json={"name": "Right Rail"}, headers=h)
        assert moved.json()["name"] == "Right Rail"

        archived = client.post(f"/api/assets/{asset_id}/archive", headers=h)
        assert archived.json()["status"] == "Archived"
        assert [a["name"] for a in client.get("/api/assets", headers=h).json()] == ["Slots Hub"]

    def test_unknown_asset_is_404(self, client, seeded):
        resp = client.get("/api/assets/999/pages", headers=seeded["headers"])
        assert resp.status_code == 404
        assert resp.json() == {"error": "Asset not found"}

    def test_invalid_body_is_400(self, client, seeded):
        resp = client.post("/api/assets", json={"name": ""}, headers=seeded["headers"])
        assert resp.status_code == 400
        assert "name" in resp.json()["error"]


class TestDealEndpoints:
    def _position(self, client, h):
        asset_id = client.post("/api/assets", json={"name": "Casino Guide"}, headers=h).json()["id"]
        page_id = client.get(f"/api/assets/{asset_id}/pages", headers=h).json()[0]["id"]
        return client.post(
            f"/api/assets/{asset_id}/pages/{page_id}/positions", json={"name": "Top"}, headers=h,
        ).json()["id"]

    def test_place_find_and_replace(self, client, seeded):
        h = seeded["headers"]
        position_id = self._position(client, h)
        deal = client.post("/api/deals", json={
            "partner_id": seeded["partner_id"], "brand_id": seeded["brand_id"],
            "position_id": position_id, "geo": "us", "status": "Live",
        }, headers=h)
        assert deal.status_code == 201
        assert deal.json()["geo"] == "US"

        open_us = {p["id"] for p in client.get("/api/open-positions", params={"geo": "US"}, headers=h).json()}
        open_gb = {p["id"] for p in client.get("/api/open-positions", params={"geo": "GB"}, headers=h).json()}
        assert position_id not in open_us
        assert position_id in open_gb

        replaced = client.post("/api/deals/replace", json={
            "existing_deal_id": deal.json()["id"], "partner_id": seeded["partner_id"],
            "brand_id": seeded["brand_id"],
        }, headers=h)
        assert replaced.status_code == 201
        body = replaced.json()
        assert body["ended"]["status"] == "Inactive"
        assert body["replacement"]["replaced_deal_id"] == deal.json()["id"]

        again = client.post("/api/deals/replace", json={
            "existing_deal_id": deal.json()["id"], "partner_id": seeded["partner_id"],
            "brand_id": seeded["brand_id"],
        }, headers=h)
        assert again.status_code == 409

        ended = client.get("/api/deals", params={"status": "Inactive"}, headers=h).json()
        assert [d["id"] for d in ended] == [deal.json()["id"]]
        in_us = client.get("/api/deals", params={"geo": "us"}, headers=h).json()
        assert [d["id"] for d in in_us] == [body["replacement"]["id"], deal.json()["id"]]

    def test_status_change_notifies_colleagues(self, client, seeded):
        h = seeded["headers"]
        position_id = self._position(client, h)
        deal_id = client.post("/api/deals", json={
            "partner_id": seeded["partner_id"], "brand_id": seeded["brand_id"],
            "position_id": position_id, "geo": "DE", "status": "Live",
        }, headers=h).json()["id"]

        resp = client.put(f"/api/deals/{deal_id}/status", json={"status": "Inactive"}, headers=h)
        assert resp.status_code == 200
        assert resp.json()["end_date"] is not None

        inbox = client.get("/api/notifications", headers=seeded["colleague_headers"]).json()
        assert [n["type"] for n in inbox["notifications"]] == ["POSITION_AVAILABLE", "DEAL_CREATED"]
        assert inbox["unread_count"] == 2

        marked = client.put("/api/notifications", json={"mark_all": True}, headers=seeded["colleague_headers"])
        assert marked.json() == {"success": True, "updated": 2}
        assert client.put("/api/notifications", json={}, headers=h).status_code == 400

    def test_invalid_status_is_400(self, client, seeded):
        resp = client.put("/api/deals/1/status", json={"status": "Paused"}, headers=seeded["headers"])
        assert resp.status_code == 400


class TestIntakeEndpoints:
    def test_full_intake_flow(self, client, seeded):
        h = seeded["headers"]
        issued = client.post("/api/intake-links", json={"expires_in_days": 7, "note": "Acme"}, headers=h)
        assert issued.status_code == 201
        token = issued.json()["token"]
        assert issued.json()["url"] == f"https://desk.example/intake/{token}"

        check = client.get(f"/api/intake/{token}")
        assert check.status_code == 200
        assert check.json()["valid"] is True

        form = {
            "company_name": "Acme Gaming", "contact_name": "Ann",
            "brands": [{"name": "AcmeSpin", "licenses": ["MGA"]}],
        }
        submitted = client.post(f"/api/intake/{token}", json=form)
        assert submitted.status_code == 201
        submission_id = submitted.json()["id"]

        reused = client.post(f"/api/intake/{token}", json=form)
        assert reused.status_code == 410
        assert reused.json() == {"error": "This link has already been used"}
        assert client.get(f"/api/intake/{token}").status_code == 410

        pending = client.get("/api/intake-submissions", headers=h).json()
        assert [s["id"] for s in pending] == [submission_id]

        converted = client.post(f"/api/intake-submissions/{submission_id}/convert", headers=h)
        assert converted.status_code == 200
        assert len(converted.json()["brand_ids"]) == 1

        rejected = client.post(f"/api/intake-submissions/{submission_id}/reject", json={"reason": "late"}, headers=h)
        assert rejected.status_code == 409
        assert rejected.json() == {"error": "Submission is already Converted"}

        links = client.get("/api/intake-links", headers=h).json()
        assert links[0]["state"] == "used"
        assert "token" not in links[0]

        stats = client.get("/api/stats", headers=h).json()
        assert stats["pending_submissions"] == 0
        assert stats["total_partners"] == 2

    def test_unknown_token_is_404(self, client):
        assert client.get("/api/intake/" + "00" * 32).status_code == 404

    def test_blank_company_name_is_400(self, client, seeded):
        token = client.post("/api/intake-links", json={}, headers=seeded["headers"]).json()["token"]
        resp = client.post(f"/api/intake/{token}", json={"company_name": "  ", "contact_name": "Ann"})
        assert resp.status_code == 400
        assert client.get(f"/api/intake/{token}").status_code == 200

    def test_issuing_requires_staff(self, client):
        assert client.post("/api/intake-links", json={}).status_code == 401


class TestPartnerEndpoints:
    def test_create_partner(self, client, seeded):
        h = seeded["headers"]
        created = client.post("/api/partners", json={"name": " Acme Gaming ", "is_direct": True}, headers=h)
        assert created.status_code == 201
        body = created.json()
        assert (body["name"], body["is_direct"], body["status"]) == ("Acme Gaming", True, "Lead")
        assert body["owner_user_id"] == int(h["X-User-Id"])

        trail = client.get("/api/audit-log", params={"entity": "Partner"}, headers=h).json()
        assert [i["entity_id"] for i in trail["items"]] == [str(body["id"])]

    def test_blank_name_is_400(self, client, seeded):
        assert client.post("/api/partners", json={"name": "   "}, headers=seeded["headers"]).status_code == 400


class TestActivityEndpoints:
    def test_credential_reveal_shows_in_audit_log(self, client, seeded):
        h = seeded["headers"]
        url = f"/api/partners/{seeded['partner_id']}/credentials/{seeded['credential_id']}/reveal"
        assert client.post(url, headers=h).json() == {"password": "hunter2"}

        business = client.get("/api/audit-log", headers=h).json()
        assert business["total"] == 0
        access = client.get("/api/audit-log", params={"action": "CREDENTIAL_ACCESS"}, headers=h).json()
        assert access["total"] == 1
        assert access["items"][0]["details"]["label"] == "Portal"

    def test_stats_shape(self, client, seeded):
        stats = client.get("/api/stats", headers=seeded["headers"]).json()
        assert stats["total_deals"] == 0
        assert stats["deals_by_status"] == {}

    def test_audit_log_date_filters_accept_offsets(self, client, seeded):
        h = seeded["headers"]
        client.post("/api/partners", json={"name": "Acme"}, headers=h)
        since = client.get("/api/audit-log", params={"date_from": "2000-01-01T00:00:00+05:00"}, headers=h).json()
        assert since["total"] == 1
        later = client.get("/api/audit-log", params={"date_from": "2999-01-01T00:00:00+05:00"}, headers=h).json()
        assert later["total"] == 0
