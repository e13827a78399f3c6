"""
Tests for the CS, customer, agency and shared campaign endpoints.
"""
from datetime import timedelta

from portal.workflow.states import CampaignStatus, PortalType

from conftest import AGENCY_EMAIL, CUSTOMER_EMAIL, NOW

PNG = ("logo.png", b"\x89PNG fake image", "image/png")


def upload(client, url, headers, *files):
    return client.post(url, headers=headers, files=[("files", f) for f in (files or (PNG,))])


class TestCsEndpoints:
    def test_create_campaign(self, client, cs_headers, agency, email_sender):
        response = client.post(
            "/api/cs/campaigns",
            headers=cs_headers,
            json={
                "customer_name": "Harbor Cycles",
                "customer_email": "shop@harborcycles.example",
                "campaign_type": "display_ads",
                "agency_id": agency.id,
                "asset_deadline": (NOW + timedelta(days=5)).isoformat(),
                "go_live_date": (NOW + timedelta(days=14)).isoformat(),
            },
        )
        assert response.status_code == 201
        campaign = response.json()["campaign"]
        assert campaign["status"] == "awaiting_assets"
        assert campaign["days_until_deadline"] == 5
        assert campaign["is_overdue"] is False
        assert len(email_sender.to("shop@harborcycles.example")) == 1

    def test_create_campaign_deadline_after_go_live(self, client, cs_headers, agency):
        response = client.post(
            "/api/cs/campaigns",
            headers=cs_headers,
            json={
                "customer_name": "Harbor Cycles",
                "customer_email": "shop@harborcycles.example",
                "campaign_type": "display_ads",
                "agency_id": agency.id,
                "asset_deadline": (NOW + timedelta(days=15)).isoformat(),
                "go_live_date": (NOW + timedelta(days=14)).isoformat(),
            },
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_create_campaign_unknown_agency(self, client, cs_headers, agency):
        response = client.post(
            "/api/cs/campaigns",
            headers=cs_headers,
            json={
                "customer_name": "Harbor Cycles",
                "customer_email": "shop@harborcycles.example",
                "campaign_type": "display_ads",
                "agency_id": agency.id + 100,
                "asset_deadline": (NOW + timedelta(days=5)).isoformat(),
                "go_live_date": (NOW + timedelta(days=14)).isoformat(),
            },
        )
        assert response.status_code == 422

    def test_list_with_status_filter(self, client, cs_headers, make_campaign):
        make_campaign()
        approved = make_campaign(status=CampaignStatus.APPROVED)

        response = client.get("/api/cs/campaigns?status=approved", headers=cs_headers)

        assert response.status_code == 200
        assert [c["id"] for c in response.json()["campaigns"]] == [approved.id]

    def test_list_unknown_status(self, client, cs_headers):
        response = client.get("/api/cs/campaigns?status=archived", headers=cs_headers)
        assert response.status_code == 422

    def test_overdue_flag(self, client, cs_headers, make_campaign):
        make_campaign(asset_deadline=NOW - timedelta(days=1))
        campaign = client.get("/api/cs/campaigns", headers=cs_headers).json()["campaigns"][0]
        assert campaign["is_overdue"] is True
        assert campaign["days_until_deadline"] == -1

    def test_campaign_detail(self, client, cs_headers, campaign):
        response = client.get(f"/api/cs/campaigns/{campaign.id}", headers=cs_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["campaign"]["id"] == campaign.id
        assert data["agency"]["email"] == AGENCY_EMAIL
        assert data["assets"] == [] and data["drafts"] == []
        assert data["latest_draft"] is None

    def test_campaign_detail_other_tenant(self, client, cs_headers, make_campaign, other_tenant):
        foreign = make_campaign(tenant_id=other_tenant.id)
        response = client.get(f"/api/cs/campaigns/{foreign.id}", headers=cs_headers)
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_agencies(self, client, cs_headers, agency):
        created = client.post(
            "/api/cs/agencies",
            headers=cs_headers,
            json={"name": "Fjord Media", "email": "hello@fjord.example", "contact_name": "Finn"},
        )
        assert created.status_code == 201

        duplicate = client.post(
            "/api/cs/agencies",
            headers=cs_headers,
            json={"name": "Studio Copy", "email": AGENCY_EMAIL.upper()},
        )
        assert duplicate.status_code == 422

        names = [a["name"] for a in client.get("/api/cs/agencies", headers=cs_headers).json()["agencies"]]
        assert names == ["Fjord Media", "Studio North"]


class TestCustomerEndpoints:
    def test_list_only_own_campaigns(self, client, customer_headers, campaign, make_campaign):
        make_campaign(customer_email="someone@else.example")
        response = client.get("/api/customer/campaigns", headers=customer_headers)
        assert [c["id"] for c in response.json()["campaigns"]] == [campaign.id]

    def test_other_customers_campaign_forbidden(self, client, customer_headers, make_campaign):
        other = make_campaign(customer_email="someone@else.example")
        response = client.get(f"/api/customer/campaign/{other.id}", headers=customer_headers)
        assert response.status_code == 403

    def test_upload_assets(self, client, customer_headers, campaign):
        response = upload(client, f"/api/customer/campaign/{campaign.id}/assets", customer_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["campaign"]["status"] == "assets_uploaded"
        assert data["assets"][0]["filename"] == "logo.png"
        assert data["assets"][0]["download_url"].startswith("/api/files/")

    def test_upload_rejects_mime_type(self, client, customer_headers, campaign):
        response = upload(
            client,
            f"/api/customer/campaign/{campaign.id}/assets",
            customer_headers,
            ("run.sh", b"#!/bin/sh", "application/x-sh"),
        )
        assert response.status_code == 422

    def test_upload_too_many_files(self, client, customer_headers, campaign, settings, monkeypatch):
        monkeypatch.setattr(settings, "upload_max_files", 1)
        response = upload(client, f"/api/customer/campaign/{campaign.id}/assets", customer_headers, PNG, PNG)
        assert response.status_code == 422

    def test_approve_in_wrong_state(self, client, customer_headers, campaign):
        response = client.post(f"/api/customer/campaign/{campaign.id}/approve", headers=customer_headers)
        assert response.status_code == 409
        body = response.json()
        assert body["ok"] is False
        assert body["error_code"] == "INVALID_TRANSITION"

    def test_request_changes_requires_feedback(self, client, make_campaign, headers_for):
        campaign = make_campaign(status=CampaignStatus.CUSTOMER_REVIEW)
        headers = headers_for(PortalType.CUSTOMER, CUSTOMER_EMAIL, campaign.id)
        response = client.post(
            f"/api/customer/campaign/{campaign.id}/request-changes",
            headers=headers,
            json={"feedback": ""},
        )
        assert response.status_code == 422

    def test_agency_cannot_use_customer_routes(self, client, agency_headers, campaign):
        response = client.post(f"/api/customer/campaign/{campaign.id}/approve", headers=agency_headers)
        assert response.status_code == 403


class TestAgencyEndpoints:
    def test_list_assigned_campaigns(self, client, agency_headers, campaign):
        response = client.get("/api/agency/campaigns", headers=agency_headers)
        assert [c["id"] for c in response.json()["campaigns"]] == [campaign.id]

    def test_assets_and_download(self, client, customer_headers, agency_headers, campaign):
        upload(client, f"/api/customer/campaign/{campaign.id}/assets", customer_headers)

        assets = client.get(f"/api/agency/campaign/{campaign.id}/assets", headers=agency_headers).json()["assets"]
        assert len(assets) == 1

        download = client.get(assets[0]["download_url"])
        assert download.status_code == 200
        assert download.content == PNG[1]

    def test_download_endpoint_and_tampered_signature(self, client, customer_headers, agency_headers, campaign):
        asset = upload(client, f"/api/customer/campaign/{campaign.id}/assets", customer_headers).json()["assets"][0]

        signed = client.get(
            f"/api/campaign/{campaign.id}/assets/{asset['id']}/download", headers=agency_headers
        ).json()
        assert signed["expires_in"] == 900

        tampered = signed["url"].replace("signature=", "signature=00")
        assert client.get(tampered).status_code == 403

    def test_submit_draft_from_wrong_state(self, client, agency_headers, campaign):
        response = upload(client, f"/api/agency/campaign/{campaign.id}/draft", agency_headers)
        assert response.status_code == 409


class TestScenarios:
    def test_happy_path(self, client, campaign, customer_headers, agency_headers, cs_headers, clock):
        cid = campaign.id

        assert upload(client, f"/api/customer/campaign/{cid}/assets", customer_headers).status_code == 200
        assert client.post(f"/api/agency/campaign/{cid}/start-draft", headers=agency_headers).json()["applied"]
        draft = upload(client, f"/api/agency/campaign/{cid}/draft", agency_headers, ("draft.pdf", b"%PDF", "application/pdf"))
        assert draft.json()["campaign"]["status"] == "draft_submitted"
        assert client.post(f"/api/customer/campaign/{cid}/start-review", headers=customer_headers).status_code == 200

        detail = client.get(f"/api/customer/campaign/{cid}", headers=customer_headers).json()
        assert detail["latest_draft"]["filename"] == "draft.pdf"

        approved = client.post(f"/api/customer/campaign/{cid}/approve", headers=customer_headers)
        assert approved.json()["campaign"]["status"] == "approved"

        early = client.post(f"/api/cs/campaigns/{cid}/mark-live", headers=cs_headers)
        assert early.status_code == 409
        assert early.json()["error_code"] == "PREMATURE_GO_LIVE"

        clock.advance(days=20)
        live = client.post(f"/api/cs/campaigns/{cid}/mark-live", headers=cs_headers)
        assert live.status_code == 200
        assert live.json()["campaign"]["status"] == "live"

        timeline = client.get(f"/api/campaign/{cid}/timeline", headers=cs_headers).json()["activities"]
        assert [a["action"] for a in timeline] == [
            "marked_live",
            "draft_approved",
            "review_started",
            "draft_submitted",
            "draft_started",
            "assets_uploaded",
        ]

    def test_revision_cycle(self, client, make_campaign, headers_for, agency_headers):
        campaign = make_campaign(status=CampaignStatus.CUSTOMER_REVIEW)
        customer_headers = headers_for(PortalType.CUSTOMER, CUSTOMER_EMAIL, campaign.id)
        cid = campaign.id

        changes = client.post(
            f"/api/customer/campaign/{cid}/request-changes",
            headers=customer_headers,
            json={"feedback": "Please use the blue logo"},
        )
        assert changes.json()["campaign"]["status"] == "revision_requested"
        assert changes.json()["campaign"]["customer_feedback"] == "Please use the blue logo"

        client.post(f"/api/agency/campaign/{cid}/start-draft", headers=agency_headers)
        upload(client, f"/api/agency/campaign/{cid}/draft", agency_headers)
        repeat = client.post(f"/api/agency/campaign/{cid}/start-draft", headers=agency_headers)
        assert repeat.status_code == 409

        client.post(f"/api/customer/campaign/{cid}/start-review", headers=customer_headers)
        again = client.post(f"/api/customer/campaign/{cid}/start-review", headers=customer_headers)
        assert again.status_code == 200
        assert again.json()["applied"] is False


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
