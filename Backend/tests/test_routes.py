"""
HTTP tests for the tenant config endpoints.

Run with: pytest Backend/tests/test_routes.py -v
"""

import uuid

import pytest


async def _onboard(client, source, email="owner@bella-salon.com"):
    return await client.post("/onboard", json={"source": source, "owner_email": email})


# ============================================================================
# AUTHORING
# ============================================================================

class TestValidateEndpoint:
    @pytest.mark.asyncio
    async def test_valid_source(self, client, config_yaml):
        response = await client.post("/config/validate", json={"source": config_yaml})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["valid"] is True
        assert body["data"]["warnings"] == []
        assert body["data"]["config"]["business"]["id"] == "bella-salon"
        assert body["data"]["config"]["timeSlotDuration"] == 30

    @pytest.mark.asyncio
    async def test_syntax_error(self, client):
        response = await client.post("/config/validate", json={"source": "business: [oops"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "CONFIG_SYNTAX_ERROR"

    @pytest.mark.asyncio
    async def test_rule_violation(self, client, config_doc, to_yaml):
        config_doc["availability"].pop()

        response = await client.post("/config/validate", json={"source": to_yaml(config_doc)})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "CONFIG_INVALID"
        assert error["details"]["errors"]


class TestMigrationCheckEndpoint:
    @pytest.mark.asyncio
    async def test_reports_breaking_changes(self, client, config_doc, config_yaml, to_yaml):
        config_doc["categories"][0]["services"][0]["duration"] = 45

        response = await client.post(
            "/config/migration-check",
            json={"old_source": config_yaml, "new_source": to_yaml(config_doc)},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["safe"] is False
        assert data["breakingChanges"] == ["Service duration changed: haircut (30min -> 45min)"]

    @pytest.mark.asyncio
    async def test_same_source_is_safe(self, client, config_yaml):
        response = await client.post(
            "/config/migration-check",
            json={"old_source": config_yaml, "new_source": config_yaml},
        )

        assert response.json()["data"] == {"safe": True, "breakingChanges": []}


# ============================================================================
# ONBOARDING
# ============================================================================

class TestOnboardEndpoint:
    @pytest.mark.asyncio
    async def test_created(self, client, config_yaml):
        response = await _onboard(client, config_yaml)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["subdomain"] == "bella-salon"
        assert data["bookingPageUrl"] == "https://book.example.com/book/bella-salon"
        assert data["verificationUrl"].startswith("https://book.example.com/auth/verify-email?token=")
        assert len(data["temporaryPassword"]) == 16
        assert data["isExistingOwner"] is False

    @pytest.mark.asyncio
    async def test_duplicate_subdomain_is_conflict(self, client, config_yaml):
        await _onboard(client, config_yaml)

        response = await _onboard(client, config_yaml, email="other@example.com")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_bad_email(self, client, config_yaml):
        response = await _onboard(client, config_yaml, email="nobody")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_missing_source_rejected(self, client):
        response = await client.post("/onboard", json={"owner_email": "owner@bella-salon.com"})

        assert response.status_code == 422


# ============================================================================
# READ PATH
# ============================================================================

class TestTenantConfigEndpoints:
    @pytest.mark.asyncio
    async def test_by_subdomain(self, client, config_yaml):
        await _onboard(client, config_yaml)

        response = await client.get("/config/tenant/bella-salon")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["source"] == "inline"
        assert data["config"]["business"]["name"] == "Bella Salon"

        again = await client.get("/config/tenant/bella-salon")
        assert again.json()["data"]["source"] == "cache"

    @pytest.mark.asyncio
    async def test_by_business_id(self, client, config_yaml):
        business_id = (await _onboard(client, config_yaml)).json()["data"]["businessId"]

        response = await client.get(f"/config/business/{business_id}")

        assert response.status_code == 200
        assert response.json()["data"]["subdomain"] == "bella-salon"

    @pytest.mark.asyncio
    async def test_by_host_header(self, client, config_yaml):
        await _onboard(client, config_yaml)

        response = await client.get("/config/tenant", headers={"host": "bella-salon.example.app"})

        assert response.status_code == 200
        assert response.json()["data"]["subdomain"] == "bella-salon"

    @pytest.mark.asyncio
    async def test_host_without_subdomain(self, client):
        response = await client.get("/config/tenant")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client):
        response = await client.get("/config/tenant/nobody-here")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_malformed_business_id(self, client):
        response = await client.get("/config/business/not-a-uuid")

        assert response.status_code == 404


# ============================================================================
# ACTIVATION
# ============================================================================

class TestActivateEndpoint:
    @pytest.mark.asyncio
    async def test_breaking_change_needs_force(self, client, config_doc, config_yaml, to_yaml):
        business_id = (await _onboard(client, config_yaml)).json()["data"]["businessId"]
        config_doc["business"]["timezone"] = "America/Chicago"
        url = f"/config/business/{business_id}/activate"

        refused = await client.post(url, json={"source": to_yaml(config_doc)})
        forced = await client.post(url, json={"source": to_yaml(config_doc), "force": True})

        assert refused.status_code == 409
        error = refused.json()["error"]
        assert error["code"] == "BREAKING_CHANGE"
        assert len(error["details"]["breakingChanges"]) == 1

        assert forced.status_code == 200
        assert forced.json()["data"]["configVersion"] == 2

        served = await client.get("/config/tenant/bella-salon")
        assert served.json()["data"]["config"]["business"]["timezone"] == "America/Chicago"

    @pytest.mark.asyncio
    async def test_unknown_business(self, client, config_yaml):
        response = await client.post(
            f"/config/business/{uuid.uuid4()}/activate", json={"source": config_yaml}
        )

        assert response.status_code == 404


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
