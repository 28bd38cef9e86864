"""App wiring: health, request ids, envelopes, CORS and Clerk webhooks."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time

import pytest
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.config.settings import get_settings
from servicegrid.models.database import Business, BusinessMember, Profile

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"integration-webhook-key").decode()


@pytest.mark.integration
class TestAppBasics:
    @pytest.mark.asyncio
    async def test_health(self, http) -> None:
        resp = await http.get("/functions/v1/health")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["auth_mode"] == "supabase"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, http) -> None:
        resp = await http.get("/functions/v1/health")
        assert len(resp.headers["x-request-id"]) == 36

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, http) -> None:
        resp = await http.get("/functions/v1/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["x-request-id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_unknown_function_uses_error_envelope(self, http) -> None:
        resp = await http.get("/functions/v1/does-not-exist")
        assert resp.status_code == 404
        assert "error" in resp.json()

    @pytest.mark.asyncio
    async def test_cors_preflight_allows_business_header(self, http) -> None:
        resp = await http.options(
            "/functions/v1/customers-crud",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, x-business-id",
            },
        )
        assert resp.status_code == 200
        allowed = resp.headers["access-control-allow-headers"].lower()
        assert "x-business-id" in allowed


def _signed(event: dict) -> tuple[bytes, dict[str, str]]:
    payload = json.dumps(event).encode()
    msg_id, ts = "msg_test", str(int(time.time()))
    key = base64.b64decode(WEBHOOK_SECRET[6:])
    digest = hmac.new(key, f"{msg_id}.{ts}.".encode() + payload, hashlib.sha256).digest()
    headers = {
        "svix-id": msg_id,
        "svix-timestamp": ts,
        "svix-signature": f"v1,{base64.b64encode(digest).decode()}",
        "content-type": "application/json",
    }
    return payload, headers


def _user_event(clerk_id: str, email: str, first: str) -> dict:
    return {
        "type": "user.created",
        "data": {
            "id": clerk_id,
            "first_name": first,
            "last_name": "Clerk",
            "primary_email_address_id": "e1",
            "email_addresses": [{"id": "e1", "email_address": email}],
        },
    }


async def _one(session: AsyncSession, stmt):
    return (await session.execute(stmt)).scalars().one()


def _membership_query(business_id: str, user_id: str):
    return select(BusinessMember).where(
        col(BusinessMember.business_id) == business_id,
        col(BusinessMember.user_id) == user_id,
    )


@pytest.mark.integration
class TestClerkWebhook:
    @pytest.fixture(autouse=True)
    def _webhook_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLERK_WEBHOOK_SECRET", WEBHOOK_SECRET)
        get_settings.cache_clear()

    async def _post(self, http, event: dict):
        payload, headers = _signed(event)
        return await http.post("/functions/v1/clerk-webhooks", content=payload, headers=headers)

    @pytest.mark.asyncio
    async def test_bad_signature(self, http) -> None:
        payload, headers = _signed(_user_event("user_a", "a@example.com", "Cleo"))
        headers["svix-signature"] = "v1,bm9wZQ=="
        resp = await http.post("/functions/v1/clerk-webhooks", content=payload, headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid webhook signature"}

    @pytest.mark.asyncio
    async def test_missing_secret(self, http, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CLERK_WEBHOOK_SECRET")
        get_settings.cache_clear()
        resp = await self._post(http, _user_event("user_a", "a@example.com", "Cleo"))
        assert resp.status_code == 500

    @pytest.mark.asyncio
    async def test_unhandled_event_acknowledged(self, http) -> None:
        resp = await self._post(http, {"type": "session.created", "data": {}})
        assert resp.status_code == 200
        assert resp.json() == {"data": {"received": True, "type": "session.created"}}

    @pytest.mark.asyncio
    async def test_user_org_and_membership_sync(self, http, async_engine) -> None:
        created = await self._post(http, _user_event("user_a", "A@Example.com", "Cleo"))
        assert created.status_code == 200
        await self._post(http, _user_event("user_b", "b@example.com", "Bo"))
        await self._post(
            http,
            {
                "type": "organization.created",
                "data": {"id": "org_1", "name": "Cleo Co", "created_by": "user_a"},
            },
        )
        membership = {
            "organization": {"id": "org_1"},
            "public_user_data": {"user_id": "user_b"},
            "role": "org:member",
        }
        await self._post(http, {"type": "organizationMembership.created", "data": membership})

        async with AsyncSession(async_engine) as session:
            cleo = await _one(session, select(Profile).where(col(Profile.clerk_user_id) == "user_a"))
            bo = await _one(session, select(Profile).where(col(Profile.clerk_user_id) == "user_b"))
            org = await _one(session, select(Business).where(col(Business.clerk_org_id) == "org_1"))
            member = await _one(session, _membership_query(org.id, bo.id))

        assert cleo.email == "a@example.com"
        assert cleo.full_name == "Cleo Clerk"
        assert cleo.default_business_id is not None
        assert org.owner_id == cleo.id
        assert org.name == "Cleo Co"
        assert member.role == "worker"

        await self._post(http, {"type": "organizationMembership.deleted", "data": membership})
        async with AsyncSession(async_engine) as session:
            remaining = (await session.execute(_membership_query(org.id, bo.id))).scalars().first()
        assert remaining is None
