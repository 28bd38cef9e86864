"""Tenant resolution, session bootstrap and profile functions."""

from __future__ import annotations

import asyncio

import pytest

from servicegrid.storage.repositories.tenancy import TenancyRepository

WORKER = {"sub": "user-2", "email": "worker@example.com", "name": "Wes Worker"}


async def _bootstrap(http, headers) -> dict:
    resp = await http.get("/functions/v1/get-business", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


async def _join_as_worker(http, bearer) -> str:
    """Owner and worker both sign up; the worker is added to the owner's business."""
    owner = await _bootstrap(http, bearer())
    await _bootstrap(http, bearer(**WORKER))
    resp = await http.post(
        "/functions/v1/add-team-member",
        json={"email": WORKER["email"]},
        headers=bearer(),
    )
    assert resp.status_code == 201, resp.text
    return owner["business"]["id"]


@pytest.mark.integration
class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, http) -> None:
        resp = await http.get("/functions/v1/get-business")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Missing Bearer token"}

    @pytest.mark.asyncio
    async def test_token_signed_with_other_secret(self, http, bearer) -> None:
        headers = bearer(secret="someone-elses-secret-0123456789abcdef")
        resp = await http.get("/functions/v1/get-business", headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid token"}

    @pytest.mark.asyncio
    async def test_expired_token(self, http, bearer) -> None:
        resp = await http.get("/functions/v1/get-business", headers=bearer(expires_in=-60))
        assert resp.status_code == 401


@pytest.mark.integration
class TestBusinessResolution:
    @pytest.mark.asyncio
    async def test_first_call_provisions_profile_and_business(self, http, bearer) -> None:
        data = await _bootstrap(http, bearer())
        assert data["userId"] == "user-1"
        assert data["business"]["name"] == "Olivia Owner's Business"
        assert data["business"]["role"] == "owner"

    @pytest.mark.asyncio
    async def test_resolution_is_stable(self, http, bearer) -> None:
        first = await _bootstrap(http, bearer())
        second = await _bootstrap(http, bearer())
        assert first["business"]["id"] == second["business"]["id"]

    @pytest.mark.asyncio
    async def test_name_falls_back_to_email(self, http, bearer) -> None:
        data = await _bootstrap(http, bearer(sub="user-9", email="sam@example.com", name=""))
        assert data["business"]["name"] == "sam's Business"

    @pytest.mark.asyncio
    async def test_foreign_business_is_denied(self, http, bearer) -> None:
        owner = await _bootstrap(http, bearer())
        resp = await http.get(
            "/functions/v1/get-business",
            headers=bearer(business_id=owner["business"]["id"], **WORKER),
        )
        assert resp.status_code == 403
        assert resp.json() == {"error": "Access to this business is denied"}

    @pytest.mark.asyncio
    async def test_unknown_business_is_denied(self, http, bearer) -> None:
        resp = await http.get(
            "/functions/v1/get-business", params={"businessId": "nope"}, headers=bearer()
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_member_can_select_business(self, http, bearer) -> None:
        business_id = await _join_as_worker(http, bearer)
        data = await _bootstrap(http, bearer(business_id=business_id, **WORKER))
        assert data["business"]["id"] == business_id
        assert data["business"]["role"] == "worker"

    @pytest.mark.asyncio
    async def test_member_defaults_to_own_business(self, http, bearer) -> None:
        business_id = await _join_as_worker(http, bearer)
        data = await _bootstrap(http, bearer(**WORKER))
        assert data["business"]["id"] != business_id
        assert data["business"]["role"] == "owner"

    @pytest.mark.asyncio
    async def test_user_businesses(self, http, bearer) -> None:
        business_id = await _join_as_worker(http, bearer)
        resp = await http.get("/functions/v1/user-businesses", headers=bearer(**WORKER))
        data = resp.json()["data"]
        assert data["count"] == 2
        by_id = {b["id"]: b for b in data["businesses"]}
        assert by_id[business_id]["role"] == "worker"
        assert by_id[business_id]["isCurrent"] is False
        assert sum(b["isCurrent"] for b in data["businesses"]) == 1


@pytest.mark.integration
class TestConcurrentProvisioning:
    @pytest.mark.asyncio
    async def test_parallel_first_requests_share_one_business(self, http, bearer) -> None:
        first, second = await asyncio.gather(
            http.get("/functions/v1/get-business", headers=bearer()),
            http.get("/functions/v1/get-business", headers=bearer()),
        )
        assert first.status_code == 200, first.text
        assert second.status_code == 200, second.text
        business_id = first.json()["data"]["business"]["id"]
        assert second.json()["data"]["business"]["id"] == business_id

        resp = await http.get("/functions/v1/user-businesses", headers=bearer())
        businesses = resp.json()["data"]["businesses"]
        assert [b["id"] for b in businesses] == [business_id]

    @pytest.mark.asyncio
    async def test_ensure_profile_twice_at_once(self, async_engine) -> None:
        repo = TenancyRepository(async_engine)
        first, second = await asyncio.gather(
            repo.ensure_profile("user-9", "nine@example.com", "Nina"),
            repo.ensure_profile("user-9", "nine@example.com", "Nina"),
        )
        assert first.id == second.id == "user-9"

    @pytest.mark.asyncio
    async def test_resolve_twice_at_once(self, async_engine) -> None:
        repo = TenancyRepository(async_engine)
        profile = await repo.ensure_profile("user-9", "nine@example.com", "Nina")
        first, second = await asyncio.gather(repo.resolve(profile), repo.resolve(profile))
        assert first.business.id == second.business.id
        assert first.role == second.role == "owner"
        assert len(await repo.list_user_businesses("user-9")) == 1
        stored = await repo.get_profile("user-9")
        assert stored.default_business_id == first.business.id

@pytest.mark.integration
class TestProfile:
    @pytest.mark.asyncio
    async def test_get_profile(self, http, bearer) -> None:
        resp = await http.get("/functions/v1/get-profile", headers=bearer())
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["profile"]["id"] == "user-1"
        assert data["profile"]["email"] == "owner@example.com"
        assert data["profile"]["fullName"] == "Olivia Owner"
        assert data["profile"]["defaultBusinessId"] == data["business"]["id"]

    @pytest.mark.asyncio
    async def test_owner_updates_profile_and_business_name(self, http, bearer) -> None:
        resp = await http.post(
            "/functions/v1/profile-update",
            json={
                "fullName": "  Olivia O. ",
                "businessName": "Acme Plumbing",
                "phoneRaw": "(555) 123-4567",
            },
            headers=bearer(),
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["profile"]["fullName"] == "Olivia O."
        assert data["profile"]["phoneE164"] == "+15551234567"
        assert data["business"]["name"] == "Acme Plumbing"
        assert data["business"]["nameCustomized"] is True

        bootstrap = await _bootstrap(http, bearer())
        assert bootstrap["business"]["name"] == "Acme Plumbing"

    @pytest.mark.asyncio
    async def test_full_name_required(self, http, bearer) -> None:
        resp = await http.post(
            "/functions/v1/profile-update", json={"fullName": "   "}, headers=bearer()
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Full name is required"}

    @pytest.mark.asyncio
    async def test_invalid_phone(self, http, bearer) -> None:
        resp = await http.post(
            "/functions/v1/profile-update",
            json={"fullName": "Olivia", "phoneRaw": "12"},
            headers=bearer(),
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Phone number must be a valid US number"}

    @pytest.mark.asyncio
    async def test_worker_cannot_rename_business(self, http, bearer) -> None:
        business_id = await _join_as_worker(http, bearer)
        resp = await http.post(
            "/functions/v1/profile-update",
            json={"fullName": "Wes", "businessName": "Mine Now"},
            headers=bearer(business_id=business_id, **WORKER),
        )
        assert resp.status_code == 403
