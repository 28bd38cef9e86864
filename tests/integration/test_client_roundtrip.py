"""The client data layer driving the real functions app in-process."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from servicegrid.auth.kernel import AuthKernel
from servicegrid.auth.providers import StaticTokenProvider
from servicegrid.cache.query_cache import QueryCache
from servicegrid.client.events import BUSINESS_UPDATED
from servicegrid.client.facade import ServiceGridClient
from servicegrid.client.notify import RecordingNotifier
from servicegrid.config.settings import Settings
from servicegrid.exceptions import ApiError, BootstrapError
from servicegrid.types import AuthPhase, QueryStatus

FUNCTIONS_URL = "http://test/functions/v1"


@pytest.fixture()
async def asgi_http(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture()
def make_client(asgi_http):
    def _make(token: str) -> ServiceGridClient:
        provider = StaticTokenProvider(token, user_id="user-1")
        kernel = AuthKernel(provider, FUNCTIONS_URL, http=asgi_http)
        return ServiceGridClient(
            kernel,
            settings=Settings(),
            http=asgi_http,
            cache=QueryCache(retries=0),
            notifier=RecordingNotifier(),
        )

    return _make


@pytest.mark.integration
class TestClientRoundTrip:
    @pytest.mark.asyncio
    async def test_bootstrap_then_crud(self, make_client, mint_token) -> None:
        client = make_client(mint_token())
        snapshot = await client.kernel.start()
        assert snapshot.phase == AuthPhase.AUTHENTICATED
        assert snapshot.business_name == "Olivia Owner's Business"

        customers = client.query("customers")
        empty = await customers.fetch()
        assert empty.status == QueryStatus.SUCCESS
        assert empty.data == {"customers": [], "count": 0}

        created = await client.mutate(
            "create-customer", {"name": "Ada", "email": "ada@example.com"}
        )
        customer_id = created["customer"]["id"]
        cached = client.cache.get_query_data(customers.key)
        assert cached["count"] == 1
        assert cached["customers"][0]["id"] == customer_id

        job = await client.mutate("create-job", {"customerId": customer_id, "title": "Fix sink"})
        assert job["job"]["status"] == "Scheduled"
        await client.mutate("update-job-status", {"id": job["job"]["id"], "status": "Completed"})

        summary = await client.query("dashboard").get()
        assert summary["customers"] == 1
        assert summary["jobs"]["completed"] == 1

        await client.mutate("delete-customer", {"id": customer_id})
        after = await customers.get(force=True)
        assert after["count"] == 0
        assert client.notifier.successes[0] == "Customer created successfully!"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_profile_update_emits_business_updated(self, make_client, mint_token) -> None:
        client = make_client(mint_token())
        await client.kernel.start()
        seen = []
        client.events.subscribe(BUSINESS_UPDATED, seen.append)

        await client.mutate("update-profile", {"fullName": "Olivia", "businessName": "Acme"})
        assert len(seen) == 1

        await client.kernel.refresh()
        assert client.kernel.snapshot.business_name == "Acme"

    @pytest.mark.asyncio
    async def test_validation_error_surfaces(self, make_client, mint_token) -> None:
        client = make_client(mint_token())
        await client.kernel.start()
        with pytest.raises(ApiError) as excinfo:
            await client.mutate("create-customer", {"name": "Ada", "email": "nope"})
        assert excinfo.value.status == 400
        assert excinfo.value.message == "Invalid email format"
        assert client.notifier.errors == ["Failed to create customer"]

    @pytest.mark.asyncio
    async def test_switch_to_foreign_business_is_refused(self, make_client, mint_token) -> None:
        client = make_client(mint_token())
        await client.kernel.start()
        business_id = client.context().business_id
        with pytest.raises(BootstrapError):
            await client.kernel.switch_business("someone-elses")
        assert client.context().business_id == business_id

    @pytest.mark.asyncio
    async def test_invalid_token_locks(self, make_client) -> None:
        client = make_client("not-a-jwt")
        snapshot = await client.kernel.start()
        assert snapshot.phase == AuthPhase.LOCKED
        assert "401" in (snapshot.error or "")
        result = await client.query("customers").fetch()
        assert result.is_idle
