"""Unit tests for mutations: invalidation, optimistic writes and rollback."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from servicegrid.auth.tenancy import BusinessContext
from servicegrid.cache.graph import build_default_graph
from servicegrid.cache.query_cache import QueryCache
from servicegrid.client.api import ApiClient
from servicegrid.client.events import BUSINESS_UPDATED, ClientEventBus
from servicegrid.client.notify import RecordingNotifier
from servicegrid.data.mutations import MUTATIONS, Mutation
from servicegrid.exceptions import ApiError, TenantError
from servicegrid.types import TenantRole

BASE = "http://test/functions/v1"


class FunctionsServer:
    """Fake edge functions keyed by ``(method, path)``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def respond(self, method: str, name: str, status: int, body: dict) -> None:
        self.responses[(method, f"/functions/v1/{name}")] = httpx.Response(status, json=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        resp = self.responses.get((request.method, request.url.path))
        if resp is None:
            return httpx.Response(404, json={"error": "Not found"})
        return resp


class Harness:
    def __init__(self, business_id: str | None = "b1") -> None:
        self.server = FunctionsServer()
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.server))
        self.api = ApiClient(BASE, http=http)
        self.cache = QueryCache(retries=0)
        self.notifier = RecordingNotifier()
        self.events = ClientEventBus()
        self.ctx = BusinessContext(business_id=business_id, role=TenantRole.OWNER, user_id="u1")
        self.invalidated: list[tuple] = []
        self.cache.subscribe(
            lambda state: self.invalidated.append(state.key) if state.invalidated else None
        )

    def mutation(self, name: str) -> Mutation:
        return Mutation(
            MUTATIONS[name],
            self.api,
            self.cache,
            build_default_graph(),
            lambda: self.ctx,
            self.notifier,
            self.events,
        )


@pytest.mark.unit
class TestProfileUpdate:
    @pytest.mark.asyncio
    async def test_invalidates_profile_dependents(self) -> None:
        h = Harness()
        h.server.respond("POST", "profile-update", 200, {"data": {"profile": {"id": "u1"}}})
        for key in (
            ("profile.current",),
            ("business.current",),
            ("dashboard.summary",),
            ("dashboard-data",),
            ("customers", "b1"),
        ):
            h.cache.set_query_data(key, {"cached": True})
        received = []
        h.events.subscribe(BUSINESS_UPDATED, received.append)

        result = await h.mutation("update-profile").run({"fullName": "Olivia"})

        assert result == {"profile": {"id": "u1"}}
        assert set(h.invalidated) == {
            ("profile.current",),
            ("business.current",),
            ("dashboard.summary",),
            ("dashboard-data",),
        }
        assert h.cache.get_state(("customers", "b1")).invalidated is False
        assert len(received) == 1
        assert received[0].detail["mutation"] == "update-profile"
        assert h.notifier.successes == ["Profile updated"]
        assert json.loads(h.server.requests[0].content) == {"fullName": "Olivia"}

    @pytest.mark.asyncio
    async def test_failure_invalidates_nothing(self) -> None:
        h = Harness()
        h.server.respond("POST", "profile-update", 400, {"error": "Full name is required"})
        h.cache.set_query_data(("profile.current",), {"cached": True})

        with pytest.raises(ApiError, match="Full name is required"):
            await h.mutation("update-profile").run({})

        assert h.invalidated == []
        assert h.notifier.errors == ["Failed to update profile"]
        assert h.notifier.successes == []


@pytest.mark.unit
class TestOptimisticWrites:
    @pytest.mark.asyncio
    async def test_delete_rolls_back_on_error(self) -> None:
        h = Harness()
        h.server.respond("DELETE", "customers-crud", 500, {"error": "boom"})
        original = {"customers": [{"id": "c1"}, {"id": "c2"}], "count": 2}
        h.cache.set_query_data(("customers", "b1"), original)

        with pytest.raises(ApiError):
            await h.mutation("delete-customer").run({"id": "c1"})

        assert h.cache.get_query_data(("customers", "b1")) == original
        assert h.notifier.errors == ["Failed to delete customer"]
        assert h.server.requests[0].url.params["id"] == "c1"
        assert h.server.requests[0].content == b""

    @pytest.mark.asyncio
    async def test_delete_keeps_optimistic_removal(self) -> None:
        h = Harness()
        h.server.respond("DELETE", "customers-crud", 200, {"data": {"id": "c1", "deleted": True}})
        h.cache.set_query_data(("customers", "b1"), {"customers": [{"id": "c1"}], "count": 1})

        await h.mutation("delete-customer").run({"id": "c1"})

        assert h.cache.get_query_data(("customers", "b1")) == {"customers": [], "count": 0}
        assert ("customers", "b1") in h.invalidated

    @pytest.mark.asyncio
    async def test_update_patches_item(self) -> None:
        h = Harness()
        h.server.respond("PUT", "jobs-crud", 200, {"data": {"job": {"id": "j1"}}})
        h.cache.set_query_data(
            ("jobs", "b1"), {"jobs": [{"id": "j1", "status": "Scheduled"}], "count": 1}
        )
        await h.mutation("update-job-status").run({"id": "j1", "status": "Completed"})
        assert h.cache.get_query_data(("jobs", "b1"))["jobs"][0]["status"] == "Completed"

    @pytest.mark.asyncio
    async def test_reader_in_flight_during_optimistic_update(self) -> None:
        h = Harness()
        h.server.respond("PUT", "customers-crud", 200, {"data": {"customer": {"id": "c1"}}})
        h.cache.set_query_data(("customers", "b1"), {"customers": [{"id": "c1", "name": "Ada"}]})
        started = asyncio.Event()

        async def slow_fetch() -> dict:
            started.set()
            await asyncio.Event().wait()
            return {}

        reader = asyncio.create_task(h.cache.fetch(("customers", "b1"), slow_fetch, force=True))
        await started.wait()

        await h.mutation("update-customer").run({"id": "c1", "name": "Grace"})

        seen = await reader
        assert seen["customers"][0]["id"] == "c1"
        cached = h.cache.get_query_data(("customers", "b1"))
        assert cached["customers"][0]["name"] == "Grace"

    @pytest.mark.asyncio
    async def test_create_prepends(self) -> None:
        h = Harness()
        created = {"id": "c2", "name": "Grace"}
        h.server.respond("POST", "customers-crud", 201, {"data": {"customer": created}})
        h.cache.set_query_data(("customers", "b1"), {"customers": [{"id": "c1"}], "count": 1})

        await h.mutation("create-customer").run({"name": "Grace"})

        cached = h.cache.get_query_data(("customers", "b1"))
        assert cached["customers"][0] == created
        assert cached["count"] == 2
        assert h.notifier.successes == ["Customer created successfully!"]

    @pytest.mark.asyncio
    async def test_remove_business_access(self) -> None:
        h = Harness()
        h.server.respond(
            "POST", "remove-business-access", 200, {"data": {"businessId": "b2", "removed": True}}
        )
        h.cache.set_query_data(
            ("user-businesses",), {"businesses": [{"id": "b1"}, {"id": "b2"}], "count": 2}
        )
        await h.mutation("remove-business-access").run({"businessId": "b2"})
        assert h.cache.get_query_data(("user-businesses",)) == {
            "businesses": [{"id": "b1"}],
            "count": 1,
        }
        assert ("user-businesses",) in h.invalidated


@pytest.mark.unit
class TestTenantScope:
    @pytest.mark.asyncio
    async def test_scoped_mutation_needs_business(self) -> None:
        h = Harness(business_id=None)
        with pytest.raises(TenantError):
            await h.mutation("create-customer").run({"name": "Ada"})
        assert h.server.requests == []

    @pytest.mark.asyncio
    async def test_send_invoice_body(self) -> None:
        h = Harness()
        h.server.respond("POST", "invoices-crud", 200, {"data": {"invoice": {"id": "i1"}}})
        await h.mutation("send-invoice").run({"id": "i1"})
        assert json.loads(h.server.requests[0].content) == {"action": "send", "id": "i1"}
