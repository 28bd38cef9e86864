"""Unit tests for tenant-scoped resource queries."""

from __future__ import annotations

import httpx
import pytest

from servicegrid.auth.tenancy import BusinessContext
from servicegrid.cache.query_cache import QueryCache
from servicegrid.client.api import ApiClient
from servicegrid.data.queries import RESOURCES, ResourceQuery
from servicegrid.exceptions import ApiError
from servicegrid.types import QueryStatus, TenantRole

BASE = "http://test/functions/v1"


class CustomersServer:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "Internal error"})
        customers = [{"id": "c1", "name": "Ada"}]
        return httpx.Response(200, json={"data": {"customers": customers, "count": 1}})


def _query(server: CustomersServer, business_id: str | None = "b1", **filters) -> ResourceQuery:
    api = ApiClient(BASE, http=httpx.AsyncClient(transport=httpx.MockTransport(server)))
    cache = QueryCache(retries=0)
    ctx = BusinessContext(business_id=business_id, role=TenantRole.OWNER, user_id="u1")
    return ResourceQuery(RESOURCES["customers"], api, cache, lambda: ctx, filters or None)


@pytest.mark.unit
class TestResourceQuery:
    @pytest.mark.asyncio
    async def test_idle_without_business(self) -> None:
        server = CustomersServer()
        query = _query(server, business_id=None)
        result = await query.fetch()
        assert result.is_idle
        assert result.data is None
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        server = CustomersServer()
        query = _query(server)
        result = await query.fetch()
        assert result.status == QueryStatus.SUCCESS
        assert result.data["count"] == 1
        assert result.is_stale is False
        assert query.key == ("customers", "b1")
        assert server.requests[0].url.path == "/functions/v1/customers-crud"
        assert server.requests[0].method == "GET"

    @pytest.mark.asyncio
    async def test_second_fetch_served_from_cache(self) -> None:
        server = CustomersServer()
        query = _query(server)
        await query.fetch()
        await query.fetch()
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_filters_become_params_and_key(self) -> None:
        server = CustomersServer()
        query = _query(server, search="ada", page=None)
        await query.fetch()
        assert server.requests[0].url.params["search"] == "ada"
        assert "page" not in server.requests[0].url.params
        assert query.key[:2] == ("customers", "b1")
        assert len(query.key) == 3

    @pytest.mark.asyncio
    async def test_error_result(self) -> None:
        query = _query(CustomersServer(status=500))
        result = await query.fetch()
        assert result.status == QueryStatus.ERROR
        assert isinstance(result.error, ApiError)
        assert result.error.status == 500

    @pytest.mark.asyncio
    async def test_get_raises(self) -> None:
        with pytest.raises(ApiError, match="Internal error"):
            await _query(CustomersServer(status=500)).get()

    def test_unscoped_resource_enabled_with_user_only(self) -> None:
        api = ApiClient(BASE)
        ctx = BusinessContext(business_id=None, user_id="u1")
        query = ResourceQuery(RESOURCES["user-businesses"], api, QueryCache(), lambda: ctx)
        assert query.enabled
        assert query.key == ("user-businesses",)

    @pytest.mark.asyncio
    async def test_watch_marks_observer(self) -> None:
        query = _query(CustomersServer())
        release = query.watch()
        state = query._cache.get_state(query.key)
        assert state is not None
        assert state.observers == 1
        release()
        release()
        assert state.observers == 0
