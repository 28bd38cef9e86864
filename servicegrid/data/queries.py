"""Per-resource queries: tenant-scoped, cached, authenticated GETs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from servicegrid.cache.keys import query_keys
from servicegrid.exceptions import ApiError
from servicegrid.types import QueryKey, QueryStatus

if TYPE_CHECKING:
    from servicegrid.auth.tenancy import BusinessContext
    from servicegrid.cache.query_cache import QueryCache
    from servicegrid.client.api import ApiClient

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResourceSpec:
    """How one resource is fetched and cached."""

    name: str
    endpoint: str
    key_factory: Callable[[str, dict[str, Any] | None], QueryKey]
    envelope_key: str | None = None
    stale_time: float | None = None
    tenant_scoped: bool = True

    def key(self, business_id: str | None, filters: dict[str, Any] | None = None) -> QueryKey:
        return self.key_factory(business_id or "", filters)


@dataclass(frozen=True, slots=True)
class QueryResult:
    status: QueryStatus
    data: Any = None
    error: Exception | None = None
    is_stale: bool = False

    @property
    def is_idle(self) -> bool:
        return self.status == QueryStatus.IDLE


def _unscoped(key: QueryKey) -> Callable[[str, dict[str, Any] | None], QueryKey]:
    def _build(_business_id: str, _filters: dict[str, Any] | None) -> QueryKey:
        return key

    return _build


RESOURCES: dict[str, ResourceSpec] = {
    spec.name: spec
    for spec in (
        ResourceSpec("customers", "customers-crud", query_keys.data.customers, "customers"),
        ResourceSpec("jobs", "jobs-crud", query_keys.data.jobs, "jobs"),
        ResourceSpec("quotes", "quotes-crud", query_keys.data.quotes, "quotes"),
        ResourceSpec("invoices", "invoices-crud", query_keys.data.invoices, "invoices"),
        ResourceSpec(
            "business-members",
            "business-members",
            lambda business_id, _filters: query_keys.team.members(business_id),
            "members",
        ),
        ResourceSpec(
            "user-businesses",
            "user-businesses",
            _unscoped(query_keys.team.user_businesses()),
            "businesses",
            tenant_scoped=False,
        ),
        ResourceSpec(
            "profile",
            "get-profile",
            _unscoped(query_keys.session.profile()),
            "profile",
            stale_time=300.0,
            tenant_scoped=False,
        ),
        ResourceSpec(
            "dashboard",
            "dashboard-data",
            _unscoped(query_keys.dashboard.summary()),
        ),
    )
}


class ResourceQuery:
    """One query instance bound to a resource, a tenant and optional filters."""

    def __init__(
        self,
        spec: ResourceSpec,
        api: ApiClient,
        cache: QueryCache,
        context: Callable[[], BusinessContext],
        filters: dict[str, Any] | None = None,
    ) -> None:
        self._spec = spec
        self._api = api
        self._cache = cache
        self._context = context
        self._filters = dict(filters or {})

    @property
    def spec(self) -> ResourceSpec:
        return self._spec

    @property
    def key(self) -> QueryKey:
        return self._spec.key(self._context().business_id, self._filters)

    @property
    def enabled(self) -> bool:
        """Tenant-scoped queries stay disabled until a business is resolved."""
        ctx = self._context()
        if self._spec.tenant_scoped:
            return bool(ctx.business_id)
        return ctx.user_id is not None or bool(ctx.business_id)

    async def fetch(self, force: bool = False) -> QueryResult:
        if not self.enabled:
            return QueryResult(status=QueryStatus.IDLE)
        key = self.key
        try:
            data = await self._cache.fetch(
                key, self._request, stale_time=self._spec.stale_time, force=force
            )
        except ApiError as exc:
            return QueryResult(status=QueryStatus.ERROR, error=exc, is_stale=True)
        return QueryResult(
            status=QueryStatus.SUCCESS, data=data, is_stale=self._cache.is_stale(key)
        )

    async def get(self, force: bool = False) -> Any:
        """Fetch and return the data, raising ApiError on failure."""
        result = await self.fetch(force=force)
        if result.error is not None:
            raise result.error
        return result.data

    def watch(self) -> Callable[[], None]:
        """Register this query as an active observer; returns the release callable."""
        return self._cache.watch(self.key, self._request)

    async def _request(self) -> Any:
        params = {k: v for k, v in self._filters.items() if v is not None}
        return await self._api.invoke(self._spec.endpoint, method="GET", params=params or None)
