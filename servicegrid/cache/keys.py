"""Query key registry.

Every cached result is addressed by a tuple ``(resource, business_id, *filters)``.
Keys that are not tenant-scoped (the signed-in profile, for example) have no
business id component.
"""

from __future__ import annotations

from typing import Any

from servicegrid.types import QueryKey


def _filters(filters: dict[str, Any] | None) -> tuple[Any, ...]:
    if not filters:
        return ()
    # Sorted so {"a": 1, "b": 2} and {"b": 2, "a": 1} share a cache entry
    return (tuple(sorted(filters.items())),)


class _DataKeys:
    def customers(self, business_id: str, filters: dict[str, Any] | None = None) -> QueryKey:
        return ("customers", business_id, *_filters(filters))

    def jobs(self, business_id: str, filters: dict[str, Any] | None = None) -> QueryKey:
        return ("jobs", business_id, *_filters(filters))

    def quotes(self, business_id: str, filters: dict[str, Any] | None = None) -> QueryKey:
        return ("quotes", business_id, *_filters(filters))

    def invoices(self, business_id: str, filters: dict[str, Any] | None = None) -> QueryKey:
        return ("invoices", business_id, *_filters(filters))


class _TeamKeys:
    def members(self, business_id: str) -> QueryKey:
        return ("business-members", business_id)

    def user_businesses(self) -> QueryKey:
        return ("user-businesses",)


class _SessionKeys:
    def profile(self) -> QueryKey:
        return ("profile.current",)

    def business(self) -> QueryKey:
        return ("business.current",)


class _DashboardKeys:
    def summary(self) -> QueryKey:
        return ("dashboard.summary",)

    def legacy_data(self) -> QueryKey:
        return ("dashboard-data",)


class QueryKeys:
    data = _DataKeys()
    team = _TeamKeys()
    session = _SessionKeys()
    dashboard = _DashboardKeys()


query_keys = QueryKeys()


def matches(prefix: QueryKey, key: QueryKey, exact: bool = False) -> bool:
    """True when ``key`` is ``prefix`` or (unless ``exact``) starts with it."""
    if exact:
        return key == prefix
    return key[: len(prefix)] == prefix
