"""Resource dependency graph used to decide which queries a mutation invalidates."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable

import structlog

from servicegrid.cache.keys import query_keys
from servicegrid.types import QueryKey

logger = structlog.get_logger(__name__)

KeyFactory = Callable[[str | None], QueryKey]


class InvalidationGraph:
    """Maps resources to the queries that depend on them.

    ``depends_on("dashboard", "jobs")`` means a jobs mutation also invalidates
    the dashboard. Traversal is transitive and tolerates cycles.
    """

    def __init__(self) -> None:
        self._factories: dict[str, KeyFactory] = {}
        self._dependents: dict[str, list[str]] = {}

    def register(self, resource: str, key_factory: KeyFactory) -> None:
        self._factories[resource] = key_factory
        self._dependents.setdefault(resource, [])

    def depends_on(self, dependent: str, *sources: str) -> None:
        for source in sources:
            for name in (dependent, source):
                if name not in self._factories:
                    msg = f"Unknown resource: {name}"
                    raise KeyError(msg)
            edges = self._dependents.setdefault(source, [])
            if dependent not in edges:
                edges.append(dependent)

    @property
    def resources(self) -> list[str]:
        return list(self._factories)

    def affected(self, resource: str) -> list[str]:
        """``resource`` followed by everything reachable from it, breadth first."""
        if resource not in self._factories:
            msg = f"Unknown resource: {resource}"
            raise KeyError(msg)
        seen = [resource]
        queue = deque([resource])
        while queue:
            for dependent in self._dependents.get(queue.popleft(), []):
                if dependent not in seen:
                    seen.append(dependent)
                    queue.append(dependent)
        return seen

    def keys_for(self, resource: str, business_id: str | None) -> list[QueryKey]:
        """Query key prefixes to invalidate after ``resource`` changes."""
        keys: list[QueryKey] = []
        for name in self.affected(resource):
            key = self._factories[name](business_id)
            if key not in keys:
                keys.append(key)
        return keys


def _scoped(factory: Callable[[str], QueryKey]) -> KeyFactory:
    def _build(business_id: str | None) -> QueryKey:
        return factory(business_id or "")

    return _build


def build_default_graph() -> InvalidationGraph:
    """Resource dependencies of the field-service data model."""
    graph = InvalidationGraph()
    graph.register("customers", _scoped(query_keys.data.customers))
    graph.register("jobs", _scoped(query_keys.data.jobs))
    graph.register("quotes", _scoped(query_keys.data.quotes))
    graph.register("invoices", _scoped(query_keys.data.invoices))
    graph.register("business-members", _scoped(query_keys.team.members))
    graph.register("user-businesses", lambda _bid: query_keys.team.user_businesses())
    graph.register("profile", lambda _bid: query_keys.session.profile())
    graph.register("business", lambda _bid: query_keys.session.business())
    graph.register("dashboard", lambda _bid: query_keys.dashboard.summary())
    graph.register("dashboard-legacy", lambda _bid: query_keys.dashboard.legacy_data())

    # Customer names and addresses are denormalized into quotes, jobs and invoices
    graph.depends_on("quotes", "customers")
    graph.depends_on("jobs", "customers", "quotes")
    graph.depends_on("invoices", "customers", "quotes")
    graph.depends_on("dashboard", "jobs", "invoices", "quotes", "customers")
    graph.depends_on("business", "profile")
    graph.depends_on("dashboard", "business")
    graph.depends_on("dashboard-legacy", "dashboard")
    graph.depends_on("business-members", "user-businesses")
    return graph
