"""Client facade wiring the auth kernel, API client, cache and data operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from servicegrid.auth.tenancy import BusinessContext, business_context_from
from servicegrid.cache.graph import InvalidationGraph, build_default_graph
from servicegrid.cache.query_cache import QueryCache
from servicegrid.client.api import ApiClient
from servicegrid.client.events import ClientEventBus
from servicegrid.client.notify import LogNotifier, Notifier
from servicegrid.config.settings import get_settings
from servicegrid.data.mutations import MUTATIONS, Mutation
from servicegrid.data.queries import RESOURCES, ResourceQuery

if TYPE_CHECKING:
    import httpx

    from servicegrid.auth.kernel import AuthKernel
    from servicegrid.auth.snapshot import AuthSnapshot
    from servicegrid.config.settings import Settings

logger = structlog.get_logger(__name__)


class ServiceGridClient:
    """Everything feature code needs to read and write tenant data.

    All credentials flow from the kernel's AuthSnapshot; nothing here talks to
    an identity provider directly.
    """

    def __init__(
        self,
        kernel: AuthKernel,
        *,
        settings: Settings | None = None,
        http: httpx.AsyncClient | None = None,
        cache: QueryCache | None = None,
        graph: InvalidationGraph | None = None,
        notifier: Notifier | None = None,
        events: ClientEventBus | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._kernel = kernel
        self.api = ApiClient(
            settings.functions_url,
            kernel.get_auth_headers,
            kernel.handle_auth_error,
            http=http,
            timeout=settings.request_timeout_seconds,
        )
        self.cache = cache or QueryCache(
            stale_time=settings.query_stale_seconds, retries=settings.query_retries
        )
        self.graph = graph or build_default_graph()
        self.notifier: Notifier = notifier or LogNotifier()
        self.events = events or ClientEventBus()
        self._unsubscribe = kernel.subscribe(self._on_snapshot)

    @property
    def kernel(self) -> AuthKernel:
        return self._kernel

    def context(self) -> BusinessContext:
        return business_context_from(self._kernel.snapshot)

    def query(self, resource: str, **filters: Any) -> ResourceQuery:
        try:
            spec = RESOURCES[resource]
        except KeyError:
            msg = f"Unknown resource: {resource}"
            raise KeyError(msg) from None
        return ResourceQuery(spec, self.api, self.cache, self.context, filters or None)

    def mutation(self, name: str) -> Mutation:
        try:
            spec = MUTATIONS[name]
        except KeyError:
            msg = f"Unknown mutation: {name}"
            raise KeyError(msg) from None
        return Mutation(
            spec, self.api, self.cache, self.graph, self.context, self.notifier, self.events
        )

    async def mutate(self, name: str, payload: dict[str, Any] | None = None) -> Any:
        return await self.mutation(name).run(payload)

    async def aclose(self) -> None:
        self._unsubscribe()
        await self.cache.clear()
        await self.api.aclose()

    def _on_snapshot(self, previous: AuthSnapshot, current: AuthSnapshot) -> None:
        # Data cached for one tenant must never be served to another
        if (previous.business_id, previous.user_id) == (current.business_id, current.user_id):
            return
        logger.info(
            "tenant_changed_clearing_cache",
            previous_business=previous.business_id,
            business_id=current.business_id,
        )
        self.cache.reset()
