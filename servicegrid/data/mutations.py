"""Per-operation mutations: call an edge function, then invalidate dependents."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from servicegrid.client.events import BUSINESS_UPDATED, ClientEvent
from servicegrid.data.queries import RESOURCES
from servicegrid.exceptions import ApiError
from servicegrid.types import QueryKey, RefetchType

if TYPE_CHECKING:
    from servicegrid.auth.tenancy import BusinessContext
    from servicegrid.cache.graph import InvalidationGraph
    from servicegrid.cache.query_cache import QueryCache
    from servicegrid.client.api import ApiClient
    from servicegrid.client.events import ClientEventBus
    from servicegrid.client.notify import Notifier

logger = structlog.get_logger(__name__)

CacheUpdater = Callable[[Any, Any], Any]


@dataclass(frozen=True, slots=True)
class CacheWrite:
    """Write ``apply(old_data, value)`` into the unfiltered list of ``resource``."""

    resource: str
    apply: CacheUpdater


@dataclass(frozen=True, slots=True)
class MutationSpec:
    name: str
    endpoint: str
    method: str = "POST"
    affects: tuple[str, ...] = ()
    success_message: str | None = None
    error_message: str | None = None
    optimistic: CacheWrite | None = None
    on_success: CacheWrite | None = None
    events: tuple[str, ...] = ()
    tenant_scoped: bool = True
    query_fields: tuple[str, ...] = ()
    body: Callable[[dict[str, Any]], dict[str, Any]] | None = field(default=None)


# ---------------------------------------------------------------------------
# Cache list helpers. Lists are cached as {"<items>": [...], "count": n}.
# ---------------------------------------------------------------------------


def prepend_item(list_field: str, item_field: str) -> CacheUpdater:
    def _apply(old: Any, result: Any) -> Any:
        item = result.get(item_field) if isinstance(result, dict) else None
        if item is None:
            return old
        if not old:
            return {list_field: [item], "count": 1}
        return {
            **old,
            list_field: [item, *old.get(list_field, [])],
            "count": old.get("count", 0) + 1,
        }

    return _apply


def remove_item(list_field: str, id_field: str = "id", match_field: str = "id") -> CacheUpdater:
    def _apply(old: Any, payload: Any) -> Any:
        if not old:
            return old
        target = payload.get(id_field)
        items = [i for i in old.get(list_field, []) if i.get(match_field) != target]
        removed = len(old.get(list_field, [])) - len(items)
        updated = {**old, list_field: items}
        if "count" in old:
            updated["count"] = max(0, old["count"] - removed)
        return updated

    return _apply


def patch_item(list_field: str, id_field: str = "id") -> CacheUpdater:
    def _apply(old: Any, payload: Any) -> Any:
        if not old:
            return old
        target = payload.get(id_field)
        changes = {k: v for k, v in payload.items() if k != id_field}
        items = [
            {**i, **changes} if i.get("id") == target else i for i in old.get(list_field, [])
        ]
        return {**old, list_field: items}

    return _apply


def _send_invoice_body(payload: dict[str, Any]) -> dict[str, Any]:
    return {"action": "send", **payload}


MUTATIONS: dict[str, MutationSpec] = {
    spec.name: spec
    for spec in (
        MutationSpec(
            "create-customer",
            "customers-crud",
            affects=("customers",),
            success_message="Customer created successfully!",
            error_message="Failed to create customer",
            on_success=CacheWrite("customers", prepend_item("customers", "customer")),
        ),
        MutationSpec(
            "update-customer",
            "customers-crud",
            method="PUT",
            affects=("customers",),
            success_message="Customer updated successfully!",
            error_message="Failed to update customer",
            optimistic=CacheWrite("customers", patch_item("customers")),
        ),
        MutationSpec(
            "delete-customer",
            "customers-crud",
            method="DELETE",
            affects=("customers",),
            success_message="Customer deleted",
            error_message="Failed to delete customer",
            optimistic=CacheWrite("customers", remove_item("customers")),
            query_fields=("id",),
        ),
        MutationSpec(
            "create-job",
            "jobs-crud",
            affects=("jobs",),
            success_message="Job created successfully!",
            error_message="Failed to create job",
            on_success=CacheWrite("jobs", prepend_item("jobs", "job")),
        ),
        MutationSpec(
            "update-job",
            "jobs-crud",
            method="PUT",
            affects=("jobs",),
            success_message="Job updated successfully!",
            error_message="Failed to update job",
            optimistic=CacheWrite("jobs", patch_item("jobs")),
        ),
        MutationSpec(
            "update-job-status",
            "jobs-crud",
            method="PUT",
            affects=("jobs",),
            error_message="Failed to update job status",
            optimistic=CacheWrite("jobs", patch_item("jobs")),
        ),
        MutationSpec(
            "delete-job",
            "jobs-crud",
            method="DELETE",
            affects=("jobs",),
            success_message="Job deleted",
            error_message="Failed to delete job",
            optimistic=CacheWrite("jobs", remove_item("jobs")),
            query_fields=("id",),
        ),
        MutationSpec(
            "create-quote",
            "quotes-crud",
            affects=("quotes",),
            success_message="Quote created successfully!",
            error_message="Failed to create quote",
            on_success=CacheWrite("quotes", prepend_item("quotes", "quote")),
        ),
        MutationSpec(
            "update-quote",
            "quotes-crud",
            method="PUT",
            affects=("quotes",),
            success_message="Quote updated successfully!",
            error_message="Failed to update quote",
            optimistic=CacheWrite("quotes", patch_item("quotes")),
        ),
        MutationSpec(
            "create-invoice",
            "invoices-crud",
            affects=("invoices",),
            success_message="Invoice created successfully!",
            error_message="Failed to create invoice",
            on_success=CacheWrite("invoices", prepend_item("invoices", "invoice")),
        ),
        MutationSpec(
            "update-invoice",
            "invoices-crud",
            method="PUT",
            affects=("invoices",),
            success_message="Invoice updated successfully!",
            error_message="Failed to update invoice",
            optimistic=CacheWrite("invoices", patch_item("invoices")),
        ),
        MutationSpec(
            "send-invoice",
            "invoices-crud",
            affects=("invoices",),
            success_message="Invoice sent successfully!",
            error_message="Failed to send invoice",
            body=_send_invoice_body,
        ),
        MutationSpec(
            "update-profile",
            "profile-update",
            affects=("profile",),
            success_message="Profile updated",
            error_message="Failed to update profile",
            events=(BUSINESS_UPDATED,),
        ),
        MutationSpec(
            "add-team-member",
            "add-team-member",
            affects=("business-members",),
            success_message="Team member added",
            error_message="Failed to add team member",
        ),
        MutationSpec(
            "remove-business-access",
            "remove-business-access",
            affects=("user-businesses",),
            success_message="Business access removed",
            error_message="Failed to remove business access",
            optimistic=CacheWrite(
                "user-businesses", remove_item("businesses", id_field="businessId")
            ),
            tenant_scoped=False,
        ),
    )
}


class Mutation:
    """Runs one MutationSpec against the API, cache and invalidation graph.

    No idempotency keys and no conflict detection: the last write wins.
    """

    def __init__(
        self,
        spec: MutationSpec,
        api: ApiClient,
        cache: QueryCache,
        graph: InvalidationGraph,
        context: Callable[[], BusinessContext],
        notifier: Notifier,
        events: ClientEventBus,
    ) -> None:
        self._spec = spec
        self._api = api
        self._cache = cache
        self._graph = graph
        self._context = context
        self._notifier = notifier
        self._events = events

    @property
    def spec(self) -> MutationSpec:
        return self._spec

    async def run(self, payload: dict[str, Any] | None = None) -> Any:
        spec = self._spec
        payload = dict(payload or {})
        ctx = self._context()
        business_id = ctx.require_business_id() if spec.tenant_scoped else ctx.business_id

        rollback = await self._apply_optimistic(payload, business_id)

        params = {f: payload[f] for f in spec.query_fields if f in payload}
        body = spec.body(payload) if spec.body else payload
        if spec.method == "DELETE":
            body = None
        try:
            result = await self._api.invoke(
                spec.endpoint, method=spec.method, body=body, params=params or None
            )
        except ApiError as exc:
            for key, previous in rollback:
                self._cache.set_query_data(key, previous)
            logger.warning(
                "mutation_failed",
                mutation=spec.name,
                status=exc.status,
                error=exc.message,
                rolled_back=len(rollback),
            )
            self._notifier.error(spec.error_message or exc.message)
            raise

        if spec.on_success is not None:
            key = self._list_key(spec.on_success.resource, business_id)
            self._cache.set_query_data(key, lambda old: spec.on_success.apply(old, result))

        invalidated = await self._invalidate(business_id)
        logger.info(
            "mutation_succeeded",
            mutation=spec.name,
            business_id=business_id,
            invalidated=len(invalidated),
        )
        if spec.success_message:
            self._notifier.success(spec.success_message)
        for event_type in spec.events:
            self._events.dispatch(
                ClientEvent(type=event_type, detail={"mutation": spec.name, "result": result})
            )
        return result

    async def _apply_optimistic(
        self, payload: dict[str, Any], business_id: str | None
    ) -> list[tuple[QueryKey, Any]]:
        write = self._spec.optimistic
        if write is None:
            return []
        key = self._list_key(write.resource, business_id)
        # An in-flight fetch would overwrite the optimistic value when it lands
        await self._cache.cancel(key, exact=True)
        previous = self._cache.get_query_data(key)
        if previous is None:
            return []
        self._cache.set_query_data(key, lambda old: write.apply(old, payload))
        return [(key, previous)]

    async def _invalidate(self, business_id: str | None) -> list[QueryKey]:
        keys: list[QueryKey] = []
        for resource in self._spec.affects:
            for key in self._graph.keys_for(resource, business_id):
                if key not in keys:
                    keys.append(key)
        for key in keys:
            await self._cache.invalidate(key, refetch=RefetchType.ACTIVE)
        return keys

    @staticmethod
    def _list_key(resource: str, business_id: str | None) -> QueryKey:
        return RESOURCES[resource].key(business_id)
