"""Client-side query cache with stale-time, request deduplication and invalidation."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from servicegrid.cache.keys import matches
from servicegrid.exceptions import ApiError
from servicegrid.types import QueryKey, QueryStatus, RefetchType
from servicegrid.utils.retry import retry

logger = structlog.get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
StateListener = Callable[["QueryState"], None]

_DEFAULT_STALE_SECONDS = 30.0


def should_retry(exc: Exception) -> bool:
    """401s and CORS rejections fail immediately; everything else is retried."""
    if isinstance(exc, ApiError):
        return exc.retryable
    return True


@dataclass
class QueryState:
    """Cached result and bookkeeping for one query key."""

    key: QueryKey
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: Exception | None = None
    updated_at: float = 0.0
    stale_time: float = _DEFAULT_STALE_SECONDS
    invalidated: bool = False
    is_fetching: bool = False
    observers: int = 0
    fetcher: Fetcher | None = field(default=None, repr=False)
    task: asyncio.Task[Any] | None = field(default=None, repr=False)

    def is_stale(self, now: float) -> bool:
        if self.status != QueryStatus.SUCCESS or self.invalidated:
            return True
        return now - self.updated_at >= self.stale_time

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()


class QueryCache:
    """Shared cache object for every query and mutation of one client.

    Runs on a single event loop; concurrent fetches of the same key share one
    in-flight task instead of issuing duplicate requests.
    """

    def __init__(
        self,
        *,
        stale_time: float = _DEFAULT_STALE_SECONDS,
        retries: int = 2,
        retry_delay_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stale_time = stale_time
        self._retries = retries
        self._retry_delay_ms = retry_delay_ms
        self._clock = clock
        self._entries: dict[QueryKey, QueryState] = {}
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_state(self, key: QueryKey) -> QueryState | None:
        return self._entries.get(key)

    def get_query_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def is_stale(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.is_stale(self._clock())

    async def fetch(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        *,
        stale_time: float | None = None,
        enabled: bool = True,
        force: bool = False,
    ) -> Any:
        """Return cached data when fresh, otherwise run (or join) a fetch.

        A disabled query issues no request and returns None.
        """
        if not enabled:
            logger.debug("query_disabled", key=key)
            return None

        entry = self._entry(key)
        entry.fetcher = fetcher
        if stale_time is not None:
            entry.stale_time = stale_time

        if entry.task is not None and not entry.task.done():
            return await self._join(entry, entry.task)

        if not force and not entry.is_stale(self._clock()):
            return entry.data

        entry.task = asyncio.create_task(self._run(entry, fetcher))
        return await self._join(entry, entry.task)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_query_data(self, key: QueryKey, value: Any) -> Any:
        """Replace cached data; ``value`` may be an updater ``old -> new``.

        Returns the previous data so callers can roll back.
        """
        entry = self._entry(key)
        previous = entry.data
        entry.data = value(previous) if callable(value) else value
        entry.status = QueryStatus.SUCCESS
        entry.error = None
        entry.updated_at = self._clock()
        self._notify(entry)
        return previous

    async def invalidate(
        self,
        prefix: QueryKey,
        *,
        exact: bool = False,
        refetch: RefetchType | str = RefetchType.ACTIVE,
    ) -> list[QueryKey]:
        """Mark matching entries stale and refetch the ones selected by ``refetch``."""
        refetch = RefetchType(refetch)
        matched = [k for k in self._entries if matches(prefix, k, exact)]
        pending: list[Awaitable[Any]] = []

        for key in matched:
            entry = self._entries[key]
            entry.invalidated = True
            self._notify(entry)
            wanted = refetch == RefetchType.ALL or (
                refetch == RefetchType.ACTIVE and entry.observers > 0
            )
            if wanted and entry.fetcher is not None:
                pending.append(self._refetch(entry))

        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning("query_refetch_failed", prefix=prefix, error=str(result))

        logger.debug("queries_invalidated", prefix=prefix, count=len(matched), refetch=refetch)
        return matched

    async def cancel(self, prefix: QueryKey, *, exact: bool = False) -> int:
        """Cancel in-flight fetches for matching keys; returns how many were cancelled."""
        cancelled = 0
        for key, entry in list(self._entries.items()):
            if not matches(prefix, key, exact) or entry.task is None or entry.task.done():
                continue
            entry.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await entry.task
            cancelled += 1
        return cancelled

    async def remove(self, prefix: QueryKey, *, exact: bool = False) -> None:
        await self.cancel(prefix, exact=exact)
        for key in [k for k in self._entries if matches(prefix, k, exact)]:
            del self._entries[key]

    async def clear(self) -> None:
        await self.remove(())
        logger.debug("query_cache_cleared")

    def reset(self) -> None:
        """Drop every entry without waiting for cancelled fetches to unwind."""
        for entry in self._entries.values():
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
        self._entries.clear()
        logger.debug("query_cache_reset")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def watch(self, key: QueryKey, fetcher: Fetcher) -> Callable[[], None]:
        """Mark ``key`` as actively observed so invalidation refetches it."""
        entry = self._entry(key)
        entry.fetcher = fetcher
        entry.observers += 1
        released = False

        def _unwatch() -> None:
            nonlocal released
            if released:
                return
            released = True
            current = self._entries.get(key)
            if current is not None and current.observers > 0:
                current.observers -= 1

        return _unwatch

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _entry(self, key: QueryKey) -> QueryState:
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryState(key=key, stale_time=self._stale_time)
            self._entries[key] = entry
        return entry

    async def _join(self, entry: QueryState, task: asyncio.Task[Any]) -> Any:
        """Await a shared fetch; a fetch cancelled through ``cancel`` yields the cached data."""
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or current.cancelling() == 0):
                logger.debug("query_fetch_cancelled", key=entry.key)
                return entry.data
            raise

    async def _refetch(self, entry: QueryState) -> Any:
        if entry.task is not None and not entry.task.done():
            # A request that started before the invalidation may carry old data
            await asyncio.wait({entry.task})
        if entry.fetcher is None:
            return entry.data
        return await self.fetch(entry.key, entry.fetcher, force=True)

    async def _run(self, entry: QueryState, fetcher: Fetcher) -> Any:
        if entry.status != QueryStatus.SUCCESS:
            entry.status = QueryStatus.PENDING
        entry.is_fetching = True
        self._notify(entry)

        attempt = retry(
            max_attempts=self._retries + 1,
            delay_ms=self._retry_delay_ms,
            retry_if=should_retry,
        )(fetcher)
        try:
            data = await attempt()
        except asyncio.CancelledError:
            entry.is_fetching = False
            if entry.status == QueryStatus.PENDING:
                entry.status = QueryStatus.IDLE
            self._notify(entry)
            raise
        except Exception as exc:
            entry.status = QueryStatus.ERROR
            entry.error = exc
            entry.is_fetching = False
            self._notify(entry)
            logger.warning("query_failed", key=entry.key, error=str(exc))
            raise

        entry.data = data
        entry.status = QueryStatus.SUCCESS
        entry.error = None
        entry.updated_at = self._clock()
        entry.invalidated = False
        entry.is_fetching = False
        self._notify(entry)
        return data

    def _notify(self, entry: QueryState) -> None:
        for listener in list(self._listeners):
            listener(entry)
