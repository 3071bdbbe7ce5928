"""Query Runner - fetch-or-serve-from-cache for reads.

- Fresh entry: returned immediately, no network call.
- Stale entry: returned immediately, one background refetch started.
- Missing entry: the caller waits for the fetch; failures are not cached.

Concurrent requests for one key share a single in-flight fetch. A caller
that is cancelled stops waiting, but the shared fetch keeps running for the
remaining waiters and still populates the cache.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from supportsync.keys import CacheKey, KeySelector
from supportsync.logging import get_logger
from supportsync.retry import READ_RETRY, RetryPolicy, call_with_retry
from supportsync.store import CacheStore
from supportsync.types import FreshnessPolicy

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[Any]]

logger = get_logger(__name__)


class QueryRunner:
    """Serves reads through a :class:`CacheStore`."""

    def __init__(self, store: CacheStore, *, retry: RetryPolicy = READ_RETRY) -> None:
        self._store = store
        self._retry = retry
        self._fetchers: dict[CacheKey, tuple[Fetcher, FreshnessPolicy | None]] = {}
        store.on_removed(self._drop_fetcher)

    @property
    def store(self) -> CacheStore:
        return self._store

    async def query(
        self,
        key: CacheKey,
        fn: Callable[[], Awaitable[T]],
        policy: FreshnessPolicy | None = None,
    ) -> T:
        """Return the value for ``key``, fetching with ``fn`` when needed.

        Args:
            key: Cache key of the view
            fn: Async transport call producing the value
            policy: Freshness override for this key (default: policy table)

        Returns:
            Cached or freshly fetched value
        """
        self._fetchers[key] = (fn, policy)
        snapshot = self._store.get(key)

        if snapshot is not None:
            if snapshot.is_stale:
                self._start_fetch(key, fn, policy, background=True)
            return snapshot.value

        task = self._start_fetch(key, fn, policy, background=False)
        # shield: cancelling this caller must not abort the shared fetch
        return await asyncio.shield(task)

    async def fetch(
        self,
        key: CacheKey,
        fn: Callable[[], Awaitable[T]],
        policy: FreshnessPolicy | None = None,
    ) -> T:
        """Always go to the network (joining an in-flight fetch if any)."""
        self._fetchers[key] = (fn, policy)
        return await asyncio.shield(self._start_fetch(key, fn, policy, background=False))

    async def prefetch(
        self,
        key: CacheKey,
        fn: Callable[[], Awaitable[Any]],
        policy: FreshnessPolicy | None = None,
    ) -> None:
        """Warm the cache for ``key`` unless a fresh value is already there."""
        snapshot = self._store.peek(key)
        if snapshot is not None and not snapshot.is_stale:
            return
        self._fetchers[key] = (fn, policy)
        await asyncio.shield(self._start_fetch(key, fn, policy, background=False))

    def refetch(self, selector: KeySelector, *, observed_only: bool = True) -> list[CacheKey]:
        """Start background refetches for stale entries under ``selector``.

        Only keys this runner has fetched before can be refetched. With
        ``observed_only`` (the default) keys nobody subscribes to are left
        for their next reader.
        """
        started = []
        for key in self._store.keys(selector):
            registered = self._fetchers.get(key)
            if registered is None:
                continue
            snapshot = self._store.peek(key)
            if snapshot is None or not snapshot.is_stale:
                continue
            if observed_only and not self._store.is_observed(key):
                continue
            fn, policy = registered
            self._start_fetch(key, fn, policy, background=True)
            started.append(key)
        return started

    def forget(self, selector: KeySelector) -> None:
        """Drop registered fetch functions for keys under ``selector``."""
        for key in [k for k in self._fetchers if selector.matches(k)]:
            del self._fetchers[key]

    def is_registered(self, key: CacheKey) -> bool:
        """Whether ``key`` has a fetch function :meth:`refetch` can reuse."""
        return key in self._fetchers

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _drop_fetcher(self, key: CacheKey) -> None:
        self._fetchers.pop(key, None)

    def _start_fetch(
        self,
        key: CacheKey,
        fn: Fetcher,
        policy: FreshnessPolicy | None,
        *,
        background: bool,
    ) -> asyncio.Task[Any]:
        existing = self._store.in_flight(key)
        if existing is not None:
            return existing

        task = asyncio.create_task(self._run(key, fn, policy))
        self._store.set_in_flight(key, task)
        task.add_done_callback(lambda t: self._finish(key, t, background))
        logger.debug("fetch_started", key=repr(key), background=background)
        return task

    async def _run(self, key: CacheKey, fn: Fetcher, policy: FreshnessPolicy | None) -> Any:
        value = await call_with_retry(fn, self._retry)
        # Applied even if the key was marked stale meanwhile: last response
        # wins, but it stays stale so the next read refetches.
        self._store.put(
            key,
            value,
            policy=policy,
            invalidated=self._store.invalidated_in_flight(key),
        )
        return value

    def _finish(self, key: CacheKey, task: asyncio.Task[Any], background: bool) -> None:
        self._store.clear_in_flight(key, task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            logger.debug("fetch_succeeded", key=repr(key))
        elif background:
            logger.warning("background_refetch_failed", key=repr(key), error=repr(error))
        else:
            logger.info("fetch_failed", key=repr(key), error=repr(error))


__all__ = ["QueryRunner"]
