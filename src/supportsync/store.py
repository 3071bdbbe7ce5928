"""Cache Store - the one shared mutable structure of a session.

Maps a CacheKey to its cached value, freshness bookkeeping and in-flight
fetch. Everything runs on one event loop and no method awaits while it
mutates, so no locking is needed. Stored values are replaced wholesale by
``put``; ``mark_stale`` and ``remove`` operate on a key or a whole pattern.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from typing import Any

from supportsync.duration import parse_duration
from supportsync.keys import CacheKey, KeySelector
from supportsync.logging import get_logger
from supportsync.policies import PolicyTable
from supportsync.types import (
    CacheEntry,
    CacheEvent,
    CacheEventType,
    CacheSnapshot,
    Duration,
    FreshnessPolicy,
)

logger = get_logger(__name__)

Clock = Callable[[], int]
Listener = Callable[[CacheEvent], None]
RemovalHook = Callable[[CacheKey], None]


class _Everything:
    def matches(self, key: CacheKey) -> bool:
        return True

    def __repr__(self) -> str:
        return "Pattern(*)"


_ALL: Any = _Everything()


def wall_clock() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


class Subscription:
    """Handle returned by :meth:`CacheStore.subscribe`."""

    __slots__ = ("_store", "selector", "callback", "active")

    def __init__(self, store: CacheStore, selector: KeySelector, callback: Listener) -> None:
        self._store = store
        self.selector = selector
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._store._subscriptions.remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class CacheStore:
    """In-memory cache of server-derived entities.

    Usage:
        store = CacheStore()
        store.put(TICKET_KEYS.detail(7), ticket)
        snapshot = store.get(TICKET_KEYS.detail(7))
        store.mark_stale(TICKET_KEYS.lists())
    """

    def __init__(
        self,
        *,
        policies: PolicyTable | None = None,
        clock: Clock = wall_clock,
    ) -> None:
        self._entries: dict[CacheKey, CacheEntry[Any]] = {}
        self._in_flight: dict[CacheKey, asyncio.Task[Any]] = {}
        self._subscriptions: list[Subscription] = []
        self._policies = policies or PolicyTable()
        self._clock = clock
        # keys invalidated while their fetch was running
        self._stale_in_flight: set[CacheKey] = set()
        self._removal_hooks: list[RemovalHook] = []
        self._gc_task: asyncio.Task[None] | None = None

    @property
    def policies(self) -> PolicyTable:
        return self._policies

    def now(self) -> int:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: CacheKey) -> CacheSnapshot[Any] | None:
        """Return the cached snapshot for ``key`` and record the observation."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self.now()
        self._entries[key] = replace(entry, observed_at=now)
        return CacheSnapshot(entry.value, entry.fetched_at, entry.is_stale(now))

    def peek(self, key: CacheKey) -> CacheSnapshot[Any] | None:
        """Like :meth:`get` without counting as an observation."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return CacheSnapshot(entry.value, entry.fetched_at, entry.is_stale(self.now()))

    def keys(self, selector: KeySelector | None = None) -> list[CacheKey]:
        if selector is None:
            return list(self._entries)
        return [key for key in self._entries if selector.matches(key)]

    def values(self, selector: KeySelector) -> Iterator[tuple[CacheKey, Any]]:
        """Iterate (key, value) for every entry under ``selector``."""
        for key, entry in list(self._entries.items()):
            if selector.matches(key):
                yield key, entry.value

    def policy_for(self, key: CacheKey) -> FreshnessPolicy:
        return self._policies.resolve(key)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def put(
        self,
        key: CacheKey,
        value: Any,
        now: int | None = None,
        *,
        policy: FreshnessPolicy | None = None,
        invalidated: bool = False,
    ) -> None:
        """Store ``value`` under ``key``, timestamped now.

        ``invalidated`` stores the value already stale, for responses that
        were overtaken by an invalidation while in flight.
        """
        ts = self.now() if now is None else now
        previous = self._entries.get(key)
        if policy is None:
            policy = previous.policy if previous is not None else self.policy_for(key)
        self._entries[key] = CacheEntry(
            value=value,
            fetched_at=ts,
            observed_at=ts,
            policy=policy,
            invalidated=invalidated,
        )
        self._notify(CacheEvent(CacheEventType.UPDATED, key, value))

    def mark_stale(self, selector: KeySelector) -> list[CacheKey]:
        """Flag every matching entry stale. Values stay servable.

        Running fetches for matching keys are flagged too, so their
        responses land stale instead of passing as current.
        """
        for key, task in self._in_flight.items():
            if not task.done() and selector.matches(key):
                self._stale_in_flight.add(key)
        marked = []
        for key in self.keys(selector):
            entry = self._entries[key]
            if not entry.invalidated:
                self._entries[key] = replace(entry, invalidated=True)
            marked.append(key)
        for key in marked:
            self._notify(CacheEvent(CacheEventType.STALE, key))
        if marked:
            logger.debug("cache_marked_stale", selector=repr(selector), count=len(marked))
        return marked

    def remove(self, selector: KeySelector) -> list[CacheKey]:
        """Delete every matching entry outright."""
        removed = self.keys(selector)
        self._drop(removed)
        if removed:
            logger.debug("cache_removed", selector=repr(selector), count=len(removed))
        return removed

    def clear(self) -> None:
        """Drop every entry (subscriptions survive)."""
        self.remove(_ALL)

    def on_removed(self, hook: RemovalHook) -> None:
        """Call ``hook`` with each key removed or evicted.

        Unlike :meth:`subscribe` this does not count as observing the key.
        """
        self._removal_hooks.append(hook)

    def _drop(self, keys: list[CacheKey]) -> None:
        for key in keys:
            del self._entries[key]
        for key in keys:
            for hook in self._removal_hooks:
                hook(key)
            self._notify(CacheEvent(CacheEventType.REMOVED, key))

    # -------------------------------------------------------------------------
    # In-flight fetches
    # -------------------------------------------------------------------------

    def in_flight(self, key: CacheKey) -> asyncio.Task[Any] | None:
        task = self._in_flight.get(key)
        if task is not None and task.done():
            return None
        return task

    def set_in_flight(self, key: CacheKey, task: asyncio.Task[Any]) -> None:
        self._in_flight[key] = task
        self._stale_in_flight.discard(key)

    def invalidated_in_flight(self, key: CacheKey) -> bool:
        """Whether ``key`` was marked stale since its running fetch started."""
        return key in self._stale_in_flight

    def clear_in_flight(self, key: CacheKey, task: asyncio.Task[Any]) -> None:
        # A newer fetch may have replaced ours; only drop our own record.
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            self._stale_in_flight.discard(key)

    def is_fetching(self, key: CacheKey) -> bool:
        return self.in_flight(key) is not None

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, selector: KeySelector, callback: Listener) -> Subscription:
        """Call ``callback`` whenever a matching entry is updated, staled or removed."""
        subscription = Subscription(self, selector, callback)
        self._subscriptions.append(subscription)
        return subscription

    def is_observed(self, key: CacheKey) -> bool:
        return any(sub.selector.matches(key) for sub in self._subscriptions)

    def _notify(self, event: CacheEvent) -> None:
        for sub in list(self._subscriptions):
            if not sub.active or not sub.selector.matches(event.key):
                continue
            try:
                sub.callback(event)
            except Exception:
                logger.exception(
                    "cache_listener_failed",
                    key=repr(event.key),
                    event_type=event.type.value,
                )

    # -------------------------------------------------------------------------
    # Garbage collection
    # -------------------------------------------------------------------------

    def gc_sweep(self, now: int | None = None) -> list[CacheKey]:
        """Evict idle entries that nobody observes and nothing is fetching."""
        ts = self.now() if now is None else now
        evicted = [
            key
            for key, entry in self._entries.items()
            if entry.is_idle(ts) and not self.is_observed(key) and not self.is_fetching(key)
        ]
        self._drop(evicted)
        if evicted:
            logger.info("cache_gc_evicted", count=len(evicted))
        return evicted

    @property
    def gc_running(self) -> bool:
        return self._gc_task is not None and not self._gc_task.done()

    def start_gc(self, interval: Duration = "1m") -> asyncio.Task[None]:
        """Run :meth:`gc_sweep` every ``interval`` on the running loop."""
        if self._gc_task is not None and not self._gc_task.done():
            return self._gc_task
        seconds = parse_duration(interval) / 1000

        async def loop() -> None:
            while True:
                await asyncio.sleep(seconds)
                self.gc_sweep()

        self._gc_task = asyncio.create_task(loop())
        return self._gc_task

    async def aclose(self) -> None:
        """Stop the GC loop and cancel outstanding fetches."""
        tasks = [t for t in (self._gc_task, *self._in_flight.values()) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("fetch_discarded_on_close", error=repr(e))
        self._gc_task = None
        self._in_flight.clear()
        self._stale_in_flight.clear()


__all__ = ["CacheStore", "Subscription", "wall_clock"]
