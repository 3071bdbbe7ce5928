"""Tests for the query runner."""

import asyncio

import pytest

from supportsync import TICKET_KEYS, CacheStore, QueryRunner, policy
from supportsync.errors import ClientError, NetworkError, NotFoundError, RateLimitedError, ServerError
from supportsync.retry import RetryPolicy

from .conftest import FakeClock


class TestCacheMissAndHit:
    """Tests for the fresh and missing paths."""

    async def test_cache_miss_calls_fn(self, runner: QueryRunner, store: CacheStore) -> None:
        fetch_count = 0

        async def fetch() -> dict:
            nonlocal fetch_count
            fetch_count += 1
            return {"id": 1}

        result = await runner.query(TICKET_KEYS.detail(1), fetch)
        assert result == {"id": 1}
        assert fetch_count == 1
        assert store.get(TICKET_KEYS.detail(1)).value == {"id": 1}

    async def test_fresh_hit_makes_no_call(self, runner: QueryRunner, clock: FakeClock) -> None:
        fetch_count = 0

        async def fetch() -> int:
            nonlocal fetch_count
            fetch_count += 1
            return fetch_count

        await runner.query(TICKET_KEYS.list(), fetch)
        clock.advance(60_000)
        assert await runner.query(TICKET_KEYS.list(), fetch) == 1
        assert fetch_count == 1

    async def test_keys_built_in_any_order_share_cache(self, runner: QueryRunner) -> None:
        fetch_count = 0

        async def fetch() -> str:
            nonlocal fetch_count
            fetch_count += 1
            return "page"

        await runner.query(TICKET_KEYS.search(query="vpn", status="OPEN"), fetch)
        await runner.query(TICKET_KEYS.search(status="OPEN", query="vpn"), fetch)
        assert fetch_count == 1


class TestStaleWhileRevalidate:
    """Stale entries are served immediately and refreshed once."""

    async def test_stale_returns_old_value_and_refetches_once(
        self, runner: QueryRunner, store: CacheStore, clock: FakeClock
    ) -> None:
        fetch_count = 0

        async def fetch() -> int:
            nonlocal fetch_count
            fetch_count += 1
            return fetch_count

        key = TICKET_KEYS.list(page=0)
        assert await runner.query(key, fetch) == 1

        clock.advance(2 * 60_000)
        assert await runner.query(key, fetch) == 1
        assert await runner.query(key, fetch) == 1

        refresh = store.in_flight(key)
        assert refresh is not None
        await refresh

        assert fetch_count == 2
        assert await runner.query(key, fetch) == 2
        assert fetch_count == 2

    async def test_marked_stale_triggers_refetch(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        versions = iter(["v1", "v2"])

        async def fetch() -> str:
            return next(versions)

        key = TICKET_KEYS.unassigned()
        await runner.query(key, fetch)
        store.mark_stale(TICKET_KEYS.unassigned_views())

        assert await runner.query(key, fetch) == "v1"
        await store.in_flight(key)
        assert await runner.query(key, fetch) == "v2"

    async def test_background_failure_keeps_old_value(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        calls = 0

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            if calls > 1:
                raise ServerError("down", status=503)
            return "cached"

        key = TICKET_KEYS.list()
        await runner.query(key, fetch)
        store.mark_stale(key)

        assert await runner.query(key, fetch) == "cached"
        with pytest.raises(ServerError):
            await store.in_flight(key)

        snapshot = store.get(key)
        assert snapshot.value == "cached"
        assert snapshot.is_stale is True

    async def test_per_call_policy_override(
        self, runner: QueryRunner, store: CacheStore, clock: FakeClock
    ) -> None:
        fetch_count = 0

        async def fetch() -> int:
            nonlocal fetch_count
            fetch_count += 1
            return fetch_count

        key = TICKET_KEYS.list()
        await runner.query(key, fetch, policy("10s", "1m"))
        clock.advance(10_000)
        await runner.query(key, fetch)
        assert fetch_count == 1  # stale value served, refetch pending
        await store.in_flight(key)
        assert fetch_count == 2


class TestDeduplication:
    """Concurrent queries for one key share a single transport call."""

    async def test_concurrent_misses_share_fetch(self, runner: QueryRunner) -> None:
        fetch_count = 0
        gate = asyncio.Event()

        async def fetch() -> str:
            nonlocal fetch_count
            fetch_count += 1
            await gate.wait()
            return "value"

        key = TICKET_KEYS.detail(9)
        first = asyncio.create_task(runner.query(key, fetch))
        second = asyncio.create_task(runner.query(key, fetch))
        await asyncio.sleep(0)
        gate.set()

        assert await first == "value"
        assert await second == "value"
        assert fetch_count == 1

    async def test_waiters_share_the_error(self, runner: QueryRunner, store: CacheStore) -> None:
        fetch_count = 0
        gate = asyncio.Event()

        async def fetch() -> str:
            nonlocal fetch_count
            fetch_count += 1
            await gate.wait()
            raise NotFoundError("gone", status=404)

        key = TICKET_KEYS.detail(9)
        first = asyncio.create_task(runner.query(key, fetch))
        second = asyncio.create_task(runner.query(key, fetch))
        await asyncio.sleep(0)
        gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert all(isinstance(r, NotFoundError) for r in results)
        assert fetch_count == 1
        assert store.get(key) is None

    async def test_cancelled_caller_does_not_abort_shared_fetch(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        gate = asyncio.Event()

        async def fetch() -> str:
            await gate.wait()
            return "value"

        key = TICKET_KEYS.detail(3)
        leaving = asyncio.create_task(runner.query(key, fetch))
        staying = asyncio.create_task(runner.query(key, fetch))
        await asyncio.sleep(0)

        leaving.cancel()
        await asyncio.sleep(0)
        gate.set()

        assert await staying == "value"
        assert leaving.cancelled()
        assert store.get(key).value == "value"

    async def test_cancelled_sole_caller_still_populates_cache(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        gate = asyncio.Event()

        async def fetch() -> str:
            await gate.wait()
            return "value"

        key = TICKET_KEYS.detail(4)
        caller = asyncio.create_task(runner.query(key, fetch))
        await asyncio.sleep(0)
        fetch_task = store.in_flight(key)
        caller.cancel()
        gate.set()

        assert await fetch_task == "value"
        assert store.get(key).value == "value"


class TestRetry:
    """Retry bounds by failure class."""

    async def test_server_error_attempted_ceiling_times(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        attempts = 0

        async def fetch() -> None:
            nonlocal attempts
            attempts += 1
            raise ServerError("boom", status=503)

        with pytest.raises(ServerError):
            await runner.query(TICKET_KEYS.list(), fetch)
        assert attempts == 3
        assert store.get(TICKET_KEYS.list()) is None

    async def test_forbidden_attempted_once(self, runner: QueryRunner) -> None:
        attempts = 0

        async def fetch() -> None:
            nonlocal attempts
            attempts += 1
            raise ClientError("Access forbidden", status=403)

        with pytest.raises(ClientError):
            await runner.query(TICKET_KEYS.list(), fetch)
        assert attempts == 1

    async def test_not_found_is_not_retried(self, runner: QueryRunner) -> None:
        attempts = 0

        async def fetch() -> None:
            nonlocal attempts
            attempts += 1
            raise NotFoundError("Resource not found", status=404)

        with pytest.raises(NotFoundError):
            await runner.query(TICKET_KEYS.detail(404), fetch)
        assert attempts == 1

    async def test_rate_limit_and_network_errors_recover(self, runner: QueryRunner) -> None:
        failures = [RateLimitedError("slow down"), NetworkError("offline")]

        async def fetch() -> str:
            if failures:
                raise failures.pop(0)
            return "ok"

        assert await runner.query(TICKET_KEYS.list(), fetch) == "ok"

    async def test_backoff_doubles_and_caps(self, store: CacheStore) -> None:
        delays: list[float] = []

        async def record(seconds: float) -> None:
            delays.append(seconds)

        runner = QueryRunner(
            store,
            retry=RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=5.0, sleep=record),
        )

        async def fetch() -> None:
            raise ServerError("boom", status=500)

        with pytest.raises(ServerError):
            await runner.query(TICKET_KEYS.list(), fetch)
        assert delays == [1.0, 2.0, 4.0, 5.0]


class TestRefetch:
    """Tests for refetching invalidated, observed keys."""

    async def test_refetch_only_observed_stale_keys(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        calls: dict[int, int] = {0: 0, 1: 0}

        def fetcher(page: int):
            async def fetch() -> str:
                calls[page] += 1
                return f"page-{page}-v{calls[page]}"

            return fetch

        for page in (0, 1):
            await runner.query(TICKET_KEYS.list(page=page), fetcher(page))
        store.subscribe(TICKET_KEYS.list(page=0), lambda event: None)
        store.mark_stale(TICKET_KEYS.lists())

        started = runner.refetch(TICKET_KEYS.lists())
        assert started == [TICKET_KEYS.list(page=0)]
        await store.in_flight(TICKET_KEYS.list(page=0))

        assert store.peek(TICKET_KEYS.list(page=0)).value == "page-0-v2"
        assert store.peek(TICKET_KEYS.list(page=1)).is_stale is True


class TestInvalidatedWhileFetching:
    """A response overtaken by an invalidation is applied but stays stale."""

    async def test_late_response_lands_stale(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        gate = asyncio.Event()
        fetch_count = 0

        async def fetch() -> list[str]:
            nonlocal fetch_count
            fetch_count += 1
            if fetch_count == 1:
                await gate.wait()
                return ["ticket-7"]
            return []

        key = TICKET_KEYS.unassigned()
        first = asyncio.create_task(runner.query(key, fetch))
        await asyncio.sleep(0)

        store.mark_stale(TICKET_KEYS.unassigned_views())
        gate.set()

        assert await first == ["ticket-7"]
        assert store.peek(key).is_stale is True

        assert await runner.query(key, fetch) == ["ticket-7"]
        await store.in_flight(key)
        assert await runner.query(key, fetch) == []
        assert fetch_count == 2

    async def test_fetch_started_after_invalidation_is_fresh(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        async def fetch() -> str:
            return "current"

        key = TICKET_KEYS.unassigned()
        store.mark_stale(TICKET_KEYS.unassigned_views())
        await runner.query(key, fetch)

        assert store.peek(key).is_stale is False

    async def test_unrelated_invalidation_does_not_flag_fetch(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        gate = asyncio.Event()

        async def fetch() -> str:
            await gate.wait()
            return "page"

        key = TICKET_KEYS.list()
        pending = asyncio.create_task(runner.query(key, fetch))
        await asyncio.sleep(0)
        store.mark_stale(TICKET_KEYS.unassigned_views())
        gate.set()
        await pending

        assert store.peek(key).is_stale is False


class TestFetcherRegistry:
    """Registered fetch functions follow the store's entries."""

    async def test_evicted_keys_are_unregistered(
        self, runner: QueryRunner, store: CacheStore, clock: FakeClock
    ) -> None:
        keys = [TICKET_KEYS.search(query=f"q{i}") for i in range(50)]

        for key in keys:
            async def fetch() -> str:
                return "hits"

            await runner.query(key, fetch)
        assert all(runner.is_registered(key) for key in keys)

        clock.advance(60 * 60_000)
        assert len(store.gc_sweep()) == 50

        assert not any(runner.is_registered(key) for key in keys)

    async def test_removed_keys_are_unregistered(
        self, runner: QueryRunner, store: CacheStore
    ) -> None:
        async def fetch() -> str:
            return "d"

        await runner.query(TICKET_KEYS.detail(1), fetch)
        await runner.query(TICKET_KEYS.detail(2), fetch)
        store.remove(TICKET_KEYS.detail(1))

        assert not runner.is_registered(TICKET_KEYS.detail(1))
        assert runner.is_registered(TICKET_KEYS.detail(2))
