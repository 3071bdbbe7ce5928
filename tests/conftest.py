"""Shared pytest fixtures."""

from datetime import datetime, timezone

import pytest

from supportsync import CacheStore, QueryRunner, RetryPolicy
from supportsync.models import Ticket, TicketPriority, TicketStatus
from supportsync.retry import MUTATION_RETRYABLE, READ_RETRYABLE

T0 = 1_700_000_000_000  # ms


class FakeClock:
    """Millisecond clock the tests advance by hand."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# Zero-delay retry policies with the production ceilings
FAST_READ_RETRY = RetryPolicy(max_attempts=3, base_delay=0, retry_on=READ_RETRYABLE)
FAST_MUTATION_RETRY = RetryPolicy(max_attempts=2, base_delay=0, retry_on=MUTATION_RETRYABLE)


def make_ticket(
    id: int,
    *,
    status: TicketStatus = TicketStatus.OPEN,
    priority: TicketPriority = TicketPriority.MEDIUM,
    technician: int | None = None,
    due: datetime | None = None,
    client: int = 1,
) -> Ticket:
    return Ticket(
        id=id,
        status=status,
        priority=priority,
        client_id=client,
        assigned_technician_id=technician,
        due_at=due,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CacheStore:
    """Create a fresh CacheStore for each test."""
    return CacheStore(clock=clock)


@pytest.fixture
def runner(store: CacheStore) -> QueryRunner:
    return QueryRunner(store, retry=FAST_READ_RETRY)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 5, tzinfo=timezone.utc)
