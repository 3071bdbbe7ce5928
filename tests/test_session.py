"""End-to-end tests for SyncSession against a fake backend."""

import json
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timezone

import httpx
import pytest
import respx

from supportsync import TICKET_KEYS, ApiTransport, CacheStore, SupportApi, SyncSession, SyncSettings
from supportsync.errors import InvalidTransitionError, NotFoundError, ServerError

from .conftest import FAST_MUTATION_RETRY, FAST_READ_RETRY, FakeClock

BASE_URL = "http://support.test"
SERVER_NOW = datetime(2024, 3, 5)


class FakeBackend:
    """Minimal in-memory ticket backend speaking the REST contract."""

    def __init__(self) -> None:
        self.tickets: dict[int, dict] = {}
        self.next_id = 1
        self.close_calls = 0

    def add(self, **fields) -> dict:
        ticket = {
            "id": self.next_id,
            "status": "OPEN",
            "priority": "MEDIUM",
            "clientId": 1,
            "assignedTechnicianId": None,
            "dueAt": None,
            **fields,
        }
        self.tickets[ticket["id"]] = ticket
        self.next_id += 1
        return ticket

    def install(self, router: respx.MockRouter) -> None:
        tickets_url = f"{BASE_URL}/api/tickets"
        by_id = rf"^{BASE_URL}/api/tickets/(?P<id>\d+)"
        router.get(f"{tickets_url}/statistics").mock(side_effect=self.statistics)
        router.get(f"{tickets_url}/unassigned").mock(side_effect=self.unassigned)
        router.get(tickets_url).mock(side_effect=self.list_tickets)
        router.post(tickets_url).mock(side_effect=self.create)
        router.get(url__regex=by_id + "$").mock(side_effect=self.get)
        router.post(url__regex=by_id + "/assign$").mock(side_effect=self.assign)
        router.post(url__regex=by_id + "/close$").mock(side_effect=self.close)

    @staticmethod
    def _page(items: list[dict]) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "content": items,
                "totalElements": len(items),
                "totalPages": 1,
                "size": 20,
                "number": 0,
                "numberOfElements": len(items),
                "first": True,
                "last": True,
                "empty": not items,
            },
        )

    def _overdue(self, ticket: dict) -> bool:
        due = ticket["dueAt"]
        return ticket["status"] == "OPEN" and due is not None and datetime.fromisoformat(due) < SERVER_NOW

    def statistics(self, request: httpx.Request) -> httpx.Response:
        tickets = list(self.tickets.values())
        return httpx.Response(
            200,
            json={
                "totalTickets": len(tickets),
                "openTickets": sum(t["status"] == "OPEN" for t in tickets),
                "closedTickets": sum(t["status"] == "CLOSED" for t in tickets),
                "overdueTickets": sum(self._overdue(t) for t in tickets),
                "unassignedTickets": sum(t["assignedTechnicianId"] is None for t in tickets),
            },
        )

    def list_tickets(self, request: httpx.Request) -> httpx.Response:
        return self._page(list(self.tickets.values()))

    def unassigned(self, request: httpx.Request) -> httpx.Response:
        return self._page(
            [t for t in self.tickets.values() if t["assignedTechnicianId"] is None]
        )

    def create(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json=self.add(**json.loads(request.content)))

    def get(self, request: httpx.Request, id: str) -> httpx.Response:
        ticket = self.tickets.get(int(id))
        if ticket is None:
            return httpx.Response(404, json={"message": f"Ticket {id} not found"})
        return httpx.Response(200, json=ticket)

    def assign(self, request: httpx.Request, id: str) -> httpx.Response:
        technician_id = json.loads(request.content)["technicianId"]
        self.tickets[int(id)]["assignedTechnicianId"] = technician_id
        return httpx.Response(200, json={"ticketId": int(id), "technicianId": technician_id})

    def close(self, request: httpx.Request, id: str) -> httpx.Response:
        self.close_calls += 1
        self.tickets[int(id)]["status"] = "CLOSED"
        return httpx.Response(200, json=self.tickets[int(id)])


@pytest.fixture
def backend() -> Iterator[FakeBackend]:
    fake = FakeBackend()
    with respx.mock(assert_all_called=False) as router:
        fake.install(router)
        yield fake


@pytest.fixture
async def session(clock: FakeClock) -> AsyncIterator[SyncSession]:
    sync = SyncSession(
        SupportApi(ApiTransport(BASE_URL)),
        store=CacheStore(clock=clock),
        read_retry=FAST_READ_RETRY,
        mutation_retry=FAST_MUTATION_RETRY,
    )
    async with sync:
        yield sync


async def next_statistics(session: SyncSession):
    """Serve the (stale) statistics view, then return the refetched one."""
    await session.ticket_statistics()
    pending = session.store.in_flight(TICKET_KEYS.statistics())
    assert pending is not None
    await pending
    return await session.ticket_statistics()


class TestTicketLifecycleEndToEnd:
    """Mutations move the statistics view on its next fetch."""

    async def test_create_assign_close(self, session: SyncSession, backend: FakeBackend) -> None:
        backend.add(assignedTechnicianId=2)
        before = await session.ticket_statistics()
        assert (before.open_tickets, before.unassigned_tickets, before.overdue_tickets) == (1, 0, 0)

        created = await session.create_ticket(
            {"clientId": 1, "description": "Printer offline", "dueAt": "2024-03-01T09:00:00"}
        )
        stats = await next_statistics(session)
        assert stats.open_tickets == before.open_tickets + 1
        assert stats.unassigned_tickets == before.unassigned_tickets + 1
        assert stats.overdue_tickets == 1

        await session.assign_ticket(created.id, technician_id=3)
        stats = await next_statistics(session)
        assert stats.unassigned_tickets == before.unassigned_tickets

        closed = await session.close_ticket(created.id, resolution="Replaced toner")
        assert closed.status.value == "CLOSED"
        stats = await next_statistics(session)
        assert stats.open_tickets == before.open_tickets
        assert stats.closed_tickets == before.closed_tickets + 1
        assert stats.overdue_tickets == 0

    async def test_statistics_served_from_cache_until_invalidated(
        self, session: SyncSession, backend: FakeBackend
    ) -> None:
        backend.add()
        first = await session.ticket_statistics()
        backend.add()  # changed behind the cache's back
        assert await session.ticket_statistics() == first
        assert session.store.in_flight(TICKET_KEYS.statistics()) is None

    async def test_unassigned_view_drops_assigned_ticket(
        self, session: SyncSession, backend: FakeBackend
    ) -> None:
        ticket = backend.add()
        page = await session.unassigned_tickets()
        assert [t.id for t in page.content] == [ticket["id"]]

        await session.assign_ticket(ticket["id"], technician_id=4)

        stale_page = await session.unassigned_tickets()
        assert [t.id for t in stale_page.content] == [ticket["id"]]
        await session.store.in_flight(TICKET_KEYS.unassigned())
        refreshed = await session.unassigned_tickets()
        assert refreshed.content == ()


class TestCachedCounts:
    """The client-side fold over cached tickets."""

    async def test_counts_over_loaded_page(
        self, session: SyncSession, backend: FakeBackend, now: datetime
    ) -> None:
        backend.add(priority="URGENT", assignedTechnicianId=2, dueAt="2024-03-01T00:00:00")
        backend.add(priority="LOW")
        backend.add(status="CLOSED", priority="HIGH", assignedTechnicianId=2)

        await session.tickets()
        counts = session.ticket_counts(now=now)

        assert (counts.total, counts.open, counts.closed) == (3, 2, 1)
        assert (counts.overdue, counts.unassigned, counts.urgent) == (1, 1, 1)

    async def test_counts_empty_before_any_read(self, session: SyncSession, now: datetime) -> None:
        assert session.ticket_counts(now=now).total == 0


class TestReadsAndGuards:
    """Detail reads, missing entities and the transition guard."""

    async def test_missing_ticket_is_not_cached(
        self, session: SyncSession, backend: FakeBackend
    ) -> None:
        with pytest.raises(NotFoundError):
            await session.ticket(42)
        assert TICKET_KEYS.detail(42) not in session.store

    async def test_close_rejected_for_fresh_closed_ticket(
        self, session: SyncSession, backend: FakeBackend
    ) -> None:
        ticket = backend.add(status="CLOSED")
        await session.ticket(ticket["id"])

        with pytest.raises(InvalidTransitionError):
            await session.close_ticket(ticket["id"])
        assert backend.close_calls == 0


class TestSessionSetup:
    """Construction from settings."""

    async def test_from_settings_applies_read_ceiling(self) -> None:
        settings = SyncSettings(base_url=BASE_URL, read_max_attempts=1, retry_base_delay=0)

        with respx.mock:
            route = respx.get(f"{BASE_URL}/api/tickets").mock(return_value=httpx.Response(503))
            async with SyncSession.from_settings(settings) as session:
                with pytest.raises(ServerError):
                    await session.tickets()
        assert route.call_count == 1

    async def test_context_manager_starts_and_stops_gc(self) -> None:
        settings = SyncSettings(base_url=BASE_URL, gc_interval="1s")
        session = SyncSession.from_settings(settings)
        async with session:
            assert session.store.gc_running
        assert not session.store.gc_running

    async def test_uses_wall_clock_by_default(self) -> None:
        session = SyncSession.from_settings(SyncSettings(base_url=BASE_URL))
        now_ms = datetime.now(timezone.utc).timestamp() * 1000
        assert abs(session.store.now() - now_ms) < 60_000
        await session.aclose()


class TestTechnicianViews:
    """Schedule reads are keyed by technician and date range."""

    async def test_schedule_cached_per_range(self, session: SyncSession) -> None:
        with respx.mock:
            route = respx.get(url__regex=rf"^{BASE_URL}/api/technicians/4/schedule").mock(
                return_value=httpx.Response(
                    200,
                    json=[
                        {
                            "id": 1,
                            "ticketId": 7,
                            "technicianId": 4,
                            "scheduledStartTime": "2024-03-05T09:00:00",
                            "scheduledEndTime": "2024-03-05T10:00:00",
                        }
                    ],
                )
            )

            first = await session.technician_schedule(4, start="2024-03-05", end="2024-03-06")
            again = await session.technician_schedule(4, start="2024-03-05", end="2024-03-06")

        assert first == again
        assert first[0].ticket_id == 7
        assert route.call_count == 1
        assert route.calls[0].request.url.params["startDate"] == "2024-03-05"
