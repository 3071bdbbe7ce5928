"""SyncSession - one cache, one transport, constructed once per dashboard session.

Every component receives the session's store explicitly; there is no
module-level cache. Views call the typed read methods (served through the
Query Runner) and the mutation methods (run through the Mutation Runner).

Usage:
    async with SyncSession.from_settings(SyncSettings()) as session:
        page = await session.tickets(page=0, size=20)
        await session.assign_ticket(page.content[0].id, technician_id=3)
        counts = session.ticket_counts()
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from supportsync.config import SyncSettings
from supportsync.keys import (
    APPOINTMENT_KEYS,
    CLIENT_KEYS,
    TECHNICIAN_KEYS,
    TICKET_KEYS,
    KeySelector,
)
from supportsync.lifecycle import TicketCounts, Transition, ensure_transition, statistics_from_cache
from supportsync.logging import configure_logging, get_logger
from supportsync.models import (
    Appointment,
    Client,
    Page,
    Technician,
    TechnicianStatistics,
    TechnicianWorkload,
    Ticket,
    TicketStatistics,
)
from supportsync.mutation import MutationRunner
from supportsync.policies import PolicyTable
from supportsync.query import QueryRunner
from supportsync.retry import (
    MUTATION_RETRY,
    MUTATION_RETRYABLE,
    READ_RETRY,
    READ_RETRYABLE,
    RetryPolicy,
)
from supportsync.store import CacheStore, Clock, wall_clock
from supportsync.transport import ApiTransport, SupportApi

logger = get_logger(__name__)


class SyncSession:
    """Entry point for views: typed reads and mutations over one cache."""

    def __init__(
        self,
        api: SupportApi,
        *,
        store: CacheStore | None = None,
        read_retry: RetryPolicy | None = None,
        mutation_retry: RetryPolicy | None = None,
        gc_interval: int | str | None = None,
    ) -> None:
        self.api = api
        self.store = store or CacheStore()
        self.queries = QueryRunner(self.store, retry=read_retry or READ_RETRY)
        self.mutations = MutationRunner(
            self.store,
            queries=self.queries,
            retry=mutation_retry or MUTATION_RETRY,
        )
        self._gc_interval = gc_interval

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        *,
        policies: PolicyTable | None = None,
        clock: Clock = wall_clock,
        configure_logs: bool = False,
    ) -> SyncSession:
        if configure_logs:
            configure_logging(settings.log_level, json_logs=settings.json_logs)
        transport = ApiTransport(settings.base_url, timeout=settings.timeout)
        return cls(
            SupportApi(transport),
            store=CacheStore(policies=policies, clock=clock),
            read_retry=RetryPolicy(
                max_attempts=settings.read_max_attempts,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                retry_on=READ_RETRYABLE,
            ),
            mutation_retry=RetryPolicy(
                max_attempts=settings.mutation_max_attempts,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                retry_on=MUTATION_RETRYABLE,
            ),
            gc_interval=settings.gc_interval,
        )

    async def __aenter__(self) -> SyncSession:
        if self._gc_interval is not None:
            self.store.start_gc(self._gc_interval)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.store.aclose()
        await self.api.aclose()
        logger.debug("session_closed", entries=len(self.store))

    # -------------------------------------------------------------------------
    # Tickets
    # -------------------------------------------------------------------------

    async def tickets(self, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        return await self.queries.query(
            TICKET_KEYS.list(page=page, size=size),
            lambda: self.api.tickets.list(page=page, size=size),
        )

    async def ticket(self, id: int) -> Ticket:
        return await self.queries.query(
            TICKET_KEYS.detail(id), lambda: self.api.tickets.get(id)
        )

    async def search_tickets(self, query: str, **filters: Any) -> Page[Ticket]:
        return await self.queries.query(
            TICKET_KEYS.search(query=query, **filters),
            lambda: self.api.tickets.search(query, **filters),
        )

    async def overdue_tickets(self, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        return await self.queries.query(
            TICKET_KEYS.overdue(page=page, size=size),
            lambda: self.api.tickets.overdue(page=page, size=size),
        )

    async def unassigned_tickets(self, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        return await self.queries.query(
            TICKET_KEYS.unassigned(page=page, size=size),
            lambda: self.api.tickets.unassigned(page=page, size=size),
        )

    async def ticket_statistics(self) -> TicketStatistics:
        """Server-side aggregate (see :meth:`ticket_counts` for the cached fold)."""
        return await self.queries.query(
            TICKET_KEYS.statistics(), self.api.tickets.statistics
        )

    def ticket_counts(
        self, selector: KeySelector | None = None, now: datetime | None = None
    ) -> TicketCounts:
        """Client-side counts over the tickets currently cached."""
        return statistics_from_cache(
            self.store,
            selector or TICKET_KEYS.all(),
            now or datetime.now(timezone.utc),
        )

    async def create_ticket(self, data: dict[str, Any]) -> Ticket:
        return await self.mutations.mutate(
            "tickets.create", lambda: self.api.tickets.create(data)
        )

    async def update_ticket(self, id: int, data: dict[str, Any]) -> Ticket:
        return await self.mutations.mutate(
            "tickets.update", lambda: self.api.tickets.update(id, data), {"id": id}
        )

    async def assign_ticket(self, id: int, technician_id: int) -> Any:
        return await self.mutations.mutate(
            "tickets.assign",
            lambda: self.api.tickets.assign(id, technician_id),
            {"id": id, "technician_id": technician_id},
        )

    async def close_ticket(self, id: int, resolution: str | None = None) -> Ticket:
        self._guard(id, Transition.CLOSE)
        return await self.mutations.mutate(
            "tickets.close", lambda: self.api.tickets.close(id, resolution), {"id": id}
        )

    async def reopen_ticket(self, id: int, reason: str | None = None) -> Ticket:
        self._guard(id, Transition.REOPEN)
        return await self.mutations.mutate(
            "tickets.reopen", lambda: self.api.tickets.reopen(id, reason), {"id": id}
        )

    async def delete_ticket(self, id: int) -> None:
        await self.mutations.mutate(
            "tickets.delete", lambda: self.api.tickets.delete(id), {"id": id}
        )

    def _guard(self, id: int, transition: Transition) -> None:
        # Only a fresh cached copy is trusted; otherwise the server decides.
        snapshot = self.store.peek(TICKET_KEYS.detail(id))
        if snapshot is not None and not snapshot.is_stale and isinstance(snapshot.value, Ticket):
            ensure_transition(snapshot.value, transition)

    # -------------------------------------------------------------------------
    # Technicians
    # -------------------------------------------------------------------------

    async def technicians(self, *, page: int | None = None, size: int | None = None) -> Page[Technician]:
        return await self.queries.query(
            TECHNICIAN_KEYS.list(page=page, size=size),
            lambda: self.api.technicians.list(page=page, size=size),
        )

    async def technician(self, id: int) -> Technician:
        return await self.queries.query(
            TECHNICIAN_KEYS.detail(id), lambda: self.api.technicians.get(id)
        )

    async def available_technicians(self, service_type: str | None = None) -> list[Technician]:
        return await self.queries.query(
            TECHNICIAN_KEYS.available(service_type),
            lambda: self.api.technicians.available(service_type),
        )

    async def technician_workload(self, id: int) -> TechnicianWorkload:
        return await self.queries.query(
            TECHNICIAN_KEYS.workload(id), lambda: self.api.technicians.workload(id)
        )

    async def technician_schedule(
        self, id: int, start: str | None = None, end: str | None = None
    ) -> list[Appointment]:
        return await self.queries.query(
            TECHNICIAN_KEYS.schedule(id, start, end),
            lambda: self.api.technicians.schedule(id, start, end),
        )

    async def technician_statistics(self) -> TechnicianStatistics:
        return await self.queries.query(
            TECHNICIAN_KEYS.statistics(), self.api.technicians.statistics
        )

    async def create_technician(self, data: dict[str, Any]) -> Technician:
        return await self.mutations.mutate(
            "technicians.create", lambda: self.api.technicians.create(data)
        )

    async def update_technician(self, id: int, data: dict[str, Any]) -> Technician:
        return await self.mutations.mutate(
            "technicians.update",
            lambda: self.api.technicians.update(id, data),
            {"id": id},
        )

    async def delete_technician(self, id: int) -> None:
        await self.mutations.mutate(
            "technicians.delete", lambda: self.api.technicians.delete(id), {"id": id}
        )

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    async def clients(self, *, page: int | None = None, size: int | None = None) -> Page[Client]:
        return await self.queries.query(
            CLIENT_KEYS.list(page=page, size=size),
            lambda: self.api.clients.list(page=page, size=size),
        )

    async def client(self, id: int) -> Client:
        return await self.queries.query(
            CLIENT_KEYS.detail(id), lambda: self.api.clients.get(id)
        )

    async def client_tickets(self, id: int, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        return await self.queries.query(
            CLIENT_KEYS.tickets(id, page=page, size=size),
            lambda: self.api.clients.tickets(id, page=page, size=size),
        )

    async def create_client(self, data: dict[str, Any]) -> Client:
        return await self.mutations.mutate(
            "clients.create", lambda: self.api.clients.create(data)
        )

    async def update_client(self, id: int, data: dict[str, Any]) -> Client:
        return await self.mutations.mutate(
            "clients.update", lambda: self.api.clients.update(id, data), {"id": id}
        )

    async def suspend_client(self, id: int) -> Client:
        return await self.mutations.mutate(
            "clients.suspend", lambda: self.api.clients.suspend(id), {"id": id}
        )

    async def activate_client(self, id: int) -> Client:
        return await self.mutations.mutate(
            "clients.activate", lambda: self.api.clients.activate(id), {"id": id}
        )

    async def delete_client(self, id: int) -> None:
        await self.mutations.mutate(
            "clients.delete", lambda: self.api.clients.delete(id), {"id": id}
        )

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    async def appointments(self, *, page: int | None = None, size: int | None = None) -> Page[Appointment]:
        return await self.queries.query(
            APPOINTMENT_KEYS.list(page=page, size=size),
            lambda: self.api.appointments.list(page=page, size=size),
        )

    async def appointment(self, id: int) -> Appointment:
        return await self.queries.query(
            APPOINTMENT_KEYS.detail(id), lambda: self.api.appointments.get(id)
        )

    async def upcoming_appointments(self, *, page: int | None = None, size: int | None = None) -> Page[Appointment]:
        return await self.queries.query(
            APPOINTMENT_KEYS.upcoming(page=page, size=size),
            lambda: self.api.appointments.upcoming(page=page, size=size),
        )

    async def create_appointment(self, data: dict[str, Any]) -> Appointment:
        return await self.mutations.mutate(
            "appointments.create", lambda: self.api.appointments.create(data)
        )

    async def update_appointment(self, id: int, data: dict[str, Any]) -> Appointment:
        return await self.mutations.mutate(
            "appointments.update",
            lambda: self.api.appointments.update(id, data),
            {"id": id},
        )

    async def confirm_appointment(self, id: int) -> Appointment:
        return await self.mutations.mutate(
            "appointments.confirm", lambda: self.api.appointments.confirm(id), {"id": id}
        )

    async def cancel_appointment(self, id: int, reason: str | None = None) -> Appointment:
        return await self.mutations.mutate(
            "appointments.cancel",
            lambda: self.api.appointments.cancel(id, reason),
            {"id": id},
        )

    async def complete_appointment(self, id: int, notes: str | None = None) -> Appointment:
        return await self.mutations.mutate(
            "appointments.complete",
            lambda: self.api.appointments.complete(id, notes),
            {"id": id},
        )

    async def delete_appointment(self, id: int) -> None:
        await self.mutations.mutate(
            "appointments.delete", lambda: self.api.appointments.delete(id), {"id": id}
        )


__all__ = ["SyncSession"]
