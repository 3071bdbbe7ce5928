"""Ticket Lifecycle Engine.

A ticket's status is OPEN or CLOSED; ``close`` and ``reopen`` move between
them and are executed by the server. Everything else a view shows about a
ticket is derived on read:

- overdue: OPEN, has a due date, and the due date has passed
- assigned: a technician is associated

Aggregate counts are a pure fold over a ticket collection and the current
time. The fold sees only what is cached; the server's
``/api/tickets/statistics`` payload is a different number and is never
mixed in here.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from supportsync.errors import InvalidTransitionError
from supportsync.keys import KeySelector
from supportsync.models import Page, Ticket, TicketPriority, TicketStatus
from supportsync.store import CacheStore


class Transition(str, Enum):
    CLOSE = "close"
    REOPEN = "reopen"


_TRANSITIONS: dict[TicketStatus, dict[Transition, TicketStatus]] = {
    TicketStatus.OPEN: {Transition.CLOSE: TicketStatus.CLOSED},
    TicketStatus.CLOSED: {Transition.REOPEN: TicketStatus.OPEN},
}


def _utc(moment: datetime) -> datetime:
    # Backend timestamps are naive UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_overdue(ticket: Ticket, now: datetime) -> bool:
    if ticket.status is not TicketStatus.OPEN or ticket.due_at is None:
        return False
    return _utc(ticket.due_at) < _utc(now)


def is_assigned(ticket: Ticket) -> bool:
    return ticket.assigned_technician_id is not None


def days_past_due(ticket: Ticket, now: datetime) -> int:
    """Whole days an overdue ticket is past its due date (0 if not overdue)."""
    if ticket.due_at is None or not is_overdue(ticket, now):
        return 0
    return (_utc(now) - _utc(ticket.due_at)).days


def allowed_transitions(ticket: Ticket) -> frozenset[Transition]:
    return frozenset(_TRANSITIONS[ticket.status])


def expected_status(transition: Transition) -> TicketStatus:
    """Status the server reports after a successful ``transition``."""
    for moves in _TRANSITIONS.values():
        if transition in moves:
            return moves[transition]
    raise ValueError(f"Unknown transition: {transition!r}")


def ensure_transition(ticket: Ticket, transition: Transition) -> TicketStatus:
    """Guard for views: raise if ``transition`` is illegal from the ticket's status."""
    target = _TRANSITIONS[ticket.status].get(transition)
    if target is None:
        raise InvalidTransitionError(ticket.id, ticket.status.value, transition.value)
    return target


@dataclass(frozen=True, slots=True)
class TicketView:
    """A ticket with its derived flags, ready for display."""

    ticket: Ticket
    status: TicketStatus
    overdue: bool
    assigned: bool
    days_past_due: int
    transitions: frozenset[Transition]


def describe(ticket: Ticket, now: datetime) -> TicketView:
    return TicketView(
        ticket=ticket,
        status=ticket.status,
        overdue=is_overdue(ticket, now),
        assigned=is_assigned(ticket),
        days_past_due=days_past_due(ticket, now),
        transitions=allowed_transitions(ticket),
    )


@dataclass(frozen=True, slots=True)
class TicketCounts:
    total: int = 0
    open: int = 0
    closed: int = 0
    overdue: int = 0
    unassigned: int = 0
    urgent: int = 0


def compute_statistics(tickets: Iterable[Ticket], now: datetime) -> TicketCounts:
    """Fold a ticket collection into counts in a single pass."""
    total = open_ = closed = overdue = unassigned = urgent = 0
    for ticket in tickets:
        total += 1
        if ticket.status is TicketStatus.OPEN:
            open_ += 1
        elif ticket.status is TicketStatus.CLOSED:
            closed += 1
        if is_overdue(ticket, now):
            overdue += 1
        if not is_assigned(ticket):
            unassigned += 1
        if ticket.priority is TicketPriority.URGENT:
            urgent += 1
    return TicketCounts(
        total=total,
        open=open_,
        closed=closed,
        overdue=overdue,
        unassigned=unassigned,
        urgent=urgent,
    )


def _tickets_in(value: Any) -> Iterable[Ticket]:
    if isinstance(value, Ticket):
        yield value
    elif isinstance(value, Page):
        for item in value.content:
            if isinstance(item, Ticket):
                yield item
    elif isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, Ticket):
                yield item


def cached_tickets(store: CacheStore, selector: KeySelector) -> list[Ticket]:
    """Tickets held under ``selector``, de-duplicated by id.

    When one ticket appears in several entries the most recently fetched
    copy wins. Read-only: does not count as an observation.
    """
    latest: dict[int, tuple[int, Ticket]] = {}
    for key in store.keys(selector):
        snapshot = store.peek(key)
        if snapshot is None:
            continue
        for ticket in _tickets_in(snapshot.value):
            seen = latest.get(ticket.id)
            if seen is None or snapshot.fetched_at >= seen[0]:
                latest[ticket.id] = (snapshot.fetched_at, ticket)
    return [ticket for _, ticket in latest.values()]


def statistics_from_cache(
    store: CacheStore, selector: KeySelector, now: datetime
) -> TicketCounts:
    """Counts over every ticket currently cached under ``selector``."""
    return compute_statistics(cached_tickets(store, selector), now)


__all__ = [
    "TicketCounts",
    "TicketView",
    "Transition",
    "allowed_transitions",
    "cached_tickets",
    "compute_statistics",
    "days_past_due",
    "describe",
    "ensure_transition",
    "expected_status",
    "is_assigned",
    "is_overdue",
    "statistics_from_cache",
]
