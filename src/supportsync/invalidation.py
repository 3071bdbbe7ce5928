"""Declarative invalidation rules, one per mutation.

Invalidation is coarse and pattern-based: the backend does not say which
views a change affects, so every view that *might* be affected is marked
stale. A harmless extra refetch is preferred over a stale view shown as
current.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from supportsync.keys import (
    APPOINTMENT_KEYS,
    CLIENT_KEYS,
    TECHNICIAN_KEYS,
    TICKET_KEYS,
    KeyFactory,
    KeySelector,
)


class Seed(str, Enum):
    """What a successful mutation does to its entity's detail entry."""

    NONE = "none"  # leave it; a STALE target may re-fetch it
    PUT = "put"  # store the returned entity at its detail key
    REMOVE = "remove"  # entity deleted server-side, drop the detail entry


class Action(str, Enum):
    STALE = "stale"
    REMOVE = "remove"


@dataclass(frozen=True, slots=True)
class Target:
    """One pattern to invalidate.

    ``by_id`` narrows the pattern to the mutated entity's id (taken from the
    mutation params).
    """

    keys: KeyFactory
    operation: str | None
    by_id: bool = False
    action: Action = Action.STALE

    def selector(self, params: Mapping[str, Any]) -> KeySelector:
        if self.by_id:
            return self.keys.pattern(self.operation, id=params["id"])
        return self.keys.pattern(self.operation)


@dataclass(frozen=True, slots=True)
class InvalidationRule:
    keys: KeyFactory
    seed: Seed
    targets: tuple[Target, ...]


def _stale(keys: KeyFactory, operation: str | None, *, by_id: bool = False) -> Target:
    return Target(keys, operation, by_id=by_id)


_TICKET_LISTS = _stale(TICKET_KEYS, "list")
_TICKET_STATS = _stale(TICKET_KEYS, "statistics")
_TICKET_OVERDUE = _stale(TICKET_KEYS, "overdue")
_TICKET_UNASSIGNED = _stale(TICKET_KEYS, "unassigned")

_TECH_LISTS = _stale(TECHNICIAN_KEYS, "list")
_TECH_STATS = _stale(TECHNICIAN_KEYS, "statistics")
_TECH_AVAILABLE = _stale(TECHNICIAN_KEYS, "available")

_CLIENT_LISTS = _stale(CLIENT_KEYS, "list")

_APPT_LISTS = _stale(APPOINTMENT_KEYS, "list")
_APPT_UPCOMING = _stale(APPOINTMENT_KEYS, "upcoming")
_APPT_SLOTS = _stale(APPOINTMENT_KEYS, "available-slots")


INVALIDATION_RULES: dict[str, InvalidationRule] = {
    # tickets
    "tickets.create": InvalidationRule(
        TICKET_KEYS, Seed.PUT, (_TICKET_LISTS, _TICKET_STATS, _TICKET_UNASSIGNED)
    ),
    "tickets.update": InvalidationRule(
        TICKET_KEYS,
        Seed.PUT,
        (_TICKET_LISTS, _TICKET_STATS, _TICKET_OVERDUE, _TICKET_UNASSIGNED),
    ),
    "tickets.assign": InvalidationRule(
        TICKET_KEYS,
        Seed.NONE,
        (
            _stale(TICKET_KEYS, "detail", by_id=True),
            _TICKET_LISTS,
            _TICKET_UNASSIGNED,
            _TICKET_STATS,
        ),
    ),
    "tickets.close": InvalidationRule(
        TICKET_KEYS, Seed.PUT, (_TICKET_LISTS, _TICKET_STATS, _TICKET_OVERDUE)
    ),
    "tickets.reopen": InvalidationRule(
        TICKET_KEYS, Seed.PUT, (_TICKET_LISTS, _TICKET_STATS)
    ),
    "tickets.delete": InvalidationRule(
        TICKET_KEYS,
        Seed.REMOVE,
        (_TICKET_LISTS, _TICKET_STATS, _TICKET_OVERDUE, _TICKET_UNASSIGNED),
    ),
    # technicians
    "technicians.create": InvalidationRule(
        TECHNICIAN_KEYS, Seed.PUT, (_TECH_LISTS, _TECH_STATS, _TECH_AVAILABLE)
    ),
    "technicians.update": InvalidationRule(
        TECHNICIAN_KEYS, Seed.PUT, (_TECH_LISTS, _TECH_STATS, _TECH_AVAILABLE)
    ),
    "technicians.delete": InvalidationRule(
        TECHNICIAN_KEYS, Seed.REMOVE, (_TECH_LISTS, _TECH_STATS, _TECH_AVAILABLE)
    ),
    # clients
    "clients.create": InvalidationRule(CLIENT_KEYS, Seed.PUT, (_CLIENT_LISTS,)),
    "clients.update": InvalidationRule(CLIENT_KEYS, Seed.PUT, (_CLIENT_LISTS,)),
    "clients.activate": InvalidationRule(CLIENT_KEYS, Seed.PUT, (_CLIENT_LISTS,)),
    "clients.suspend": InvalidationRule(CLIENT_KEYS, Seed.PUT, (_CLIENT_LISTS,)),
    "clients.delete": InvalidationRule(CLIENT_KEYS, Seed.REMOVE, (_CLIENT_LISTS,)),
    # appointments
    "appointments.create": InvalidationRule(
        APPOINTMENT_KEYS, Seed.PUT, (_APPT_LISTS, _APPT_UPCOMING, _APPT_SLOTS)
    ),
    "appointments.update": InvalidationRule(
        APPOINTMENT_KEYS, Seed.PUT, (_APPT_LISTS, _APPT_UPCOMING, _APPT_SLOTS)
    ),
    "appointments.confirm": InvalidationRule(
        APPOINTMENT_KEYS, Seed.PUT, (_APPT_LISTS, _APPT_UPCOMING)
    ),
    "appointments.cancel": InvalidationRule(
        APPOINTMENT_KEYS, Seed.PUT, (_APPT_LISTS, _APPT_UPCOMING, _APPT_SLOTS)
    ),
    "appointments.complete": InvalidationRule(
        APPOINTMENT_KEYS, Seed.PUT, (_APPT_LISTS, _APPT_UPCOMING, _APPT_SLOTS)
    ),
    "appointments.delete": InvalidationRule(
        APPOINTMENT_KEYS, Seed.REMOVE, (_APPT_LISTS, _APPT_UPCOMING, _APPT_SLOTS)
    ),
}


__all__ = ["INVALIDATION_RULES", "Action", "InvalidationRule", "Seed", "Target"]
