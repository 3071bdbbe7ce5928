"""Structured cache keys and key patterns.

A key names one cached view: an entity kind, an operation and a parameter
bag. Patterns select many keys at once so that a mutation can invalidate
"every ticket list" without enumerating the filter combinations views have
actually requested.

    TICKET_KEYS.list(page=0, size=20)    # CacheKey
    TICKET_KEYS.lists()                  # KeyPattern matching every page
    TICKET_KEYS.all()                    # KeyPattern matching all ticket keys
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from dataclasses import dataclass
from typing import Any

Params = tuple[tuple[str, Hashable], ...]


def _freeze(value: Any) -> Hashable:
    """Turn nested mappings and sequences into hashable equivalents."""
    if isinstance(value, Mapping):
        return normalize_params(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    return value


def normalize_params(params: Mapping[str, Any] | None = None, **extra: Any) -> Params:
    """Normalize a parameter bag into a sorted tuple of pairs.

    ``None`` values are dropped: an omitted parameter and an explicit
    ``None`` address the same view.
    """
    merged: dict[str, Any] = dict(params or {})
    merged.update(extra)
    return tuple(
        (name, _freeze(value))
        for name, value in sorted(merged.items())
        if value is not None
    )


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Identity of a single cached value."""

    kind: str
    operation: str
    params: Params = ()

    @classmethod
    def build(cls, kind: str, operation: str, **params: Any) -> CacheKey:
        return cls(kind, operation, normalize_params(params))

    def param(self, name: str, default: Any = None) -> Any:
        for key, value in self.params:
            if key == name:
                return value
        return default

    def matches(self, key: CacheKey) -> bool:
        """A concrete key used as a selector matches only itself."""
        return self == key

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.params)
        return f"Key({self.kind}.{self.operation}({args}))"


@dataclass(frozen=True, slots=True)
class KeyPattern:
    """Partial key used for bulk invalidation.

    Matches keys of the same kind, the same operation when one is given,
    and carrying every pattern parameter with an equal value.
    """

    kind: str
    operation: str | None = None
    params: Params = ()

    def matches(self, key: CacheKey) -> bool:
        if key.kind != self.kind:
            return False
        if self.operation is not None and key.operation != self.operation:
            return False
        if not self.params:
            return True
        key_params = dict(key.params)
        return all(
            name in key_params and key_params[name] == value
            for name, value in self.params
        )

    def __repr__(self) -> str:
        op = self.operation or "*"
        args = ", ".join(f"{k}={v!r}" for k, v in self.params)
        return f"Pattern({self.kind}.{op}({args}))"


KeySelector = CacheKey | KeyPattern


def is_key_prefix(pattern: KeySelector, key: CacheKey) -> bool:
    """Check whether ``key`` falls under ``pattern``."""
    return pattern.matches(key)


class KeyFactory:
    """Builds the keys and patterns of one entity kind."""

    __slots__ = ("kind",)

    def __init__(self, kind: str) -> None:
        self.kind = kind

    def key(self, operation: str, **params: Any) -> CacheKey:
        return CacheKey(self.kind, operation, normalize_params(params))

    def pattern(self, operation: str | None = None, **params: Any) -> KeyPattern:
        return KeyPattern(self.kind, operation, normalize_params(params))

    def all(self) -> KeyPattern:
        return KeyPattern(self.kind)

    def lists(self) -> KeyPattern:
        return self.pattern("list")

    def list(self, *, page: int | None = None, size: int | None = None, sort: str | None = None) -> CacheKey:
        return self.key("list", page=page, size=size, sort=sort)

    def details(self) -> KeyPattern:
        return self.pattern("detail")

    def detail(self, id: int) -> CacheKey:
        return self.key("detail", id=id)

    def searches(self) -> KeyPattern:
        return self.pattern("search")

    def search(self, **params: Any) -> CacheKey:
        return self.key("search", **params)

    def statistics(self) -> CacheKey:
        return self.key("statistics")

    def __repr__(self) -> str:
        return f"KeyFactory({self.kind!r})"


class TicketKeys(KeyFactory):
    """Ticket views: overdue and unassigned queues on top of the basics."""

    def overdue(self, *, page: int | None = None, size: int | None = None) -> CacheKey:
        return self.key("overdue", page=page, size=size)

    def overdue_views(self) -> KeyPattern:
        return self.pattern("overdue")

    def unassigned(self, *, page: int | None = None, size: int | None = None) -> CacheKey:
        return self.key("unassigned", page=page, size=size)

    def unassigned_views(self) -> KeyPattern:
        return self.pattern("unassigned")


class TechnicianKeys(KeyFactory):
    def available(self, service_type: str | None = None) -> CacheKey:
        return self.key("available", service_type=service_type)

    def availability(self) -> KeyPattern:
        return self.pattern("available")

    def workload(self, id: int) -> CacheKey:
        return self.key("workload", id=id)

    def schedule(self, id: int, start: str | None = None, end: str | None = None) -> CacheKey:
        return self.key("schedule", id=id, start=start, end=end)

    def tickets(self, id: int, *, page: int | None = None, size: int | None = None) -> CacheKey:
        return self.key("tickets", id=id, page=page, size=size)


class ClientKeys(KeyFactory):
    def tickets(self, id: int, *, page: int | None = None, size: int | None = None) -> CacheKey:
        return self.key("tickets", id=id, page=page, size=size)

    def appointments(self, id: int, *, page: int | None = None, size: int | None = None) -> CacheKey:
        return self.key("appointments", id=id, page=page, size=size)


class AppointmentKeys(KeyFactory):
    def upcoming(self, *, page: int | None = None, size: int | None = None) -> CacheKey:
        return self.key("upcoming", page=page, size=size)

    def upcoming_views(self) -> KeyPattern:
        return self.pattern("upcoming")

    def available_slots(self, **params: Any) -> CacheKey:
        return self.key("available-slots", **params)

    def slot_views(self) -> KeyPattern:
        return self.pattern("available-slots")


CLIENT_KEYS = ClientKeys("clients")
TECHNICIAN_KEYS = TechnicianKeys("technicians")
TICKET_KEYS = TicketKeys("tickets")
APPOINTMENT_KEYS = AppointmentKeys("appointments")


__all__ = [
    "APPOINTMENT_KEYS",
    "CLIENT_KEYS",
    "CacheKey",
    "KeyFactory",
    "KeyPattern",
    "KeySelector",
    "TECHNICIAN_KEYS",
    "TICKET_KEYS",
    "is_key_prefix",
    "normalize_params",
]
