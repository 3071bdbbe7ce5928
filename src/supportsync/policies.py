"""Freshness policies per entity kind and operation.

Tickets and appointments change under concurrent operator use and get a
shorter freshness window than clients and technicians. Availability,
workload and queue views are operationally sensitive and look fresher still.
"""

from __future__ import annotations

from collections.abc import Mapping

from supportsync.duration import parse_duration
from supportsync.keys import CacheKey
from supportsync.types import Duration, FreshnessPolicy

DEFAULT = "*"


def policy(stale_after: Duration, evict_after: Duration) -> FreshnessPolicy:
    """Build a FreshnessPolicy from human durations."""
    stale_ms = parse_duration(stale_after)
    evict_ms = parse_duration(evict_after)
    if evict_ms < stale_ms:
        raise ValueError("evict_after must not be shorter than stale_after")
    return FreshnessPolicy(stale_after=stale_ms, evict_after=evict_ms)


FALLBACK_POLICY = policy("30s", "5m")

DEFAULT_POLICIES: dict[str, dict[str, FreshnessPolicy]] = {
    "tickets": {
        DEFAULT: policy("2m", "5m"),
        "detail": policy("2m", "10m"),
        "search": policy("1m", "5m"),
        "overdue": policy("1m", "5m"),
        "unassigned": policy("1m", "5m"),
        "statistics": policy("5m", "10m"),
    },
    "clients": {
        DEFAULT: policy("5m", "10m"),
        "search": policy("2m", "5m"),
        "tickets": policy("2m", "5m"),
        "appointments": policy("2m", "5m"),
    },
    "technicians": {
        DEFAULT: policy("5m", "10m"),
        "search": policy("2m", "5m"),
        "available": policy("1m", "5m"),
        "workload": policy("1m", "5m"),
        "schedule": policy("1m", "5m"),
        "tickets": policy("2m", "5m"),
    },
    "appointments": {
        DEFAULT: policy("2m", "5m"),
        "detail": policy("5m", "10m"),
        "upcoming": policy("1m", "5m"),
        "available-slots": policy("30s", "5m"),
    },
}


class PolicyTable:
    """Resolves the freshness policy for a key.

    Lookup order: exact (kind, operation), then the kind default, then the
    table-wide fallback.
    """

    def __init__(
        self,
        policies: Mapping[str, Mapping[str, FreshnessPolicy]] | None = None,
        *,
        fallback: FreshnessPolicy = FALLBACK_POLICY,
    ) -> None:
        source = DEFAULT_POLICIES if policies is None else policies
        self._policies = {kind: dict(ops) for kind, ops in source.items()}
        self._fallback = fallback

    def resolve(self, key: CacheKey) -> FreshnessPolicy:
        ops = self._policies.get(key.kind)
        if not ops:
            return self._fallback
        return ops.get(key.operation) or ops.get(DEFAULT) or self._fallback

    def override(self, kind: str, operation: str, value: FreshnessPolicy) -> None:
        self._policies.setdefault(kind, {})[operation] = value


__all__ = ["DEFAULT_POLICIES", "FALLBACK_POLICY", "PolicyTable", "policy"]
