"""Core types for the supportsync cache layer."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

from supportsync.keys import CacheKey

T = TypeVar("T")

# Duration type alias
Duration = str | int | timedelta  # "30s", "2m", "1h", milliseconds or timedelta


@dataclass(frozen=True, slots=True)
class FreshnessPolicy:
    """How long an entry stays fresh, and how long it may sit unobserved."""

    stale_after: int  # ms since fetch before a re-request triggers a refetch
    evict_after: int  # ms without observation before GC removes the entry


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """A cached value with its bookkeeping. Replaced wholesale, never patched."""

    value: T
    fetched_at: int  # Unix timestamp ms
    observed_at: int  # last read or write, drives eviction
    policy: FreshnessPolicy
    invalidated: bool = False

    def is_stale(self, now: int) -> bool:
        return self.invalidated or now - self.fetched_at >= self.policy.stale_after

    def is_idle(self, now: int) -> bool:
        return now - self.observed_at > self.policy.evict_after


@dataclass(frozen=True, slots=True)
class CacheSnapshot(Generic[T]):
    """What a reader sees for a key at one instant."""

    value: T
    fetched_at: int
    is_stale: bool


class CacheEventType(str, Enum):
    UPDATED = "updated"
    STALE = "stale"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class CacheEvent:
    """Notification delivered to subscribers of a key or pattern."""

    type: CacheEventType
    key: CacheKey
    value: Any = None
