"""supportsync - client-side data synchronization for the support dashboard."""

# Key registry
from supportsync.keys import (
    APPOINTMENT_KEYS,
    CLIENT_KEYS,
    TECHNICIAN_KEYS,
    TICKET_KEYS,
    CacheKey,
    KeyFactory,
    KeyPattern,
    is_key_prefix,
)

# Cache store and runners
from supportsync.store import CacheStore, Subscription
from supportsync.query import QueryRunner
from supportsync.mutation import MutationRunner
from supportsync.invalidation import INVALIDATION_RULES
from supportsync.policies import PolicyTable, policy
from supportsync.retry import MUTATION_RETRY, READ_RETRY, RetryPolicy

# Ticket lifecycle
from supportsync.lifecycle import (
    TicketCounts,
    Transition,
    compute_statistics,
    is_assigned,
    is_overdue,
    statistics_from_cache,
)

# Transport, session and configuration
from supportsync.transport import ApiTransport, SupportApi
from supportsync.session import SyncSession
from supportsync.config import SyncSettings
from supportsync.duration import parse_duration

# Core types and errors
from supportsync.types import CacheEvent, CacheEventType, CacheSnapshot, Duration, FreshnessPolicy
from supportsync.errors import (
    ClientError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    SupportSyncError,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    "APPOINTMENT_KEYS",
    "ApiTransport",
    "CLIENT_KEYS",
    "CacheEvent",
    "CacheEventType",
    "CacheKey",
    "CacheSnapshot",
    "CacheStore",
    "ClientError",
    "Duration",
    "FreshnessPolicy",
    "INVALIDATION_RULES",
    "KeyFactory",
    "KeyPattern",
    "MUTATION_RETRY",
    "MutationRunner",
    "NetworkError",
    "NotFoundError",
    "PolicyTable",
    "QueryRunner",
    "READ_RETRY",
    "RateLimitedError",
    "RetryPolicy",
    "ServerError",
    "Subscription",
    "SupportApi",
    "SupportSyncError",
    "SyncSession",
    "SyncSettings",
    "TECHNICIAN_KEYS",
    "TICKET_KEYS",
    "TicketCounts",
    "TransportError",
    "Transition",
    "compute_statistics",
    "is_assigned",
    "is_key_prefix",
    "is_overdue",
    "parse_duration",
    "policy",
    "statistics_from_cache",
]
