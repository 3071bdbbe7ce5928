"""Error taxonomy for transport and cache operations.

Failures are classified by HTTP status class so the retry layer can decide
without inspecting messages:

- ClientError (4xx): surfaced as-is, not retried.
- NotFoundError (404): a ClientError callers render as "deleted/empty".
- RateLimitedError (429): a ClientError that reads retry with backoff.
- ServerError (5xx) and NetworkError (connection failure, timeout): transient.
"""

from __future__ import annotations

from typing import Any


class SupportSyncError(Exception):
    """Base exception for the synchronization layer."""


class TransportError(SupportSyncError):
    """A failed HTTP exchange with the backend."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.path = path
        self.details = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, path={self.path!r}, message={self.message!r})"


class ClientError(TransportError):
    """The request was rejected (4xx)."""

    @property
    def validation_errors(self) -> list[dict[str, Any]]:
        errors = self.details.get("validationErrors")
        return list(errors) if isinstance(errors, list) else []


class NotFoundError(ClientError):
    """The addressed entity does not exist (404)."""


class RateLimitedError(ClientError):
    """The backend asked us to slow down (429)."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status: int = 429,
        path: str = "",
        details: dict[str, Any] | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status, path=path, details=details)
        self.retry_after = retry_after


class ServerError(TransportError):
    """The backend failed (5xx)."""

    retryable = True


class NetworkError(TransportError):
    """No HTTP response: connection failure or timeout."""

    retryable = True


class UnknownMutationError(SupportSyncError, KeyError):
    """A mutation name with no invalidation rule."""

    def __init__(self, operation: str) -> None:
        super().__init__(operation)
        self.operation = operation

    def __str__(self) -> str:
        return f"No invalidation rule registered for mutation {self.operation!r}"


class InvalidTransitionError(SupportSyncError):
    """A lifecycle transition that is not legal from the ticket's status."""

    def __init__(self, ticket_id: int | None, status: str, transition: str) -> None:
        super().__init__(
            f"Cannot {transition} ticket {ticket_id} while it is {status}"
        )
        self.ticket_id = ticket_id
        self.status = status
        self.transition = transition


def error_for_status(
    status: int,
    *,
    path: str = "",
    body: Any = None,
    retry_after: float | None = None,
) -> TransportError:
    """Build the typed error matching an HTTP status code."""
    details = body if isinstance(body, dict) else {}
    message = str(details.get("message") or "")

    if status == 404:
        return NotFoundError(message or "Resource not found", status=status, path=path, details=details)
    if status == 429:
        return RateLimitedError(
            message or "Rate limited",
            path=path,
            details=details,
            retry_after=retry_after,
        )
    if status == 401:
        return ClientError(message or "Unauthorized", status=status, path=path, details=details)
    if status == 403:
        return ClientError(message or "Access forbidden", status=status, path=path, details=details)
    if status == 422:
        return ClientError(message or "Validation failed", status=status, path=path, details=details)
    if 400 <= status < 500:
        return ClientError(message or f"HTTP {status}", status=status, path=path, details=details)
    if status >= 500:
        return ServerError(message or "Server error occurred", status=status, path=path, details=details)
    return TransportError(message or f"Unexpected HTTP {status}", status=status, path=path, details=details)


__all__ = [
    "ClientError",
    "InvalidTransitionError",
    "NetworkError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
    "SupportSyncError",
    "TransportError",
    "UnknownMutationError",
    "error_for_status",
]
