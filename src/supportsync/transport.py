"""Transport facade over the backend REST contract.

Each entity API performs one HTTP call per method and returns parsed models
or raises a typed :class:`~supportsync.errors.TransportError`. Nothing here
knows about the cache.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

import httpx

from supportsync.errors import NetworkError, error_for_status
from supportsync.logging import get_logger
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

ModelT = TypeVar("ModelT", Client, Technician, Ticket, Appointment)

logger = get_logger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _clean(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if not params:
        return None
    return {k: v for k, v in params.items() if v is not None}


class ApiTransport:
    """Async HTTP client for the support backend."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform one call; return the decoded JSON body or ``None`` if empty."""
        try:
            response = await self._client.request(
                method, path, params=_clean(params), json=json
            )
        except httpx.TimeoutException as e:
            raise NetworkError("Request timeout", path=path) from e
        except httpx.TransportError as e:
            raise NetworkError(
                "Network error - please check your connection", path=path
            ) from e

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            error = error_for_status(
                response.status_code,
                path=path,
                body=body,
                retry_after=_retry_after(response),
            )
            logger.debug(
                "http_error", method=method, path=path, status=response.status_code
            )
            raise error

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class EntityApi(Generic[ModelT]):
    """CRUD endpoints shared by every entity under ``/api/{entity}``."""

    model: type[ModelT]
    resource: str

    def __init__(self, transport: ApiTransport) -> None:
        self._transport = transport

    @property
    def base(self) -> str:
        return f"/api/{self.resource}"

    def _one(self, data: Any) -> ModelT:
        return self.model.model_validate(data)

    def _page(self, data: Any) -> Page[ModelT]:
        return Page[self.model].model_validate(data)  # type: ignore[name-defined]

    async def list(
        self, *, page: int | None = None, size: int | None = None, sort: str | None = None
    ) -> Page[ModelT]:
        data = await self._transport.request(
            "GET", self.base, params={"page": page, "size": size, "sort": sort}
        )
        return self._page(data)

    async def get(self, id: int) -> ModelT:
        return self._one(await self._transport.request("GET", f"{self.base}/{id}"))

    async def search(self, query: str | None = None, **filters: Any) -> Page[ModelT]:
        data = await self._transport.request(
            "GET", f"{self.base}/search", params={"query": query, **filters}
        )
        return self._page(data)

    async def create(self, data: dict[str, Any]) -> ModelT:
        return self._one(await self._transport.request("POST", self.base, json=data))

    async def update(self, id: int, data: dict[str, Any]) -> ModelT:
        return self._one(
            await self._transport.request("PUT", f"{self.base}/{id}", json=data)
        )

    async def delete(self, id: int) -> None:
        await self._transport.request("DELETE", f"{self.base}/{id}")

    async def _action(self, id: int, action: str, body: dict[str, Any] | None = None) -> ModelT:
        data = await self._transport.request(
            "POST", f"{self.base}/{id}/{action}", json=body or {}
        )
        return self._one(data)


class ClientsApi(EntityApi[Client]):
    model = Client
    resource = "clients"

    async def activate(self, id: int) -> Client:
        return await self._action(id, "activate")

    async def suspend(self, id: int) -> Client:
        return await self._action(id, "suspend")

    async def tickets(self, id: int, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        data = await self._transport.request(
            "GET", f"{self.base}/{id}/tickets", params={"page": page, "size": size}
        )
        return Page[Ticket].model_validate(data)


class TechniciansApi(EntityApi[Technician]):
    model = Technician
    resource = "technicians"

    async def available(self, service_type: str | None = None) -> list[Technician]:
        data = await self._transport.request(
            "GET", f"{self.base}/available", params={"serviceType": service_type}
        )
        return [Technician.model_validate(item) for item in data or []]

    async def statistics(self) -> TechnicianStatistics:
        data = await self._transport.request("GET", f"{self.base}/statistics")
        return TechnicianStatistics.model_validate(data)

    async def workload(self, id: int) -> TechnicianWorkload:
        data = await self._transport.request("GET", f"{self.base}/{id}/workload")
        return TechnicianWorkload.model_validate(data)

    async def schedule(
        self, id: int, start: str | None = None, end: str | None = None
    ) -> list[Appointment]:
        data = await self._transport.request(
            "GET",
            f"{self.base}/{id}/schedule",
            params={"startDate": start, "endDate": end},
        )
        return [Appointment.model_validate(item) for item in data or []]


class TicketsApi(EntityApi[Ticket]):
    model = Ticket
    resource = "tickets"

    async def assign(self, id: int, technician_id: int) -> Any:
        """Assign a technician. Returns the raw assignment result."""
        return await self._transport.request(
            "POST", f"{self.base}/{id}/assign", json={"technicianId": technician_id}
        )

    async def close(self, id: int, resolution: str | None = None) -> Ticket:
        return await self._action(id, "close", {"resolution": resolution})

    async def reopen(self, id: int, reason: str | None = None) -> Ticket:
        return await self._action(id, "reopen", {"reason": reason})

    async def overdue(self, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        data = await self._transport.request(
            "GET", f"{self.base}/overdue", params={"page": page, "size": size}
        )
        return self._page(data)

    async def unassigned(self, *, page: int | None = None, size: int | None = None) -> Page[Ticket]:
        data = await self._transport.request(
            "GET", f"{self.base}/unassigned", params={"page": page, "size": size}
        )
        return self._page(data)

    async def statistics(self) -> TicketStatistics:
        data = await self._transport.request("GET", f"{self.base}/statistics")
        return TicketStatistics.model_validate(data)


class AppointmentsApi(EntityApi[Appointment]):
    model = Appointment
    resource = "appointments"

    async def upcoming(self, *, page: int | None = None, size: int | None = None) -> Page[Appointment]:
        data = await self._transport.request(
            "GET", f"{self.base}/upcoming", params={"page": page, "size": size}
        )
        return self._page(data)

    async def confirm(self, id: int) -> Appointment:
        return await self._action(id, "confirm")

    async def cancel(self, id: int, reason: str | None = None) -> Appointment:
        return await self._action(id, "cancel", {"reason": reason})

    async def complete(self, id: int, notes: str | None = None) -> Appointment:
        return await self._action(id, "complete", {"notes": notes})


class SupportApi:
    """All entity APIs over one shared transport."""

    def __init__(self, transport: ApiTransport) -> None:
        self.transport = transport
        self.clients = ClientsApi(transport)
        self.technicians = TechniciansApi(transport)
        self.tickets = TicketsApi(transport)
        self.appointments = AppointmentsApi(transport)

    async def aclose(self) -> None:
        await self.transport.aclose()


__all__ = [
    "ApiTransport",
    "AppointmentsApi",
    "ClientsApi",
    "EntityApi",
    "SupportApi",
    "TechniciansApi",
    "TicketsApi",
]
