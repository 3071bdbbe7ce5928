"""Entity models as served by the backend.

Models are frozen: the cache replaces values wholesale and never patches a
stored entity in place. Wire names are camelCase; Python attributes are
snake_case and either form is accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class ClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    TERMINATED = "TERMINATED"


class TechnicianStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ON_VACATION = "ON_VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    TERMINATED = "TERMINATED"


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class Client(WireModel):
    id: int
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None
    status: ClientStatus = ClientStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Technician(WireModel):
    id: int
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    status: TechnicianStatus = TechnicianStatus.ACTIVE
    skills: frozenset[str] = frozenset()
    current_workload: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Ticket(WireModel):
    """A support ticket.

    ``status`` is the only lifecycle state; "overdue" and "unassigned" are
    derived on read by :mod:`supportsync.lifecycle` and never stored.
    """

    id: int
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.MEDIUM
    service_type: str | None = None
    description: str | None = None
    client_id: int
    assigned_technician_id: int | None = None
    due_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Appointment(WireModel):
    id: int
    ticket_id: int
    technician_id: int
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None


class Page(WireModel, Generic[T]):
    """Paged response envelope (0-based page ``number``)."""

    content: tuple[T, ...] = ()
    total_elements: int = 0
    total_pages: int = 0
    size: int = 0
    number: int = 0
    number_of_elements: int = 0
    first: bool = True
    last: bool = True
    empty: bool = True

    @property
    def has_next(self) -> bool:
        return not self.last


class TicketStatistics(WireModel):
    """Server-side aggregate from ``GET /api/tickets/statistics``."""

    total_tickets: int = 0
    open_tickets: int = 0
    closed_tickets: int = 0
    overdue_tickets: int | None = None
    unassigned_tickets: int | None = None
    tickets_by_status: dict[str, int] = Field(default_factory=dict)
    tickets_by_priority: dict[str, int] = Field(default_factory=dict)
    tickets_by_service_type: dict[str, int] = Field(default_factory=dict)


class TechnicianStatistics(WireModel):
    total_technicians: int = 0
    active_technicians: int = 0
    total_assigned_tickets: int = 0
    average_tickets_per_technician: float = 0.0
    technicians_by_status: dict[str, int] = Field(default_factory=dict)


class TechnicianWorkload(WireModel):
    technician_id: int
    open_tickets: int = 0
    scheduled_appointments: int = 0


__all__ = [
    "Appointment",
    "AppointmentStatus",
    "Client",
    "ClientStatus",
    "Page",
    "Technician",
    "TechnicianStatistics",
    "TechnicianStatus",
    "TechnicianWorkload",
    "Ticket",
    "TicketPriority",
    "TicketStatistics",
    "TicketStatus",
]
