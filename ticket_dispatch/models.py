"""Data models for region-scoped access control and ticket dispatch."""

import re
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class Region(str, Enum):
    """Service regions; each maps to exactly one Zammad group."""

    ASIA_PACIFIC = "asia-pacific"
    MIDDLE_EAST = "middle-east"
    AFRICA = "africa"
    NORTH_AMERICA = "north-america"
    LATIN_AMERICA = "latin-america"
    EUROPE_ZONE_1 = "europe-zone-1"
    EUROPE_ZONE_2 = "europe-zone-2"
    CIS = "cis"


class Role(str, Enum):
    """Portal roles."""

    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


# --- Actors (tagged on role) ---


class AdminActor(BaseModel):
    """Administrator: no region restriction."""

    role: Literal["admin"] = "admin"
    id: str
    email: str


class StaffActor(BaseModel):
    """Support staff bound to a home region. Without one, staff can see nothing."""

    role: Literal["staff"] = "staff"
    id: str
    email: str
    region: Optional[Region] = None


class CustomerActor(BaseModel):
    """Customer; legacy customers may have no region."""

    role: Literal["customer"] = "customer"
    id: str
    email: str
    region: Optional[Region] = None


Actor = Annotated[Union[AdminActor, StaffActor, CustomerActor], Field(discriminator="role")]

_actor_adapter = TypeAdapter(Actor)


def parse_actor(data: dict[str, Any]) -> Union[AdminActor, StaffActor, CustomerActor]:
    """Build the right actor variant from a plain dict (role decides the shape)."""
    return _actor_adapter.validate_python(data)


# --- Backend views ---


class Ticket(BaseModel):
    """Read-only view of a Zammad ticket."""

    id: int
    number: str = ""
    title: str = ""
    group_id: Optional[int] = None
    state_id: int = 1
    owner_id: Optional[int] = None
    priority_id: Optional[int] = None
    customer_id: Optional[int] = None
    created_at: Optional[str] = None


class Conversation(BaseModel):
    """Conversation view used for region filtering. No region means legacy data."""

    id: str
    region: Optional[Region] = None
    customer_email: Optional[str] = None


_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class Agent(BaseModel):
    """A Zammad agent (assignment candidate)."""

    id: int
    email: str = ""
    login: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    active: bool = True
    role_ids: list[int] = Field(default_factory=list)
    group_ids: dict[int, list[str]] = Field(
        default_factory=dict,
        description="Group id -> permissions (e.g. ['full'])",
    )
    out_of_office: bool = False
    out_of_office_start_at: Optional[datetime] = None
    out_of_office_end_at: Optional[datetime] = None
    note: Optional[str] = Field(None, description="Free-text profile note; customers carry 'Region: <value>' here")

    @field_validator("role_ids", "group_ids", mode="before")
    @classmethod
    def _none_as_empty(cls, value, info):
        if value is None:
            return {} if info.field_name == "group_ids" else []
        return value

    @field_validator("out_of_office_start_at", "out_of_office_end_at", mode="before")
    @classmethod
    def _expand_plain_dates(cls, value, info):
        # Zammad stores vacation bounds as plain dates; a bound covers the whole day.
        if value in ("", None):
            return None
        if isinstance(value, str) and _DATE_ONLY.match(value):
            value = date.fromisoformat(value)
        if isinstance(value, date) and not isinstance(value, datetime):
            bound = time.max if info.field_name == "out_of_office_end_at" else time.min
            return datetime.combine(value, bound, tzinfo=timezone.utc)
        return value

    @field_validator("out_of_office_start_at", "out_of_office_end_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# --- Dispatch results ---


class AssignedAgent(BaseModel):
    id: int
    name: str
    email: str


class AssignmentResult(BaseModel):
    """Outcome of a single auto-assignment; consumed once by the notification step."""

    success: bool
    assigned_to: Optional[AssignedAgent] = None
    error: Optional[str] = None


class DeliveryOutcome(BaseModel):
    """Result of one best-effort notification send."""

    recipient_id: str
    delivered: bool
    error: Optional[str] = None


class SweepEntry(BaseModel):
    ticket_id: int
    ticket_number: str
    assigned_to: Optional[AssignedAgent] = None
    error: Optional[str] = None


class AutoAssignSweepReport(BaseModel):
    """Summary of an auto-assign sweep over all unassigned tickets."""

    message: str
    processed: int = 0
    success: int = 0
    failed: int = 0
    results: list[SweepEntry] = Field(default_factory=list)


class UnassignedTicketInfo(BaseModel):
    id: int
    number: str
    title: str
    group_id: Optional[int] = None
    created_at: Optional[str] = None


class UnassignedSummary(BaseModel):
    total_unassigned: int
    by_region: dict[str, int] = Field(default_factory=dict)
    tickets: list[UnassignedTicketInfo] = Field(default_factory=list)


class StaffAvailability(BaseModel):
    """One row of the staff availability listing."""

    id: int
    name: str
    email: Optional[str] = Field(None, description="Only populated for admins")
    is_available: bool
    is_on_vacation: bool
    vacation_end_date: Optional[datetime] = None
    ticket_count: int = 0


class StaffAvailabilityList(BaseModel):
    staff: list[StaffAvailability] = Field(default_factory=list)
    total: int = 0
    available_count: int = 0


# --- API payloads ---


class ZammadWebhookArticle(BaseModel):
    id: Optional[int] = None
    type: Optional[str] = Field(None, description="Article type, e.g. 'email', 'web', 'note'")


class ZammadWebhookPayload(BaseModel):
    """Body of a Zammad trigger webhook (ticket plus the triggering article)."""

    ticket: Ticket
    article: Optional[ZammadWebhookArticle] = None


class EmailRoutingOutcome(BaseModel):
    """What happened to an email ticket waiting in the staging group."""

    ticket_id: int
    status: Literal["skipped", "unrouted", "routed", "failed"]
    region: Optional[Region] = None
    reason: Optional[str] = None
    result: Optional[AssignmentResult] = None


class TicketDispatchRequest(BaseModel):
    """Payload sent by the ticket-creation flow once the backend ticket exists."""

    ticket_id: int = Field(..., description="Zammad ticket id")
    ticket_number: str = Field(..., description="Zammad ticket number")
    ticket_title: str = Field(default="", description="Ticket title (used in notifications)")
    group_id: int = Field(..., description="Zammad group the ticket was created in")
    region: Optional[Region] = Field(None, description="Defaults to the group's region")


class TicketDispatchAccepted(BaseModel):
    """Response for 202 Accepted: dispatch queued for the background worker."""

    ticket_id: int
    job_id: str = Field(..., description="Unique job id for this dispatch task")
    message: str = Field(default="Accepted for dispatch")


class UserMappingRequest(BaseModel):
    zammad_user_id: int = Field(..., ge=1)
    local_user_id: str = Field(..., min_length=1)
