from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, field_validator, model_validator
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, List, Optional


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS_BY_AI = "IN_PROGRESS_BY_AI"
    NEEDS_MANUAL_REVIEW = "NEEDS_MANUAL_REVIEW"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    # legacy client statuses
    IN_PROGRESS = "IN_PROGRESS"
    PENDING = "PENDING"


TERMINAL_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})

# shown when a ticket has no resolvable property address
UNKNOWN_ADDRESS = "Unknown"


def normalize_status(value) -> TicketStatus:
    """Accept any casing ("resolved", "Resolved", TicketStatus.RESOLVED) and return the canonical enum."""
    if isinstance(value, TicketStatus):
        return value
    return TicketStatus(str(value).strip().upper())


def normalize_priority(value) -> TicketPriority:
    if isinstance(value, TicketPriority):
        return value
    return TicketPriority(str(value).strip().upper())


def to_wire(value: Enum) -> str:
    """Statuses and priorities travel lower-case."""
    return value.value.lower()


WireStatus = Annotated[TicketStatus, BeforeValidator(normalize_status), PlainSerializer(to_wire, return_type=str)]
WirePriority = Annotated[TicketPriority, BeforeValidator(normalize_priority), PlainSerializer(to_wire, return_type=str)]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TicketAttachment(BaseModel):
    filename: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    url: str


class TicketMetadata(BaseModel):
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    estimated_cost: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None

    # AI triage flags
    use_ai: bool = False
    generated_by_ai: Optional[bool] = None
    action_required: Optional[str] = None
    ai_processed: Optional[bool] = None
    ai_resolution: Optional[str] = None
    ai_action_taken: Optional[str] = None
    ai_notes: Optional[str] = None
    ai_processing_time: Optional[str] = None
    manual_review_reason: Optional[str] = None

    attachments: List[TicketAttachment] = []


class TicketRecord(BaseModel):
    id: int
    title: str
    description: str
    priority: WirePriority
    status: WireStatus
    property_id: int
    property_address: Optional[str] = None
    metadata: Optional[TicketMetadata] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_timezone(cls, v):
        return as_utc(v)


class TicketCreate(BaseModel):
    title: Optional[str] = None  # synthesized from description by the server when omitted
    description: str = Field(min_length=1)
    priority: WirePriority = TicketPriority.MEDIUM
    status: WireStatus = TicketStatus.OPEN
    property_id: int
    metadata: Optional[TicketMetadata] = None


class TicketUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[WirePriority] = None
    status: Optional[WireStatus] = None
    property_id: Optional[int] = None
    metadata: Optional[TicketMetadata] = None

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("must not be blank")
        return v


class TicketFilters(BaseModel):
    status: Optional[WireStatus] = None
    priority: Optional[WirePriority] = None
    property_id: Optional[int] = None
    search_query: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def to_params(self) -> dict:
        """Query parameters for GET /tickets. Unset filters are left out entirely."""
        params = self.model_dump(exclude_none=True)
        if self.search_query is not None and not self.search_query.strip():
            params.pop("search_query")
        return params


class DeleteTicketResult(BaseModel):
    id: int
    success: bool


class AttachmentSource(BaseModel):
    """A file picked in the UI that still has to become an attachment descriptor."""
    filename: str
    path: Optional[Path] = None
    content: Optional[bytes] = None
    mime_type: Optional[str] = None

    @model_validator(mode="after")
    def needs_payload(self):
        if self.path is None and self.content is None:
            raise ValueError("attachment needs either a path or content")
        return self


class TicketInput(BaseModel):
    """What the ticket form hands to the store. Required fields are checked by the store."""
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[WirePriority] = None
    status: Optional[WireStatus] = None
    property_id: Optional[int] = None
    use_ai: bool = False
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    estimated_cost: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    attachments: List[AttachmentSource] = []
    existing_attachments: List[TicketAttachment] = []


class TicketEventType(str, Enum):
    CREATED = "ticket.created"
    UPDATED = "ticket.updated"
    DELETED = "ticket.deleted"


class TicketEvent(BaseModel):
    """A server-pushed change. Created/updated events carry the full record, deletes only the id."""
    type: TicketEventType
    ticket_id: int
    ticket: Optional[TicketRecord] = None

    @model_validator(mode="after")
    def check_payload(self):
        if self.type != TicketEventType.DELETED:
            if self.ticket is None:
                raise ValueError(f"{self.type.value} event needs the full ticket")
            if self.ticket.id != self.ticket_id:
                raise ValueError("ticket_id does not match ticket.id")
        return self

    @property
    def updated_at(self) -> Optional[datetime]:
        return self.ticket.updated_at if self.ticket else None
