import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from app.api.deps import get_db
from app.api.serializers import ticket_to_record
from app.core.config import settings
from app.core.events import broker
from app.models.property import Property
from app.models.ticket import Ticket, next_updated_at
from app.schemas.ticket import (
    DeleteTicketResult,
    TicketCreate,
    TicketEventType,
    TicketRecord,
    TicketUpdate,
    normalize_priority,
    normalize_status,
)
from app.services.triage import run_triage, start_triage, wants_triage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _parse(normalize, value: Optional[str], field: str):
    if value is None or value == "":
        return None
    try:
        return normalize(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid {field}: {value}")


def apply_ticket_filters(
    q,
    status: Optional[str],
    priority: Optional[str],
    property_id: Optional[int],
    search_query: Optional[str],
):
    status_value = _parse(normalize_status, status, "status")
    priority_value = _parse(normalize_priority, priority, "priority")

    if status_value:
        q = q.filter(Ticket.status == status_value.value)
    if priority_value:
        q = q.filter(Ticket.priority == priority_value.value)
    if property_id:
        q = q.filter(Ticket.property_id == property_id)

    # search: title/description/property address
    if search_query and search_query.strip():
        like = f"%{search_query.strip()}%"
        q = q.outerjoin(Property, Property.id == Ticket.property_id).filter(
            Ticket.title.ilike(like)
            | Ticket.description.ilike(like)
            | Property.address.ilike(like)
        )

    return q


def _get_ticket_or_404(db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


@router.get("", response_model=List[TicketRecord])
def list_tickets(
    db: Session = Depends(get_db),
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    property_id: Optional[int] = Query(None),
    search_query: Optional[str] = Query(None),  # search in title/description/address
    limit: int = Query(200, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    q = db.query(Ticket).options(joinedload(Ticket.property))
    q = apply_ticket_filters(q, status, priority, property_id, search_query)
    tickets = q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(offset).limit(limit).all()
    return [ticket_to_record(t) for t in tickets]


@router.get("/events")
async def ticket_events():
    """
    Push channel: server-sent events for ticket.created / ticket.updated /
    ticket.deleted. Created and updated events carry the full ticket.
    """
    return StreamingResponse(
        broker.stream(keepalive=settings.EVENT_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{ticket_id}", response_model=TicketRecord)
def get_ticket(ticket_id: int, db: Session = Depends(get_db)):
    return ticket_to_record(_get_ticket_or_404(db, ticket_id))


@router.post("", response_model=TicketRecord)
def create_ticket(
    payload: TicketCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    prop = db.query(Property).filter(Property.id == payload.property_id).first()
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")

    description = payload.description.strip()
    title = (payload.title or "").strip() or description[:50]
    ticket = Ticket(
        property_id=payload.property_id,
        title=title,
        description=description,
        priority=payload.priority.value,
        status=payload.status.value,
        details=payload.metadata.model_dump(mode="json") if payload.metadata else None,
    )

    triage = wants_triage(payload.metadata, payload.status)
    if triage:
        start_triage(ticket)

    db.add(ticket)
    db.commit()
    db.refresh(ticket)

    record = ticket_to_record(ticket)
    logger.info("Ticket %s created for property %s (%s)", ticket.id, ticket.property_id, ticket.status)
    broker.publish_ticket(TicketEventType.CREATED, record)

    if triage:
        background_tasks.add_task(run_triage, ticket.id)

    return record


@router.patch("/{ticket_id}", response_model=TicketRecord)
def update_ticket(
    ticket_id: int,
    payload: TicketUpdate,
    db: Session = Depends(get_db),
):
    ticket = _get_ticket_or_404(db, ticket_id)

    # only fields the client actually sent; omitted fields keep their values
    for name in payload.model_fields_set:
        value = getattr(payload, name)
        if name in ("priority", "status"):
            if value is None:
                continue
            setattr(ticket, name, value.value)
        elif name == "metadata":
            ticket.details = value.model_dump(mode="json") if value else None
        elif name == "property_id":
            if value is None:
                continue
            if not db.query(Property).filter(Property.id == value).first():
                raise HTTPException(status_code=404, detail="Property not found")
            ticket.property_id = value
        elif value is not None:
            setattr(ticket, name, value)

    ticket.updated_at = next_updated_at(ticket.updated_at)
    db.commit()
    db.refresh(ticket)

    record = ticket_to_record(ticket)
    logger.info("Ticket %s updated: %s", ticket.id, sorted(payload.model_fields_set))
    broker.publish_ticket(TicketEventType.UPDATED, record)
    return record


@router.delete("/{ticket_id}", response_model=DeleteTicketResult)
def delete_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
):
    ticket = _get_ticket_or_404(db, ticket_id)

    db.delete(ticket)
    db.commit()

    logger.info("Ticket %s deleted", ticket_id)
    broker.publish_deleted(ticket_id)
    return DeleteTicketResult(id=ticket_id, success=True)
