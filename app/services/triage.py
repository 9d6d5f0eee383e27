"""
AI triage for new tickets.

Tickets created with `use_ai` enter IN_PROGRESS_BY_AI and are classified in the
background. The classifier either resolves the ticket itself (routine jobs with a
self-service fix) or hands it to a person as NEEDS_MANUAL_REVIEW. Each step is
published on the push channel like any other update.
"""
import logging
import time
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.serializers import ticket_to_record
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.events import TicketEventBroker, broker
from app.models.ticket import Ticket, next_updated_at
from app.schemas.ticket import TicketEventType, TicketMetadata, TicketPriority, TicketRecord, TicketStatus
from app.services.kanban import TransitionSource, check_transition

logger = logging.getLogger(__name__)


class TriageResult(BaseModel):
    """What the classifier decided for one ticket."""
    category: str
    priority: TicketPriority
    resolvable: bool = Field(description="True when the suggested action needs no technician.")
    suggested_action: str
    estimated_time_to_fix: Optional[str] = None
    reason: Optional[str] = None


# (keywords, category, priority, resolvable, suggested action, estimated time)
TRIAGE_RULES: List[Tuple[Tuple[str, ...], str, TicketPriority, bool, str, str]] = [
    (("fire", "smoke", "gas smell", "gas leak", "sparks", "carbon monoxide"), "safety",
     TicketPriority.URGENT, False, "Dispatch emergency contractor and notify tenant", "same day"),
    (("flood", "burst", "leak", "sewage", "overflow"), "plumbing",
     TicketPriority.HIGH, False, "Schedule plumber", "1-2 days"),
    (("no heat", "heating", "furnace", "air conditioning", "hvac", "ac not"), "hvac",
     TicketPriority.HIGH, False, "Schedule HVAC technician", "1-3 days"),
    (("outlet", "breaker", "power", "wiring"), "electrical",
     TicketPriority.MEDIUM, False, "Schedule electrician", "2-5 days"),
    (("light bulb", "bulb", "battery", "filter", "reset"), "routine",
     TicketPriority.LOW, True, "Send tenant self-service instructions", "under 1 hour"),
]


def classify(title: str, description: str) -> TriageResult:
    text = f"{title or ''} {description or ''}".lower()
    for keywords, category, priority, resolvable, action, eta in TRIAGE_RULES:
        hit = next((k for k in keywords if k in text), None)
        if hit:
            return TriageResult(
                category=category,
                priority=priority,
                resolvable=resolvable,
                suggested_action=action,
                estimated_time_to_fix=eta,
                reason=None if resolvable else f"Matched '{hit}': needs a {category} technician",
            )
    return TriageResult(
        category="general",
        priority=TicketPriority.MEDIUM,
        resolvable=False,
        suggested_action="Review and assign manually",
        reason="No triage rule matched",
    )


def wants_triage(metadata: Optional[TicketMetadata], status: TicketStatus) -> bool:
    return bool(settings.AI_TRIAGE_ENABLED and metadata and metadata.use_ai and status == TicketStatus.OPEN)


def start_triage(ticket: Ticket) -> None:
    """Move a freshly created OPEN ticket into IN_PROGRESS_BY_AI (not committed here)."""
    check_transition(ticket.status, TicketStatus.IN_PROGRESS_BY_AI, TransitionSource.AUTOMATIC, settings.AI_TRIAGE_ENABLED)
    ticket.status = TicketStatus.IN_PROGRESS_BY_AI.value


def _stricter(current: str, suggested: TicketPriority) -> str:
    order = list(TicketPriority)
    return order[max(order.index(TicketPriority(current)), order.index(suggested))].value


def run_triage(
    ticket_id: int,
    session_factory: Callable[[], Session] = SessionLocal,
    publisher: TicketEventBroker = broker,
) -> Optional[TicketRecord]:
    """Classify one ticket and publish the outcome. Runs as a background task."""
    started = time.perf_counter()
    db = session_factory()
    try:
        ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
        if ticket is None:
            logger.info("Ticket %s deleted before triage", ticket_id)
            return None
        if ticket.status != TicketStatus.IN_PROGRESS_BY_AI.value:
            # someone already moved it on; terminal states never change automatically
            logger.info("Skipping triage of ticket %s in status %s", ticket_id, ticket.status)
            return None

        result = classify(ticket.title, ticket.description)
        target = TicketStatus.RESOLVED if result.resolvable else TicketStatus.NEEDS_MANUAL_REVIEW
        check_transition(ticket.status, target, TransitionSource.AUTOMATIC)

        metadata = TicketMetadata.model_validate(ticket.details or {})
        metadata.ai_processed = True
        metadata.action_required = result.suggested_action
        metadata.ai_notes = f"category={result.category}; eta={result.estimated_time_to_fix or 'unknown'}"
        metadata.ai_processing_time = f"{time.perf_counter() - started:.3f}s"
        if result.resolvable:
            metadata.ai_resolution = result.suggested_action
            metadata.ai_action_taken = "Sent self-service instructions to tenant"
        else:
            metadata.manual_review_reason = result.reason

        ticket.status = target.value
        ticket.priority = _stricter(ticket.priority, result.priority)
        ticket.details = metadata.model_dump(mode="json")
        ticket.updated_at = next_updated_at(ticket.updated_at)
        db.commit()
        db.refresh(ticket)

        record = ticket_to_record(ticket)
        logger.info("Triaged ticket %s as %s -> %s", ticket_id, result.category, target.value)
    finally:
        db.close()

    publisher.publish_ticket(TicketEventType.UPDATED, record)
    return record
