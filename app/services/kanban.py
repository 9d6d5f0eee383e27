"""
Kanban board transitions.

Priority is driven by dragging a ticket between three columns; status follows an
explicit transition table. Both go through TicketStore.update, which applies the
change optimistically and rolls it back if the server rejects it.
"""
import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from app.core.errors import DashboardError, InvalidTransitionError, NotFoundError, ValidationError
from app.core.notifications import LoggingNotificationDispatcher, NotificationDispatcher, deliver
from app.schemas.ticket import (
    TERMINAL_STATUSES,
    TicketPriority,
    TicketRecord,
    TicketStatus,
    TicketUpdate,
    normalize_priority,
    normalize_status,
)
from app.services.formatting import format_priority, format_status
from app.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)


class KanbanColumn(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"


COLUMN_PRIORITY: Dict[KanbanColumn, TicketPriority] = {
    KanbanColumn.URGENT: TicketPriority.URGENT,
    KanbanColumn.HIGH: TicketPriority.HIGH,
    KanbanColumn.NORMAL: TicketPriority.MEDIUM,
}


def column_for(priority) -> KanbanColumn:
    p = normalize_priority(priority)
    if p == TicketPriority.URGENT:
        return KanbanColumn.URGENT
    if p == TicketPriority.HIGH:
        return KanbanColumn.HIGH
    return KanbanColumn.NORMAL


def parse_column(value) -> KanbanColumn:
    try:
        return KanbanColumn(str(getattr(value, "value", value)).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown kanban column: {value!r}")


def group_by_column(tickets: Iterable[TicketRecord]) -> Dict[KanbanColumn, List[TicketRecord]]:
    board: Dict[KanbanColumn, List[TicketRecord]] = {c: [] for c in KanbanColumn}
    for ticket in tickets:
        board[column_for(ticket.priority)].append(ticket)
    return board


# --- Status machine ---

class TransitionSource(str, Enum):
    MANUAL = "manual"        # a person clicked or dragged
    AUTOMATIC = "automatic"  # the AI triage backend


S = TicketStatus

AUTOMATIC_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    S.OPEN: frozenset({S.IN_PROGRESS_BY_AI}),
    S.IN_PROGRESS_BY_AI: frozenset({S.NEEDS_MANUAL_REVIEW, S.RESOLVED}),
}

MANUAL_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    S.OPEN: frozenset({S.IN_PROGRESS, S.RESOLVED, S.CLOSED}),
    S.IN_PROGRESS: frozenset({S.PENDING, S.OPEN, S.RESOLVED, S.CLOSED}),
    S.PENDING: frozenset({S.IN_PROGRESS, S.RESOLVED, S.CLOSED}),
    S.IN_PROGRESS_BY_AI: frozenset({S.NEEDS_MANUAL_REVIEW}),
    S.NEEDS_MANUAL_REVIEW: frozenset({S.IN_PROGRESS, S.RESOLVED, S.CLOSED}),
    S.RESOLVED: frozenset({S.CLOSED, S.OPEN}),
    S.CLOSED: frozenset(),
}


def allowed_transitions(
    current, source: TransitionSource = TransitionSource.MANUAL, ai_triage_enabled: bool = True
) -> FrozenSet[TicketStatus]:
    current = normalize_status(current)
    if source == TransitionSource.AUTOMATIC:
        if current in TERMINAL_STATUSES:
            return frozenset()
        targets = AUTOMATIC_TRANSITIONS.get(current, frozenset())
        if current == S.OPEN and not ai_triage_enabled:
            return frozenset()
        return targets
    return MANUAL_TRANSITIONS.get(current, frozenset())


def check_transition(
    current,
    target,
    source: TransitionSource = TransitionSource.MANUAL,
    ai_triage_enabled: bool = True,
    ticket_id: Optional[int] = None,
) -> None:
    current, target = normalize_status(current), normalize_status(target)
    if target not in allowed_transitions(current, source, ai_triage_enabled):
        raise InvalidTransitionError(current, target, ticket_id=ticket_id)


class KanbanTransitionEngine:
    def __init__(
        self,
        store: TicketStore,
        notifier: Optional[NotificationDispatcher] = None,
        ai_triage_enabled: bool = True,
    ):
        self._store = store
        self._notifier = notifier or LoggingNotificationDispatcher()
        self.ai_triage_enabled = ai_triage_enabled

    def board(self) -> Dict[KanbanColumn, List[TicketRecord]]:
        return group_by_column(self._store.tickets)

    def _current(self, ticket_id: int) -> TicketRecord:
        ticket = self._store.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} is not on the board", ticket_id=ticket_id)
        return ticket

    async def move(self, ticket_id: int, column) -> TicketRecord:
        """Drop a ticket into a column. Dropping it where it already is does nothing."""
        target = parse_column(column)
        ticket = self._current(ticket_id)
        if column_for(ticket.priority) == target:
            return ticket

        priority = COLUMN_PRIORITY[target]
        try:
            updated = await self._store.update(ticket_id, TicketUpdate(priority=priority))
        except DashboardError as e:
            deliver(self._notifier.error, f"Failed to update ticket priority: {e.message}", ticket_id=ticket_id)
            raise
        deliver(self._notifier.success, f"Ticket moved to {format_priority(priority)}", ticket_id=ticket_id)
        return updated

    async def change_status(
        self,
        ticket_id: int,
        status,
        source: TransitionSource = TransitionSource.MANUAL,
    ) -> TicketRecord:
        target = normalize_status(status)
        ticket = self._current(ticket_id)
        if ticket.status == target:
            return ticket
        check_transition(ticket.status, target, source, self.ai_triage_enabled, ticket_id=ticket_id)

        try:
            updated = await self._store.update(ticket_id, TicketUpdate(status=target))
        except DashboardError as e:
            deliver(self._notifier.error, f"Failed to update ticket status: {e.message}", ticket_id=ticket_id)
            raise
        logger.info("Ticket %s: %s -> %s (%s)", ticket_id, ticket.status.value, target.value, source.value)
        deliver(self._notifier.success, f"Ticket marked {format_status(target)}", ticket_id=ticket_id)
        return updated
