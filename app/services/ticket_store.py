"""
Client-side ticket store.

Owns the ticket collection for the current session. Both of its producers go
through here: our own mutations (create/update/delete) and server pushes via
SubscriptionReconciler, which calls merge()/remove(). Nothing else mutates the
collection.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Set, Union

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import NotFoundError, ValidationError
from app.core.notifications import LoggingNotificationDispatcher, NotificationDispatcher, deliver
from app.schemas.ticket import (
    DeleteTicketResult,
    TicketCreate,
    TicketFilters,
    TicketInput,
    TicketMetadata,
    TicketPriority,
    TicketRecord,
    TicketStatus,
    TicketUpdate,
)
from app.services.attachments import AttachmentUploader, LocalAttachmentUploader, convert_attachments
from app.services.filters import matches_filters, replace_search
from app.services.reconciler import MergeOutcome, is_fresh, is_resolution

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "description", "priority", "status", "property_id")


class TicketApi(Protocol):
    """The part of the API collaborator the store needs."""

    async def list_tickets(self, filters: TicketFilters) -> List[TicketRecord]: ...

    async def create_ticket(self, payload: TicketCreate) -> TicketRecord: ...

    async def update_ticket(self, ticket_id: int, changes: TicketUpdate) -> TicketRecord: ...

    async def delete_ticket(self, ticket_id: int) -> DeleteTicketResult: ...


class StoreListener(Protocol):
    def ticket_resolved(self, ticket: TicketRecord) -> None: ...

    def ticket_changed(self, outcome: MergeOutcome, ticket_id: int, ticket: Optional[TicketRecord]) -> None: ...


def _sort_key(ticket: TicketRecord):
    return (ticket.created_at, ticket.id)


class TicketStore:
    def __init__(
        self,
        api: TicketApi,
        *,
        filters: Optional[TicketFilters] = None,
        notifier: Optional[NotificationDispatcher] = None,
        uploader: Optional[AttachmentUploader] = None,
    ):
        self._api = api
        self._filters = filters or TicketFilters()
        self._notifier = notifier or LoggingNotificationDispatcher()
        self._uploader = uploader or LocalAttachmentUploader()

        self._records: Dict[int, TicketRecord] = {}
        # newest updated_at / status confirmed by the server, per id, whether or not it is in view
        self._seen: Dict[int, datetime] = {}
        self._confirmed_status: Dict[int, TicketStatus] = {}
        self._deleted: Set[int] = set()
        self._locks: Dict[int, asyncio.Lock] = {}
        self._listeners: List[StoreListener] = []
        self._generation = 0

    # --- Reads ---

    @property
    def tickets(self) -> List[TicketRecord]:
        """Visible tickets, newest first (same order as GET /tickets)."""
        return sorted(self._records.values(), key=_sort_key, reverse=True)

    @property
    def filters(self) -> TicketFilters:
        return self._filters

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, ticket_id: int) -> Optional[TicketRecord]:
        return self._records.get(ticket_id)

    def is_deleted(self, ticket_id: int) -> bool:
        return ticket_id in self._deleted

    def __len__(self) -> int:
        return len(self._records)

    # --- Listeners ---

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self, outcome: MergeOutcome, ticket_id: int, ticket: Optional[TicketRecord]) -> None:
        for listener in list(self._listeners):
            deliver(listener.ticket_changed, outcome, ticket_id, ticket)

    def _resolved(self, ticket: TicketRecord) -> None:
        deliver(self._notifier.ticket_resolved, ticket)
        for listener in list(self._listeners):
            deliver(listener.ticket_resolved, ticket)

    # --- Queries ---

    async def load(self, filters: Optional[TicketFilters] = None) -> List[TicketRecord]:
        """
        Fetch the view for `filters` (or the current filters) and replace the collection.

        Filters are replaced wholesale, never merged. If another load starts before
        this one's response arrives, this response is dropped.
        """
        if filters is not None:
            self._filters = filters
        self._generation += 1
        generation = self._generation
        query = self._filters

        records = await self._api.list_tickets(query)

        if generation != self._generation:
            logger.debug("Discarding tickets for generation %s (current %s)", generation, self._generation)
            return self.tickets
        self._replace_view(records)
        return self.tickets

    async def set_filters(self, filters: TicketFilters) -> List[TicketRecord]:
        return await self.load(filters)

    async def set_search(self, search_query: Optional[str]) -> List[TicketRecord]:
        return await self.load(replace_search(self._filters, search_query))

    def _replace_view(self, records: List[TicketRecord]) -> None:
        fresh: Dict[int, TicketRecord] = {}
        for record in records:
            if record.id in self._deleted:
                continue
            if not is_fresh(record.updated_at, self._seen.get(record.id)):
                # a push newer than this response already landed; it decides membership
                local = self._records.get(record.id)
                if local is not None and matches_filters(local, self._filters):
                    fresh[record.id] = local
                continue
            self._seen[record.id] = record.updated_at
            # a bulk load is not a transition: record the status without announcing it
            self._confirmed_status[record.id] = record.status
            fresh[record.id] = record
        self._records = fresh
        logger.debug("Loaded %s tickets for %s", len(fresh), self._filters.to_params())

    # --- Reconciliation entry points ---

    def merge(self, incoming: TicketRecord) -> MergeOutcome:
        """Apply a server-confirmed record (push event or mutation response)."""
        ticket_id = incoming.id
        if ticket_id in self._deleted:
            return MergeOutcome.IGNORED
        if not is_fresh(incoming.updated_at, self._seen.get(ticket_id)):
            return MergeOutcome.STALE

        self._seen[ticket_id] = incoming.updated_at
        prior_status = self._confirmed_status.get(ticket_id)
        self._confirmed_status[ticket_id] = incoming.status

        present = ticket_id in self._records
        if matches_filters(incoming, self._filters):
            self._records[ticket_id] = incoming
            outcome = MergeOutcome.UPDATED if present else MergeOutcome.INSERTED
        elif present:
            del self._records[ticket_id]
            outcome = MergeOutcome.REMOVED
        else:
            outcome = MergeOutcome.IGNORED

        if outcome != MergeOutcome.IGNORED:
            self._changed(outcome, ticket_id, self._records.get(ticket_id))
        if is_resolution(prior_status, incoming.status):
            self._resolved(incoming)
        return outcome

    def remove(self, ticket_id: int) -> MergeOutcome:
        """Delete unconditionally and tombstone the id."""
        self._deleted.add(ticket_id)
        self._confirmed_status.pop(ticket_id, None)
        if self._records.pop(ticket_id, None) is None:
            return MergeOutcome.IGNORED
        self._changed(MergeOutcome.REMOVED, ticket_id, None)
        return MergeOutcome.REMOVED

    # --- Mutations ---

    def _lock_for(self, ticket_id: int) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = self._locks[ticket_id] = asyncio.Lock()
        return lock

    async def _build_create(self, data: TicketInput) -> TicketCreate:
        if not data.description or not data.description.strip():
            raise ValidationError("description is required")
        if not data.property_id:
            raise ValidationError("property_id is required")

        attachments = await convert_attachments(self._uploader, data.attachments, data.existing_attachments)
        metadata = TicketMetadata(
            contact_phone=data.contact_phone,
            contact_email=data.contact_email,
            estimated_cost=data.estimated_cost,
            due_date=data.due_date,
            notes=data.notes,
            use_ai=data.use_ai,
            attachments=attachments,
        )
        return TicketCreate(
            title=data.title.strip() if data.title and data.title.strip() else None,
            description=data.description.strip(),
            priority=data.priority or TicketPriority.MEDIUM,
            status=data.status or TicketStatus.OPEN,
            property_id=data.property_id,
            metadata=metadata,
        )

    async def create(self, data: Union[TicketInput, Dict[str, Any]]) -> TicketRecord:
        if not isinstance(data, TicketInput):
            try:
                data = TicketInput.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e
        payload = await self._build_create(data)

        record = await self._api.create_ticket(payload)

        self.merge(record)
        logger.info("Created ticket %s for property %s", record.id, record.property_id)
        return record

    async def update(self, ticket_id: int, changes: Union[TicketUpdate, Dict[str, Any]]) -> TicketRecord:
        """
        Send only the provided fields. The change is shown right away and rolled
        back if the server rejects it.
        """
        if not isinstance(changes, TicketUpdate):
            try:
                changes = TicketUpdate.model_validate(changes)
            except PydanticValidationError as e:
                raise ValidationError(str(e), ticket_id=ticket_id) from e
        # the server ignores an explicit null for a required field, so it is never sent
        patch = {
            name: getattr(changes, name)
            for name in changes.model_fields_set
            if name not in REQUIRED_FIELDS or getattr(changes, name) is not None
        }
        if not patch:
            raise ValidationError("no fields to update", ticket_id=ticket_id)
        changes = TicketUpdate.model_validate(patch)
        if ticket_id in self._deleted:
            raise NotFoundError(f"Ticket {ticket_id} was deleted", ticket_id=ticket_id)

        async with self._lock_for(ticket_id):
            if ticket_id in self._deleted:
                raise NotFoundError(f"Ticket {ticket_id} was deleted", ticket_id=ticket_id)

            before = self._records.get(ticket_id)
            optimistic = None
            if before is not None:
                optimistic = TicketRecord.model_validate({**before.model_dump(), **patch})
                self._records[ticket_id] = optimistic
                self._changed(MergeOutcome.UPDATED, ticket_id, optimistic)

            try:
                confirmed = await self._api.update_ticket(ticket_id, changes)
            except Exception:
                self._rollback(ticket_id, before, optimistic)
                raise

            if ticket_id in self._deleted:
                raise NotFoundError(f"Ticket {ticket_id} was deleted while updating", ticket_id=ticket_id)
            self.merge(confirmed)
            return self._records.get(ticket_id, confirmed)

    def _rollback(self, ticket_id: int, before: Optional[TicketRecord], optimistic: Optional[TicketRecord]) -> None:
        if optimistic is None:
            return
        # only undo our own change; a newer pushed version or a delete stays
        if self._records.get(ticket_id) is optimistic:
            self._records[ticket_id] = before
            self._changed(MergeOutcome.UPDATED, ticket_id, before)
            logger.info("Rolled back optimistic update of ticket %s", ticket_id)

    async def delete(self, ticket_id: int) -> bool:
        if ticket_id in self._deleted:
            raise NotFoundError(f"Ticket {ticket_id} was deleted", ticket_id=ticket_id)

        async with self._lock_for(ticket_id):
            try:
                result = await self._api.delete_ticket(ticket_id)
            except NotFoundError:
                # already gone on the server
                self.remove(ticket_id)
                raise
            if not result.success:
                logger.warning("Server refused to delete ticket %s", ticket_id)
                return False
            self.remove(ticket_id)
            self._locks.pop(ticket_id, None)
            logger.info("Deleted ticket %s", ticket_id)
            return True
