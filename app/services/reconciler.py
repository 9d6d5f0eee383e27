"""
Merging server-pushed ticket events into the local ticket store.

The push channel and our own mutations both write into the same TicketStore.
Ordering between them is decided by `updated_at`, never by arrival order:

- an incoming record is applied only if its updated_at is not older than the
  newest version already seen for that id;
- deletes always win and tombstone the id, so late creates/updates cannot
  bring it back;
- the resolve side effect fires when a confirmed status becomes RESOLVED and
  the previous confirmed status was not RESOLVED.

That makes duplicate delivery idempotent and out-of-order delivery converge.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Callable, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.schemas.ticket import TicketEvent, TicketEventType, TicketRecord, TicketStatus

if TYPE_CHECKING:
    from app.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)


class MergeOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    REMOVED = "removed"    # deleted, or no longer matches the view's filters
    STALE = "stale"        # older than what we already have
    IGNORED = "ignored"    # tombstoned id, or outside the view and never shown


def is_fresh(incoming: datetime, last_seen: Optional[datetime]) -> bool:
    """Last-writer-wins: equal timestamps count as fresh so redelivery is harmless."""
    return last_seen is None or incoming >= last_seen


def is_resolution(prior: Optional[TicketStatus], current: TicketStatus) -> bool:
    return current == TicketStatus.RESOLVED and prior != TicketStatus.RESOLVED


ResolvedCallback = Callable[[TicketRecord], None]
ChangeCallback = Callable[[MergeOutcome, int, Optional[TicketRecord]], None]


class Subscription:
    """
    Handle returned to the UI for attaching side effects to store changes.

    Close it (or use it as a context manager) to detach.
    """

    def __init__(
        self,
        store: "TicketStore",
        on_resolved: Optional[ResolvedCallback] = None,
        on_change: Optional[ChangeCallback] = None,
    ):
        self._store = store
        self._on_resolved = on_resolved
        self._on_change = on_change
        self.closed = False
        store.add_listener(self)

    def ticket_resolved(self, ticket: TicketRecord) -> None:
        if self._on_resolved is not None:
            self._on_resolved(ticket)

    def ticket_changed(self, outcome: MergeOutcome, ticket_id: int, ticket: Optional[TicketRecord]) -> None:
        if self._on_change is not None:
            self._on_change(outcome, ticket_id, ticket)

    def close(self) -> None:
        if not self.closed:
            self._store.remove_listener(self)
            self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SubscriptionReconciler:
    """Applies push-channel events to a TicketStore. Never raises to the caller."""

    def __init__(self, store: "TicketStore"):
        self._store = store
        self.applied = 0
        self.skipped = 0

    def apply(self, event: Union[TicketEvent, dict]) -> MergeOutcome:
        try:
            if not isinstance(event, TicketEvent):
                event = TicketEvent.model_validate(event)
        except PydanticValidationError as e:
            logger.warning("Dropping malformed ticket event: %s", e)
            self.skipped += 1
            return MergeOutcome.IGNORED

        try:
            if event.type == TicketEventType.DELETED:
                outcome = self._store.remove(event.ticket_id)
            else:
                outcome = self._store.merge(event.ticket)
        except Exception:
            logger.exception("Failed to reconcile %s for ticket %s", event.type.value, event.ticket_id)
            self.skipped += 1
            return MergeOutcome.IGNORED

        if outcome in (MergeOutcome.STALE, MergeOutcome.IGNORED):
            self.skipped += 1
            logger.debug("Skipped %s for ticket %s (%s)", event.type.value, event.ticket_id, outcome.value)
        else:
            self.applied += 1
        return outcome

    def apply_many(self, events: Iterable[Union[TicketEvent, dict]]) -> List[MergeOutcome]:
        return [self.apply(e) for e in events]

    async def listen(self, events: AsyncIterator[TicketEvent]) -> int:
        """Pump an event stream until it ends. Returns how many events were applied."""
        count = 0
        async for event in events:
            if self.apply(event) not in (MergeOutcome.STALE, MergeOutcome.IGNORED):
                count += 1
        return count

    def subscribe(
        self,
        on_resolved: Optional[ResolvedCallback] = None,
        on_change: Optional[ChangeCallback] = None,
    ) -> Subscription:
        return Subscription(self._store, on_resolved=on_resolved, on_change=on_change)
