"""
DashboardSession: the surface the UI layer talks to.

Everything a view needs is wired here from an explicit ViewConfig; nothing in the
core reads global state. Build the config from settings at the edge with
ViewConfig.from_settings().
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError
from app.core.notifications import LoggingNotificationDispatcher, NotificationDispatcher
from app.schemas.dashboard import DashboardStats, TicketStats
from app.schemas.property import PropertySnapshot
from app.schemas.ticket import TicketEvent, TicketFilters, TicketInput, TicketRecord, TicketUpdate
from app.services.aggregation import AggregationConfig, attention_tickets, dashboard_stats
from app.services.attachments import AttachmentUploader
from app.services.filters import SearchDebouncer
from app.services.kanban import KanbanColumn, KanbanTransitionEngine, TransitionSource, check_transition
from app.services.reconciler import ChangeCallback, ResolvedCallback, Subscription, SubscriptionReconciler
from app.services.ticket_store import TicketApi, TicketStore

logger = logging.getLogger(__name__)


class ViewMode(str, Enum):
    KANBAN = "kanban"
    LIST = "list"


class ViewConfig(BaseModel):
    view_mode: ViewMode = ViewMode.KANBAN
    initial_filters: TicketFilters = TicketFilters()
    search_debounce_ms: int = 300
    ai_triage_enabled: bool = True
    aggregation: AggregationConfig = AggregationConfig()

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "ViewConfig":
        values: Dict[str, Any] = dict(
            view_mode=ViewMode(settings.DEFAULT_VIEW_MODE.lower()),
            search_debounce_ms=settings.SEARCH_DEBOUNCE_MS,
            ai_triage_enabled=settings.AI_TRIAGE_ENABLED,
            aggregation=AggregationConfig(
                trailing_months=settings.TRAILING_MONTHS,
                urgent_renewal_days=settings.URGENT_RENEWAL_DAYS,
                renewal_horizon_days=settings.RENEWAL_HORIZON_DAYS,
            ),
        )
        values.update(overrides)
        return cls(**values)


class DashboardApi(TicketApi, Protocol):
    async def dashboard_source(self) -> List[PropertySnapshot]: ...

    def ticket_events(self): ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DashboardSession:
    def __init__(
        self,
        api: DashboardApi,
        config: Optional[ViewConfig] = None,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        uploader: Optional[AttachmentUploader] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or ViewConfig()
        self.view_mode = self.config.view_mode
        self._api = api
        self._clock = clock
        notifier = notifier or LoggingNotificationDispatcher()

        self.store = TicketStore(
            api, filters=self.config.initial_filters, notifier=notifier, uploader=uploader
        )
        self.reconciler = SubscriptionReconciler(self.store)
        self.kanban = KanbanTransitionEngine(self.store, notifier, ai_triage_enabled=self.config.ai_triage_enabled)
        self._debouncer = SearchDebouncer(self.store.set_search, delay=self.config.search_debounce_ms / 1000)

    # --- Tickets ---

    @property
    def tickets(self) -> List[TicketRecord]:
        return self.store.tickets

    async def list_tickets(self, filters: Optional[TicketFilters] = None) -> List[TicketRecord]:
        self._debouncer.cancel()
        return await self.store.load(filters)

    def search(self, text: Optional[str]) -> None:
        """Queue a search; it is applied once typing pauses."""
        self._debouncer.push(text)

    async def flush_search(self) -> None:
        await self._debouncer.flush()

    async def create_ticket(self, data: Union[TicketInput, Dict[str, Any]]) -> TicketRecord:
        return await self.store.create(data)

    async def update_ticket(self, ticket_id: int, changes: Union[TicketUpdate, Dict[str, Any]]) -> TicketRecord:
        if not isinstance(changes, TicketUpdate):
            try:
                changes = TicketUpdate.model_validate(changes)
            except PydanticValidationError as e:
                raise ValidationError(str(e), ticket_id=ticket_id) from e
        current = self.store.get(ticket_id)
        if changes.status is not None and current is not None and current.status != changes.status:
            check_transition(
                current.status, changes.status, TransitionSource.MANUAL,
                self.config.ai_triage_enabled, ticket_id=ticket_id,
            )
        return await self.store.update(ticket_id, changes)

    async def delete_ticket(self, ticket_id: int) -> bool:
        return await self.store.delete(ticket_id)

    async def move_ticket(self, ticket_id: int, column: Union[KanbanColumn, str]) -> TicketRecord:
        return await self.kanban.move(ticket_id, column)

    async def change_status(self, ticket_id: int, status) -> TicketRecord:
        return await self.kanban.change_status(ticket_id, status)

    def set_view_mode(self, mode: Union[ViewMode, str]) -> ViewMode:
        self.view_mode = ViewMode(getattr(mode, "value", mode))
        return self.view_mode

    # --- Dashboard ---

    async def dashboard_stats(self) -> DashboardStats:
        """Fetch the latest source data and recompute every card. Nothing is cached."""
        properties = await self._api.dashboard_source()
        return dashboard_stats(properties, self._clock(), self.config.aggregation)

    def live_ticket_stats(self) -> TicketStats:
        """Needs-attention card computed from the store as it stands right now."""
        return attention_tickets(self.store.tickets)

    # --- Push channel ---

    def subscribe(
        self,
        on_resolved: Optional[ResolvedCallback] = None,
        on_change: Optional[ChangeCallback] = None,
    ) -> Subscription:
        return self.reconciler.subscribe(on_resolved=on_resolved, on_change=on_change)

    def apply_event(self, event: Union[TicketEvent, dict]):
        return self.reconciler.apply(event)

    async def listen(self) -> int:
        """Consume the server push channel until it closes."""
        logger.info("Listening for ticket events")
        return await self.reconciler.listen(self._api.ticket_events())
