"""
Ticket filter predicate and search debouncing.

The predicate mirrors what GET /tickets does on the server so the store can decide
locally whether a created or pushed ticket belongs in the current view.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from app.schemas.ticket import TicketFilters, TicketRecord

logger = logging.getLogger(__name__)


def matches_search(ticket: TicketRecord, search_query: Optional[str]) -> bool:
    """Case-insensitive substring match against title, description and property address."""
    if search_query is None or not search_query.strip():
        return True
    needle = search_query.strip().lower()
    haystacks = (ticket.title, ticket.description, ticket.property_address or "")
    return any(needle in (h or "").lower() for h in haystacks)


def matches_filters(ticket: TicketRecord, filters: Optional[TicketFilters]) -> bool:
    """Conjunction over status, priority, property and free-text search."""
    if filters is None:
        return True
    if filters.status is not None and ticket.status != filters.status:
        return False
    if filters.priority is not None and ticket.priority != filters.priority:
        return False
    if filters.property_id is not None and ticket.property_id != filters.property_id:
        return False
    return matches_search(ticket, filters.search_query)


def replace_search(filters: TicketFilters, search_query: Optional[str]) -> TicketFilters:
    """New filter set with the search replaced; the other predicates carry over unchanged."""
    text = search_query.strip() if search_query else None
    return filters.model_copy(update={"search_query": text or None})


SearchCallback = Callable[[Optional[str]], Union[Awaitable[Any], Any]]


class SearchDebouncer:
    """
    Delays applying a search string until typing has paused for `delay` seconds.

    Each push() cancels the pending one, so only the last keystroke in a burst
    reaches the callback. Must be used from inside a running event loop.
    """

    def __init__(self, apply: SearchCallback, delay: float = 0.3):
        self._apply = apply
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._latest: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def push(self, text: Optional[str]) -> None:
        self._latest = text
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Apply the pending search right away and wait for it to finish."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()
        if self._task is not None:
            await self._task

    def _fire(self) -> None:
        self._handle = None
        result = self._apply(self._latest)
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Debounced search failed: %s", task.exception())
