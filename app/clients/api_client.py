"""
API client for the dashboard backend.

Wraps a blocking requests.Session; every public coroutine pushes the call onto a
worker thread with asyncio.to_thread so the event loop never blocks on I/O.
HTTP failures are translated into the app.core.errors taxonomy.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional

import requests

from app.core.config import settings
from app.core.errors import ConflictError, DashboardError, NotFoundError, TransientNetworkError, ValidationError
from app.schemas.dashboard import DashboardStats
from app.schemas.property import PropertySnapshot
from app.schemas.ticket import (
    DeleteTicketResult,
    TicketCreate,
    TicketEvent,
    TicketFilters,
    TicketRecord,
    TicketUpdate,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 502, 503, 504}


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or ""
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


def raise_for_status(response: requests.Response, ticket_id: Optional[int] = None) -> None:
    """Map an HTTP error response onto the error taxonomy."""
    code = response.status_code
    if code < 400:
        return
    detail = _error_detail(response)
    if code == 404:
        raise NotFoundError(detail or "Not found", ticket_id=ticket_id)
    if code in (400, 422):
        raise ValidationError(detail or "Invalid request", ticket_id=ticket_id)
    if code == 409:
        raise ConflictError(detail or "Conflict", ticket_id=ticket_id)
    if code >= 500 or code in RETRYABLE_STATUS_CODES:
        raise TransientNetworkError(f"Server error {code}: {detail}", ticket_id=ticket_id, status_code=code)
    raise DashboardError(f"Request failed with {code}: {detail}", ticket_id=ticket_id)


def parse_sse(lines: Iterator[str]) -> Iterator[Dict[str, str]]:
    """
    Minimal text/event-stream parser: yields {"event": ..., "data": ...} per
    dispatched event. Comment lines (keepalives) are skipped.
    """
    event_type, data = None, []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if data:
                yield {"event": event_type or "message", "data": "\n".join(data)}
            event_type, data = None, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event_type = value
        elif field == "data":
            data.append(value)
    if data:
        yield {"event": event_type or "message", "data": "\n".join(data)}


class DashboardApiClient:
    """Client for the ticket and dashboard endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        ticket_id: Optional[int] = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(method, url, params=params, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"{method} {endpoint} failed: {e}", ticket_id=ticket_id) from e
        raise_for_status(response, ticket_id)
        if not response.content:
            return None
        return response.json()

    # --- Tickets ---

    async def list_tickets(self, filters: Optional[TicketFilters] = None) -> List[TicketRecord]:
        params = (filters or TicketFilters()).to_params()
        data = await asyncio.to_thread(self._request, "GET", "/tickets", params=params)
        return [TicketRecord.model_validate(item) for item in data or []]

    async def get_ticket(self, ticket_id: int) -> TicketRecord:
        data = await asyncio.to_thread(self._request, "GET", f"/tickets/{ticket_id}", ticket_id=ticket_id)
        return TicketRecord.model_validate(data)

    async def create_ticket(self, payload: TicketCreate) -> TicketRecord:
        body = payload.model_dump(mode="json", exclude_none=True)
        data = await asyncio.to_thread(self._request, "POST", "/tickets", payload=body)
        return TicketRecord.model_validate(data)

    async def update_ticket(self, ticket_id: int, changes: TicketUpdate) -> TicketRecord:
        # only the fields the caller set; omitted fields stay untouched on the server
        body = changes.model_dump(mode="json", exclude_unset=True)
        data = await asyncio.to_thread(
            self._request, "PATCH", f"/tickets/{ticket_id}", payload=body, ticket_id=ticket_id
        )
        return TicketRecord.model_validate(data)

    async def delete_ticket(self, ticket_id: int) -> DeleteTicketResult:
        data = await asyncio.to_thread(self._request, "DELETE", f"/tickets/{ticket_id}", ticket_id=ticket_id)
        return DeleteTicketResult.model_validate(data)

    # --- Dashboard ---

    async def dashboard_source(self) -> List[PropertySnapshot]:
        data = await asyncio.to_thread(self._request, "GET", "/dashboard/source")
        return [PropertySnapshot.model_validate(item) for item in data or []]

    async def dashboard_stats(self) -> DashboardStats:
        data = await asyncio.to_thread(self._request, "GET", "/dashboard/stats")
        return DashboardStats.model_validate(data)

    # --- Push channel ---

    def _open_event_stream(self) -> requests.Response:
        url = f"{self.base_url}/tickets/events"
        try:
            response = self.session.get(
                url,
                stream=True,
                timeout=(self.timeout, None),
                headers={"Accept": "text/event-stream"},
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"Event stream failed: {e}") from e
        raise_for_status(response)
        return response

    def _read_events(self, response: requests.Response) -> Iterator[TicketEvent]:
        with response:
            for message in parse_sse(response.iter_lines(decode_unicode=True)):
                try:
                    yield TicketEvent.model_validate(json.loads(message["data"]))
                except ValueError as e:
                    logger.warning("Skipping unreadable %s event: %s", message["event"], e)

    def iter_ticket_events(self) -> Iterator[TicketEvent]:
        """Blocking iterator over GET /tickets/events. Ends when the server closes the stream."""
        return self._read_events(self._open_event_stream())

    async def ticket_events(self) -> AsyncIterator[TicketEvent]:
        response = await asyncio.to_thread(self._open_event_stream)
        events = self._read_events(response)
        try:
            while True:
                event = await asyncio.to_thread(next, events, None)
                if event is None:
                    return
                yield event
        finally:
            # unblocks a worker thread still waiting on the socket
            response.close()

    def close(self) -> None:
        self.session.close()
