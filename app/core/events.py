"""
In-process broker for the ticket push channel.

Routes publish from FastAPI's worker threads; each subscriber is an
asyncio.Queue owned by the event loop serving its /tickets/events stream, so
events are handed over with call_soon_threadsafe.
"""
import asyncio
import logging
import threading
from typing import AsyncIterator, Dict, Optional

from app.schemas.ticket import TicketEvent, TicketEventType, TicketRecord

logger = logging.getLogger(__name__)


def format_sse(event: TicketEvent) -> str:
    return f"event: {event.type.value}\ndata: {event.model_dump_json()}\n\n"


class TicketEventBroker:
    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._subscribers: Dict[asyncio.Queue, asyncio.AbstractEventLoop] = {}
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers[queue] = asyncio.get_running_loop()
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)

    def publish(self, event: TicketEvent) -> None:
        with self._lock:
            targets = list(self._subscribers.items())
        for queue, loop in targets:
            try:
                loop.call_soon_threadsafe(self._offer, queue, event)
            except RuntimeError:
                # loop already closed
                self.unsubscribe(queue)

    def publish_ticket(self, event_type: TicketEventType, record: TicketRecord) -> None:
        self.publish(TicketEvent(type=event_type, ticket_id=record.id, ticket=record))

    def publish_deleted(self, ticket_id: int) -> None:
        self.publish(TicketEvent(type=TicketEventType.DELETED, ticket_id=ticket_id))

    @staticmethod
    def _offer(queue: asyncio.Queue, event: TicketEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Subscriber queue full, dropping %s for ticket %s", event.type.value, event.ticket_id)

    async def stream(self, keepalive: float = 15.0, queue: Optional[asyncio.Queue] = None) -> AsyncIterator[str]:
        """Server-sent-event frames for one subscriber, with comment keepalives while idle."""
        if queue is None:
            queue = self.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            self.unsubscribe(queue)


broker = TicketEventBroker()
