"""
Notification side effects (toasts, resolve confetti).

The UI supplies the real dispatcher; the core only calls this interface. Delivery
is best-effort: a failing dispatcher is logged and never undoes the state change
that triggered it.
"""
import logging
from typing import Any, Callable, Protocol

from app.schemas.ticket import TicketRecord

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def success(self, message: str, **context: Any) -> None: ...

    def error(self, message: str, **context: Any) -> None: ...

    def ticket_resolved(self, ticket: TicketRecord) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: writes every notification to the log."""

    def success(self, message: str, **context: Any) -> None:
        logger.info("%s %s", message, context or "")

    def error(self, message: str, **context: Any) -> None:
        logger.warning("%s %s", message, context or "")

    def ticket_resolved(self, ticket: TicketRecord) -> None:
        logger.info("Ticket %s resolved: %s", ticket.id, ticket.title)


def deliver(send: Callable[..., None], *args: Any, **kwargs: Any) -> None:
    try:
        send(*args, **kwargs)
    except Exception:
        logger.exception("Notification %s failed", getattr(send, "__name__", send))
