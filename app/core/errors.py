"""
Error taxonomy shared by the ticket store, the kanban engine and the API client.

- ValidationError: input rejected before any network call.
- NotFoundError: update/delete against an id that does not exist (or was deleted).
- TransientNetworkError: connection problems, timeouts, 5xx. Safe to retry.
- ConflictError: the server refused a write because the record changed underneath it.
"""
from typing import Optional


class DashboardError(Exception):
    """Base class for errors surfaced to the UI layer."""

    retryable = False

    def __init__(self, message: str, *, ticket_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.ticket_id = ticket_id


class ValidationError(DashboardError):
    pass


class InvalidTransitionError(ValidationError):
    def __init__(self, current, target, *, ticket_id: Optional[int] = None):
        super().__init__(
            f"Cannot move ticket from {current.value} to {target.value}",
            ticket_id=ticket_id,
        )
        self.current = current
        self.target = target


class NotFoundError(DashboardError):
    pass


class TransientNetworkError(DashboardError):
    retryable = True

    def __init__(self, message: str, *, ticket_id: Optional[int] = None, status_code: Optional[int] = None):
        super().__init__(message, ticket_id=ticket_id)
        self.status_code = status_code


class ConflictError(DashboardError):
    pass
