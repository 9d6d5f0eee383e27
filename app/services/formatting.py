"""Display helpers for ticket status and priority badges."""
import re

from app.schemas.ticket import TicketPriority, TicketStatus, normalize_priority, normalize_status


def priority_variant(priority) -> str:
    p = normalize_priority(priority)
    if p in (TicketPriority.HIGH, TicketPriority.URGENT):
        return "destructive"
    if p == TicketPriority.MEDIUM:
        return "warning"
    return "success"


def status_variant(status) -> str:
    s = normalize_status(status)
    if s == TicketStatus.IN_PROGRESS_BY_AI:
        return "destructive"  # actively processing
    if s == TicketStatus.NEEDS_MANUAL_REVIEW:
        return "warning"
    if s == TicketStatus.RESOLVED:
        return "success"
    return "secondary"


def format_status(status) -> str:
    """'needs_manual_review' -> 'Needs Manual Review'"""
    text = str(getattr(status, "value", status)).replace("_", " ").lower()
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), text)


def format_priority(priority) -> str:
    text = str(getattr(priority, "value", priority))
    return text[:1].upper() + text[1:].lower()
