from app.schemas.ticket import TicketPriority, TicketStatus
from app.services.formatting import format_priority, format_status, priority_variant, status_variant


def test_format_status_title_cases_words():
    assert format_status("needs_manual_review") == "Needs Manual Review"
    assert format_status(TicketStatus.RESOLVED) == "Resolved"


def test_format_priority():
    assert format_priority(TicketPriority.URGENT) == "Urgent"
    assert format_priority("low") == "Low"


def test_badge_variants():
    assert priority_variant("urgent") == "destructive"
    assert priority_variant("HIGH") == "destructive"
    assert priority_variant(TicketPriority.MEDIUM) == "warning"
    assert priority_variant("low") == "success"
    assert status_variant("in_progress_by_ai") == "destructive"
    assert status_variant("needs_manual_review") == "warning"
    assert status_variant("resolved") == "success"
    assert status_variant("closed") == "secondary"
