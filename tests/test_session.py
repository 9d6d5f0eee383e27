import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import settings
from app.core.errors import InvalidTransitionError
from app.schemas.property import CashFlowOut, PropertySnapshot
from app.schemas.ticket import TicketEvent, TicketEventType, TicketFilters, TicketStatus
from app.services.session import DashboardSession, ViewConfig, ViewMode

from conftest import FakeTicketApi, RecordingNotifier, build_ticket

NOW = datetime(2024, 2, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session(api):
    return DashboardSession(api, ViewConfig(search_debounce_ms=10), notifier=RecordingNotifier(), clock=lambda: NOW)


def test_view_config_from_settings():
    config = ViewConfig.from_settings(settings, view_mode=ViewMode.LIST)

    assert config.view_mode == ViewMode.LIST
    assert config.search_debounce_ms == settings.SEARCH_DEBOUNCE_MS
    assert config.aggregation.urgent_renewal_days == settings.URGENT_RENEWAL_DAYS
    assert config.aggregation.renewal_horizon_days == settings.RENEWAL_HORIZON_DAYS


def test_initial_filters_are_used_for_the_first_load(api):
    session = DashboardSession(api, ViewConfig(initial_filters=TicketFilters(property_id=11)))

    tickets = asyncio.run(session.list_tickets())

    assert [t.id for t in tickets] == [2]


def test_search_is_debounced(session, api):
    async def scenario():
        await session.list_tickets()
        for text in ("e", "el", "elm"):
            session.search(text)
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    searches = [c[1].search_query for c in api.calls if c[0] == "list"]
    assert searches == [None, "elm"]
    assert [t.id for t in session.tickets] == [2]


def test_update_checks_the_transition_before_sending(api):
    api.tickets[1] = build_ticket(1, status="closed")
    session = DashboardSession(api)

    async def scenario():
        await session.list_tickets()
        with pytest.raises(InvalidTransitionError):
            await session.update_ticket(1, {"status": "open"})
        return await session.update_ticket(1, {"title": "Renamed"})

    record = asyncio.run(scenario())

    assert record.title == "Renamed"
    assert record.status == TicketStatus.CLOSED
    assert len(api.writes()) == 1


def test_dashboard_stats_are_recomputed_each_time(session, api):
    api.properties = [
        PropertySnapshot(
            id=10,
            address="12 Oak St",
            cash_flows=[
                CashFlowOut(id=1, property_id=10, type="income", amount=1000, date=NOW - timedelta(days=3)),
            ],
            tickets=[build_ticket(1)],
        )
    ]

    async def scenario():
        first = await session.dashboard_stats()
        api.properties[0].tickets.append(build_ticket(5, status="open"))
        second = await session.dashboard_stats()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.generated_at == NOW
    assert first.monthly_income.current_income == 1000
    assert first.ticket_stats.total_count == 1
    assert second.ticket_stats.total_count == 2
    assert len([c for c in api.calls if c[0] == "dashboard_source"]) == 2


def test_live_ticket_stats_follow_the_store(session, api):
    async def scenario():
        await session.list_tickets()
        await session.change_status(1, "resolved")

    asyncio.run(scenario())

    stats = session.live_ticket_stats()
    assert [t.id for t in stats.open_tickets] == [2]


def test_view_mode_switch(session):
    assert session.view_mode == ViewMode.KANBAN
    assert session.set_view_mode("list") == ViewMode.LIST
    with pytest.raises(ValueError):
        session.set_view_mode("calendar")


def test_listen_and_subscribe(session, api):
    resolved = []
    ticket = build_ticket(1)
    pushed = ticket.model_copy(update={"status": TicketStatus.RESOLVED, "updated_at": ticket.updated_at + timedelta(seconds=30)})
    api.events = [TicketEvent(type=TicketEventType.UPDATED, ticket_id=1, ticket=pushed)]

    async def scenario():
        await session.list_tickets()
        with session.subscribe(on_resolved=lambda t: resolved.append(t.id)):
            return await session.listen()

    applied = asyncio.run(scenario())

    assert applied == 1
    assert resolved == [1]
    assert session.tickets[1].status == TicketStatus.RESOLVED


def test_ticket_lifecycle_through_the_session():
    api = FakeTicketApi()
    notifier = RecordingNotifier()
    session = DashboardSession(api, notifier=notifier)

    async def scenario():
        created = await session.create_ticket({"description": "Garage door stuck", "property_id": 10})
        moved = await session.move_ticket(created.id, "urgent")
        await session.change_status(created.id, "in_progress")
        await session.change_status(created.id, "resolved")
        deleted = await session.delete_ticket(created.id)
        return created, moved, deleted

    created, moved, deleted = asyncio.run(scenario())

    assert created.title == "Garage door stuck"
    assert moved.priority.value == "URGENT"
    assert deleted is True
    assert notifier.resolved == [created.id]
    assert session.tickets == []
