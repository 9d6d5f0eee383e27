import os
from datetime import datetime, timedelta, timezone

import pytest

# keep the app's own engine off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.errors import NotFoundError
from app.models.cash_flow import CashFlow  # noqa: F401
from app.models.lease import Lease  # noqa: F401
from app.models.property import Property  # noqa: F401
from app.models.ticket import Ticket  # noqa: F401
from app.schemas.ticket import DeleteTicketResult, TicketRecord
from app.services.filters import matches_filters
from app.services.ticket_store import TicketStore

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def build_ticket(ticket_id=1, **overrides) -> TicketRecord:
    stamp = BASE_TIME + timedelta(minutes=ticket_id)
    values = dict(
        id=ticket_id,
        title=f"Ticket {ticket_id}",
        description="Kitchen faucet drips",
        priority="MEDIUM",
        status="OPEN",
        property_id=10,
        property_address="12 Oak St",
        created_at=stamp,
        updated_at=stamp,
    )
    values.update(overrides)
    return TicketRecord.model_validate(values)


class FakeTicketApi:
    """In-memory API. Every write bumps the server clock by one second."""

    def __init__(self, tickets=(), properties=()):
        self.tickets = {t.id: t for t in tickets}
        self.properties = list(properties)
        self.events = []
        self.calls = []
        self.errors = []  # raised in order by the next writes
        self._clock = max((t.updated_at for t in self.tickets.values()), default=BASE_TIME)
        self._next_id = max(self.tickets, default=0) + 1

    def _tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def _maybe_fail(self):
        if self.errors:
            raise self.errors.pop(0)

    def writes(self):
        return [c for c in self.calls if c[0] in ("create", "update", "delete")]

    async def list_tickets(self, filters):
        self.calls.append(("list", filters))
        ordered = sorted(self.tickets.values(), key=lambda t: t.created_at, reverse=True)
        return [t for t in ordered if matches_filters(t, filters)]

    async def create_ticket(self, payload):
        self.calls.append(("create", payload))
        self._maybe_fail()
        now = self._tick()
        record = TicketRecord(
            id=self._next_id,
            title=payload.title or payload.description[:50],
            description=payload.description,
            priority=payload.priority,
            status=payload.status,
            property_id=payload.property_id,
            property_address="12 Oak St",
            metadata=payload.metadata,
            created_at=now,
            updated_at=now,
        )
        self._next_id += 1
        self.tickets[record.id] = record
        return record

    async def update_ticket(self, ticket_id, changes):
        self.calls.append(("update", ticket_id, changes))
        self._maybe_fail()
        if ticket_id not in self.tickets:
            raise NotFoundError("Ticket not found", ticket_id=ticket_id)
        patch = {name: getattr(changes, name) for name in changes.model_fields_set}
        patch["updated_at"] = self._tick()
        record = self.tickets[ticket_id].model_copy(update=patch)
        self.tickets[ticket_id] = record
        return record

    async def delete_ticket(self, ticket_id):
        self.calls.append(("delete", ticket_id))
        self._maybe_fail()
        if self.tickets.pop(ticket_id, None) is None:
            raise NotFoundError("Ticket not found", ticket_id=ticket_id)
        return DeleteTicketResult(id=ticket_id, success=True)

    async def dashboard_source(self):
        self.calls.append(("dashboard_source",))
        return list(self.properties)

    async def ticket_events(self):
        for event in self.events:
            yield event


class RecordingNotifier:
    def __init__(self):
        self.successes = []
        self.errors = []
        self.resolved = []

    def success(self, message, **context):
        self.successes.append(message)

    def error(self, message, **context):
        self.errors.append(message)

    def ticket_resolved(self, ticket):
        self.resolved.append(ticket.id)


@pytest.fixture
def api():
    return FakeTicketApi([build_ticket(1), build_ticket(2, property_id=11, property_address="9 Elm Ave")])


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(api, notifier):
    return TicketStore(api, notifier=notifier)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    sess = session_factory()
    yield sess
    sess.close()
