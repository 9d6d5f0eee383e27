import asyncio
from datetime import timedelta

import pytest

from app.core.errors import NotFoundError, TransientNetworkError, ValidationError
from app.schemas.ticket import (
    AttachmentSource,
    TicketAttachment,
    TicketEvent,
    TicketEventType,
    TicketFilters,
    TicketPriority,
    TicketStatus,
)
from app.services.reconciler import MergeOutcome, SubscriptionReconciler
from app.services.ticket_store import TicketStore

from conftest import BASE_TIME, FakeTicketApi, RecordingNotifier, build_ticket


class GatedApi(FakeTicketApi):
    """Holds list/update responses until the test opens the matching gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.list_gates = {}
        self.update_gate = None

    async def list_tickets(self, filters):
        gate = self.list_gates.get(filters.search_query)
        if gate is not None:
            await gate.wait()
        return await super().list_tickets(filters)

    async def update_ticket(self, ticket_id, changes):
        if self.update_gate is not None:
            await self.update_gate.wait()
        return await super().update_ticket(ticket_id, changes)


def gated_api():
    return GatedApi([build_ticket(1), build_ticket(2, property_id=11, property_address="9 Elm Ave")])


def test_load_replaces_the_view_newest_first(store, api):
    tickets = asyncio.run(store.load())

    assert [t.id for t in tickets] == [2, 1]
    assert store.generation == 1
    assert api.calls[0] == ("list", TicketFilters())


def test_filters_are_replaced_not_merged(store, api):
    async def scenario():
        await store.set_filters(TicketFilters(status="open", property_id=11))
        await store.set_filters(TicketFilters(search_query="oak"))

    asyncio.run(scenario())

    assert store.filters == TicketFilters(search_query="oak")
    assert [t.id for t in store.tickets] == [1]


def test_slow_response_for_an_old_query_is_discarded():
    api = gated_api()
    store = TicketStore(api, notifier=RecordingNotifier())

    async def scenario():
        gate = asyncio.Event()
        api.list_gates["oak"] = gate
        first = asyncio.ensure_future(store.set_search("oak"))
        await asyncio.sleep(0)
        await store.set_search("elm")
        gate.set()
        await first

    asyncio.run(scenario())

    assert store.filters.search_query == "elm"
    assert [t.id for t in store.tickets] == [2]
    assert store.generation == 2


def test_push_during_load_moves_ticket_out_of_the_new_view():
    api = gated_api()
    notifier = RecordingNotifier()
    store = TicketStore(api, notifier=notifier)
    reconciler = SubscriptionReconciler(store)
    resolved = build_ticket(1, status="RESOLVED", updated_at=BASE_TIME + timedelta(hours=1))
    event = TicketEvent(type=TicketEventType.UPDATED, ticket_id=1, ticket=resolved)

    async def scenario():
        await store.load()
        gate = asyncio.Event()
        api.list_gates["oak"] = gate
        pending = asyncio.ensure_future(store.load(TicketFilters(status="open", search_query="oak")))
        await asyncio.sleep(0)
        reconciler.apply(event)
        # the held response still carries the older OPEN copy
        gate.set()
        await pending
        return reconciler.apply(event)

    redelivered = asyncio.run(scenario())

    assert store.get(1) is None
    assert store.tickets == []
    assert notifier.resolved == [1]
    assert redelivered == MergeOutcome.IGNORED


def test_push_during_load_keeps_the_newer_copy_in_view():
    api = gated_api()
    store = TicketStore(api, notifier=RecordingNotifier())
    reconciler = SubscriptionReconciler(store)
    edited = build_ticket(1, title="Edited elsewhere", updated_at=BASE_TIME + timedelta(hours=1))

    async def scenario():
        await store.load()
        gate = asyncio.Event()
        api.list_gates["oak"] = gate
        pending = asyncio.ensure_future(store.set_search("oak"))
        await asyncio.sleep(0)
        reconciler.apply(TicketEvent(type=TicketEventType.UPDATED, ticket_id=1, ticket=edited))
        gate.set()
        await pending

    asyncio.run(scenario())

    assert [t.id for t in store.tickets] == [1]
    assert store.get(1).title == "Edited elsewhere"
    assert reconciler.apply(TicketEvent(type=TicketEventType.UPDATED, ticket_id=1, ticket=build_ticket(1))) == MergeOutcome.STALE


def test_create_validates_before_any_request(store, api):
    async def scenario():
        with pytest.raises(ValidationError):
            await store.create({"title": "No description", "property_id": 10})
        with pytest.raises(ValidationError):
            await store.create({"description": "   ", "property_id": 10})
        with pytest.raises(ValidationError):
            await store.create({"description": "Broken window"})

    asyncio.run(scenario())

    assert api.calls == []


def test_create_builds_metadata_and_keeps_attachment_order(store, api):
    existing = TicketAttachment(filename="lease.pdf", size=10, mime_type="application/pdf", url="https://files/lease.pdf")
    data = {
        "description": "Window cracked in the living room",
        "property_id": 10,
        "priority": "high",
        "use_ai": True,
        "contact_email": "tenant@example.com",
        "existing_attachments": [existing],
        "attachments": [
            AttachmentSource(filename="front.jpg", content=b"front"),
            AttachmentSource(filename="side.png", content=b"side-view"),
            AttachmentSource(filename="notes.txt", content=b"n", mime_type="text/markdown"),
        ],
    }

    record = asyncio.run(store.create(data))

    payload = api.calls[-1][1]
    attachments = payload.metadata.attachments
    assert [a.filename for a in attachments] == ["lease.pdf", "front.jpg", "side.png", "notes.txt"]
    assert attachments[1].mime_type == "image/jpeg"
    assert attachments[2].size == len(b"side-view")
    assert attachments[3].mime_type == "text/markdown"
    assert attachments[1].url.startswith("blob:")
    assert payload.title is None
    assert payload.priority == TicketPriority.HIGH
    assert payload.metadata.use_ai is True
    assert record.title == "Window cracked in the living room"
    assert store.get(record.id) == record


def test_file_attachments_use_file_urls(store, api, tmp_path):
    photo = tmp_path / "leak.jpg"
    photo.write_bytes(b"12345")

    asyncio.run(store.create({
        "description": "Ceiling leak",
        "property_id": 10,
        "attachments": [{"filename": "leak.jpg", "path": str(photo)}],
    }))

    attachment = api.calls[-1][1].metadata.attachments[0]
    assert attachment.url.startswith("file://")
    assert attachment.size == 5


def test_update_sends_only_the_given_fields(store, api):
    async def scenario():
        await store.load()
        return await store.update(1, {"priority": "urgent"})

    record = asyncio.run(scenario())

    _, ticket_id, changes = api.writes()[0]
    assert ticket_id == 1
    assert changes.model_fields_set == {"priority"}
    assert record.priority == TicketPriority.URGENT
    assert record.title == "Ticket 1"
    assert store.get(1).priority == TicketPriority.URGENT


def test_update_rejects_empty_and_invalid_changes(store, api):
    async def scenario():
        with pytest.raises(ValidationError):
            await store.update(1, {})
        with pytest.raises(ValidationError):
            await store.update(1, {"status": "bogus"})
        with pytest.raises(ValidationError):
            await store.update(1, {"title": "  "})

    asyncio.run(scenario())

    assert api.writes() == []


def test_update_never_sends_null_for_required_fields():
    api = gated_api()
    store = TicketStore(api, notifier=RecordingNotifier())

    async def scenario():
        await store.load()
        with pytest.raises(ValidationError):
            await store.update(1, {"status": None})
        api.update_gate = asyncio.Event()
        pending = asyncio.ensure_future(store.update(1, {"status": None, "priority": None, "title": "Retitled"}))
        await asyncio.sleep(0)
        during = store.get(1)
        api.update_gate.set()
        return during, await pending

    during, record = asyncio.run(scenario())

    assert during.title == "Retitled"
    assert during.status == TicketStatus.OPEN
    assert during.priority == TicketPriority.MEDIUM
    _, _, changes = api.writes()[0]
    assert changes.model_fields_set == {"title"}
    assert len(api.writes()) == 1
    assert record.status == TicketStatus.OPEN


def test_optimistic_update_is_visible_then_rolled_back():
    api = gated_api()
    notifier = RecordingNotifier()
    store = TicketStore(api, notifier=notifier)

    async def scenario():
        await store.load()
        api.update_gate = asyncio.Event()
        api.errors.append(TransientNetworkError("server unavailable", status_code=503))
        pending = asyncio.ensure_future(store.update(1, {"priority": "urgent"}))
        await asyncio.sleep(0)
        during = store.get(1).priority
        api.update_gate.set()
        with pytest.raises(TransientNetworkError):
            await pending
        return during

    during = asyncio.run(scenario())

    assert during == TicketPriority.URGENT
    assert store.get(1).priority == TicketPriority.MEDIUM


def test_rollback_keeps_a_newer_pushed_version():
    api = gated_api()
    store = TicketStore(api, notifier=RecordingNotifier())
    reconciler = SubscriptionReconciler(store)

    async def scenario():
        await store.load()
        base = store.get(1)
        api.update_gate = asyncio.Event()
        api.errors.append(TransientNetworkError("timeout"))
        pending = asyncio.ensure_future(store.update(1, {"priority": "urgent"}))
        await asyncio.sleep(0)
        pushed = base.model_copy(update={"title": "Edited elsewhere", "updated_at": base.updated_at + timedelta(minutes=5)})
        reconciler.apply(TicketEvent(type=TicketEventType.UPDATED, ticket_id=1, ticket=pushed))
        api.update_gate.set()
        with pytest.raises(TransientNetworkError):
            await pending

    asyncio.run(scenario())

    assert store.get(1).title == "Edited elsewhere"
    assert store.get(1).priority == TicketPriority.MEDIUM


def test_updates_to_one_ticket_are_applied_in_order(store, api):
    async def scenario():
        await store.load()
        await asyncio.gather(
            store.update(1, {"status": "in_progress"}),
            store.update(1, {"status": "pending"}),
        )

    asyncio.run(scenario())

    statuses = [c[2].status for c in api.writes()]
    assert statuses == [TicketStatus.IN_PROGRESS, TicketStatus.PENDING]
    assert store.get(1).status == TicketStatus.PENDING


def test_delete_removes_and_blocks_later_writes(store, api):
    async def scenario():
        await store.load()
        assert await store.delete(1) is True
        with pytest.raises(NotFoundError):
            await store.update(1, {"title": "Back again"})

    asyncio.run(scenario())

    assert store.get(1) is None
    assert store.is_deleted(1)
    assert [c[0] for c in api.writes()] == ["delete"]


def test_delete_of_unknown_ticket_raises_not_found(store, api):
    with pytest.raises(NotFoundError):
        asyncio.run(store.delete(404))

    assert store.is_deleted(404)


def test_load_does_not_resurrect_deleted_tickets(store, api):
    async def scenario():
        await store.load()
        store.remove(2)
        # server list still has it (delete not yet visible there)
        await store.load()

    asyncio.run(scenario())

    assert [t.id for t in store.tickets] == [1]
