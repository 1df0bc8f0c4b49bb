"""Unit tests for the BroadcastCoordinator class."""

import asyncio
import json
import pytest
from models.batch import BatchStatus, NewBatch
from models.connection import Connection
from core.broadcast import BroadcastCoordinator
from core.storage import BatchStore

THROTTLE = 0.05


class RecordingTransport:
    """Transport that records every frame it is asked to send."""

    def __init__(self, fail=False):
        self.frames = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.frames.append(json.loads(text))

    def updates(self):
        return [frame for frame in self.frames if frame["type"] == "batch_update"]


class BrokenStore:
    """Store whose snapshot read always fails."""

    def __init__(self):
        self.reads = 0

    async def get_all_snapshot(self):
        self.reads += 1
        raise RuntimeError("database unavailable")


@pytest.fixture
def store():
    """Store with ten batches and no hooks."""
    return BatchStore([NewBatch(f"BAT-{i}", f"ART-{i}", f"Batch {i}", 100 * i) for i in range(1, 11)])


@pytest.fixture
def coordinator(store):
    """Coordinator wired to the store like the application does."""
    coordinator = BroadcastCoordinator(store, throttle_seconds=THROTTLE)
    store.add_commit_hook(coordinator.notify_mutation)
    return coordinator


async def open_connection(coordinator, fail=False):
    transport = RecordingTransport(fail=fail)
    connection = Connection(transport)
    await coordinator.register(connection)
    return connection, transport


@pytest.mark.asyncio
async def test_register_sends_welcome_then_snapshot(coordinator):
    """Test a new connection gets a welcome and one snapshot immediately."""
    connection, transport = await open_connection(coordinator)

    assert coordinator.is_registered(connection)
    assert [frame["type"] for frame in transport.frames] == ["welcome", "batch_update"]
    assert len(transport.frames[1]["data"]) == 10
    assert coordinator.broadcast_count == 0


@pytest.mark.asyncio
async def test_register_only_pushes_to_new_connection(coordinator):
    """Test registration does not push to already registered connections."""
    _, first = await open_connection(coordinator)
    await open_connection(coordinator)

    assert len(first.frames) == 2


@pytest.mark.asyncio
async def test_register_with_failing_transport_is_dropped(coordinator):
    """Test a connection that cannot take the welcome is unregistered."""
    connection, _ = await open_connection(coordinator, fail=True)

    assert not coordinator.is_registered(connection)
    assert coordinator.connection_count == 0


@pytest.mark.asyncio
async def test_register_survives_store_failure():
    """Test registration never raises when the snapshot read fails."""
    coordinator = BroadcastCoordinator(BrokenStore(), throttle_seconds=THROTTLE)
    connection, transport = await open_connection(coordinator)

    assert coordinator.is_registered(connection)
    assert [frame["type"] for frame in transport.frames] == ["welcome"]


@pytest.mark.asyncio
async def test_mutations_in_one_window_coalesce(store, coordinator):
    """Test N mutations inside one window produce exactly one broadcast."""
    _, transport = await open_connection(coordinator)

    for batch_id in range(1, 6):
        await store.mark_inventoried(batch_id)
    assert coordinator.is_broadcast_pending
    await coordinator.wait_idle()

    updates = transport.updates()
    assert len(updates) == 2  # initial snapshot + one coalesced broadcast
    completed = {row["id"] for row in updates[-1]["data"] if row["status"] == "completed"}
    assert completed == {1, 2, 3, 4, 5}
    assert coordinator.broadcast_count == 1
    assert not coordinator.is_broadcast_pending


@pytest.mark.asyncio
async def test_notify_mutation_does_not_block(coordinator):
    """Test notify_mutation only arms the window and returns."""
    coordinator.notify_mutation()

    assert coordinator.is_broadcast_pending
    assert coordinator.broadcast_count == 0
    await coordinator.wait_idle()
    assert coordinator.broadcast_count == 1


def test_notify_mutation_without_event_loop(coordinator):
    """Test notify_mutation outside an event loop is a logged no-op."""
    coordinator.notify_mutation()
    assert not coordinator.is_broadcast_pending


@pytest.mark.asyncio
async def test_new_window_after_broadcast(store, coordinator):
    """Test a mutation after a completed cycle opens a fresh window."""
    _, transport = await open_connection(coordinator)

    await store.mark_inventoried(1)
    await coordinator.wait_idle()
    await store.mark_partially_inventoried(2, 50)
    await coordinator.wait_idle()

    updates = transport.updates()
    assert len(updates) == 3
    statuses = {row["id"]: row["status"] for row in updates[-1]["data"]}
    assert statuses[1] == "completed"
    assert statuses[2] == "partially_completed"
    assert coordinator.broadcast_count == 2


@pytest.mark.asyncio
async def test_failing_send_drops_only_that_connection(store, coordinator):
    """Test one broken connection does not stop delivery to the others."""
    _, first = await open_connection(coordinator)
    broken, broken_transport = await open_connection(coordinator)
    _, third = await open_connection(coordinator)
    broken_transport.fail = True

    await store.mark_inventoried(7)
    await coordinator.wait_idle()

    assert not coordinator.is_registered(broken)
    assert coordinator.connection_count == 2
    assert len(first.updates()) == 2
    assert len(third.updates()) == 2


@pytest.mark.asyncio
async def test_no_message_after_unregister(store, coordinator):
    """Test a connection unregistered during the window receives nothing more."""
    connection, transport = await open_connection(coordinator)

    await store.mark_inventoried(1)
    coordinator.unregister(connection)
    await coordinator.wait_idle()

    assert len(transport.updates()) == 1
    assert coordinator.broadcast_count == 1


@pytest.mark.asyncio
async def test_unregister_is_idempotent(coordinator):
    """Test unregistering twice is harmless."""
    connection, _ = await open_connection(coordinator)

    coordinator.unregister(connection)
    coordinator.unregister(connection)

    assert coordinator.connection_count == 0
    assert not connection.is_open


@pytest.mark.asyncio
async def test_closed_connection_is_skipped(store, coordinator):
    """Test a connection closed by its transport is dropped at the next send."""
    connection, transport = await open_connection(coordinator)
    connection.mark_closed()

    delivered = await coordinator.broadcast_now()

    assert delivered == 0
    assert not coordinator.is_registered(connection)
    assert len(transport.updates()) == 1


@pytest.mark.asyncio
async def test_unregister_mid_cycle_skips_connection(store):
    """Test a connection dropped while another send is awaited is skipped."""
    coordinator = BroadcastCoordinator(store, throttle_seconds=THROTTLE)
    late = Connection(RecordingTransport())

    class UnregisteringTransport(RecordingTransport):
        async def send_text(self, text):
            coordinator.unregister(late)
            await super().send_text(text)

    first = Connection(UnregisteringTransport())
    coordinator.connections[first.id] = first
    coordinator.connections[late.id] = late

    delivered = await coordinator.broadcast_now()

    assert delivered == 1
    assert late.transport.frames == []


@pytest.mark.asyncio
async def test_store_failure_abandons_cycle_and_clears_window():
    """Test a failed read is not retried and the next mutation schedules again."""
    broken_store = BrokenStore()
    coordinator = BroadcastCoordinator(broken_store, throttle_seconds=THROTTLE)
    transport = RecordingTransport()
    connection = Connection(transport)
    coordinator.connections[connection.id] = connection

    coordinator.notify_mutation()
    await coordinator.wait_idle()

    assert broken_store.reads == 1
    assert not coordinator.is_broadcast_pending
    assert transport.frames == []
    assert coordinator.broadcast_count == 0

    coordinator.notify_mutation()
    assert coordinator.is_broadcast_pending
    await coordinator.wait_idle()
    assert broken_store.reads == 2


@pytest.mark.asyncio
async def test_bulk_import_yields_single_update(store, coordinator):
    """Test importing 50 rows results in one snapshot grown by 50."""
    _, transport = await open_connection(coordinator)
    before = len(transport.updates()[0]["data"])

    rows = [NewBatch(f"IMP-{i}", "ART", "Imported", i) for i in range(50)]
    await store.import_batches(rows, overwrite=False)
    await coordinator.wait_idle()

    updates = transport.updates()
    assert len(updates) == 2
    assert len(updates[1]["data"]) == before + 50


@pytest.mark.asyncio
async def test_connection_registered_mid_window(store, coordinator):
    """Test a late joiner gets its own snapshot and then the scheduled one."""
    await store.mark_inventoried(7)
    _, transport = await open_connection(coordinator)
    await coordinator.wait_idle()

    updates = transport.updates()
    assert len(updates) == 2
    for update in updates:
        row = next(row for row in update["data"] if row["id"] == 7)
        assert row["status"] == BatchStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_close_cancels_pending_window(store, coordinator):
    """Test shutdown cancels the window and drops every connection."""
    connection, transport = await open_connection(coordinator)
    await store.mark_inventoried(1)

    await coordinator.close()
    await asyncio.sleep(THROTTLE * 2)

    assert not coordinator.is_broadcast_pending
    assert coordinator.connection_count == 0
    assert not connection.is_open
    assert len(transport.updates()) == 1
