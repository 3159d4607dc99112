"""End-to-end behaviour of the offline-first sync core with a fake gateway."""

import asyncio

import pytest

from habitsync.models.enums import EntityTable
from habitsync.models.enums import RecordStatus
from habitsync.services.mutation_coordinator import OptimisticMutationCoordinator
from habitsync.services.sync_engine import PERIODIC_JOB_ID
from habitsync.storage.local_store import LocalDurableStore
from habitsync.storage.local_store import pairing_code_for

DAILY = EntityTable.DAILY_ENTRIES


@pytest.mark.asyncio
async def test_create_offline_is_visible_immediately(store, gateway, monitor, coordinator, queue, active_session):
    await monitor.go_offline()

    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01", "pages_read": 12})

    visible = store.get_record(DAILY, record.key)
    assert visible is not None
    assert visible.status is RecordStatus.OPTIMISTIC
    assert visible.entity["pages_read"] == 12
    assert len(queue) == 1
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_create_online_is_visible_before_gateway_answers(store, gateway, coordinator, active_session):
    gateway.gate = asyncio.Event()

    task = asyncio.create_task(coordinator.create_daily_entry_optimistic({"date": "2024-03-01"}))
    await asyncio.sleep(0)

    records = store.records(DAILY)
    assert len(records) == 1
    assert records[0].status is RecordStatus.OPTIMISTIC

    gateway.gate.set()
    confirmed = await task
    assert confirmed.status is RecordStatus.CONFIRMED


@pytest.mark.asyncio
async def test_update_offline_is_visible_immediately(store, gateway, monitor, coordinator, active_session):
    row = gateway.seed(DAILY, date="2024-03-01", pages_read=1)
    store.replace_collection(DAILY, [row])
    await monitor.go_offline()

    await coordinator.update_daily_entry_optimistic(row["id"], {"pages_read": 40})

    record = store.get_record(DAILY, row["id"])
    assert record.entity["pages_read"] == 40
    assert record.status is RecordStatus.OPTIMISTIC
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_queue_drains_in_fifo_order(store, gateway, monitor, coordinator, engine, active_session):
    await monitor.go_offline()

    await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.create_weekly_entry_optimistic({"week_start_date": "2024-02-26"})
    await coordinator.create_goals_config_optimistic({"month_year": "2024-03"})

    await monitor.go_online()

    creates = gateway.calls_to("create")
    assert [call[1] for call in creates] == [
        EntityTable.DAILY_ENTRIES,
        EntityTable.WEEKLY_ENTRIES,
        EntityTable.GOALS_CONFIG,
    ]
    assert store.pending_operations == []
    for table in EntityTable:
        assert [r.status for r in store.records(table)] == [RecordStatus.CONFIRMED]


@pytest.mark.asyncio
async def test_failing_operation_is_dropped_after_five_attempts(store, gateway, monitor, coordinator, engine, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    gateway.fail.add("create")

    await monitor.go_online()  # attempt 1
    for _ in range(3):
        await engine.sync_now()  # attempts 2-4

    assert len(store.pending_operations) == 1
    assert store.pending_operations[0].retry_count == 4
    assert store.sync_error is None

    await engine.sync_now()  # attempt 5

    assert len(gateway.calls_to("create")) == 5
    assert store.pending_operations == []
    assert store.sync_error is not None
    assert store.get_record(DAILY, record.key).status is RecordStatus.FAILED

    await engine.sync_now()
    assert len(gateway.calls_to("create")) == 5


@pytest.mark.asyncio
async def test_create_reconciles_temporary_id_with_server_id(store, gateway, monitor, queue, active_session):
    coordinator = OptimisticMutationCoordinator(store, gateway, monitor, queue, id_factory=lambda table: "temp_123")
    gateway.id_factory = lambda table: "srv_9"

    await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})

    record = store.get_record(DAILY, "temp_123")
    assert record.id == "srv_9"
    assert record.status is RecordStatus.CONFIRMED
    assert store.get_record(DAILY, "srv_9") == record


@pytest.mark.asyncio
async def test_second_sync_while_syncing_is_a_no_op(store, gateway, engine, active_session):
    gateway.gate = asyncio.Event()

    first = asyncio.create_task(engine.force_sync_now())
    await asyncio.sleep(0)
    assert store.is_syncing

    assert await engine.force_sync_now() is False

    gateway.gate.set()
    assert await first is True

    assert len(gateway.calls_to("list_daily_entries")) == 1
    assert len(gateway.calls_to("set_session_context")) == 1
    assert store.is_syncing is False


@pytest.mark.asyncio
async def test_timer_is_disarmed_while_offline_and_reconnect_syncs_at_once(store, gateway, monitor, queue, active_session):
    from habitsync.services.sync_engine import SyncEngine

    engine = SyncEngine(store, gateway, monitor, queue, interval_seconds=0.05)
    await engine.start()
    try:
        await monitor.go_offline()
        assert engine.scheduler.get_job(PERIODIC_JOB_ID) is None
        gateway.calls.clear()

        await asyncio.sleep(0.3)
        assert gateway.calls == []

        await monitor.go_online()
        # The reconnect handler syncs before returning, not on the next tick
        assert "list_daily_entries" in gateway.names()
        assert engine.auto_sync_active
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_timer_fires_while_online(store, gateway, monitor, queue, active_session):
    from habitsync.services.sync_engine import SyncEngine

    engine = SyncEngine(store, gateway, monitor, queue, interval_seconds=0.05)
    await engine.start()
    try:
        for _ in range(40):
            if gateway.calls_to("list_daily_entries"):
                break
            await asyncio.sleep(0.05)
        assert gateway.calls_to("list_daily_entries")
    finally:
        await engine.stop()


def test_generated_keys_are_distinct_and_prefix_is_pairing_code():
    first = LocalDurableStore.generate_session_key()
    second = LocalDurableStore.generate_session_key()

    assert first != second
    assert len(first) == len(second) == 32
    assert pairing_code_for(first) == first[:8].upper()
