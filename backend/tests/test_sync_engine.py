import pytest

from habitsync.gateway.base import NotConnectedError
from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.models.enums import RecordStatus
from habitsync.models.enums import SyncPhase
from habitsync.schemas.schemas import TrackedRecord
from helpers.fake_gateway import TEST_SESSION_KEY

DAILY = EntityTable.DAILY_ENTRIES
WEEKLY = EntityTable.WEEKLY_ENTRIES
GOALS = EntityTable.GOALS_CONFIG


@pytest.mark.asyncio
async def test_sync_pulls_all_collections_newest_first(store, gateway, engine, local_store, active_session):
    gateway.seed(DAILY, date="2024-03-01")
    gateway.seed(DAILY, date="2024-03-03")
    gateway.seed(WEEKLY, week_start_date="2024-02-26")
    gateway.seed(GOALS, month_year="2024-02", created_at="2024-02-01T00:00:00")
    gateway.seed(GOALS, month_year="2024-03", created_at="2024-03-01T00:00:00")

    assert await engine.sync_now() is True

    assert [e["date"] for e in store.entities(DAILY)] == ["2024-03-03", "2024-03-01"]
    assert len(store.entities(WEEKLY)) == 1
    assert [e["month_year"] for e in store.entities(GOALS)] == ["2024-03"]
    assert all(r.status is RecordStatus.CONFIRMED for r in store.records(DAILY))

    assert store.last_sync_time is not None
    assert local_store.get_last_sync() == store.last_sync_time
    assert gateway.calls[0] == ("set_session_context", TEST_SESSION_KEY)


@pytest.mark.asyncio
async def test_pull_keeps_unsynced_local_records(store, gateway, engine, active_session):
    stale = gateway.seed(DAILY, date="2024-03-01")
    store.replace_collection(DAILY, [stale])
    gateway.rows[DAILY] = []
    store.add_record(
        DAILY,
        TrackedRecord(key="temp_x", status=RecordStatus.OPTIMISTIC, entity={"id": "temp_x", "date": "2024-03-02"}),
    )

    await engine.sync_now()

    # Confirmed rows are replaced wholesale; the optimistic one survives
    assert [r.key for r in store.records(DAILY)] == ["temp_x"]


@pytest.mark.asyncio
async def test_sync_without_session_is_a_no_op(store, gateway, engine):
    assert await engine.sync_now() is False
    assert gateway.calls == []
    assert store.is_syncing is False


@pytest.mark.asyncio
async def test_sync_while_offline_is_a_no_op(store, gateway, monitor, engine, active_session):
    await monitor.go_offline()
    gateway.calls.clear()

    assert await engine.sync_now() is False
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_force_sync_offline_raises(monitor, engine, active_session):
    await monitor.go_offline()
    with pytest.raises(NotConnectedError):
        await engine.force_sync_now()


@pytest.mark.asyncio
async def test_cycle_failure_sets_sync_error_and_never_raises(store, gateway, engine, active_session):
    gateway.fail.add("list_weekly_entries")

    assert await engine.sync_now() is True

    assert store.sync_error == "list_weekly_entries rejected by server"
    assert store.is_syncing is False
    assert engine.get_sync_status().phase is SyncPhase.ERROR

    gateway.fail.clear()
    await engine.sync_now()
    assert store.sync_error is None


@pytest.mark.asyncio
async def test_one_failing_operation_does_not_block_the_rest(store, gateway, monitor, coordinator, engine, active_session):
    row = gateway.seed(DAILY, date="2024-03-01", pages_read=1)
    store.replace_collection(DAILY, [row])
    await monitor.go_offline()

    await coordinator.update_daily_entry_optimistic(row["id"], {"pages_read": 2})
    await coordinator.create_weekly_entry_optimistic({"week_start_date": "2024-02-26"})
    gateway.rows[DAILY] = []  # the update target vanished remotely

    await monitor.go_online()

    ops = store.pending_operations
    assert [op.type for op in ops] == [OperationType.UPDATE]
    assert ops[0].retry_count == 1
    assert [r.status for r in store.records(WEEKLY)] == [RecordStatus.CONFIRMED]


@pytest.mark.asyncio
async def test_queued_update_of_queued_create_targets_server_id(store, gateway, monitor, coordinator, engine, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 7})

    await monitor.go_online()

    [(_, table, server_id, patch)] = gateway.calls_to("update")
    assert table is DAILY
    assert not server_id.startswith("temp_")
    assert patch == {"pages_read": 7}

    final = store.get_record(DAILY, record.key)
    assert final.id == server_id
    assert final.entity["pages_read"] == 7
    assert final.status is RecordStatus.CONFIRMED
    assert store.pending_operations == []


@pytest.mark.asyncio
async def test_update_waits_for_its_queued_create(store, gateway, monitor, coordinator, engine, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 7})
    gateway.fail.add("create")

    await monitor.go_online()

    # Never sent with the temporary id, and no retry spent
    assert gateway.calls_to("update") == []
    assert [(op.type, op.retry_count) for op in store.pending_operations] == [
        (OperationType.INSERT, 1),
        (OperationType.UPDATE, 0),
    ]


@pytest.mark.asyncio
async def test_dropped_create_takes_its_queued_writes_along(store, gateway, monitor, coordinator, engine, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 7})
    gateway.fail.add("create")

    await monitor.go_online()
    for _ in range(4):
        await engine.sync_now()

    assert len(gateway.calls_to("create")) == 5
    assert gateway.calls_to("update") == []
    assert store.pending_operations == []
    assert store.sync_error == (
        "Failed to sync INSERT on daily_entries after 5 attempts: create rejected by server"
    )
    failed = store.get_record(DAILY, record.key)
    assert failed.status is RecordStatus.FAILED
    assert failed.reason == "create rejected by server"


@pytest.mark.asyncio
async def test_temp_id_mappings_are_pruned_once_nothing_refers_to_them(
    store, gateway, monitor, coordinator, engine, active_session
):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 7})

    await monitor.go_online()

    assert store.pending_operations == []
    assert engine._resolved_ids == {}


@pytest.mark.asyncio
async def test_logout_forgets_temp_id_mappings(store, gateway, monitor, coordinator, engine, sessions, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 7})
    gateway.fail.add("update")

    await monitor.go_online()

    server_id = store.get_record(DAILY, record.key).id
    assert engine._resolved_ids == {record.key: server_id}

    sessions.logout()
    assert engine._resolved_ids == {}


@pytest.mark.asyncio
async def test_queued_delete_is_sent_by_id(store, gateway, monitor, coordinator, engine, active_session):
    row = gateway.seed(WEEKLY, week_start_date="2024-02-26")
    store.replace_collection(WEEKLY, [row])
    await monitor.go_offline()

    await coordinator.delete_weekly_entry_optimistic(row["id"])
    await monitor.go_online()

    assert gateway.calls_to("delete") == [("delete", WEEKLY, row["id"])]
    assert gateway.rows[WEEKLY] == []
    assert store.records(WEEKLY) == []


@pytest.mark.asyncio
async def test_sync_status_helpers(store, monitor, coordinator, engine, active_session):
    await monitor.go_offline()
    await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})

    status = engine.get_sync_status()
    assert status.is_online is False
    assert status.pending_count == 1
    assert status.has_pending_changes is True
    assert status.can_sync is False
    assert status.phase is SyncPhase.IDLE


@pytest.mark.asyncio
async def test_last_sync_restored_from_local_store(store, gateway, monitor, queue, local_store):
    from habitsync.services.sync_engine import SyncEngine

    local_store.set_last_sync("2024-03-01T10:00:00+00:00")
    SyncEngine(store, gateway, monitor, queue, local_store)

    assert store.last_sync_time == "2024-03-01T10:00:00+00:00"
