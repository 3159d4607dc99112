import pytest

from habitsync.gateway.base import RemoteError
from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.models.enums import RecordStatus
from habitsync.schemas.schemas import DailyEntryCreate
from habitsync.services.mutation_coordinator import Enqueue
from habitsync.services.mutation_coordinator import ImmediateAttempt
from habitsync.services.mutation_coordinator import Mutation
from habitsync.services.mutation_coordinator import UnknownRecordError
from habitsync.services.mutation_coordinator import default_temp_id
from habitsync.services.mutation_coordinator import is_temporary_id

DAILY = EntityTable.DAILY_ENTRIES
WEEKLY = EntityTable.WEEKLY_ENTRIES


def _confirmed(store, gateway, table=DAILY, **fields):
    row = gateway.seed(table, **fields)
    store.replace_collection(table, [*store.entities(table), row])
    return row


def test_temporary_ids():
    temp = default_temp_id(DAILY)
    assert temp.startswith("temp_daily_")
    assert is_temporary_id(temp)
    assert not is_temporary_id("srv_1")
    assert not is_temporary_id(None)


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_strategy_follows_connectivity(coordinator, monitor):
    mutation = Mutation(type=OperationType.INSERT, table=DAILY, key="temp_1", payload={})

    assert isinstance(coordinator.select_strategy(mutation), ImmediateAttempt)
    await monitor.go_offline()
    assert isinstance(coordinator.select_strategy(mutation), Enqueue)


@pytest.mark.asyncio
async def test_update_of_queued_create_is_queued_even_online(store, gateway, monitor, coordinator, queue, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await monitor.go_online()

    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 5})

    assert gateway.names() == []
    assert [op.type for op in queue.dequeue_all()] == [OperationType.INSERT, OperationType.UPDATE]
    assert queue.dequeue_all()[1].data == {"id": record.key, "pages_read": 5}


# ---------------------------------------------------------------------------
# Online success paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_online_fills_session_and_confirms(store, gateway, coordinator, active_session):
    record = await coordinator.create_daily_entry_optimistic(DailyEntryCreate(date="2024-03-02", pages_read=3))

    assert record.status is RecordStatus.CONFIRMED
    assert record.id.startswith("srv_")
    assert record.key.startswith("temp_daily_")

    name, table, payload = gateway.calls_to("create")[0]
    assert table is DAILY
    assert payload["session_id"] == active_session["id"]
    assert payload["pages_read"] == 3
    assert "id" not in payload


@pytest.mark.asyncio
async def test_update_online_reconciles_with_server(store, gateway, coordinator, active_session):
    row = _confirmed(store, gateway, date="2024-03-01", pages_read=1)

    record = await coordinator.update_daily_entry_optimistic(row["id"], {"pages_read": 9})

    assert record.status is RecordStatus.CONFIRMED
    assert record.entity["pages_read"] == 9
    assert gateway.calls_to("update") == [("update", DAILY, row["id"], {"pages_read": 9})]


@pytest.mark.asyncio
async def test_delete_online_removes_remotely(store, gateway, coordinator, active_session):
    row = _confirmed(store, gateway, WEEKLY, week_start_date="2024-02-26")

    await coordinator.delete_weekly_entry_optimistic(row["id"])

    assert store.records(WEEKLY) == []
    assert gateway.calls_to("delete") == [("delete", WEEKLY, row["id"])]


# ---------------------------------------------------------------------------
# Online failure paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_create_is_kept_as_failed(store, gateway, coordinator, queue, active_session):
    gateway.fail.add("create")

    with pytest.raises(RemoteError):
        await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})

    [record] = store.records(DAILY)
    assert record.status is RecordStatus.FAILED
    assert record.reason == "create rejected by server"
    assert store.error == "create rejected by server"
    # Immediate failures are not retried automatically
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_failed_update_rolls_back(store, gateway, coordinator, active_session):
    row = _confirmed(store, gateway, date="2024-03-01", pages_read=1)
    gateway.fail.add("update")

    with pytest.raises(RemoteError):
        await coordinator.update_daily_entry_optimistic(row["id"], {"pages_read": 50})

    record = store.get_record(DAILY, row["id"])
    assert record.entity["pages_read"] == 1
    assert record.status is RecordStatus.CONFIRMED
    assert record.reason == "update rejected by server"
    assert store.error == "update rejected by server"


@pytest.mark.asyncio
async def test_failed_delete_restores_record_in_place(store, gateway, coordinator, active_session):
    first = _confirmed(store, gateway, date="2024-03-03")
    second = _confirmed(store, gateway, date="2024-03-02")
    third = _confirmed(store, gateway, date="2024-03-01")
    gateway.fail.add("delete")

    with pytest.raises(RemoteError):
        await coordinator.delete_daily_entry_optimistic(second["id"])

    assert [r.id for r in store.records(DAILY)] == [first["id"], second["id"], third["id"]]
    assert store.error is not None


@pytest.mark.asyncio
async def test_success_clears_previous_error(store, gateway, coordinator, active_session):
    store.set_error("old failure")
    await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    assert store.error is None


# ---------------------------------------------------------------------------
# Offline paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_offline_create_queues_raw_payload(store, monitor, coordinator, queue, active_session):
    await monitor.go_offline()

    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01", "pages_read": 2})

    [op] = queue.dequeue_all()
    assert op.type is OperationType.INSERT
    assert op.table is DAILY
    assert op.ref == record.key
    assert "id" not in op.data
    assert op.data["pages_read"] == 2
    assert op.retry_count == 0


@pytest.mark.asyncio
async def test_offline_delete_of_queued_create_cancels_it(store, gateway, monitor, coordinator, queue, active_session):
    await monitor.go_offline()
    record = await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    await coordinator.update_daily_entry_optimistic(record.key, {"pages_read": 4})

    await coordinator.delete_daily_entry_optimistic(record.key)

    assert store.records(DAILY) == []
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_offline_delete_of_confirmed_record_is_queued(store, gateway, monitor, coordinator, queue, active_session):
    row = _confirmed(store, gateway, date="2024-03-01")
    await monitor.go_offline()

    await coordinator.delete_daily_entry_optimistic(row["id"])

    [op] = queue.dequeue_all()
    assert op.type is OperationType.DELETE
    assert op.data == {"id": row["id"]}


@pytest.mark.asyncio
async def test_delete_of_failed_create_is_local_only(store, gateway, coordinator, active_session):
    gateway.fail.add("create")
    with pytest.raises(RemoteError):
        await coordinator.create_daily_entry_optimistic({"date": "2024-03-01"})
    gateway.calls.clear()

    [record] = store.records(DAILY)
    await coordinator.delete_daily_entry_optimistic(record.key)

    assert store.records(DAILY) == []
    assert gateway.calls == []


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_record_raises(coordinator):
    with pytest.raises(UnknownRecordError):
        await coordinator.update_daily_entry_optimistic("missing", {"pages_read": 1})


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected_before_store_changes(store, coordinator):
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        await coordinator.create_daily_entry_optimistic({"date": "March 1st"})
    assert store.records(DAILY) == []
