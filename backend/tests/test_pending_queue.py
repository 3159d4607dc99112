from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.services.pending_queue import PendingOperationQueue
from habitsync.services.state_store import AppStateStore
from habitsync.storage.local_store import PENDING_SYNC
from habitsync.storage.local_store import LocalDurableStore

DAILY = EntityTable.DAILY_ENTRIES


def _op(queue, date, op_type=OperationType.INSERT, ref=None):
    return queue.build(op_type, DAILY, {"date": date}, ref=ref)


def test_enqueue_keeps_insertion_order(queue, store):
    a = queue.enqueue(_op(queue, "2024-03-01"))
    b = queue.enqueue(_op(queue, "2024-03-02"))
    c = queue.enqueue(_op(queue, "2024-03-03"))

    assert [op.id for op in queue.dequeue_all()] == [a.id, b.id, c.id]
    assert store.pending_operations == queue.dequeue_all()
    assert len(queue) == 3


def test_dequeue_all_does_not_remove(queue):
    queue.enqueue(_op(queue, "2024-03-01"))
    queue.dequeue_all()
    assert len(queue) == 1


def test_remove(queue):
    a = queue.enqueue(_op(queue, "2024-03-01"))
    b = queue.enqueue(_op(queue, "2024-03-02"))

    assert queue.remove(a.id) is True
    assert queue.remove(a.id) is False
    assert [op.id for op in queue.dequeue_all()] == [b.id]


def test_increment_retry_in_place(queue):
    a = queue.enqueue(_op(queue, "2024-03-01"))
    b = queue.enqueue(_op(queue, "2024-03-02"))

    assert queue.increment_retry(a.id) == 1
    assert queue.increment_retry(a.id) == 2
    assert [(op.id, op.retry_count) for op in queue.dequeue_all()] == [(a.id, 2), (b.id, 0)]
    assert queue.increment_retry("op_missing") == 0


def test_has_pending_insert(queue):
    queue.enqueue(_op(queue, "2024-03-01", ref="temp_1"))
    queue.enqueue(_op(queue, "2024-03-01", OperationType.UPDATE, ref="temp_2"))

    assert queue.has_pending_insert("temp_1")
    assert not queue.has_pending_insert("temp_2")


def test_remove_by_ref(queue, local_store):
    queue.enqueue(_op(queue, "2024-03-01", ref="temp_1"))
    keep = queue.enqueue(_op(queue, "2024-03-02", ref="temp_2"))
    queue.enqueue(_op(queue, "2024-03-01", OperationType.UPDATE, ref="temp_1"))

    assert queue.remove_by_ref("temp_1") == 2
    assert [op.id for op in queue.dequeue_all()] == [keep.id]
    assert [op["id"] for op in local_store.get_pending_sync()] == [keep.id]
    assert not queue.has_ref("temp_1")
    assert queue.remove_by_ref("temp_1") == 0


def test_every_change_is_persisted(queue, local_store):
    a = queue.enqueue(_op(queue, "2024-03-01"))
    assert [op["id"] for op in local_store.get_pending_sync()] == [a.id]
    assert local_store.get_pending_sync()[0]["type"] == "INSERT"

    queue.clear()
    assert local_store.get_pending_sync() == []


def test_restore_after_restart(tmp_path):
    path = tmp_path / "state.json"
    before = PendingOperationQueue(AppStateStore(), LocalDurableStore(path))
    a = before.enqueue(_op(before, "2024-03-01"))
    b = before.enqueue(_op(before, "2024-03-02"))
    before.increment_retry(b.id)

    store = AppStateStore()
    after = PendingOperationQueue(store, LocalDurableStore(path))
    fresh = after.enqueue(_op(after, "2024-03-09"))
    # enqueue persisted only the fresh op; rewrite the file as the previous process left it
    LocalDurableStore(path).set(PENDING_SYNC, [op.model_dump(mode="json") for op in (a, before.get(b.id))])

    assert after.restore() == 2
    restored = after.dequeue_all()
    assert [op.id for op in restored] == [a.id, b.id, fresh.id]
    assert restored[1].retry_count == 1
    assert restored[0].type is OperationType.INSERT


def test_restore_skips_unreadable_entries(store, local_store):
    queue = PendingOperationQueue(store, local_store)
    local_store.set(PENDING_SYNC, [{"id": "op_bad"}])

    assert queue.restore() == 0
    assert len(queue) == 0


def test_restore_without_local_store():
    assert PendingOperationQueue(AppStateStore()).restore() == 0
