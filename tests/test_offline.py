import json

import pytest

from tracker import assignments, catalog
from tracker.errors import StoreUnavailable
from tracker.offline import OfflineWriteQueue, QueueingStore


def test_queue_persists_and_replays_in_order(tmp_path, store):
    queue = OfflineWriteQueue(str(tmp_path / "queue.json"))
    queue.enqueue("set", "users", "u1", {"role": "employee"})
    queue.enqueue("update", "users", "u1", {"role": "manager"})

    on_disk = json.loads((tmp_path / "queue.json").read_text())
    assert [entry["kind"] for entry in on_disk] == ["set", "update"]

    assert queue.replay(store) == 2
    assert store.get("users", "u1").get("role") == "manager"
    assert queue.pending() == []


def test_replay_stops_while_store_unreachable(tmp_path, flaky):
    queue = OfflineWriteQueue(str(tmp_path / "queue.json"))
    queue.enqueue("set", "users", "u1", {"role": "employee"})
    flaky.down = True
    assert queue.replay(flaky) == 0
    assert len(queue) == 1


def test_replay_drops_rejected_writes(tmp_path, store):
    queue = OfflineWriteQueue(str(tmp_path / "queue.json"))
    queue.enqueue("update", "users", "ghost", {"role": "manager"})
    queue.enqueue("set", "users", "u1", {"role": "employee"})
    assert queue.replay(store) == 1
    assert len(queue) == 0
    assert store.get("users", "u1") is not None


def test_reads_fall_back_to_last_result(queueing_store, flaky):
    flaky.inner.set("users", "u1", {"role": "manager"})
    assert queueing_store.get("users", "u1").get("role") == "manager"
    assert len(queueing_store.query("users", [("role", "==", "manager")])) == 1

    flaky.down = True

    assert queueing_store.get("users", "u1").get("role") == "manager"
    assert not queueing_store.online
    assert len(queueing_store.query("users", [("role", "==", "manager")])) == 1
    with pytest.raises(StoreUnavailable):
        queueing_store.get("users", "never-read")


def test_writes_queue_while_offline_and_replay_on_reconnect(queueing_store, flaky):
    flaky.down = True
    queueing_store.set("users", "u1", {"role": "employee"})
    doc_id = queueing_store.add("tasks", {"title": "Mop"})

    assert not queueing_store.online
    assert len(queueing_store.queue) == 2
    assert flaky.inner.get("tasks", doc_id) is None

    flaky.down = False
    assert queueing_store.monitor.attempt_reconnection() is True

    assert queueing_store.online
    assert len(queueing_store.queue) == 0
    assert flaky.inner.get("users", "u1").get("role") == "employee"
    assert flaky.inner.get("tasks", doc_id).get("title") == "Mop"


def test_online_writes_go_straight_through(queueing_store, flaky):
    doc_id = queueing_store.add("tasks", {"title": "Mop"})
    assert flaky.inner.get("tasks", doc_id).get("title") == "Mop"
    assert len(queueing_store.queue) == 0


def test_offline_create_task_returns_the_written_template(queueing_store, flaky):
    flaky.down = True

    task = catalog.create_task(queueing_store, "m1", "  Mop floor ", requires_photo=True)

    assert (task.title, task.requires_photo, task.created_by) == ("Mop floor", True, "m1")
    assert task.created_at is not None
    assert len(queueing_store.queue) == 1

    flaky.down = False
    queueing_store.monitor.attempt_reconnection()

    assert [t.id for t in catalog.list_tasks(flaky.inner)] == [task.id]
    assert catalog.get_task(flaky.inner, task.id).title == "Mop floor"


def test_repeated_offline_assign_lands_once(queueing_store, flaky):
    task = catalog.create_task(queueing_store, "m1", "Mop")
    catalog.get_task(queueing_store, task.id)
    assert assignments.find_assignment(queueing_store, task.id, "u1") is None

    flaky.down = True
    first = assignments.assign_task(queueing_store, task.id, "u1", "m1")
    second = assignments.assign_task(queueing_store, task.id, "u1", "m1")

    assert first.id == second.id == assignments.assignment_doc_id(task.id, "u1")
    assert len(queueing_store.queue) == 2

    flaky.down = False
    assert queueing_store.monitor.attempt_reconnection() is True

    assert len(queueing_store.queue) == 0
    assert [a.id for a in assignments.assignments_for_user(flaky.inner, "u1")] == [first.id]


def test_fallback_reads_keep_only_recent_results(flaky, timers, tmp_path):
    from tracker.connectivity import ConnectivityMonitor

    monitor = ConnectivityMonitor(flaky.ping, timer_factory=timers)
    wrapped = QueueingStore(flaky, monitor=monitor, queue=OfflineWriteQueue(str(tmp_path / "q.json")),
                            read_cache_size=2)
    for uid in ("u1", "u2", "u3"):
        flaky.inner.set("users", uid, {"role": "employee"})
    wrapped.get("users", "u1")
    wrapped.get("users", "u2")
    wrapped.get("users", "u1")
    wrapped.get("users", "u3")

    flaky.down = True

    assert wrapped.get("users", "u1").get("role") == "employee"
    assert wrapped.get("users", "u3").get("role") == "employee"
    with pytest.raises(StoreUnavailable):
        wrapped.get("users", "u2")
