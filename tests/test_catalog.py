import pytest

from tracker import assignments, catalog
from tracker.catalog import TaskTemplateCache
from tracker.errors import ConflictError, NotFoundError


class CountingStore:
    def __init__(self, inner):
        self.inner = inner
        self.queries = []

    def query(self, path, where=(), limit=None):
        self.queries.append((path, list(where)))
        return self.inner.query(path, where, limit=limit)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_create_task_requires_title(store):
    with pytest.raises(ValueError):
        catalog.create_task(store, "m1", "   ")


def test_create_and_list_tasks(store):
    task = catalog.create_task(store, "m1", " Sweep floor ", "Use the big broom", requires_photo=True)
    assert task.title == "Sweep floor"
    assert task.requires_photo is True
    assert task.created_by == "m1"
    assert [t.id for t in catalog.list_tasks(store)] == [task.id]


def test_get_many_chunks_lookups(store):
    ids = [catalog.create_task(store, "m1", f"Task {i}").id for i in range(25)]
    counting = CountingStore(store)
    cache = TaskTemplateCache(chunk_size=10)

    found = cache.get_many(counting, ids)

    assert set(found) == set(ids)
    assert len(counting.queries) == 3
    assert all(len(where[0][2]) <= 10 for _, where in counting.queries)


def test_get_many_serves_cached_templates(store, cache):
    task = catalog.create_task(store, "m1", "Mop")
    cache.get_many(store, [task.id])
    counting = CountingStore(store)
    assert cache.get_many(counting, [task.id, task.id])[task.id].title == "Mop"
    assert counting.queries == []


def test_get_many_skips_missing_ids(store, cache):
    task = catalog.create_task(store, "m1", "Mop")
    assert list(cache.get_many(store, [task.id, "deleted", ""])) == [task.id]


def test_update_invalidates_cache(store, cache):
    task = catalog.create_task(store, "m1", "Mop")
    cache.get_many(store, [task.id])
    catalog.update_task(store, task.id, "Mop twice", requires_photo=True, cache=cache)
    assert task.id not in cache
    assert cache.get_many(store, [task.id])[task.id].title == "Mop twice"


def test_update_missing_task(store, cache):
    with pytest.raises(NotFoundError):
        catalog.update_task(store, "ghost", "x", cache=cache)


def test_delete_does_not_cascade(store, cache):
    task = catalog.create_task(store, "m1", "Mop")
    assignment = assignments.assign_task(store, task.id, "u1", "m1")
    cache.get_many(store, [task.id])

    catalog.delete_task(store, task.id, cache=cache)

    assert task.id not in cache
    assert store.get("assignedTasks", assignment.id) is not None


def test_assign_rejects_duplicate_pair(store):
    task = catalog.create_task(store, "m1", "Mop")
    assignments.assign_task(store, task.id, "u1", "m1")
    with pytest.raises(ConflictError):
        assignments.assign_task(store, task.id, "u1", "m1")
    assignments.assign_task(store, task.id, "u2", "m1")
    assert len(assignments.all_assignments(store)) == 2


def test_assign_requires_existing_task(store):
    with pytest.raises(NotFoundError):
        assignments.assign_task(store, "ghost", "u1", "m1")


def test_unassign(store):
    task = catalog.create_task(store, "m1", "Mop")
    assignments.assign_task(store, task.id, "u1", "m1")
    assignments.unassign_task(store, task.id, "u1")
    assert assignments.assignments_for_user(store, "u1") == []
    with pytest.raises(NotFoundError):
        assignments.unassign_task(store, task.id, "u1")


def test_assignable_tasks_split(store):
    mop = catalog.create_task(store, "m1", "Mop")
    sweep = catalog.create_task(store, "m1", "Sweep")
    assignments.assign_task(store, mop.id, "u1", "m1")

    split = assignments.assignable_tasks(store, "u1")

    assert [t.id for t in split["assigned"]] == [mop.id]
    assert [t.id for t in split["available"]] == [sweep.id]
