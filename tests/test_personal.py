import pytest

from conftest import add_user
from tracker import personal
from tracker.config import personal_tasks_path
from tracker.errors import ConflictError, NotFoundError

DAY = "2025-03-01"


def test_completing_twice_is_rejected_and_keeps_photo(store, blobs):
    add_user(store, "u1")
    task = personal.create_personal_task(store, "u1", "Water plants", requires_photo=True)

    done = personal.complete_personal_task(store, blobs, "u1", task.id, DAY, photo=b"png")
    assert done.status == "completed"
    assert done.photo_url

    with pytest.raises(ConflictError):
        personal.complete_personal_task(store, blobs, "u1", task.id, DAY)
    with pytest.raises(ConflictError):
        personal.complete_personal_task(store, blobs, "u1", task.id, DAY, photo=b"other")

    snap = store.get(personal_tasks_path("u1"), task.id)
    assert snap.get("photoUrl") == done.photo_url


def test_photo_required_before_completion(store, blobs):
    task = personal.create_personal_task(store, "u1", "Receipt", requires_photo=True)
    with pytest.raises(ValueError):
        personal.complete_personal_task(store, blobs, "u1", task.id, DAY)
    assert personal.get_personal_task(store, "u1", task.id).status == "pending"


def test_unknown_personal_task(store, blobs):
    with pytest.raises(NotFoundError):
        personal.complete_personal_task(store, blobs, "u1", "missing", DAY)
