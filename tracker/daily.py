"""Employee task list for a day and the completion upsert behind it."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import BinaryIO, Dict, List, Optional, Union

from .assignments import assignments_for_user
from .catalog import TEMPLATE_CACHE, TaskTemplateCache
from .config import ASSIGNED_TASK_PAGE_SIZE, ASSIGNED_TASKS, daily_tasks_path
from .errors import NotFoundError
from .models import AssignedTask, AssignmentView, DailyTaskStatus
from .storage import task_photo_key
from .store import SERVER_TIMESTAMP

LOGGER = logging.getLogger(__name__)


def status_doc_id(assigned_task_id: str, day: str) -> str:
    return f"{assigned_task_id}_{day}"


def statuses_for_day(store, user_id: str, day: str) -> Dict[str, DailyTaskStatus]:
    """Map assignment id to that day's status record.

    Older data can hold more than one record per assignment and day; a
    completed one wins over a blank one.
    """
    statuses: Dict[str, DailyTaskStatus] = {}
    for snap in store.query(daily_tasks_path(user_id), [("date", "==", day)]):
        status = DailyTaskStatus.from_snapshot(snap)
        current = statuses.get(status.assigned_task_id)
        if current is None or (status.is_completed and not current.is_completed):
            statuses[status.assigned_task_id] = status
    return statuses


def join_assignments(store, assignments: List[AssignedTask], statuses: Dict[str, DailyTaskStatus],
                     cache: TaskTemplateCache) -> List[AssignmentView]:
    tasks = cache.get_many(store, [a.task_id for a in assignments])
    views: List[AssignmentView] = []
    for assignment in assignments:
        task = tasks.get(assignment.task_id)
        if task is None:
            LOGGER.warning("Assignment %s points at missing task %s; skipping", assignment.id, assignment.task_id)
            continue
        views.append(AssignmentView(task=task, status=statuses.get(assignment.id), assigned_task_id=assignment.id))
    return views


def load_employee_tasks(store, user_id: str, day: str, cache: Optional[TaskTemplateCache] = None,
                        limit: Optional[int] = ASSIGNED_TASK_PAGE_SIZE) -> List[AssignmentView]:
    """Return ``user_id``'s assigned tasks with their status for ``day``.

    Entries come back in the order the store returned the assignments.
    """
    if cache is None:
        cache = TEMPLATE_CACHE
    assignments = assignments_for_user(store, user_id, limit=limit)
    if not assignments:
        return []
    statuses = statuses_for_day(store, user_id, day)
    return join_assignments(store, assignments, statuses, cache)


def complete_assigned_task(store, blobs, user_id: str, assigned_task_id: str, day: str,
                           photo: Optional[Union[bytes, BinaryIO]] = None,
                           cache: Optional[TaskTemplateCache] = None) -> DailyTaskStatus:
    """Mark an assignment done for ``day``, uploading ``photo`` first if given.

    A failed upload raises before anything is written.
    """
    if cache is None:
        cache = TEMPLATE_CACHE
    snap = store.get(ASSIGNED_TASKS, assigned_task_id)
    if snap is None or snap.get("userId") != user_id:
        raise NotFoundError(f"Assigned task {assigned_task_id} not found")
    assignment = AssignedTask.from_snapshot(snap)
    task = cache.get_many(store, [assignment.task_id]).get(assignment.task_id)
    if task is None:
        raise NotFoundError(f"Task {assignment.task_id} not found")

    path = daily_tasks_path(user_id)
    existing = store.query(path, [("assignedTaskId", "==", assigned_task_id), ("date", "==", day)])
    existing_photo = existing[0].get("photoUrl") if existing else None
    if task.requires_photo and photo is None and not existing_photo:
        raise ValueError("A photo is required to complete this task")

    photo_url = None
    if photo is not None:
        photo_url = blobs.upload(task_photo_key(user_id, day, assigned_task_id), photo)

    if existing:
        doc_id = existing[0].id
        photo_url = photo_url or existing_photo
        store.update(path, doc_id, {
            "isCompleted": True,
            "completedAt": SERVER_TIMESTAMP,
            "photoUrl": photo_url,
        })
    else:
        doc_id = status_doc_id(assigned_task_id, day)
        store.set(path, doc_id, {
            "assignedTaskId": assigned_task_id,
            "userId": user_id,
            "date": day,
            "isCompleted": True,
            "completedAt": SERVER_TIMESTAMP,
            "photoUrl": photo_url,
        })
    LOGGER.info("User %s completed %s for %s", user_id, assigned_task_id, day)
    return DailyTaskStatus(
        id=doc_id,
        assigned_task_id=assigned_task_id,
        user_id=user_id,
        date=day,
        is_completed=True,
        completed_at=datetime.now(timezone.utc),
        photo_url=photo_url,
    )
