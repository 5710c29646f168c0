from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .catalog import list_tasks
from .config import ASSIGNED_TASKS, TASKS
from .errors import ConflictError, NotFoundError
from .models import AssignedTask, Task
from .store import SERVER_TIMESTAMP

LOGGER = logging.getLogger(__name__)


def assignments_for_user(store, user_id: str, limit: Optional[int] = None) -> List[AssignedTask]:
    snaps = store.query(ASSIGNED_TASKS, [("userId", "==", user_id)], limit=limit)
    return [AssignedTask.from_snapshot(snap) for snap in snaps]


def all_assignments(store) -> List[AssignedTask]:
    return [AssignedTask.from_snapshot(snap) for snap in store.query(ASSIGNED_TASKS)]


def find_assignment(store, task_id: str, user_id: str) -> Optional[AssignedTask]:
    snaps = store.query(ASSIGNED_TASKS, [("taskId", "==", task_id), ("userId", "==", user_id)], limit=1)
    return AssignedTask.from_snapshot(snaps[0]) if snaps else None


def assignment_doc_id(task_id: str, user_id: str) -> str:
    return f"{task_id}_{user_id}"


def assign_task(store, task_id: str, user_id: str, assigned_by: str) -> AssignedTask:
    """Bind a template to an employee unless that pair is already bound.

    New assignments live under a per-pair id, so a second create for the
    same pair fails in the store even when it was queued offline. The
    lookup still catches older assignments stored under random ids.
    """
    if store.get(TASKS, task_id) is None:
        raise NotFoundError(f"Task {task_id} not found")
    if find_assignment(store, task_id, user_id) is not None:
        raise ConflictError("Task is already assigned to this user")
    assignment = AssignedTask(
        id=assignment_doc_id(task_id, user_id),
        task_id=task_id,
        user_id=user_id,
        assigned_by=assigned_by,
        assigned_at=datetime.now(timezone.utc),
    )
    store.create(ASSIGNED_TASKS, assignment.id, {
        "taskId": task_id,
        "userId": user_id,
        "assignedBy": assigned_by,
        "assignedAt": SERVER_TIMESTAMP,
    })
    LOGGER.info("Assigned task %s to %s (%s)", task_id, user_id, assignment.id)
    return assignment


def unassign_task(store, task_id: str, user_id: str) -> AssignedTask:
    assignment = find_assignment(store, task_id, user_id)
    if assignment is None:
        raise NotFoundError("Task assignment not found")
    store.delete(ASSIGNED_TASKS, assignment.id)
    LOGGER.info("Unassigned task %s from %s", task_id, user_id)
    return assignment


def assignable_tasks(store, user_id: str) -> dict:
    """Split the catalog into templates assigned to ``user_id`` and the rest."""
    assigned_ids = {a.task_id for a in assignments_for_user(store, user_id)}
    assigned: List[Task] = []
    available: List[Task] = []
    for task in list_tasks(store):
        (assigned if task.id in assigned_ids else available).append(task)
    return {"assigned": assigned, "available": available}
