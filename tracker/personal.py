from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import BinaryIO, List, Optional, Union

from .config import STATUS_COMPLETED, STATUS_PENDING, personal_tasks_path
from .errors import ConflictError, NotFoundError
from .models import PersonalTask
from .storage import personal_task_photo_key
from .store import SERVER_TIMESTAMP

LOGGER = logging.getLogger(__name__)


def list_personal_tasks(store, user_id: str) -> List[PersonalTask]:
    return [PersonalTask.from_snapshot(snap) for snap in store.query(personal_tasks_path(user_id))]


def get_personal_task(store, user_id: str, task_id: str) -> PersonalTask:
    snap = store.get(personal_tasks_path(user_id), task_id)
    if snap is None:
        raise NotFoundError(f"Personal task {task_id} not found")
    return PersonalTask.from_snapshot(snap)


def create_personal_task(store, user_id: str, title: str, instructions: Optional[str] = None,
                         requires_photo: bool = False, is_recurring: bool = False) -> PersonalTask:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValueError("Task title is required")
    data = {
        "title": cleaned,
        "instructions": (instructions or "").strip() or None,
        "requiresPhoto": bool(requires_photo),
        "isRecurring": bool(is_recurring),
        "createdBy": user_id,
        "createdAt": SERVER_TIMESTAMP,
        "status": STATUS_PENDING,
        "completedAt": None,
        "photoUrl": None,
    }
    doc_id = store.add(personal_tasks_path(user_id), data)
    return PersonalTask(
        id=doc_id,
        title=cleaned,
        instructions=data["instructions"],
        requires_photo=data["requiresPhoto"],
        is_recurring=data["isRecurring"],
        created_by=user_id,
        created_at=datetime.now(timezone.utc),
    )


def complete_personal_task(store, blobs, user_id: str, task_id: str, day: str,
                           photo: Optional[Union[bytes, BinaryIO]] = None) -> PersonalTask:
    task = get_personal_task(store, user_id, task_id)
    if task.is_completed:
        raise ConflictError("Task is already completed")
    if task.requires_photo and photo is None:
        raise ValueError("A photo is required to complete this task")
    photo_url = None
    if photo is not None:
        photo_url = blobs.upload(personal_task_photo_key(user_id, day, task_id), photo)
    store.update(personal_tasks_path(user_id), task_id, {
        "status": STATUS_COMPLETED,
        "completedAt": SERVER_TIMESTAMP,
        "photoUrl": photo_url,
    })
    LOGGER.info("User %s completed personal task %s", user_id, task_id)
    task.status = STATUS_COMPLETED
    task.completed_at = datetime.now(timezone.utc)
    task.photo_url = photo_url
    return task


def delete_personal_task(store, user_id: str, task_id: str) -> None:
    store.delete(personal_tasks_path(user_id), task_id)
