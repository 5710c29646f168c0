"""Task templates managed by managers, plus the process-wide template cache."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .config import IN_QUERY_LIMIT, TASKS
from .errors import NotFoundError
from .models import Task
from .store import DOCUMENT_ID, SERVER_TIMESTAMP

LOGGER = logging.getLogger(__name__)


def chunked(items: Sequence[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class TaskTemplateCache:
    """Read-through cache of task templates keyed by id.

    Templates are only written through this module, and every write
    invalidates the affected entry.
    """

    def __init__(self, chunk_size: int = IN_QUERY_LIMIT):
        self.chunk_size = chunk_size
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def put(self, task: Task) -> None:
        with self._lock:
            self._tasks[task.id] = task

    def invalidate(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)

    def clear(self) -> None:
        with self._lock:
            self._tasks.clear()

    def get_many(self, store, task_ids: Iterable[str]) -> Dict[str, Task]:
        """Resolve ``task_ids``, fetching uncached ones in chunks of ``chunk_size``.

        Ids that no longer resolve are simply absent from the result.
        """
        wanted = [tid for tid in dict.fromkeys(task_ids) if tid]
        missing = [tid for tid in wanted if tid not in self._tasks]
        for chunk in chunked(missing, self.chunk_size):
            for snap in store.query(TASKS, [(DOCUMENT_ID, "in", chunk)]):
                self.put(Task.from_snapshot(snap))
        return {tid: self._tasks[tid] for tid in wanted if tid in self._tasks}


TEMPLATE_CACHE = TaskTemplateCache()


def _clean_title(title: Optional[str]) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValueError("Task title is required")
    return cleaned


def list_tasks(store) -> List[Task]:
    return [Task.from_snapshot(snap) for snap in store.query(TASKS)]


def get_task(store, task_id: str) -> Task:
    snap = store.get(TASKS, task_id)
    if snap is None:
        raise NotFoundError(f"Task {task_id} not found")
    return Task.from_snapshot(snap)


def create_task(store, created_by: str, title: str, instructions: Optional[str] = None,
                requires_photo: bool = False) -> Task:
    """Add a template. The result is built from what was written, so it is
    valid even when the write is still queued."""
    task = Task(
        id="",
        title=_clean_title(title),
        instructions=(instructions or "").strip() or None,
        requires_photo=bool(requires_photo),
        created_by=created_by,
        created_at=datetime.now(timezone.utc),
    )
    task.id = store.add(TASKS, {
        "title": task.title,
        "instructions": task.instructions,
        "requiresPhoto": task.requires_photo,
        "createdBy": created_by,
        "createdAt": SERVER_TIMESTAMP,
    })
    LOGGER.info("Task template %s created by %s", task.id, created_by)
    return task


def update_task(store, task_id: str, title: str, instructions: Optional[str] = None,
                requires_photo: bool = False, cache: Optional[TaskTemplateCache] = None) -> Task:
    if cache is None:
        cache = TEMPLATE_CACHE
    task = get_task(store, task_id)
    task.title = _clean_title(title)
    task.instructions = (instructions or "").strip() or None
    task.requires_photo = bool(requires_photo)
    store.update(TASKS, task_id, {
        "title": task.title,
        "instructions": task.instructions,
        "requiresPhoto": task.requires_photo,
    })
    cache.invalidate(task_id)
    return task


def delete_task(store, task_id: str, cache: Optional[TaskTemplateCache] = None) -> None:
    """Delete a template. Assignments and history that point at it are left alone."""
    if cache is None:
        cache = TEMPLATE_CACHE
    store.delete(TASKS, task_id)
    cache.invalidate(task_id)
    LOGGER.info("Task template %s deleted", task_id)
