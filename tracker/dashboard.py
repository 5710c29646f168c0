from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from .catalog import TEMPLATE_CACHE, TaskTemplateCache
from .config import DASHBOARD_WORKERS, ROLE_EMPLOYEE, USERS
from .daily import load_employee_tasks
from .models import EmployeeWithTasks, User

LOGGER = logging.getLogger(__name__)


def list_employees(store) -> List[User]:
    return [User.from_snapshot(snap) for snap in store.query(USERS, [("role", "==", ROLE_EMPLOYEE)])]


def load_dashboard(store, day: str, cache: Optional[TaskTemplateCache] = None,
                   is_alive: Optional[Callable[[], bool]] = None,
                   workers: int = DASHBOARD_WORKERS) -> Optional[List[EmployeeWithTasks]]:
    """Today's assignments and completion counts for every employee.

    Each employee's join runs concurrently; the result keeps the order in
    which employees were listed. Returns None when ``is_alive`` reports
    that the caller no longer wants the result.
    """
    if cache is None:
        cache = TEMPLATE_CACHE
    employees = list_employees(store)
    if not employees:
        return []

    def _load(employee: User) -> EmployeeWithTasks:
        tasks = load_employee_tasks(store, employee.uid, day, cache=cache, limit=None)
        return EmployeeWithTasks(user=employee, assigned_tasks=tasks)

    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(employees)))) as pool:
        results = list(pool.map(_load, employees))

    if is_alive is not None and not is_alive():
        LOGGER.info("Discarding dashboard results for %s; caller went away", day)
        return None
    return results
