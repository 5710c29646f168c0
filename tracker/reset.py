"""Nightly reset: blank status records for the next day, recurring personal tasks back to pending."""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Optional, Set
from zoneinfo import ZoneInfo

from .assignments import all_assignments
from .config import (
    RESET_TIMEZONE,
    STATUS_COMPLETED,
    STATUS_PENDING,
    USERS,
    daily_tasks_path,
    personal_tasks_path,
)
from .daily import status_doc_id
from .errors import TrackerError
from .models import ResetSummary

LOGGER = logging.getLogger(__name__)


def reset_target_date(scheduled: bool = True, now: Optional[datetime] = None, tz: str = RESET_TIMEZONE) -> date:
    """Tomorrow for the scheduled run, today for a manual one, in the reset timezone."""
    now = now.astimezone(ZoneInfo(tz)) if now else datetime.now(ZoneInfo(tz))
    today = now.date()
    return today + timedelta(days=1) if scheduled else today


def _existing_status_ids(store, user_ids: Set[str], day: str) -> Dict[str, Set[str]]:
    existing: Dict[str, Set[str]] = {}
    for user_id in user_ids:
        snaps = store.query(daily_tasks_path(user_id), [("date", "==", day)])
        existing[user_id] = {snap.get("assignedTaskId") for snap in snaps}
    return existing


def reset_assigned_tasks(store, target: date, summary: ResetSummary) -> None:
    day = target.isoformat()
    try:
        assignments = all_assignments(store)
        if not assignments:
            LOGGER.info("No assigned tasks found to reset.")
            return
        by_user = defaultdict(list)
        for assignment in assignments:
            if not assignment.user_id:
                LOGGER.warning("Assigned task %s has no userId; skipping", assignment.id)
                continue
            by_user[assignment.user_id].append(assignment)
        existing = _existing_status_ids(store, set(by_user), day)

        skipped = 0
        with store.batch() as batch:
            for user_id, user_assignments in by_user.items():
                for assignment in user_assignments:
                    if assignment.id in existing.get(user_id, set()):
                        skipped += 1
                        continue
                    batch.create(daily_tasks_path(user_id), status_doc_id(assignment.id, day), {
                        "assignedTaskId": assignment.id,
                        "userId": user_id,
                        "date": day,
                        "isCompleted": False,
                    })
            created = len(batch)
    except TrackerError:
        LOGGER.exception("Failed to reset assigned tasks for %s", day)
        summary.failed_batches.append("assignedTasks")
        return
    summary.assigned_created = created
    summary.assigned_skipped = skipped
    LOGGER.info("Successfully reset %d assigned tasks for %s (%d already present)", created, day, skipped)


def reset_personal_tasks(store, summary: ResetSummary) -> None:
    try:
        users = store.query(USERS)
    except TrackerError:
        LOGGER.exception("Failed to list users for personal task reset")
        summary.failed_batches.append("users")
        return

    for user in users:
        path = personal_tasks_path(user.id)
        try:
            snaps = store.query(path, [("isRecurring", "==", True), ("status", "==", STATUS_COMPLETED)])
            if not snaps:
                continue
            with store.batch() as batch:
                for snap in snaps:
                    batch.update(path, snap.id, {
                        "status": STATUS_PENDING,
                        "completedAt": None,
                        "photoUrl": None,
                    })
        except TrackerError:
            LOGGER.exception("Failed to reset recurring personal tasks for user %s", user.id)
            summary.failed_batches.append(f"personalTasks:{user.id}")
            continue
        summary.personal_reset += len(snaps)
        LOGGER.info("Reset %d recurring personal tasks for user %s", len(snaps), user.id)


def run_reset(store, target: date) -> ResetSummary:
    """Run both reset phases for ``target``. Each batch succeeds or fails on its own."""
    LOGGER.info("Preparing task reset for %s", target.isoformat())
    summary = ResetSummary(target_date=target)
    reset_assigned_tasks(store, target, summary)
    reset_personal_tasks(store, summary)
    LOGGER.info("%s", summary.describe())
    return summary
