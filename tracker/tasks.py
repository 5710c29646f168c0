from __future__ import annotations

import logging

from celery import shared_task

from .reset import reset_target_date, run_reset
from .store import default_store

LOGGER = logging.getLogger(__name__)


@shared_task(name="tracker.tasks.reset_daily_tasks")
def reset_daily_tasks() -> str:
    """Prepare tomorrow's blank status records and reopen recurring personal tasks."""
    target = reset_target_date(scheduled=True)
    summary = run_reset(default_store(), target)
    if not summary.ok:
        LOGGER.error("Daily reset for %s finished with failed batches: %s",
                     target.isoformat(), ", ".join(summary.failed_batches))
    return summary.describe()
