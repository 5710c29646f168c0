"""Celery application factory for the nightly task reset."""
from __future__ import annotations

import os
from celery import Celery
from celery.schedules import crontab

from tracker.config import RESET_HOUR, RESET_MINUTE, RESET_TIMEZONE

BROKER_URL = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
BACKEND_URL = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)


def create_celery_app() -> Celery:
    """Create the Celery app; beat fires the reset at 23:59 in the reset timezone."""
    celery_app = Celery(
        "daily_task_tracker",
        broker=BROKER_URL,
        backend=BACKEND_URL,
        include=["tracker.tasks"],
    )

    celery_app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone=RESET_TIMEZONE,
        enable_utc=True,
        beat_schedule={
            "reset-daily-tasks": {
                "task": "tracker.tasks.reset_daily_tasks",
                "schedule": crontab(hour=RESET_HOUR, minute=RESET_MINUTE),
            },
        },
    )

    return celery_app


celery_app = create_celery_app()
