"""Shared configuration defaults for the task tracker."""
from __future__ import annotations

import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.environ.get("DATA_DIR", BASE_DIR)

DATABASE_URL = (
    os.getenv("DATABASE_URL")
    or os.getenv("SQLALCHEMY_DATABASE_URI")
    or f"sqlite:///{os.path.join(DATA_DIR, 'tracker.db')}"
)
UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(DATA_DIR, "uploads"))
OFFLINE_QUEUE_FILE = os.getenv("OFFLINE_QUEUE_FILE", os.path.join(DATA_DIR, "offline_writes.json"))

RESET_TIMEZONE = os.getenv("RESET_TIMEZONE", "America/Chicago")
RESET_HOUR = 23
RESET_MINUTE = 59
RESET_TRIGGER_TOKEN = os.getenv("RESET_TRIGGER_TOKEN", "")

ASSIGNED_TASK_PAGE_SIZE = int(os.getenv("ASSIGNED_TASK_PAGE_SIZE", "20"))
IN_QUERY_LIMIT = int(os.getenv("IN_QUERY_LIMIT", "10"))
HISTORY_MONTHS = int(os.getenv("HISTORY_MONTHS", "3"))
CALENDAR_MONTHS = int(os.getenv("CALENDAR_MONTHS", "6"))
DASHBOARD_WORKERS = int(os.getenv("DASHBOARD_WORKERS", "8"))

MAX_RECONNECT_DELAY = float(os.getenv("MAX_RECONNECT_DELAY", "30"))
OFFLINE_READ_CACHE_SIZE = int(os.getenv("OFFLINE_READ_CACHE_SIZE", "512"))
MAX_PHOTO_BYTES = int(os.getenv("MAX_PHOTO_BYTES", str(5 * 1024 * 1024)))
ALLOWED_PHOTO_EXTS = {"png", "jpg", "jpeg", "gif"}

ROLE_MANAGER = "manager"
ROLE_EMPLOYEE = "employee"
ROLES = (ROLE_MANAGER, ROLE_EMPLOYEE)
DEFAULT_ROLE = ROLE_EMPLOYEE

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"

SNAPSHOT_SESSION_KEY = "auth"

USERS = "users"
TASKS = "tasks"
ASSIGNED_TASKS = "assignedTasks"
CREDENTIALS = "credentials"


def daily_tasks_path(user_id: str) -> str:
    return f"{USERS}/{user_id}/dailyTasks"


def personal_tasks_path(user_id: str) -> str:
    return f"{USERS}/{user_id}/personalTasks"
