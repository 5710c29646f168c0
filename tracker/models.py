from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .config import DEFAULT_ROLE, ROLES, STATUS_COMPLETED, STATUS_PENDING
from .store import DocumentSnapshot


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def normalize_role(value: Any) -> str:
    """Unknown or missing roles always fall back to the least privileged one."""
    role = str(value or "").strip().lower()
    return role if role in ROLES else DEFAULT_ROLE


@dataclass(slots=True)
class User:
    uid: str
    email: str = ""
    display_name: str = ""
    role: str = DEFAULT_ROLE
    created_at: Optional[datetime] = None

    @property
    def is_manager(self) -> bool:
        return self.role == "manager"

    @classmethod
    def from_snapshot(cls, snap: DocumentSnapshot) -> "User":
        return cls(
            uid=snap.id,
            email=snap.get("email") or "",
            display_name=snap.get("displayName") or "",
            role=normalize_role(snap.get("role")),
            created_at=parse_timestamp(snap.get("createdAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
            "createdAt": format_timestamp(self.created_at),
        }


@dataclass(slots=True)
class Task:
    """Reusable task template defined by a manager."""

    id: str
    title: str
    instructions: Optional[str] = None
    requires_photo: bool = False
    created_by: str = ""
    created_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snap: DocumentSnapshot) -> "Task":
        return cls(
            id=snap.id,
            title=snap.get("title") or "",
            instructions=snap.get("instructions") or None,
            requires_photo=bool(snap.get("requiresPhoto")),
            created_by=snap.get("createdBy") or "unknown",
            created_at=parse_timestamp(snap.get("createdAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "instructions": self.instructions,
            "requiresPhoto": self.requires_photo,
            "createdBy": self.created_by,
            "createdAt": format_timestamp(self.created_at),
        }


@dataclass(slots=True)
class AssignedTask:
    id: str
    task_id: str
    user_id: str
    assigned_by: str = ""
    assigned_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snap: DocumentSnapshot) -> "AssignedTask":
        return cls(
            id=snap.id,
            task_id=snap.get("taskId") or "",
            user_id=snap.get("userId") or "",
            assigned_by=snap.get("assignedBy") or "",
            assigned_at=parse_timestamp(snap.get("assignedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "userId": self.user_id,
            "assignedBy": self.assigned_by,
            "assignedAt": format_timestamp(self.assigned_at),
        }


@dataclass(slots=True)
class DailyTaskStatus:
    """One day's completion record for one assignment."""

    id: str
    assigned_task_id: str
    user_id: str
    date: str
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    photo_url: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snap: DocumentSnapshot) -> "DailyTaskStatus":
        return cls(
            id=snap.id,
            assigned_task_id=snap.get("assignedTaskId") or "",
            user_id=snap.get("userId") or "",
            date=snap.get("date") or "",
            is_completed=bool(snap.get("isCompleted")),
            completed_at=parse_timestamp(snap.get("completedAt")),
            photo_url=snap.get("photoUrl") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assignedTaskId": self.assigned_task_id,
            "userId": self.user_id,
            "date": self.date,
            "isCompleted": self.is_completed,
            "completedAt": format_timestamp(self.completed_at),
            "photoUrl": self.photo_url,
        }


@dataclass(slots=True)
class PersonalTask:
    id: str
    title: str
    instructions: Optional[str] = None
    requires_photo: bool = False
    is_recurring: bool = False
    created_by: str = ""
    created_at: Optional[datetime] = None
    status: str = STATUS_PENDING
    completed_at: Optional[datetime] = None
    photo_url: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @classmethod
    def from_snapshot(cls, snap: DocumentSnapshot) -> "PersonalTask":
        status = snap.get("status")
        return cls(
            id=snap.id,
            title=snap.get("title") or "",
            instructions=snap.get("instructions") or None,
            requires_photo=bool(snap.get("requiresPhoto")),
            is_recurring=bool(snap.get("isRecurring")),
            created_by=snap.get("createdBy") or "",
            created_at=parse_timestamp(snap.get("createdAt")),
            status=status if status in (STATUS_PENDING, STATUS_COMPLETED) else STATUS_PENDING,
            completed_at=parse_timestamp(snap.get("completedAt")),
            photo_url=snap.get("photoUrl") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "instructions": self.instructions,
            "requiresPhoto": self.requires_photo,
            "isRecurring": self.is_recurring,
            "createdBy": self.created_by,
            "createdAt": format_timestamp(self.created_at),
            "status": self.status,
            "completedAt": format_timestamp(self.completed_at),
            "photoUrl": self.photo_url,
        }


# ------------------------------- Derived views -------------------------------
@dataclass(slots=True)
class AssignmentView:
    """A task as it appears in an employee's list for one day."""

    task: Task
    status: Optional[DailyTaskStatus]
    assigned_task_id: str

    @property
    def is_completed(self) -> bool:
        return bool(self.status and self.status.is_completed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "status": self.status.to_dict() if self.status else None,
            "assignedTaskId": self.assigned_task_id,
        }


@dataclass(slots=True)
class EmployeeWithTasks:
    user: User
    assigned_tasks: List[AssignmentView] = field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.assigned_tasks if item.is_completed)

    @property
    def total_count(self) -> int:
        return len(self.assigned_tasks)

    @property
    def completion_percentage(self) -> int:
        if not self.total_count:
            return 0
        return round(self.completed_count / self.total_count * 100)

    def summary(self) -> str:
        return f"{self.completed_count} of {self.total_count} completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.user.uid,
            "displayName": self.user.display_name,
            "email": self.user.email,
            "assignedTasks": [item.to_dict() for item in self.assigned_tasks],
            "completed": self.completed_count,
            "total": self.total_count,
            "completionPercentage": self.completion_percentage,
            "summary": self.summary(),
        }


@dataclass(slots=True)
class TaskHistoryItem:
    id: str
    task: Task
    date: str
    completed_at: datetime
    assigned_task_id: str
    photo_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task": self.task.to_dict(),
            "date": self.date,
            "completedAt": format_timestamp(self.completed_at),
            "photoUrl": self.photo_url,
            "assignedTaskId": self.assigned_task_id,
        }


@dataclass(slots=True)
class HistoryDay:
    date: str
    display_date: str
    tasks: List[TaskHistoryItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "displayDate": self.display_date,
            "tasks": [item.to_dict() for item in self.tasks],
        }


@dataclass(slots=True)
class GroupedTaskHistory:
    month: str
    days: List[HistoryDay] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"month": self.month, "days": [day.to_dict() for day in self.days]}


@dataclass(slots=True)
class CalendarData:
    date: str
    count: int
    level: int

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "count": self.count, "level": self.level}


@dataclass(slots=True)
class ResetSummary:
    target_date: date
    assigned_created: int = 0
    assigned_skipped: int = 0
    personal_reset: int = 0
    failed_batches: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_batches

    def describe(self) -> str:
        day = self.target_date.isoformat()
        if not self.assigned_created and not self.assigned_skipped:
            assigned = "No assigned tasks found to reset"
        else:
            assigned = f"Successfully reset {self.assigned_created} assigned tasks"
        text = f"{assigned} and {self.personal_reset} personal tasks for {day}"
        if self.assigned_skipped:
            text += f" ({self.assigned_skipped} already present)"
        if self.failed_batches:
            text += f"; {len(self.failed_batches)} batch(es) failed"
        return text
