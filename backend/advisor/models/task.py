"""Tasks: the todo list, the audit trail of irreversible actions, and multi-step workflows."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class TaskStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    waiting_response = "waiting_response"


ACTIVE_STATUSES = (TaskStatus.pending, TaskStatus.in_progress, TaskStatus.waiting_response)


class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


PRIORITY_RANK = {TaskPriority.high: 0, TaskPriority.medium: 1, TaskPriority.low: 2}


class TaskKind(str, Enum):
    """Values of the ``type`` key in a task's metadata."""

    user_task = "user_task"
    multi_step_parent = "multi_step_parent"
    multi_step_child = "multi_step_child"
    send_email = "send_email"
    send_email_to_contact = "send_email_to_contact"
    create_hubspot_contact = "create_hubspot_contact"
    create_calendar_event = "create_calendar_event"
    delete_calendar_events = "delete_calendar_events"
    schedule_appointment = "schedule_appointment"
    schedule_appointment_failed = "schedule_appointment_failed"


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    title: str
    description: Optional[str] = None
    status: TaskStatus = Field(default=TaskStatus.pending, index=True)
    priority: TaskPriority = Field(default=TaskPriority.medium)
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    parent_task_id: Optional[int] = Field(default=None, foreign_key="task.id", index=True)
    step_order: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "metadata": self.meta or {},
            "parentTaskId": self.parent_task_id,
            "stepOrder": self.step_order,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
