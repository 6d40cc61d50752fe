"""Task store and the multi-step workflow state machine.

All task creation and status changes go through ``TaskService``. The HTTP layer
only reads and deletes tasks.

Status transitions::

    pending ──────────► in_progress ──────► completed
       │                 │      ▲               ▲
       │                 ▼      │               │
       │            waiting_response ───────────┘
       └────────────────────────────────────────┘

A workflow is a parent task (``type: multi_step_parent``) with ordered child
steps (``type: multi_step_child``, ``step_order`` 1..N). ``advance_to_next_step``
is the only way to move a workflow forward.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from advisor.core.errors import TaskNotFoundError, WorkflowError
from advisor.core.timeutil import as_utc, utcnow
from advisor.models.task import (
    ACTIVE_STATUSES,
    PRIORITY_RANK,
    Task,
    TaskKind,
    TaskPriority,
    TaskStatus,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.pending: frozenset({TaskStatus.in_progress, TaskStatus.completed}),
    TaskStatus.in_progress: frozenset(
        {TaskStatus.waiting_response, TaskStatus.completed, TaskStatus.pending}
    ),
    TaskStatus.waiting_response: frozenset({TaskStatus.in_progress, TaskStatus.completed}),
    TaskStatus.completed: frozenset(),
}


@dataclass
class WorkflowStep:
    title: str
    description: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskWithSteps:
    task: Task
    steps: list[Task]
    parent: Task | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.task.to_dict()
        data["subTasks"] = [s.to_dict() for s in self.steps]
        data["parentTask"] = self.parent.to_dict() if self.parent else None
        return data


@dataclass
class AdvanceResult:
    completed_step: Task
    next_step: Task | None
    parent: Task
    message: str

    @property
    def workflow_completed(self) -> bool:
        return self.next_step is None


def _sort_key(task: Task):
    due = as_utc(task.due_date)
    return (
        PRIORITY_RANK.get(task.priority, 1),
        due is None,
        due.timestamp() if due else 0,
        -(as_utc(task.created_at).timestamp()),
    )


class TaskService:
    def __init__(self, engine: Engine):
        self.engine = engine

    # --- internal helpers ---

    def _get(self, session: Session, user_id: int, task_id: int) -> Task:
        task = session.exec(
            select(Task).where(Task.id == task_id, Task.user_id == user_id)
        ).first()
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    def _apply(self, task: Task, status: TaskStatus) -> None:
        if status == task.status:
            return
        if status not in TRANSITIONS[task.status]:
            raise WorkflowError(
                f"Invalid transition for task {task.id}: {task.status.value} -> {status.value}"
            )
        task.status = status
        now = utcnow()
        if status == TaskStatus.completed:
            task.completed_at = now
        task.updated_at = now

    @staticmethod
    def _merge_meta(task: Task, updates: dict[str, Any] | None) -> None:
        if updates:
            # Reassign so the JSON column is flagged dirty
            task.meta = {**(task.meta or {}), **updates}
            task.updated_at = utcnow()

    def _steps(self, session: Session, parent_id: int) -> list[Task]:
        return list(
            session.exec(
                select(Task).where(Task.parent_task_id == parent_id).order_by(Task.step_order)  # type: ignore
            ).all()
        )

    # --- creation ---

    async def create_task(
        self,
        user_id: int,
        title: str,
        description: str | None = None,
        priority: TaskPriority | str = TaskPriority.medium,
        due_date: datetime | None = None,
        meta: dict[str, Any] | None = None,
        parent_task_id: int | None = None,
        step_order: int | None = None,
        status: TaskStatus = TaskStatus.pending,
    ) -> Task:
        task = Task(
            user_id=user_id,
            title=title,
            description=description,
            priority=TaskPriority(priority or TaskPriority.medium),
            due_date=as_utc(due_date),
            meta=dict(meta or {}),
            parent_task_id=parent_task_id,
            step_order=step_order,
            status=status,
        )
        if status == TaskStatus.completed:
            task.completed_at = utcnow()
        with Session(self.engine) as session:
            session.add(task)
            session.commit()
            session.refresh(task)
        logger.debug(f"Created task {task.id} '{title}' ({status.value})")
        return task

    async def create_multi_step_task(
        self,
        user_id: int,
        title: str,
        steps: list[WorkflowStep],
        description: str | None = None,
        priority: TaskPriority | str = TaskPriority.medium,
        meta: dict[str, Any] | None = None,
    ) -> TaskWithSteps:
        if not steps:
            raise WorkflowError("A multi-step task needs at least one step")

        with Session(self.engine) as session:
            parent = Task(
                user_id=user_id,
                title=title,
                description=description,
                priority=TaskPriority(priority),
                meta={
                    **(meta or {}),
                    "type": TaskKind.multi_step_parent.value,
                    "totalSteps": len(steps),
                },
            )
            session.add(parent)
            session.flush()

            children = []
            for order, step in enumerate(steps, start=1):
                child = Task(
                    user_id=user_id,
                    title=step.title,
                    description=step.description,
                    priority=TaskPriority(priority),
                    parent_task_id=parent.id,
                    step_order=order,
                    meta={**step.meta, "type": TaskKind.multi_step_child.value},
                )
                session.add(child)
                children.append(child)

            session.commit()
            session.refresh(parent)
            for child in children:
                session.refresh(child)

        logger.info(f"Created workflow {parent.id} '{title}' with {len(children)} steps")
        return TaskWithSteps(task=parent, steps=children)

    # --- reads ---

    async def get_task(self, user_id: int, task_id: int) -> Task:
        with Session(self.engine) as session:
            return self._get(session, user_id, task_id)

    async def get_task_with_steps(self, user_id: int, task_id: int) -> TaskWithSteps:
        with Session(self.engine) as session:
            task = self._get(session, user_id, task_id)
            steps = self._steps(session, task.id)
            parent = (
                self._get(session, user_id, task.parent_task_id)
                if task.parent_task_id is not None
                else None
            )
            return TaskWithSteps(task=task, steps=steps, parent=parent)

    async def list_tasks(self, user_id: int, status: TaskStatus | str | None = None) -> list[Task]:
        with Session(self.engine) as session:
            query = select(Task).where(Task.user_id == user_id)
            if status:
                query = query.where(Task.status == TaskStatus(status))
            tasks = list(session.exec(query).all())
        return sorted(tasks, key=_sort_key)

    async def list_pending(self, user_id: int) -> list[Task]:
        with Session(self.engine) as session:
            tasks = list(
                session.exec(
                    select(Task).where(
                        Task.user_id == user_id,
                        Task.status.in_(ACTIVE_STATUSES),  # type: ignore
                    )
                ).all()
            )
        return sorted(tasks, key=_sort_key)

    async def list_overdue(self, user_id: int, now: datetime | None = None) -> list[Task]:
        now = as_utc(now) or utcnow()
        tasks = [
            t for t in await self.list_pending(user_id)
            if t.due_date is not None and as_utc(t.due_date) < now
        ]
        return sorted(tasks, key=lambda t: (as_utc(t.due_date), PRIORITY_RANK.get(t.priority, 1)))

    async def list_waiting(self, user_id: int) -> list[Task]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(Task)
                    .where(Task.user_id == user_id, Task.status == TaskStatus.waiting_response)
                    .order_by(Task.created_at.desc())  # type: ignore
                ).all()
            )

    async def stats(self, user_id: int, now: datetime | None = None) -> dict[str, Any]:
        with Session(self.engine) as session:
            tasks = list(session.exec(select(Task).where(Task.user_id == user_id)).all())

        now = as_utc(now) or utcnow()
        total = len(tasks)
        completed = sum(1 for t in tasks if t.status == TaskStatus.completed)
        active = [t for t in tasks if t.status in ACTIVE_STATUSES]
        overdue = sum(1 for t in active if t.due_date is not None and as_utc(t.due_date) < now)
        return {
            "total": total,
            "completed": completed,
            "pending": len(active),
            "overdue": overdue,
            "completionRate": (completed / total) * 100 if total > 0 else 0,
        }

    # --- mutations ---

    async def delete_task(self, user_id: int, task_id: int) -> None:
        with Session(self.engine) as session:
            task = self._get(session, user_id, task_id)
            for step in self._steps(session, task.id):
                session.delete(step)
            # Children go first; the parent FK is enforced
            session.flush()
            session.delete(task)
            session.commit()
        logger.debug(f"Deleted task {task_id}")

    async def transition(
        self,
        user_id: int,
        task_id: int,
        status: TaskStatus,
        meta_updates: dict[str, Any] | None = None,
    ) -> Task:
        with Session(self.engine) as session:
            task = self._get(session, user_id, task_id)
            self._apply(task, status)
            self._merge_meta(task, meta_updates)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    async def update_meta(self, user_id: int, task_id: int, updates: dict[str, Any]) -> Task:
        with Session(self.engine) as session:
            task = self._get(session, user_id, task_id)
            self._merge_meta(task, updates)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    async def mark_waiting(
        self, user_id: int, task_id: int, meta_updates: dict[str, Any] | None = None
    ) -> Task:
        """Pause an in-progress task until an external actor replies."""
        return await self.transition(user_id, task_id, TaskStatus.waiting_response, meta_updates)

    async def advance_to_next_step(self, user_id: int, task_id: int) -> AdvanceResult:
        """Complete a workflow step and promote the next pending one.

        When no pending step follows, the parent workflow is completed.
        """
        with Session(self.engine) as session:
            task = self._get(session, user_id, task_id)
            if task.parent_task_id is None:
                raise WorkflowError("Task is not part of a multi-step workflow")

            self._apply(task, TaskStatus.completed)
            session.add(task)

            parent = self._get(session, user_id, task.parent_task_id)
            next_step = session.exec(
                select(Task).where(
                    Task.parent_task_id == parent.id,
                    Task.step_order == (task.step_order or 0) + 1,
                    Task.status == TaskStatus.pending,
                )
            ).first()

            if next_step:
                self._apply(next_step, TaskStatus.in_progress)
                session.add(next_step)
                if parent.status == TaskStatus.pending:
                    self._apply(parent, TaskStatus.in_progress)
                message = f"Advanced to step {next_step.step_order}: {next_step.title}"
            else:
                self._apply(parent, TaskStatus.completed)
                message = "All steps completed! Multi-step task is now complete."
            session.add(parent)

            session.commit()
            session.refresh(task)
            session.refresh(parent)
            if next_step:
                session.refresh(next_step)

        logger.info(f"Workflow {parent.id}: {message}")
        return AdvanceResult(completed_step=task, next_step=next_step, parent=parent, message=message)

    async def resume_waiting_task(
        self, user_id: int, task_id: int, response_data: dict[str, Any]
    ) -> Task:
        with Session(self.engine) as session:
            task = self._get(session, user_id, task_id)
            if task.status != TaskStatus.waiting_response:
                raise WorkflowError(
                    f"Task {task_id} is not in waiting_response status ({task.status.value})"
                )
            self._apply(task, TaskStatus.in_progress)
            self._merge_meta(
                task,
                {
                    "responseReceived": True,
                    "responseData": response_data,
                    "responseTimestamp": utcnow().isoformat(),
                },
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    async def close_workflow(
        self, user_id: int, parent_id: int, meta_updates: dict[str, Any] | None = None
    ) -> Task:
        """Complete a workflow early; unfinished steps are completed and flagged as skipped."""
        with Session(self.engine) as session:
            parent = self._get(session, user_id, parent_id)
            for step in self._steps(session, parent.id):
                if step.status != TaskStatus.completed:
                    self._apply(step, TaskStatus.completed)
                    self._merge_meta(step, {"skipped": True})
                    session.add(step)
            self._apply(parent, TaskStatus.completed)
            self._merge_meta(parent, meta_updates)
            session.add(parent)
            session.commit()
            session.refresh(parent)
            return parent
