"""Tests for the task service and the multi-step workflow state machine."""

from datetime import timedelta

import pytest

from advisor.core.errors import TaskNotFoundError, WorkflowError
from advisor.models.task import TaskPriority, TaskStatus
from advisor.services.tasks import WorkflowStep
from tests.conftest import FIXED_NOW


def _steps():
    return [
        WorkflowStep(title="Send request", meta={"stepType": "send_email"}),
        WorkflowStep(title="Wait for reply", meta={"stepType": "wait_response"}),
        WorkflowStep(title="Book meeting", meta={"stepType": "create_meeting"}),
    ]


@pytest.mark.asyncio
async def test_create_multi_step_task(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps(), meta={"contactName": "Sara"})

    assert workflow.task.meta["type"] == "multi_step_parent"
    assert workflow.task.meta["totalSteps"] == 3
    assert workflow.task.meta["contactName"] == "Sara"
    assert [s.step_order for s in workflow.steps] == [1, 2, 3]
    assert all(s.parent_task_id == workflow.task.id for s in workflow.steps)
    assert all(s.meta["type"] == "multi_step_child" for s in workflow.steps)
    assert all(s.status == TaskStatus.pending for s in workflow.steps)


@pytest.mark.asyncio
async def test_create_multi_step_task_requires_steps(task_service, user_id):
    with pytest.raises(WorkflowError):
        await task_service.create_multi_step_task(user_id, "Empty", [])


@pytest.mark.asyncio
async def test_advance_first_step_keeps_parent_open(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps())
    step1, step2, step3 = workflow.steps

    result = await task_service.advance_to_next_step(user_id, step1.id)

    assert result.next_step.id == step2.id
    assert not result.workflow_completed
    current = await task_service.get_task_with_steps(user_id, workflow.task.id)
    assert [s.status for s in current.steps] == [
        TaskStatus.completed, TaskStatus.in_progress, TaskStatus.pending,
    ]
    assert current.task.status == TaskStatus.in_progress


@pytest.mark.asyncio
async def test_advance_last_step_completes_parent(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps())
    for step in workflow.steps:
        result = await task_service.advance_to_next_step(user_id, step.id)

    assert result.workflow_completed
    assert result.parent.status == TaskStatus.completed
    assert result.parent.completed_at is not None
    assert "All steps completed" in result.message


@pytest.mark.asyncio
async def test_advance_requires_workflow_child(task_service, user_id):
    task = await task_service.create_task(user_id, "Standalone")
    with pytest.raises(WorkflowError):
        await task_service.advance_to_next_step(user_id, task.id)


@pytest.mark.asyncio
async def test_resume_requires_waiting_status(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps())
    step = workflow.steps[1]

    with pytest.raises(WorkflowError):
        await task_service.resume_waiting_task(user_id, step.id, {"responseType": "accepted"})

    unchanged = await task_service.get_task(user_id, step.id)
    assert unchanged.status == TaskStatus.pending
    assert "responseData" not in unchanged.meta


@pytest.mark.asyncio
async def test_wait_and_resume(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps())
    step1, step2, _ = workflow.steps
    await task_service.advance_to_next_step(user_id, step1.id)
    await task_service.mark_waiting(user_id, step2.id, {"availableSlots": []})

    resumed = await task_service.resume_waiting_task(user_id, step2.id, {"responseType": "accepted"})

    assert resumed.status == TaskStatus.in_progress
    assert resumed.meta["responseReceived"] is True
    assert resumed.meta["responseData"] == {"responseType": "accepted"}
    assert resumed.meta["availableSlots"] == []
    assert resumed.meta["stepType"] == "wait_response"


@pytest.mark.asyncio
async def test_completed_task_cannot_reopen(task_service, user_id):
    task = await task_service.create_task(user_id, "Done", status=TaskStatus.completed)
    with pytest.raises(WorkflowError):
        await task_service.transition(user_id, task.id, TaskStatus.in_progress)


@pytest.mark.asyncio
async def test_close_workflow_skips_remaining_steps(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps())
    await task_service.advance_to_next_step(user_id, workflow.steps[0].id)

    parent = await task_service.close_workflow(user_id, workflow.task.id, {"declined": True})

    assert parent.status == TaskStatus.completed
    assert parent.meta["declined"] is True
    steps = (await task_service.get_task_with_steps(user_id, workflow.task.id)).steps
    assert all(s.status == TaskStatus.completed for s in steps)
    assert "skipped" not in steps[0].meta
    assert steps[1].meta["skipped"] is True
    assert steps[2].meta["skipped"] is True


@pytest.mark.asyncio
async def test_tasks_are_scoped_to_user(task_service, user_id):
    from tests.conftest import seed_user

    other = seed_user(email="other@firm.com")
    task = await task_service.create_task(user_id, "Mine")
    with pytest.raises(TaskNotFoundError):
        await task_service.get_task(other, task.id)


@pytest.mark.asyncio
async def test_list_ordering_and_overdue(task_service, user_id):
    await task_service.create_task(user_id, "Low", priority=TaskPriority.low)
    late = await task_service.create_task(
        user_id, "Late", priority=TaskPriority.medium, due_date=FIXED_NOW - timedelta(days=1)
    )
    await task_service.create_task(user_id, "Urgent", priority=TaskPriority.high)
    await task_service.create_task(
        user_id, "Finished", due_date=FIXED_NOW - timedelta(days=2), status=TaskStatus.completed
    )

    titles = [t.title for t in await task_service.list_pending(user_id)]
    assert titles == ["Urgent", "Late", "Low"]

    overdue = await task_service.list_overdue(user_id, now=FIXED_NOW)
    assert [t.id for t in overdue] == [late.id]


@pytest.mark.asyncio
async def test_stats(task_service, user_id):
    await task_service.create_task(user_id, "Open", due_date=FIXED_NOW - timedelta(hours=1))
    await task_service.create_task(user_id, "Done", status=TaskStatus.completed)

    stats = await task_service.stats(user_id, now=FIXED_NOW)

    assert stats == {"total": 2, "completed": 1, "pending": 1, "overdue": 1, "completionRate": 50.0}


@pytest.mark.asyncio
async def test_delete_parent_removes_steps(task_service, user_id):
    workflow = await task_service.create_multi_step_task(user_id, "Schedule", _steps())
    await task_service.delete_task(user_id, workflow.task.id)

    assert await task_service.list_tasks(user_id) == []
