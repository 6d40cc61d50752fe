"""Read-only task views plus deletion. Tasks are created and advanced by the assistant."""

from fastapi import APIRouter, Depends

from advisor.api.deps import get_current_user, get_task_service
from advisor.models.task import TaskStatus
from advisor.models.user import User
from advisor.services.tasks import TaskService

router = APIRouter()


@router.get("/")
async def list_tasks(
    status: TaskStatus | None = None,
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return [t.to_dict() for t in await tasks.list_tasks(user.id, status)]


@router.get("/pending")
async def list_pending(
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return [t.to_dict() for t in await tasks.list_pending(user.id)]


@router.get("/overdue")
async def list_overdue(
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return [t.to_dict() for t in await tasks.list_overdue(user.id)]


@router.get("/waiting")
async def list_waiting(
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return [t.to_dict() for t in await tasks.list_waiting(user.id)]


@router.get("/stats")
async def task_stats(
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return await tasks.stats(user.id)


@router.get("/{task_id}")
async def get_task(
    task_id: int,
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    return (await tasks.get_task_with_steps(user.id, task_id)).to_dict()


@router.get("/{task_id}/steps")
async def get_task_steps(
    task_id: int,
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    found = await tasks.get_task_with_steps(user.id, task_id)
    return [s.to_dict() for s in found.steps]


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    user: User = Depends(get_current_user),
    tasks: TaskService = Depends(get_task_service),
):
    await tasks.delete_task(user.id, task_id)
    return {"status": "deleted"}
