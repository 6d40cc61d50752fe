"""Tests for the task endpoints."""

from datetime import datetime, timedelta, timezone

from advisor.models.task import Task, TaskPriority, TaskStatus
from tests.conftest import seed, seed_user


def _headers(user_id):
    return {"X-User-Id": str(user_id)}


def _seed_tasks(user_id):
    now = datetime.now(timezone.utc)
    return seed(
        Task(user_id=user_id, title="Low chore", priority=TaskPriority.low),
        Task(user_id=user_id, title="Overdue call", priority=TaskPriority.high, due_date=now - timedelta(days=1)),
        Task(user_id=user_id, title="Waiting on Sara", status=TaskStatus.waiting_response),
        Task(user_id=user_id, title="Sent email", status=TaskStatus.completed),
    )


def test_list_tasks_sorted_by_priority(client, user_id):
    _seed_tasks(user_id)

    data = client.get("/api/tasks/", headers=_headers(user_id)).json()

    assert data[0]["title"] == "Overdue call"
    assert data[-1]["title"] == "Low chore"
    assert len(data) == 4


def test_list_tasks_by_status(client, user_id):
    _seed_tasks(user_id)

    data = client.get("/api/tasks/", params={"status": "completed"}, headers=_headers(user_id)).json()

    assert [t["title"] for t in data] == ["Sent email"]
    assert client.get("/api/tasks/", params={"status": "nope"}, headers=_headers(user_id)).status_code == 422


def test_pending_overdue_and_waiting(client, user_id):
    _seed_tasks(user_id)

    pending = client.get("/api/tasks/pending", headers=_headers(user_id)).json()
    overdue = client.get("/api/tasks/overdue", headers=_headers(user_id)).json()
    waiting = client.get("/api/tasks/waiting", headers=_headers(user_id)).json()

    assert {t["title"] for t in pending} == {"Low chore", "Overdue call", "Waiting on Sara"}
    assert [t["title"] for t in overdue] == ["Overdue call"]
    assert [t["title"] for t in waiting] == ["Waiting on Sara"]


def test_stats(client, user_id):
    _seed_tasks(user_id)

    stats = client.get("/api/tasks/stats", headers=_headers(user_id)).json()

    assert stats == {"total": 4, "completed": 1, "pending": 3, "overdue": 1, "completionRate": 25.0}


def test_get_task_with_steps(client, user_id):
    (parent_id,) = seed(Task(user_id=user_id, title="Schedule meeting with Sara", meta={"type": "multi_step_parent"}))
    first, second = seed(
        Task(user_id=user_id, title="Send request", parent_task_id=parent_id, step_order=1),
        Task(user_id=user_id, title="Wait for reply", parent_task_id=parent_id, step_order=2),
    )

    data = client.get(f"/api/tasks/{parent_id}", headers=_headers(user_id)).json()
    assert [s["id"] for s in data["subTasks"]] == [first, second]
    assert data["parentTask"] is None
    assert data["metadata"]["type"] == "multi_step_parent"

    step = client.get(f"/api/tasks/{second}", headers=_headers(user_id)).json()
    assert step["parentTask"]["id"] == parent_id
    assert step["stepOrder"] == 2

    steps = client.get(f"/api/tasks/{parent_id}/steps", headers=_headers(user_id)).json()
    assert [s["title"] for s in steps] == ["Send request", "Wait for reply"]


def test_other_users_task_not_found(client, user_id):
    (task_id,) = seed(Task(user_id=seed_user(email="other@firm.com"), title="Private"))

    response = client.get(f"/api/tasks/{task_id}", headers=_headers(user_id))

    assert response.status_code == 404
    assert response.json()["detail"] == f"Task {task_id} not found"


def test_delete_task_removes_steps(client, user_id):
    (parent_id,) = seed(Task(user_id=user_id, title="Workflow"))
    (step_id,) = seed(Task(user_id=user_id, title="Step", parent_task_id=parent_id, step_order=1))

    response = client.delete(f"/api/tasks/{parent_id}", headers=_headers(user_id))

    assert response.json() == {"status": "deleted"}
    assert client.get(f"/api/tasks/{step_id}", headers=_headers(user_id)).status_code == 404
