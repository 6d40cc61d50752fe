"""Tests for the health endpoint and caller identification."""


def test_health_returns_ok(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "app": "Advisor Assistant"}


def test_missing_user_header_rejected(client):
    response = client.get("/api/tasks/")
    assert response.status_code == 401


def test_unknown_user_rejected(client):
    response = client.get("/api/tasks/", headers={"X-User-Id": "4242"})
    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"
