"""Tests for the ongoing instruction endpoints."""

from advisor.models.user import OngoingInstruction
from tests.conftest import seed, seed_user


def _headers(user_id):
    return {"X-User-Id": str(user_id)}


def test_create_and_list(client, user_id):
    created = client.post(
        "/api/instructions/", json={"instruction": "  Email new contacts  "}, headers=_headers(user_id)
    )

    assert created.status_code == 200
    assert created.json()["instruction"] == "Email new contacts"
    assert created.json()["is_active"] is True

    listed = client.get("/api/instructions/", headers=_headers(user_id)).json()
    assert [i["instruction"] for i in listed] == ["Email new contacts"]


def test_create_requires_text(client, user_id):
    response = client.post("/api/instructions/", json={"instruction": " "}, headers=_headers(user_id))

    assert response.status_code == 400


def test_create_duplicate_conflicts(client, user_id):
    client.post("/api/instructions/", json={"instruction": "Email new contacts"}, headers=_headers(user_id))

    response = client.post(
        "/api/instructions/", json={"instruction": "always email new contacts"}, headers=_headers(user_id)
    )

    assert response.status_code == 409
    assert response.json()["detail"] == 'Similar instruction already exists: "Email new contacts"'


def test_deactivate_and_rename(client, user_id):
    (instruction_id,) = seed(OngoingInstruction(user_id=user_id, instruction="Email new contacts"))

    data = client.patch(
        f"/api/instructions/{instruction_id}",
        json={"is_active": False, "instruction": "Email new clients"},
        headers=_headers(user_id),
    ).json()

    assert data["is_active"] is False
    assert data["instruction"] == "Email new clients"


def test_delete(client, user_id):
    (instruction_id,) = seed(OngoingInstruction(user_id=user_id, instruction="Email new contacts"))

    assert client.delete(f"/api/instructions/{instruction_id}", headers=_headers(user_id)).json() == {
        "status": "deleted"
    }
    assert client.get("/api/instructions/", headers=_headers(user_id)).json() == []


def test_other_users_instruction_not_found(client, user_id):
    (instruction_id,) = seed(OngoingInstruction(user_id=seed_user(email="other@firm.com"), instruction="Private"))

    response = client.patch(
        f"/api/instructions/{instruction_id}", json={"is_active": False}, headers=_headers(user_id)
    )

    assert response.status_code == 404
