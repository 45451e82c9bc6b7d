"""Tests for the HTTP and WebSocket surface."""

import pytest
from fastapi.testclient import TestClient

from abacus.config import AppConfig, SystemConfig
from abacus.web import create_app

OWNER = {"X-User-Id": "tab-director"}


@pytest.fixture
def client(tmp_path):
    config = AppConfig(system=SystemConfig(database_url=f"sqlite:///{tmp_path / 'web.db'}"))
    with TestClient(create_app(config)) as test_client:
        yield test_client


def create_tournament(client) -> str:
    response = client.post(
        "/api/tournaments",
        json={"name": "Spring Open", "slug": "spring-open", "teams_per_side": 1, "judges_per_panel": 1},
        headers=OWNER,
    )
    assert response.status_code == 200
    return response.json()["tournament_id"]


@pytest.fixture
def round_id(client):
    """A round of a tournament with four teams and two judges."""
    tournament_id = create_tournament(client)
    for n in range(1, 5):
        team = client.post(f"/api/tournaments/{tournament_id}/teams", json={"name": f"Team {n}"}, headers=OWNER)
        assert team.status_code == 200
        for position in (1, 2):
            client.post(
                f"/api/tournaments/{tournament_id}/speakers",
                json={"team_id": team.json()["id"], "name": f"Team {n} speaker {position}"},
                headers=OWNER,
            )
    for n in range(1, 3):
        client.post(f"/api/tournaments/{tournament_id}/judges", json={"name": f"Judge {n}", "rating": n}, headers=OWNER)
    response = client.post(f"/api/tournaments/{tournament_id}/rounds", json={"name": "Round 1"}, headers=OWNER)
    assert response.status_code == 200
    return response.json()["id"]


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_creating_a_tournament_needs_a_user(client) -> None:
    response = client.post("/api/tournaments", json={"name": "Spring Open", "slug": "spring-open"})

    assert response.status_code == 403


def test_tournament_summary_lists_rounds(client, round_id) -> None:
    tournament_id = client.get(f"/api/rounds/{round_id}").json()["tournament_id"]

    response = client.get(f"/api/tournaments/{tournament_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["teams_per_debate"] == 2
    assert [r["id"] for r in body["rounds"]] == [round_id]


def test_non_members_cannot_add_participants(client) -> None:
    tournament_id = create_tournament(client)

    response = client.post(
        f"/api/tournaments/{tournament_id}/teams", json={"name": "Team 1"}, headers={"X-User-Id": "stranger"}
    )

    assert response.status_code == 403


def test_draw_lifecycle_over_http(client, round_id) -> None:
    generated = client.post(f"/api/rounds/{round_id}/draw", json={"seed": 66}, headers=OWNER)
    assert generated.status_code == 200
    assert generated.json()["debate_count"] == 2
    assert generated.json()["algorithm"] == "random"

    assert client.get(f"/api/rounds/{round_id}/draw").status_code == 403
    draft = client.get(f"/api/rounds/{round_id}/draw", headers=OWNER)
    assert draft.status_code == 200
    assert len(draft.json()["debates"]) == 2
    assert draft.json()["draw_status"] == "drafted"

    released = client.post(f"/api/rounds/{round_id}/draw/release", headers=OWNER)
    assert released.status_code == 200
    assert released.json()["draw_status"] == "released"
    assert client.get(f"/api/rounds/{round_id}/draw").status_code == 200

    again = client.post(f"/api/rounds/{round_id}/draw", json={"seed": 1}, headers=OWNER)
    assert again.status_code == 409


def test_cancel_needs_a_draw_being_generated(client, round_id) -> None:
    client.post(f"/api/rounds/{round_id}/draw", json={"seed": 66}, headers=OWNER)

    response = client.post(f"/api/rounds/{round_id}/draw/cancel", headers=OWNER)

    assert response.status_code == 409
    assert client.get(f"/api/rounds/{round_id}").json()["draw_status"] == "drafted"


def test_unknown_round_is_not_found(client) -> None:
    assert client.get("/api/rounds/missing").status_code == 404
    assert client.get("/api/rounds/missing/draw", headers=OWNER).status_code == 404


def test_unknown_algorithm_is_a_bad_request(client, round_id) -> None:
    response = client.post(f"/api/rounds/{round_id}/draw", json={"algorithm": "swiss"}, headers=OWNER)

    assert response.status_code == 400
    assert client.get(f"/api/rounds/{round_id}").json()["draw_status"] == "none"


def test_invalid_room_preference_is_rejected(client) -> None:
    tournament_id = create_tournament(client)

    response = client.put(
        f"/api/tournaments/{tournament_id}/room-preferences",
        json={"participant_id": "p", "category_id": "c", "score": 5},
        headers=OWNER,
    )

    assert response.status_code == 422


def test_websocket_streams_tournament_events(client) -> None:
    tournament_id = create_tournament(client)

    with client.websocket_connect(f"/ws/tournaments/{tournament_id}") as websocket:
        client.post(f"/api/tournaments/{tournament_id}/teams", json={"name": "Team 1"}, headers=OWNER)
        message = websocket.receive_json()

    assert message == {"type": "participants_update", "tournament_id": tournament_id}


def test_configured_defaults_fill_unset_settings(client) -> None:
    response = client.post(
        "/api/tournaments", json={"name": "Autumn Open", "slug": "autumn-open", "teams_per_side": 1}, headers=OWNER
    )
    tournament = client.get(f"/api/tournaments/{response.json()['tournament_id']}").json()

    assert tournament["teams_per_side"] == 1
    assert tournament["judges_per_panel"] == 3
