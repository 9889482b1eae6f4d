"""Tests for api/main.py"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from helpers import FakeExplorer, make_move, make_response
from session import SessionController, SessionTimings

RUY = ("e2e4", "e7e5", "g1f3", "b8c6", "f1b5", "a7a6")
HIGH = "2000,2200,2500"


@pytest.fixture
def controller():
    explorer = FakeExplorer(
        responses={
            (RUY, HIGH): make_response(
                [make_move("b5a4", "Ba4", 800), make_move("b5c6", "Bxc6", 200)], white=1000
            ),
            (RUY + ("b5a4",), "1400,1600"): make_response([make_move("g8f6", "Nf6", 90)], white=90),
        }
    )
    return SessionController(explorer, SessionTimings(0, 0, 0))


@pytest.fixture
def client(controller):
    from api.main import app
    with patch("api.main.get_controller", return_value=controller):
        with TestClient(app) as c:
            yield c


def start(client, **overrides):
    body = {"opening_id": "ruy-lopez"}
    body.update(overrides)
    return client.post("/session?wait=true", json=body)


def test_list_openings(client):
    resp = client.get("/openings")
    assert resp.status_code == 200
    ids = [o["id"] for o in resp.json()]
    assert len(ids) == 25
    assert "ruy-lopez" in ids


def test_search_openings(client):
    resp = client.get("/openings/search", params={"q": "sicilian"})
    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == ["sicilian-defense"]


def test_idle_session(client):
    data = client.get("/session").json()
    assert data["state"] == "idle"
    assert data["opening"] is None
    assert data["accuracy"] == 100
    assert data["position_accuracy"] == "100%"


def test_start_unknown_opening(client):
    assert start(client, opening_id="nope").status_code == 404


def test_start_invalid_speed(client):
    assert start(client, speed="bullet").status_code == 400


def test_start_seeds_opening(client):
    resp = start(client, elo="1500")
    assert resp.status_code == 200
    data = resp.json()
    assert data["state"] == "awaiting_user_move"
    assert data["moves"] == list(RUY)
    assert data["turn"] == "w"
    assert data["elo_ratings"] == "1400,1600"
    assert data["status"] == "Practice started. Your move."
    assert data["position_games"] == 1000


def test_move_in_san_plays_full_turn(client):
    start(client)
    resp = client.post("/session/move?wait=true", json={"move": "Ba4"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["moves"][-2:] == ["b5a4", "g8f6"]
    assert data["last_review"]["grade"] == "!!"
    assert data["last_review"]["top_moves"][0]["san"] == "Ba4"
    assert data["last_bot_move"] == "Nf6"
    assert data["last_bot_move_squares"] == ["g8", "f6"]
    assert data["move_counter"] == 1


def test_illegal_move_rejected(client):
    start(client)
    resp = client.post("/session/move", json={"move": "e2e5"})
    assert resp.status_code == 400


def test_hint_and_undo(client):
    start(client)
    hint = client.post("/session/hint?wait=true").json()
    assert hint["hint"]["uci"] == "b5a4"

    client.post("/session/move?wait=true", json={"move": "b5a4"})
    data = client.post("/session/undo?wait=true").json()
    assert data["moves"] == list(RUY)
    assert data["status"] == "Undid the last move. Try again."


def test_reset(client):
    start(client)
    data = client.post("/session/reset").json()
    assert data["state"] == "idle"
    assert data["status"] == "Session ended."


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.parametrize("speed", ["blitz", "rapid", "classical"])
def test_start_accepts_every_explorer_speed(client, speed):
    resp = start(client, speed=speed)
    assert resp.status_code == 200
    assert resp.json()["state"] == "awaiting_user_move"


def test_shutdown_closes_controller_and_http_client():
    import api.main as main

    controller = SessionController(FakeExplorer(), SessionTimings(0, 0, 0))
    http_client = AsyncMock(spec=httpx.AsyncClient)
    with patch.object(main, "_controller", controller), patch.object(main, "_client", http_client):
        with TestClient(main.app):
            pass
        http_client.aclose.assert_awaited_once()
        assert main._controller is None

    assert controller.session.epoch == 1
