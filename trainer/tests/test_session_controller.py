"""Tests for SessionController: effects run on the event loop against a fake explorer."""

import asyncio
import random
import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from explorer_client import ExplorerClient
from helpers import FakeExplorer, make_move, make_opening, make_response
from models import SessionState
from session import SessionController, SessionTimings, build_session_config

SEED = ("e2e4", "e7e5", "g1f3", "b8c6")
HIGH = "2000,2200,2500"
BOT_RATINGS = "1400,1600"

INSTANT = SessionTimings(seed_step_delay=0, bot_move_delay=0, brilliant_flash=0)

SCORE_RESPONSE = make_response(
    [make_move("f1b5", "Bb5", 500), make_move("f1c4", "Bc4", 460), make_move("d2d4", "d4", 40)],
    white=1000,
)
BOT_RESPONSE = make_response([make_move("f8c5", "Bc5", 700)], white=700)


def make_explorer() -> FakeExplorer:
    return FakeExplorer(
        responses={
            (SEED, HIGH): SCORE_RESPONSE,
            (SEED + ("f1c4",), BOT_RATINGS): BOT_RESPONSE,
        }
    )


async def wait_until(predicate, limit: int = 1000):
    for _ in range(limit):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_full_turn_cycle():
    explorer = make_explorer()
    controller = SessionController(explorer, INSTANT, rng=random.Random(3))
    controller.start(build_session_config(make_opening()))
    await controller.wait_idle()

    assert controller.session.state == SessionState.AWAITING_USER_MOVE
    assert controller.session.moves == SEED

    assert controller.play_move("f1c4") is True
    await controller.wait_idle()

    s = controller.session
    assert s.state == SessionState.AWAITING_USER_MOVE
    assert s.moves == SEED + ("f1c4", "f8c5")
    assert s.last_review.grade == "!!"
    assert s.last_bot_move == "Bc5"
    assert s.flash_token == 1
    assert s.brilliant_square is None
    assert s.move_counter == 1
    assert (SEED, HIGH, "rapid") in explorer.calls
    assert explorer.calls_for(BOT_RATINGS) == [SEED + ("f1c4",)]


@pytest.mark.asyncio
async def test_rejected_move_returns_false():
    controller = SessionController(make_explorer(), INSTANT)
    controller.start(build_session_config(make_opening()))
    await controller.wait_idle()
    before = controller.session

    assert controller.play_move("e2e5") is False
    assert controller.session is before


@pytest.mark.asyncio
async def test_superseded_score_never_applies():
    explorer = make_explorer()
    explorer.gate = asyncio.Event()
    controller = SessionController(explorer, INSTANT)
    controller.start(build_session_config(make_opening()))
    await wait_until(lambda: controller.session.state == SessionState.AWAITING_USER_MOVE)

    assert controller.play_move("f1c4")
    controller.undo()
    assert controller.session.moves == SEED

    explorer.gate.set()
    await controller.wait_idle()

    s = controller.session
    assert s.state == SessionState.AWAITING_USER_MOVE
    assert s.moves == SEED
    assert s.last_review is None
    assert s.move_counter == 0
    assert explorer.calls_for(BOT_RATINGS) == []


@pytest.mark.asyncio
async def test_reset_cancels_pending_bot_timer():
    explorer = make_explorer()
    timings = SessionTimings(seed_step_delay=0, bot_move_delay=60, brilliant_flash=0)
    controller = SessionController(explorer, timings)
    controller.start(build_session_config(make_opening()))
    await controller.wait_idle()

    controller.play_move("f1c4")
    await wait_until(lambda: controller.session.last_review is not None)
    controller.reset()
    await asyncio.wait_for(controller.wait_idle(), timeout=5)

    assert controller.session.state == SessionState.IDLE
    assert controller.session.status == "Session ended."
    assert explorer.calls_for(BOT_RATINGS) == []


@pytest.mark.asyncio
async def test_bot_failure_then_retry():
    explorer = make_explorer()
    explorer.errors[(SEED + ("f1c4",), BOT_RATINGS)] = "Explorer request failed with status 500."
    controller = SessionController(explorer, INSTANT)
    controller.start(build_session_config(make_opening()))
    await controller.wait_idle()

    controller.play_move("f1c4")
    await controller.wait_idle()
    assert controller.session.state == SessionState.AWAITING_USER_MOVE
    assert controller.session.status == "Explorer request failed: Explorer request failed with status 500."

    explorer.errors.clear()
    controller.retry_bot_move()
    await controller.wait_idle()
    assert controller.session.moves[-1] == "f8c5"


@pytest.mark.asyncio
async def test_listeners_see_each_change_until_unsubscribed():
    controller = SessionController(make_explorer(), INSTANT)
    seen = []
    unsubscribe = controller.subscribe(lambda s: seen.append(s.state))

    controller.start(build_session_config(make_opening()))
    await controller.wait_idle()
    assert seen[0] == SessionState.SEEDING
    assert seen[-1] == SessionState.AWAITING_USER_MOVE

    unsubscribe()
    count = len(seen)
    controller.request_hint()
    await controller.wait_idle()
    assert len(seen) == count


@pytest.mark.asyncio
async def test_hint_uses_high_rating_pool():
    controller = SessionController(make_explorer(), INSTANT)
    controller.start(build_session_config(make_opening()))
    await controller.wait_idle()

    controller.request_hint()
    await controller.wait_idle()
    assert controller.session.hint.san == "Bb5"
    assert controller.session.status.startswith("Hint: most played move for White is Bb5")


@pytest.mark.asyncio
async def test_aclose_ends_session():
    controller = SessionController(make_explorer(), INSTANT)
    controller.start(build_session_config(make_opening()))
    await controller.aclose()
    assert controller.session.state == SessionState.IDLE
    assert controller.session.config is None


@pytest.mark.asyncio
async def test_malformed_score_payload_does_not_stall_session():
    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params.get("ratings") == HIGH and params.get("play") == ",".join(SEED):
            return httpx.Response(200, json={"white": "n/a", "moves": []})
        return httpx.Response(200, json={"moves": []})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        controller = SessionController(ExplorerClient(client), INSTANT)
        statuses = []
        controller.subscribe(lambda s: statuses.append(s.status))
        controller.start(build_session_config(make_opening()))
        await controller.wait_idle()

        assert controller.play_move("f1c4")
        await controller.wait_idle()

    s = controller.session
    assert s.state == SessionState.AWAITING_USER_MOVE
    assert s.last_review is None
    assert s.status.startswith("No playable move returned for this position")
    assert "Could not score this move from 2000+ data: Explorer returned an unexpected payload." in statuses
