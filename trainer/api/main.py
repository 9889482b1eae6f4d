"""
FastAPI surface for the opening trainer.

Endpoints:
  GET  /openings                 - Opening presets
  GET  /openings/search?q=...    - Search presets by name or moves
  GET  /session                  - Current session state
  POST /session                  - Start a practice session
  POST /session/move             - Play a user move (UCI or SAN)
  POST /session/hint             - Request the most played move
  POST /session/undo             - Take back to the user's last turn
  POST /session/retry            - Retry a failed bot move
  POST /session/reset            - End the session

Mutating endpoints accept ?wait=true to respond once queries and timers
have settled.
"""

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import httpx
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from explorer_client import EXPLORER_TIMEOUT, SPEEDS, ExplorerClient
from history import HistoryError, from_chess_color, move_to_uci
from move_stats import position_accuracy_label
from openings import OPENINGS, get_opening, search_openings
from session import Session, SessionController, build_session_config

_controller: SessionController | None = None
_client: httpx.AsyncClient | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the session controller and its HTTP client on shutdown."""
    global _controller, _client
    yield
    if _controller is not None:
        await _controller.aclose()
    if _client is not None:
        await _client.aclose()
    _controller, _client = None, None


app = FastAPI(title="Opening Trainer API", version="1.0.0", lifespan=lifespan)


class StartRequest(BaseModel):
    opening_id: str
    elo: str = "1500"
    bot_move_threshold: str = "10"
    always_play_most_common_move: bool = False
    speed: str = "rapid"


class MoveRequest(BaseModel):
    move: str  # e.g. "g1f3" or "Nf3"


def get_controller() -> SessionController:
    """Process-wide controller backed by the Lichess explorer."""
    global _controller, _client
    if _controller is None:
        _client = httpx.AsyncClient(timeout=EXPLORER_TIMEOUT)
        _controller = SessionController(ExplorerClient(_client, os.environ.get("LICHESS_TOKEN")))
    return _controller


def opening_to_response(opening) -> dict:
    return {
        "id": opening.id,
        "name": opening.name,
        "description": opening.description,
        "seed_moves": list(opening.seed_moves),
        "user_color": opening.user_color,
    }


def ranked_to_response(ranked) -> dict | None:
    if ranked is None:
        return None
    return {"rank": ranked.rank, "uci": ranked.uci, "san": ranked.san, "games": ranked.games, "rate": ranked.rate}


def session_to_response(session: Session) -> dict:
    """Convert a session to its API response dict."""
    try:
        board = session.history.board()
        fen = board.fen()
        turn = from_chess_color(board.turn)
        squares = session.history.last_move_squares_by(session.bot_color) if session.config else None
    except HistoryError:
        fen, turn, squares = None, None, None

    review = None
    if session.last_review:
        r = session.last_review
        review = {
            "side_to_move": r.side_to_move,
            "played_san": r.played_san,
            "played_rank": r.played_rank,
            "played_rate": r.played_rate,
            "grade": r.grade,
            "best_move": ranked_to_response(r.best_move),
            "alternatives": [ranked_to_response(a) for a in r.alternatives],
            "top_moves": [ranked_to_response(m) for m in r.ranked_moves[:5]],
            "total_games": r.total_games,
        }

    return {
        "epoch": session.epoch,
        "state": session.state.value,
        "status": session.status,
        "opening": opening_to_response(session.config.opening) if session.config else None,
        "elo": session.config.elo if session.config else None,
        "elo_ratings": session.config.elo_ratings if session.config else None,
        "moves": list(session.history.moves),
        "fen": fen,
        "turn": turn,
        "last_bot_move": session.last_bot_move,
        "last_bot_move_rate": session.last_bot_move_rate,
        "last_bot_move_squares": list(squares) if squares else None,
        "last_review": review,
        "hint": ranked_to_response(session.hint),
        "brilliant_square": session.brilliant_square,
        "move_counter": session.move_counter,
        "accuracy": round(session.accuracy.display, 1),
        "position_games": session.position_games,
        "position_accuracy": position_accuracy_label(session.position_games),
    }


async def settle(controller: SessionController, wait: bool) -> dict:
    if wait:
        await controller.wait_idle()
    return session_to_response(controller.session)


@app.get("/openings")
def list_openings():
    return [opening_to_response(o) for o in OPENINGS]


@app.get("/openings/search")
def search_openings_endpoint(q: str = Query(..., min_length=1)):
    """Substring search over opening names and descriptions."""
    return [opening_to_response(o) for o in search_openings(q)]


@app.get("/session")
def get_session():
    return session_to_response(get_controller().session)


@app.post("/session")
async def start_session(body: StartRequest, wait: bool = Query(False)):
    opening = get_opening(body.opening_id)
    if opening is None:
        raise HTTPException(status_code=404, detail=f"Opening '{body.opening_id}' not found")
    if body.speed not in SPEEDS:
        raise HTTPException(status_code=400, detail=f"Invalid speed: {body.speed}")
    controller = get_controller()
    controller.start(
        build_session_config(
            opening,
            elo=body.elo,
            bot_move_threshold=body.bot_move_threshold,
            always_play_most_common_move=body.always_play_most_common_move,
            speed=body.speed,
        )
    )
    return await settle(controller, wait)


@app.post("/session/move")
async def play_move(body: MoveRequest, wait: bool = Query(False)):
    """Play a move given in UCI or SAN."""
    controller = get_controller()
    try:
        board = controller.board()
    except HistoryError as e:
        raise HTTPException(status_code=409, detail=str(e))

    text = body.move.strip()
    try:
        uci = move_to_uci(board.parse_san(text))
    except ValueError:
        uci = text.lower()
    if not controller.play_move(uci):
        raise HTTPException(status_code=400, detail=f"Move not accepted: {text}")
    return await settle(controller, wait)


@app.post("/session/hint")
async def request_hint(wait: bool = Query(False)):
    controller = get_controller()
    controller.request_hint()
    return await settle(controller, wait)


@app.post("/session/undo")
async def undo(wait: bool = Query(False)):
    controller = get_controller()
    controller.undo()
    return await settle(controller, wait)


@app.post("/session/retry")
async def retry_bot_move(wait: bool = Query(False)):
    controller = get_controller()
    controller.retry_bot_move()
    return await settle(controller, wait)


@app.post("/session/reset")
async def reset_session():
    controller = get_controller()
    controller.reset()
    return session_to_response(controller.session)


@app.get("/health")
def health():
    return {"status": "ok"}
