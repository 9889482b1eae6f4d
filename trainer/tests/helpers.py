"""Shared fakes for session and statistics tests."""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from explorer_client import ExplorerError
from models import ExplorerMove, ExplorerResponse, OpeningPreset


def make_move(uci: str, san: str, white: int, draws: int = 0, black: int = 0) -> ExplorerMove:
    return ExplorerMove(uci=uci, san=san, white=white, draws=draws, black=black)


def make_response(moves: list[ExplorerMove], white: int = 0, draws: int = 0, black: int = 0) -> ExplorerResponse:
    return ExplorerResponse(white=white, draws=draws, black=black, moves=tuple(moves))


def make_opening(seed: str = "e2e4 e7e5 g1f3 b8c6", user_color: str = "w", **kwargs) -> OpeningPreset:
    defaults = dict(id="test-opening", name="Test Opening", description="test line")
    defaults.update(kwargs)
    return OpeningPreset(seed_moves=tuple(seed.split()), user_color=user_color, **defaults)


class FakeExplorer:
    """
    In-memory provider keyed by (moves, ratings).

    Lookups fall back to the moves-only key, then to ``default``. Set
    ``gate`` to an ``asyncio.Event`` to hold every query until it is set.
    """

    def __init__(self, responses: dict | None = None, default: ExplorerResponse | None = None):
        self.responses = responses or {}
        self.default = default if default is not None else make_response([])
        self.calls: list[tuple[tuple[str, ...], str, str]] = []
        self.errors: dict = {}
        self.gate: asyncio.Event | None = None

    async def fetch(self, moves, ratings, speed):
        key = tuple(moves)
        self.calls.append((key, ratings, speed))
        if self.gate is not None:
            await self.gate.wait()
        for lookup in ((key, ratings), key):
            if lookup in self.errors:
                raise ExplorerError(self.errors[lookup], status=500)
        for lookup in ((key, ratings), key):
            if lookup in self.responses:
                return self.responses[lookup]
        return self.default

    def calls_for(self, ratings: str) -> list[tuple[str, ...]]:
        return [moves for moves, r, _ in self.calls if r == ratings]
