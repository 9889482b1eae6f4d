"""Tests for openings.py"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from history import MoveHistory
from openings import OPENINGS, get_opening, search_openings


def test_opening_ids_are_unique():
    ids = [o.id for o in OPENINGS]
    assert len(ids) == len(set(ids))


@pytest.mark.parametrize("opening", OPENINGS, ids=lambda o: o.id)
def test_seed_line_is_legal(opening):
    board = MoveHistory(opening.seed_moves, len(opening.seed_moves)).board()
    assert len(board.move_stack) == len(opening.seed_moves)
    assert not board.is_game_over()
    assert opening.user_color in ("w", "b")


def test_get_opening():
    assert get_opening("ruy-lopez").seed_moves[-1] == "a7a6"
    assert get_opening("missing") is None


def test_search_is_case_insensitive_on_name_and_moves():
    assert [o.id for o in search_openings("GAMBIT")] == ["kings-gambit", "queens-gambit", "queens-gambit-declined"]
    assert "french-defense" in [o.id for o in search_openings("1. e4 e6")]
