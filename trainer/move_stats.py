"""
Move statistics: ranking, weighted bot choice, grading and sample confidence.

All functions are pure; they derive results from an explorer response and
explicit arguments only.
"""

import math
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
from models import (
    ExplorerResponse,
    MoveGrade,
    MoveReview,
    PlayerColor,
    RankedMove,
    WeightedChoice,
)

ALTERNATIVE_RATE = 0.1
BRILLIANT_GAP = 0.05

CASTLING_ALIASES = {
    "e1h1": "e1g1",
    "e1a1": "e1c1",
    "e8h8": "e8g8",
    "e8a8": "e8c8",
}

# (low games, high games, low percent, high percent), checked top down
ACCURACY_ANCHORS = [
    (1000, 10000, 50.0, 100.0),
    (100, 1000, 25.0, 50.0),
    (11, 100, 0.99, 25.0),
]


def normalize_castling_uci(uci: str) -> str:
    """Lower-case a UCI token and rewrite king-takes-rook castling to king-two-squares."""
    normalized = uci.lower()
    return CASTLING_ALIASES.get(normalized, normalized)


def _denominator(explorer: ExplorerResponse, games: list[int]) -> int:
    total = explorer.games
    return total if total > 0 else sum(games)


def explorer_total_games(explorer: ExplorerResponse) -> int:
    """Games at the position; falls back to the candidate sum when totals are missing."""
    return _denominator(explorer, [m.games for m in explorer.moves])


def build_ranked_moves(explorer: ExplorerResponse) -> list[RankedMove]:
    """Rank candidates by game count, most played first."""
    base = [m for m in explorer.moves if m.games > 0]
    # sorted() is stable, so ties keep the explorer's order
    base = sorted(base, key=lambda m: -m.games)
    denominator = _denominator(explorer, [m.games for m in base])

    return [
        RankedMove(
            rank=i + 1,
            uci=normalize_castling_uci(m.uci),
            san=m.san,
            games=m.games,
            rate=m.games / denominator if denominator > 0 else 0.0,
        )
        for i, m in enumerate(base)
    ]


def choose_weighted_move(
    explorer: ExplorerResponse,
    min_rate_percent: float,
    always_play_most_common: bool,
    rng=random,
) -> WeightedChoice:
    """
    Pick the bot's reply.

    With ``always_play_most_common`` the most played candidate wins (first on
    ties). Otherwise candidates whose rate exceeds ``min_rate_percent`` form
    the pool, falling back to every candidate when none does, and one is
    drawn with probability proportional to its game count.
    """
    weighted = [(m, m.games) for m in explorer.moves if m.games > 0]
    denominator = _denominator(explorer, [g for _, g in weighted])

    def rate(games: int) -> float:
        return games / denominator if denominator > 0 else 0.0

    if always_play_most_common:
        if not weighted:
            return WeightedChoice(selected=None)
        best, best_games = weighted[0]
        for move, games in weighted[1:]:
            if games > best_games:
                best, best_games = move, games
        return WeightedChoice(selected=best, selected_rate=rate(best_games))

    min_rate = max(0.0, min_rate_percent) / 100
    filtered = [(m, g) for m, g in weighted if rate(g) > min_rate]
    used_fallback = not filtered
    pool = filtered or weighted
    if not pool:
        return WeightedChoice(selected=None)

    total_weight = sum(g for _, g in pool)
    if total_weight <= 0:
        move, games = pool[0]
        return WeightedChoice(move, rate(games), used_fallback)

    threshold = rng.random() * total_weight
    for move, games in pool:
        threshold -= games
        if threshold <= 0:
            return WeightedChoice(move, rate(games), used_fallback)

    move, games = pool[-1]
    return WeightedChoice(move, rate(games), used_fallback)


def grade_move(played: RankedMove | None, top_rate: float) -> MoveGrade:
    if played is not None and top_rate - played.rate <= BRILLIANT_GAP:
        return "!!"
    if played is not None and played.rate >= ALTERNATIVE_RATE:
        return "✓"
    return "x"


def build_move_review(
    ranked_moves: list[RankedMove],
    played_uci: str,
    played_san: str,
    side_to_move: PlayerColor,
) -> MoveReview:
    """Grade a played move against the ranking of the position before it."""
    played_uci = normalize_castling_uci(played_uci)
    played = next((r for r in ranked_moves if r.uci == played_uci), None)
    best = ranked_moves[0] if ranked_moves else None
    top_rate = best.rate if best else 0.0

    return MoveReview(
        side_to_move=side_to_move,
        played_san=played_san,
        played_rank=played.rank if played else None,
        played_rate=played.rate if played else 0.0,
        grade=grade_move(played, top_rate),
        best_move=best,
        alternatives=tuple(
            r for r in ranked_moves if r.rank != 1 and r.rate >= ALTERNATIVE_RATE
        ),
        ranked_moves=tuple(ranked_moves),
        total_games=sum(r.games for r in ranked_moves),
    )


def interpolate_log_scale(
    value: float, low_games: float, high_games: float, low_percent: float, high_percent: float
) -> float:
    clamped = min(high_games, max(low_games, value))
    low_log = math.log10(low_games)
    high_log = math.log10(high_games)
    if high_log == low_log:
        return high_percent
    ratio = (math.log10(clamped) - low_log) / (high_log - low_log)
    return low_percent + ratio * (high_percent - low_percent)


def accuracy_from_games(total_games: int) -> float:
    """Confidence (0-100) that statistics from ``total_games`` games are meaningful."""
    if total_games >= 10000:
        return 100.0
    for low, high, low_pct, high_pct in ACCURACY_ANCHORS:
        if total_games >= low:
            return interpolate_log_scale(total_games, low, high, low_pct, high_pct)
    return 1.0


def format_rate(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def format_percent_value(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.1f}"


def position_accuracy_label(total_games: int | None) -> str:
    if total_games is None:
        return "100%"
    if total_games <= 10:
        return ">1%"
    accuracy = accuracy_from_games(total_games)
    if accuracy < 1:
        return "<1%"
    return f"{format_percent_value(accuracy)}%"
