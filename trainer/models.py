"""Data models for the opening trainer session engine."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Literal

PlayerColor = Literal["w", "b"]
SpeedOption = Literal["blitz", "rapid", "classical"]
MoveGrade = Literal["!!", "✓", "x"]


@dataclass(frozen=True)
class OpeningPreset:
    """Catalog entry: a named opening line and the side the user practices."""

    id: str
    name: str
    description: str
    seed_moves: tuple[str, ...] = ()
    user_color: PlayerColor = "w"


@dataclass(frozen=True)
class SessionConfig:
    """Settings frozen at session start."""

    opening: OpeningPreset
    elo: int = 1500
    elo_ratings: str = "1400,1600"
    speed: SpeedOption = "rapid"
    bot_move_threshold_percent: float = 10.0
    always_play_most_common_move: bool = False


@dataclass(frozen=True)
class ExplorerMove:
    """One candidate move from the explorer with its outcome counts."""

    uci: str
    san: str
    white: int = 0
    draws: int = 0
    black: int = 0

    @property
    def games(self) -> int:
        return self.white + self.draws + self.black


@dataclass(frozen=True)
class ExplorerResponse:
    """Aggregate counts for a position plus its candidate moves."""

    white: int = 0
    draws: int = 0
    black: int = 0
    moves: tuple[ExplorerMove, ...] = ()
    opening_eco: str | None = None
    opening_name: str | None = None

    @property
    def games(self) -> int:
        return self.white + self.draws + self.black

    @classmethod
    def from_json(cls, data: dict) -> "ExplorerResponse":
        moves = tuple(
            ExplorerMove(
                uci=m.get("uci", ""),
                san=m.get("san", ""),
                white=int(m.get("white", 0) or 0),
                draws=int(m.get("draws", 0) or 0),
                black=int(m.get("black", 0) or 0),
            )
            for m in data.get("moves") or []
        )
        opening = data.get("opening") or {}
        return cls(
            white=int(data.get("white", 0) or 0),
            draws=int(data.get("draws", 0) or 0),
            black=int(data.get("black", 0) or 0),
            moves=moves,
            opening_eco=opening.get("eco"),
            opening_name=opening.get("name"),
        )


@dataclass(frozen=True)
class RankedMove:
    rank: int
    uci: str
    san: str
    games: int
    rate: float


@dataclass(frozen=True)
class MoveReview:
    """Grade of one user move against the high-rating reference pool."""

    side_to_move: PlayerColor
    played_san: str
    played_rank: int | None
    played_rate: float
    grade: MoveGrade
    best_move: RankedMove | None
    alternatives: tuple[RankedMove, ...] = ()
    ranked_moves: tuple[RankedMove, ...] = ()
    total_games: int = 0


@dataclass(frozen=True)
class WeightedChoice:
    selected: ExplorerMove | None
    selected_rate: float = 0.0
    used_fallback_pool: bool = False


@dataclass(frozen=True)
class AccuracyTracker:
    """Running confidence average; display is the lowest average seen so far."""

    sum: float = 0.0
    count: int = 0
    display: float = 100.0

    def record(self, sample: float) -> "AccuracyTracker":
        total = self.sum + sample
        count = self.count + 1
        return replace(self, sum=total, count=count, display=min(self.display, total / count))


class SessionState(str, Enum):
    IDLE = "idle"
    SEEDING = "seeding"
    AWAITING_USER_MOVE = "awaiting_user_move"
    SCORING_USER_MOVE = "scoring_user_move"
    BOT_THINKING = "bot_thinking"
    GAME_OVER = "game_over"


@dataclass(frozen=True)
class PlayedMove:
    """A user move waiting for its score."""

    uci: str
    san: str
    to_square: str
    moves_before: tuple[str, ...] = field(default_factory=tuple)
