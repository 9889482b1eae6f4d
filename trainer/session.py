"""
Practice session controller.

The session is a frozen value driven by a pure ``transition(session, event)``
function that returns the next session plus a list of effects (explorer
queries and timers). ``SessionController`` executes those effects on the
running asyncio loop and feeds their completions back as events.

Every start, undo and reset bumps ``Session.epoch``. Effects carry the epoch
they were issued under and completions from an older epoch are dropped
without touching the session.
"""

import asyncio
import logging
import random
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent))
from explorer_client import (
    HIGH_ELO_RATINGS,
    ExplorerError,
    build_ratings_filter,
    clamp_elo,
    clamp_percent,
)
from history import (
    HistoryError,
    IllegalMoveError,
    MoveHistory,
    move_to_uci,
    parse_uci,
    to_chess_color,
)
from models import (
    AccuracyTracker,
    ExplorerResponse,
    MoveReview,
    OpeningPreset,
    PlayedMove,
    PlayerColor,
    RankedMove,
    SessionConfig,
    SessionState,
)
from move_stats import (
    accuracy_from_games,
    build_move_review,
    build_ranked_moves,
    choose_weighted_move,
    explorer_total_games,
    format_percent_value,
    format_rate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionTimings:
    """Pacing delays in seconds."""

    seed_step_delay: float = 0.5
    bot_move_delay: float = 1.1
    brilliant_flash: float = 1.1


DEFAULT_TIMINGS = SessionTimings()
DEFAULT_BOT_THRESHOLD_PERCENT = 10.0


def build_session_config(
    opening: OpeningPreset,
    elo="1500",
    bot_move_threshold="10",
    always_play_most_common_move: bool = False,
    speed: str = "rapid",
) -> SessionConfig:
    """Clamp raw settings and derive the rating filter."""
    safe_elo = clamp_elo(elo)
    return SessionConfig(
        opening=opening,
        elo=safe_elo,
        elo_ratings=build_ratings_filter(safe_elo),
        speed=speed,
        bot_move_threshold_percent=clamp_percent(bot_move_threshold, DEFAULT_BOT_THRESHOLD_PERCENT),
        always_play_most_common_move=always_play_most_common_move,
    )


# Events


@dataclass(frozen=True)
class StartSession:
    config: SessionConfig


@dataclass(frozen=True)
class UserMove:
    uci: str


@dataclass(frozen=True)
class RequestHint:
    pass


@dataclass(frozen=True)
class Undo:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class RetryBotMove:
    pass


@dataclass(frozen=True)
class StatsLoaded:
    epoch: int
    purpose: str
    response: ExplorerResponse
    ply: int = 0


@dataclass(frozen=True)
class StatsFailed:
    epoch: int
    purpose: str
    message: str
    ply: int = 0


@dataclass(frozen=True)
class DelayElapsed:
    epoch: int
    purpose: str
    token: int = 0


# Effects


@dataclass(frozen=True)
class FetchStats:
    epoch: int
    purpose: str  # "score" | "bot" | "hint" | "sample"
    moves: tuple[str, ...]
    ratings: str
    speed: str
    ply: int = 0


@dataclass(frozen=True)
class Delay:
    epoch: int
    purpose: str  # "seed" | "bot" | "flash"
    seconds: float
    token: int = 0


@dataclass(frozen=True)
class Session:
    epoch: int = 0
    state: SessionState = SessionState.IDLE
    config: SessionConfig | None = None
    history: MoveHistory = field(default_factory=MoveHistory)
    status: str = ""
    last_review: MoveReview | None = None
    hint: RankedMove | None = None
    hint_loading: bool = False
    last_bot_move: str = ""
    last_bot_move_rate: float | None = None
    brilliant_square: str | None = None
    flash_token: int = 0
    accuracy: AccuracyTracker = field(default_factory=AccuracyTracker)
    move_counter: int = 0
    position_games: int | None = None
    position_games_loading: bool = False
    pending_move: PlayedMove | None = None

    @property
    def user_color(self) -> PlayerColor | None:
        return self.config.opening.user_color if self.config else None

    @property
    def bot_color(self) -> PlayerColor | None:
        if self.config is None:
            return None
        return "b" if self.config.opening.user_color == "w" else "w"

    @property
    def moves(self) -> tuple[str, ...]:
        return self.history.moves


def color_label(color: PlayerColor) -> str:
    return "White" if color == "w" else "Black"


def is_game_over(board: chess.Board) -> bool:
    return board.is_game_over(claim_draw=True)


def describe_game_over(board: chess.Board) -> str:
    if board.is_checkmate():
        return "Checkmate."
    if board.is_stalemate():
        return "Stalemate."
    if board.is_repetition(3):
        return "Draw by repetition."
    if board.is_insufficient_material():
        return "Draw by insufficient material."
    if is_game_over(board):
        return "Draw."
    return "Game over."


def transition(session: Session, event, rng=random, timings: SessionTimings = DEFAULT_TIMINGS):
    """Apply ``event`` to ``session``. Returns ``(session, effects)``."""
    if isinstance(event, (StatsLoaded, StatsFailed, DelayElapsed)) and event.epoch != session.epoch:
        logger.debug("Dropping stale %s %s (epoch %d != %d)",
                     type(event).__name__, event.purpose, event.epoch, session.epoch)
        return session, []

    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown session event: {event!r}")
    return handler(session, event, rng, timings)


def _sample(s: Session) -> tuple[Session, FetchStats]:
    """Refresh the high-rating sample size for the current position."""
    effect = FetchStats(
        s.epoch, "sample", s.history.moves, HIGH_ELO_RATINGS, s.config.speed, len(s.history.moves)
    )
    return replace(s, position_games_loading=True), effect


def _board_or_error(s: Session) -> tuple[chess.Board | None, Session]:
    try:
        return s.history.board(), s
    except HistoryError as e:
        logger.error("History replay failed for %s: %s", s.history.moves, e)
        return None, replace(s, status=str(e))


# Start and seeding


def _on_start(s: Session, ev: StartSession, rng, timings):
    config = ev.config
    s = Session(
        epoch=s.epoch + 1,
        state=SessionState.SEEDING,
        config=config,
        history=MoveHistory((), len(config.opening.seed_moves)),
        status="Setting up opening line...",
        flash_token=s.flash_token,
    )
    if config.opening.seed_moves:
        return _seed_step(s, timings)

    s, sample = _sample(s)
    s, effects = _finish_seeding(s, timings)
    return s, [sample] + effects


def _seed_step(s: Session, timings: SessionTimings):
    seed = s.config.opening.seed_moves
    index = len(s.history.moves)
    board, s = _board_or_error(s)
    if board is None:
        return replace(s, state=SessionState.IDLE), []

    uci = seed[index]
    try:
        move = parse_uci(board, uci)
    except IllegalMoveError:
        logger.warning("Invalid seed move %s in opening %s", uci, s.config.opening.id)
        return replace(s, state=SessionState.IDLE, status=f"Invalid seed move in opening preset: {uci}"), []

    san = board.san(move)
    s = replace(
        s,
        history=s.history.append(move_to_uci(move)),
        status=f"Setting up opening line... {index + 1}/{len(seed)} ({san})",
    )
    s, sample = _sample(s)
    if index < len(seed) - 1:
        return s, [sample, Delay(s.epoch, "seed", timings.seed_step_delay)]

    s, effects = _finish_seeding(s, timings)
    return s, [sample] + effects


def _finish_seeding(s: Session, timings: SessionTimings):
    board, s = _board_or_error(s)
    if board is None:
        return replace(s, state=SessionState.IDLE), []
    if is_game_over(board):
        return replace(s, state=SessionState.GAME_OVER,
                       status=f"Practice started. {describe_game_over(board)}"), []
    if board.turn == to_chess_color(s.user_color):
        return replace(s, state=SessionState.AWAITING_USER_MOVE, status="Practice started. Your move."), []

    s = replace(
        s,
        state=SessionState.BOT_THINKING,
        status=f"Practice started. Bot will move in {timings.bot_move_delay:g} seconds...",
    )
    return s, [Delay(s.epoch, "bot", timings.bot_move_delay)]


# User move and scoring


def _on_user_move(s: Session, ev: UserMove, rng, timings):
    if s.config is None or s.state != SessionState.AWAITING_USER_MOVE:
        return s, []
    try:
        board = s.history.board()
    except HistoryError:
        return s, []
    if is_game_over(board) or board.turn != to_chess_color(s.user_color):
        return s, []
    try:
        move = parse_uci(board, ev.uci)
    except IllegalMoveError:
        return s, []

    uci = move_to_uci(move)
    pending = PlayedMove(
        uci=uci,
        san=board.san(move),
        to_square=chess.square_name(move.to_square),
        moves_before=s.history.moves,
    )
    s = replace(
        s,
        state=SessionState.SCORING_USER_MOVE,
        history=s.history.append(uci),
        hint=None,
        hint_loading=False,
        brilliant_square=None,
        move_counter=s.move_counter + 1,
        pending_move=pending,
        status="Scoring your move using 2000+ games...",
    )
    score = FetchStats(
        s.epoch, "score", pending.moves_before, HIGH_ELO_RATINGS, s.config.speed, len(s.history.moves)
    )
    s, sample = _sample(s)
    return s, [score, sample]


def _score_loaded(s: Session, ev: StatsLoaded, timings: SessionTimings):
    pending = s.pending_move
    effects = []
    review = build_move_review(build_ranked_moves(ev.response), pending.uci, pending.san, s.user_color)
    s = replace(
        s,
        last_review=review,
        accuracy=s.accuracy.record(accuracy_from_games(explorer_total_games(ev.response))),
    )
    if review.grade == "!!":
        token = s.flash_token + 1
        s = replace(s, brilliant_square=pending.to_square, flash_token=token)
        effects.append(Delay(s.epoch, "flash", timings.brilliant_flash, token))
    else:
        s = replace(s, brilliant_square=None)

    rank_text = f"#{review.played_rank}" if review.played_rank else "unranked"
    s = replace(s, status=f"You played {review.played_san}: {review.grade} (rank {rank_text} in 2000+ games).")
    s, more = _after_scoring(s, timings)
    return s, effects + more


def _after_scoring(s: Session, timings: SessionTimings):
    pending = s.pending_move
    s = replace(s, pending_move=None)
    board, s = _board_or_error(s)
    if board is None:
        return s, []
    if is_game_over(board):
        return replace(s, state=SessionState.GAME_OVER,
                       status=f"You played {pending.san}. {describe_game_over(board)}"), []
    return s, [Delay(s.epoch, "bot", timings.bot_move_delay)]


# Bot turn


def _begin_bot_turn(s: Session):
    s = replace(s, state=SessionState.BOT_THINKING, status="Bot is choosing a move...")
    return s, [FetchStats(s.epoch, "bot", s.history.moves, s.config.elo_ratings, s.config.speed,
                          len(s.history.moves))]


def _bot_loaded(s: Session, ev: StatsLoaded, rng):
    config = s.config
    total = explorer_total_games(ev.response)
    s = replace(s, accuracy=s.accuracy.record(accuracy_from_games(total)))
    choice = choose_weighted_move(
        ev.response, config.bot_move_threshold_percent, config.always_play_most_common_move, rng
    )
    if choice.selected is None:
        return replace(
            s,
            state=SessionState.AWAITING_USER_MOVE,
            status="No playable move returned for this position at current filters. "
                   "Try a different opening or Elo.",
        ), []

    board, s = _board_or_error(s)
    if board is None:
        return replace(s, state=SessionState.AWAITING_USER_MOVE), []
    try:
        move = parse_uci(board, choice.selected.uci)
    except IllegalMoveError:
        logger.warning("Explorer suggested illegal move %s after %s", choice.selected.uci, s.history.moves)
        return replace(
            s,
            state=SessionState.AWAITING_USER_MOVE,
            status=f"Explorer suggested illegal move {choice.selected.uci}. Try another position.",
        ), []

    san = board.san(move)
    board.push(move)
    s = replace(
        s,
        history=s.history.append(move_to_uci(move)),
        last_bot_move=san,
        last_bot_move_rate=choice.selected_rate,
        hint=None,
    )
    message = (
        f"From {total:,} games in this position, {color_label(s.bot_color)} plays {san} "
        f"{choice.selected_rate * 100:.1f}% of the time at your elo."
    )
    if is_game_over(board):
        s = replace(s, state=SessionState.GAME_OVER, status=f"{message} {describe_game_over(board)}")
    elif choice.used_fallback_pool:
        threshold = format_percent_value(config.bot_move_threshold_percent)
        s = replace(
            s,
            state=SessionState.AWAITING_USER_MOVE,
            status=f"{message} No move was above {threshold}%, so it used the full move list for this turn.",
        )
    else:
        s = replace(s, state=SessionState.AWAITING_USER_MOVE, status=f"{message} Your move.")

    s, sample = _sample(s)
    return s, [sample]


def _on_retry_bot_move(s: Session, ev: RetryBotMove, rng, timings):
    if s.config is None or s.state != SessionState.AWAITING_USER_MOVE:
        return s, []
    try:
        board = s.history.board()
    except HistoryError:
        return s, []
    if is_game_over(board) or board.turn != to_chess_color(s.bot_color):
        return s, []
    return _begin_bot_turn(s)


# Hints


def _on_hint(s: Session, ev: RequestHint, rng, timings):
    if s.config is None:
        return replace(s, status="Start a session first to use hints."), []
    if s.state == SessionState.SEEDING:
        return replace(s, status="Wait for opening setup to finish before requesting a hint."), []
    board, s = _board_or_error(s)
    if board is None:
        return s, []
    if s.state == SessionState.GAME_OVER or is_game_over(board):
        return replace(s, status="This game is over. Restart to use hints again."), []
    if s.state != SessionState.AWAITING_USER_MOVE or board.turn != to_chess_color(s.user_color):
        return replace(s, status="Hint is only available on your turn."), []
    if s.hint_loading:
        return s, []

    s = replace(s, hint_loading=True, status="Loading hint from 2000+ games...")
    return s, [FetchStats(s.epoch, "hint", s.history.moves, HIGH_ELO_RATINGS, s.config.speed,
                          len(s.history.moves))]


def _hint_loaded(s: Session, ev: StatsLoaded):
    ranked = build_ranked_moves(ev.response)
    if not ranked:
        return replace(s, hint=None, hint_loading=False, status="No hint available for this position."), []
    best = ranked[0]
    return replace(
        s,
        hint=best,
        hint_loading=False,
        status=f"Hint: most played move for {color_label(s.user_color)} is {best.san} "
               f"({format_rate(best.rate)} in 2000+ games).",
    ), []


# Undo and reset


def _on_undo(s: Session, ev: Undo, rng, timings):
    if s.config is None:
        return s, []
    if not s.history.can_undo:
        return replace(s, status="Nothing to undo yet."), []

    try:
        result = s.history.undo_to_user_turn(s.user_color)
    except HistoryError:
        return replace(s, status="Could not reconstruct game history for undo."), []
    if result.undone == 0:
        return replace(s, status="Could not undo the last move."), []

    # in-flight work for the truncated line goes stale from here on
    s = replace(
        s,
        epoch=s.epoch + 1,
        history=result.history,
        hint=None,
        hint_loading=False,
        brilliant_square=None,
        last_bot_move_rate=None,
        last_review=None,
        pending_move=None,
        move_counter=max(0, s.move_counter - result.undone_user_moves),
        last_bot_move=result.history.last_move_san_by(s.bot_color),
        status="Undid the last move. Try again.",
    )
    s, sample = _sample(s)
    board = result.board
    if is_game_over(board):
        return replace(s, state=SessionState.GAME_OVER), [sample]
    if board.turn == to_chess_color(s.user_color):
        return replace(s, state=SessionState.AWAITING_USER_MOVE), [sample]

    # stopped on the seed line with the bot to move
    s = replace(s, state=SessionState.BOT_THINKING)
    return s, [sample, Delay(s.epoch, "bot", timings.bot_move_delay)]


def _on_reset(s: Session, ev: Reset, rng, timings):
    had_session = s.config is not None or bool(s.history.moves)
    return Session(
        epoch=s.epoch + 1,
        flash_token=s.flash_token,
        status="Session ended." if had_session else "",
    ), []


# Async completions


def _on_stats_loaded(s: Session, ev: StatsLoaded, rng, timings):
    if ev.purpose == "score" and s.state == SessionState.SCORING_USER_MOVE and s.pending_move:
        return _score_loaded(s, ev, timings)
    if ev.purpose == "bot" and s.state == SessionState.BOT_THINKING:
        return _bot_loaded(s, ev, rng)
    if ev.purpose == "hint" and s.hint_loading and ev.ply == len(s.history.moves):
        return _hint_loaded(s, ev)
    if ev.purpose == "sample" and ev.ply == len(s.history.moves):
        return replace(s, position_games=explorer_total_games(ev.response), position_games_loading=False), []
    return s, []


def _on_stats_failed(s: Session, ev: StatsFailed, rng, timings):
    if ev.purpose == "score" and s.state == SessionState.SCORING_USER_MOVE and s.pending_move:
        s = replace(s, status=f"Could not score this move from 2000+ data: {ev.message}")
        return _after_scoring(s, timings)
    if ev.purpose == "bot" and s.state == SessionState.BOT_THINKING:
        return replace(s, state=SessionState.AWAITING_USER_MOVE,
                       status=f"Explorer request failed: {ev.message}"), []
    if ev.purpose == "hint" and s.hint_loading and ev.ply == len(s.history.moves):
        return replace(s, hint_loading=False, status=f"Could not load hint: {ev.message}"), []
    if ev.purpose == "sample" and ev.ply == len(s.history.moves):
        return replace(s, position_games=None, position_games_loading=False), []
    return s, []


def _on_delay_elapsed(s: Session, ev: DelayElapsed, rng, timings):
    if ev.purpose == "seed" and s.state == SessionState.SEEDING:
        return _seed_step(s, timings)
    if ev.purpose == "bot" and s.state in (SessionState.SCORING_USER_MOVE, SessionState.BOT_THINKING):
        return _begin_bot_turn(s)
    if ev.purpose == "flash" and ev.token == s.flash_token:
        return replace(s, brilliant_square=None), []
    return s, []


_HANDLERS = {
    StartSession: _on_start,
    UserMove: _on_user_move,
    RequestHint: _on_hint,
    Undo: _on_undo,
    Reset: _on_reset,
    RetryBotMove: _on_retry_bot_move,
    StatsLoaded: _on_stats_loaded,
    StatsFailed: _on_stats_failed,
    DelayElapsed: _on_delay_elapsed,
}


class SessionController:
    """
    Runs session effects on the current asyncio loop.

    ``provider`` needs one coroutine method,
    ``fetch(moves, ratings, speed) -> ExplorerResponse``, raising
    ``ExplorerError`` on failure (see ``explorer_client.ExplorerClient``).
    Methods that dispatch events must be called from inside a running loop.
    """

    def __init__(self, provider, timings: SessionTimings | None = None, rng: random.Random | None = None):
        self.provider = provider
        self.timings = timings or DEFAULT_TIMINGS
        self.rng = rng or random.Random()
        self.session = Session()
        self._tasks: set[asyncio.Task] = set()
        self._timers: set[asyncio.Task] = set()
        self._listeners: list[Callable[[Session], None]] = []

    def subscribe(self, listener: Callable[[Session], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def dispatch(self, event) -> Session:
        previous = self.session
        self.session, effects = transition(previous, event, rng=self.rng, timings=self.timings)
        if self.session.epoch != previous.epoch:
            self._cancel_timers()
        for effect in effects:
            self._schedule(effect)
        if self.session is not previous:
            for listener in list(self._listeners):
                listener(self.session)
        return self.session

    def start(self, config: SessionConfig) -> Session:
        return self.dispatch(StartSession(config))

    def play_move(self, uci: str) -> bool:
        """Submit a user move. Returns False when it was not accepted."""
        before = self.session
        return self.dispatch(UserMove(uci)) is not before

    def request_hint(self) -> Session:
        return self.dispatch(RequestHint())

    def undo(self) -> Session:
        return self.dispatch(Undo())

    def reset(self) -> Session:
        return self.dispatch(Reset())

    def retry_bot_move(self) -> Session:
        return self.dispatch(RetryBotMove())

    def board(self) -> chess.Board:
        return self.session.history.board()

    async def wait_idle(self) -> Session:
        """Wait until no query or timer is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self.session

    async def aclose(self) -> None:
        self.dispatch(Reset())
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, effect) -> None:
        logger.debug("Scheduling %s", effect)
        loop = asyncio.get_running_loop()
        if isinstance(effect, FetchStats):
            task = loop.create_task(self._fetch(effect))
        else:
            task = loop.create_task(self._sleep(effect))
            self._timers.add(task)
            task.add_done_callback(self._timers.discard)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        for task in list(self._timers):
            if task is not current and not task.done():
                task.cancel()

    async def _fetch(self, effect: FetchStats) -> None:
        try:
            response = await self.provider.fetch(list(effect.moves), effect.ratings, effect.speed)
        except ExplorerError as e:
            logger.warning("Explorer %s query failed: %s", effect.purpose, e)
            event = StatsFailed(effect.epoch, effect.purpose, e.message, effect.ply)
        else:
            event = StatsLoaded(effect.epoch, effect.purpose, response, effect.ply)
        self.dispatch(event)

    async def _sleep(self, effect: Delay) -> None:
        await asyncio.sleep(effect.seconds)
        self.dispatch(DelayElapsed(effect.epoch, effect.purpose, effect.token))
