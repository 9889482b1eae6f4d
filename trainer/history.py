"""
Move history: the UCI move log and board reconstruction by replay.

The log is the single source of truth. Boards are rebuilt from the initial
position on demand; the seed line at the front of the log is never undone.
"""

import sys
from dataclasses import dataclass
from pathlib import Path

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent))
from models import PlayerColor
from move_stats import normalize_castling_uci


class IllegalMoveError(ValueError):
    """A move token the rule engine rejects in the given position."""


class HistoryError(RuntimeError):
    """The move log could not be replayed."""


def to_chess_color(color: PlayerColor) -> chess.Color:
    return chess.WHITE if color == "w" else chess.BLACK


def from_chess_color(color: chess.Color) -> PlayerColor:
    return "w" if color == chess.WHITE else "b"


def parse_uci(board: chess.Board, uci: str) -> chess.Move:
    """Parse a UCI token into a legal move, promoting bare pawn pushes to a queen."""
    token = normalize_castling_uci(uci.strip())
    if len(token) not in (4, 5):
        raise IllegalMoveError(f"Invalid move token: {uci}")
    try:
        move = chess.Move.from_uci(token)
    except ValueError as e:
        raise IllegalMoveError(f"Invalid move token: {uci}") from e

    if move.promotion is None and move not in board.legal_moves:
        promoted = chess.Move(move.from_square, move.to_square, promotion=chess.QUEEN)
        if promoted in board.legal_moves:
            return promoted
    if move not in board.legal_moves:
        raise IllegalMoveError(f"Illegal move {uci} in position {board.fen()}")
    return move


def move_to_uci(move: chess.Move) -> str:
    return normalize_castling_uci(move.uci())


@dataclass(frozen=True)
class UndoResult:
    history: "MoveHistory"
    board: chess.Board
    undone: int
    undone_user_moves: int


@dataclass(frozen=True)
class MoveHistory:
    moves: tuple[str, ...] = ()
    seed_length: int = 0

    def board(self) -> chess.Board:
        """Replay the whole log from the initial position."""
        board = chess.Board()
        for uci in self.moves:
            try:
                board.push(parse_uci(board, uci))
            except IllegalMoveError as e:
                raise HistoryError("Could not reconstruct game history.") from e
        return board

    def append(self, uci: str) -> "MoveHistory":
        return MoveHistory(self.moves + (normalize_castling_uci(uci),), self.seed_length)

    @property
    def can_undo(self) -> bool:
        return len(self.moves) > self.seed_length

    def undo_to_user_turn(self, user_color: PlayerColor) -> UndoResult:
        """
        Pop trailing moves until the user is to move again.

        Stops at the seed line even if that leaves the opponent to move.
        """
        board = self.board()
        moves = list(self.moves)
        user = to_chess_color(user_color)
        undone = 0
        undone_user_moves = 0

        while len(moves) > self.seed_length and board.move_stack:
            mover = not board.turn
            board.pop()
            moves.pop()
            undone += 1
            if mover == user:
                undone_user_moves += 1
            if board.turn == user:
                break

        return UndoResult(MoveHistory(tuple(moves), self.seed_length), board, undone, undone_user_moves)

    def last_move_san_by(self, color: PlayerColor) -> str:
        """SAN of the most recent move played by ``color``, or an empty string."""
        board = chess.Board()
        last = ""
        target = to_chess_color(color)
        for move in self.board().move_stack:
            if board.turn == target:
                last = board.san(move)
            board.push(move)
        return last

    def last_move_squares_by(self, color: PlayerColor) -> tuple[str, str] | None:
        board = self.board()
        target = to_chess_color(color)
        # replay parity: ply i was played by white when i is even
        for i in range(len(board.move_stack) - 1, -1, -1):
            if (i % 2 == 0) == (target == chess.WHITE):
                move = board.move_stack[i]
                return chess.square_name(move.from_square), chess.square_name(move.to_square)
        return None
