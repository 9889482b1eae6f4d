#!/usr/bin/env python3
"""
Terminal opening trainer.

Seeds the chosen opening, then alternates your moves (UCI or SAN) with a
bot that samples replies from the Lichess explorer at your rating.

Usage:
  python cli.py --list
  python cli.py --opening sicilian-defense --elo 1600 --threshold 5
  LICHESS_TOKEN=xxx python cli.py --opening ruy-lopez --always-most-common

Commands during play: <move>, hint, undo, retry, board, reset, quit
"""

import argparse
import asyncio
import logging
import os
import random
import sys
from pathlib import Path

import chess
import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from explorer_client import EXPLORER_TIMEOUT, SPEEDS, ExplorerClient
from history import HistoryError, move_to_uci
from move_stats import format_rate, position_accuracy_label
from openings import OPENINGS, get_opening
from session import Session, SessionController, build_session_config


def move_text_to_uci(board: chess.Board, text: str) -> str | None:
    """Accept UCI or SAN input; returns None if neither parses."""
    text = text.strip()
    try:
        return move_to_uci(board.parse_san(text))
    except ValueError:
        pass
    if 4 <= len(text) <= 5:
        return text.lower()
    return None


class StatusPrinter:
    """Session listener printing status lines and move rankings as they change."""

    def __init__(self):
        self.last_status = None
        self.last_review = None

    def __call__(self, session: Session) -> None:
        if session.status and session.status != self.last_status:
            print(session.status)
        self.last_status = session.status
        review = session.last_review
        if review is not None and review is not self.last_review:
            for ranked in review.ranked_moves[:5]:
                print(f"  #{ranked.rank} {ranked.san:8s} {format_rate(ranked.rate):>6s} ({ranked.games:,} games)")
        self.last_review = review


async def run(controller: SessionController, opening_id: str, args) -> None:
    opening = get_opening(opening_id)
    config = build_session_config(
        opening,
        elo=args.elo,
        bot_move_threshold=args.threshold,
        always_play_most_common_move=args.always_most_common,
        speed=args.speed,
    )
    controller.subscribe(StatusPrinter())
    controller.start(config)
    await controller.wait_idle()

    while True:
        session = controller.session
        try:
            board = controller.board()
        except HistoryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return
        accuracy = position_accuracy_label(session.position_games)
        prompt = f"[{session.state.value} | accuracy {session.accuracy.display:.1f} | position {accuracy}] > "
        try:
            line = await asyncio.to_thread(input, prompt)
        except EOFError:
            return

        command = line.strip().lower()
        if command in ("quit", "exit", "q"):
            return
        if command == "board":
            print(board)
            print(board.fen())
        elif command == "hint":
            controller.request_hint()
        elif command == "undo":
            controller.undo()
        elif command == "retry":
            controller.retry_bot_move()
        elif command == "reset":
            controller.reset()
            controller.start(config)
        elif command:
            uci = move_text_to_uci(board, line)
            if uci is None or not controller.play_move(uci):
                print(f"Move not accepted: {line.strip()}", file=sys.stderr)
        await controller.wait_idle()


async def main_async():
    parser = argparse.ArgumentParser(description="Opening practice against explorer statistics")
    parser.add_argument("--opening", default=OPENINGS[0].id)
    parser.add_argument("--elo", default="1500")
    parser.add_argument("--threshold", default="10", help="Bot move frequency threshold percent")
    parser.add_argument("--always-most-common", action="store_true")
    parser.add_argument("--speed", choices=SPEEDS, default="rapid")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for bot choices")
    parser.add_argument("--list", action="store_true", help="List available openings")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log explorer queries and timers")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list:
        for o in OPENINGS:
            side = "White" if o.user_color == "w" else "Black"
            print(f"{o.id:24s} {o.name:26s} {side:6s} {o.description}")
        return

    if get_opening(args.opening) is None:
        print(f"Error: unknown opening {args.opening}. Use --list.", file=sys.stderr)
        sys.exit(1)

    token = os.environ.get("LICHESS_TOKEN")
    async with httpx.AsyncClient(timeout=EXPLORER_TIMEOUT) as session:
        controller = SessionController(ExplorerClient(session, token), rng=random.Random(args.seed))
        try:
            await run(controller, args.opening, args)
        finally:
            await controller.aclose()


def main():
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
