"""
Statistics provider adapter for the Lichess Opening Explorer.

Queries move-frequency data for a position given as the list of UCI moves
played from the initial position, filtered by rating buckets and speed.

Usage:
  LICHESS_TOKEN=xxx python explorer_client.py --elo 1500 e2e4 e7e5
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from models import ExplorerResponse

logger = logging.getLogger(__name__)

LICHESS_EXPLORER_API = os.environ.get("LICHESS_EXPLORER_URL", "https://explorer.lichess.ovh/lichess")
EXPLORER_TIMEOUT = float(os.environ.get("EXPLORER_TIMEOUT", "30"))
MOVE_LIMIT = 50

HIGH_ELO_RATINGS = "2000,2200,2500"
EXPLORER_RATING_BUCKETS = [400, 1000, 1200, 1400, 1600, 1800, 2000, 2200, 2500]
MIN_ELO = 400
MAX_ELO = 3200
DEFAULT_ELO = 1500
SPEEDS = ("blitz", "rapid", "classical")


class ExplorerError(Exception):
    """Provider failure: HTTP status, network error or unreadable payload."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


async def fetch_explorer_moves(
    moves: list[str],
    ratings: str,
    speed: str,
    session: httpx.AsyncClient,
    token: str | None = None,
) -> ExplorerResponse:
    """Fetch candidate moves for the position reached by ``moves``."""
    params = {
        "variant": "standard",
        "speeds": speed,
        "ratings": ratings,
        "moves": str(MOVE_LIMIT),
    }
    if moves:
        params["play"] = ",".join(moves)
    headers = {"Authorization": f"Bearer {token}"} if token else {}

    try:
        resp = await session.get(LICHESS_EXPLORER_API, params=params, headers=headers or None)
    except httpx.HTTPError as e:
        raise ExplorerError(f"Network error: {e}") from e

    if resp.status_code == 429:
        raise ExplorerError("Rate limited (429)", status=429)
    if resp.status_code >= 400:
        raise ExplorerError(
            f"Explorer request failed with status {resp.status_code}.", status=resp.status_code
        )
    try:
        data = resp.json()
    except ValueError as e:
        raise ExplorerError("Explorer returned invalid JSON.", status=resp.status_code) from e
    try:
        return ExplorerResponse.from_json(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise ExplorerError("Explorer returned an unexpected payload.", status=resp.status_code) from e


class ExplorerClient:
    """Provider object handed to the session controller."""

    def __init__(
        self,
        session: httpx.AsyncClient,
        token: str | None = None,
        max_retries: int = 1,
        retry_delay: float = 2.0,
    ):
        self.session = session
        self.token = token
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def fetch(self, moves: list[str], ratings: str, speed: str) -> ExplorerResponse:
        attempt = 0
        while True:
            try:
                return await fetch_explorer_moves(moves, ratings, speed, self.session, self.token)
            except ExplorerError as e:
                if e.status != 429 or attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning("Explorer rate limited, retrying in %.1fs", self.retry_delay)
                await asyncio.sleep(self.retry_delay)


def build_ratings_filter(target_elo: int) -> str:
    """Comma-joined rating buckets within 200 points of ``target_elo``."""
    range_min = max(MIN_ELO, target_elo - 200)
    range_max = min(MAX_ELO, target_elo + 200)
    in_range = [b for b in EXPLORER_RATING_BUCKETS if range_min <= b <= range_max]
    if in_range:
        return ",".join(str(b) for b in in_range)

    closest = EXPLORER_RATING_BUCKETS[0]
    for bucket in EXPLORER_RATING_BUCKETS[1:]:
        if abs(bucket - target_elo) < abs(closest - target_elo):
            closest = bucket
    return str(closest)


def clamp_elo(raw) -> int:
    try:
        parsed = int(str(raw).strip())
    except ValueError:
        return DEFAULT_ELO
    return min(MAX_ELO, max(MIN_ELO, parsed))


def clamp_percent(raw, fallback: float) -> float:
    try:
        parsed = float(str(raw).strip())
    except ValueError:
        return fallback
    if parsed != parsed:  # NaN
        return fallback
    return min(100.0, max(0.0, parsed))


async def main_async():
    parser = argparse.ArgumentParser()
    parser.add_argument("moves", nargs="*", help="UCI moves from the initial position")
    parser.add_argument("--elo", default=str(DEFAULT_ELO))
    parser.add_argument("--speed", choices=SPEEDS, default="rapid")
    args = parser.parse_args()

    token = os.environ.get("LICHESS_TOKEN")
    ratings = build_ratings_filter(clamp_elo(args.elo))

    async with httpx.AsyncClient(timeout=EXPLORER_TIMEOUT) as session:
        try:
            data = await fetch_explorer_moves(args.moves, ratings, args.speed, session, token)
        except ExplorerError as e:
            print(f"API error: {e}", file=sys.stderr)
            sys.exit(1)

    print(f"{data.games} games at ratings {ratings}")
    for move in data.moves:
        print(f"  {move.san:8s} {move.uci:6s} {move.games:8d}")


def main():
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
