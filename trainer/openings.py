"""Opening presets offered for practice: seed line and the side the user plays."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
from models import OpeningPreset

# (id, name, description, seed moves, user color)
_PRESET_ROWS = [
    ("ruy-lopez", "Ruy Lopez", "1. e4 e5 2. Nf3 Nc6 3. Bb5 a6",
     "e2e4 e7e5 g1f3 b8c6 f1b5 a7a6", "w"),
    ("italian-game", "Italian Game", "1. e4 e5 2. Nf3 Nc6 3. Bc4 Bc5",
     "e2e4 e7e5 g1f3 b8c6 f1c4 f8c5", "w"),
    ("scotch-game", "Scotch Game", "1. e4 e5 2. Nf3 Nc6 3. d4 exd4",
     "e2e4 e7e5 g1f3 b8c6 d2d4 e5d4", "w"),
    ("four-knights-game", "Four Knights Game", "1. e4 e5 2. Nf3 Nc6 3. Nc3 Nf6",
     "e2e4 e7e5 g1f3 b8c6 b1c3 g8f6", "w"),
    ("kings-gambit", "King's Gambit", "1. e4 e5 2. f4", "e2e4 e7e5 f2f4", "w"),
    ("queens-gambit", "Queen's Gambit", "1. d4 d5 2. c4", "d2d4 d7d5 c2c4", "w"),
    ("london-system", "London System", "1. d4 d5 2. Nf3 Nf6 3. Bf4 e6",
     "d2d4 d7d5 g1f3 g8f6 c1f4 e7e6", "w"),
    ("english-opening", "English Opening", "1. c4 e5 2. Nc3 Nf6", "c2c4 e7e5 b1c3 g8f6", "w"),
    ("catalan-opening", "Catalan Opening", "1. d4 Nf6 2. c4 e6 3. g3 d5",
     "d2d4 g8f6 c2c4 e7e6 g2g3 d7d5", "w"),
    ("reti-opening", "Reti Opening", "1. Nf3 d5 2. c4", "g1f3 d7d5 c2c4", "w"),
    ("vienna-game", "Vienna Game", "1. e4 e5 2. Nc3 Nf6", "e2e4 e7e5 b1c3 g8f6", "w"),
    ("kings-indian-attack", "King's Indian Attack", "1. Nf3 d5 2. g3 Nf6 3. Bg2 e6",
     "g1f3 d7d5 g2g3 g8f6 f1g2 e7e6", "w"),
    ("dutch-defense", "Dutch Defense", "1. d4 f5", "d2d4 f7f5", "b"),
    ("sicilian-defense", "Sicilian Defense", "1. e4 c5", "e2e4 c7c5", "b"),
    ("french-defense", "French Defense", "1. e4 e6", "e2e4 e7e6", "b"),
    ("caro-kann-defense", "Caro-Kann Defense", "1. e4 c6", "e2e4 c7c6", "b"),
    ("queens-gambit-declined", "Queen's Gambit Declined", "1. d4 d5 2. c4 e6",
     "d2d4 d7d5 c2c4 e7e6", "b"),
    ("kings-indian-defense", "King's Indian Defense", "1. d4 Nf6 2. c4 g6",
     "d2d4 g8f6 c2c4 g7g6", "b"),
    ("nimzo-indian-defense", "Nimzo-Indian Defense", "1. d4 Nf6 2. c4 e6 3. Nc3 Bb4",
     "d2d4 g8f6 c2c4 e7e6 b1c3 f8b4", "b"),
    ("slav-defense", "Slav Defense", "1. d4 d5 2. c4 c6", "d2d4 d7d5 c2c4 c7c6", "b"),
    ("scandinavian-defense", "Scandinavian Defense", "1. e4 d5", "e2e4 d7d5", "b"),
    ("petroff-defense", "Petroff Defense", "1. e4 e5 2. Nf3 Nf6", "e2e4 e7e5 g1f3 g8f6", "b"),
    ("alekhine-defense", "Alekhine Defense", "1. e4 Nf6", "e2e4 g8f6", "b"),
    ("pirc-defense", "Pirc Defense", "1. e4 d6 2. d4 Nf6 3. Nc3 g6",
     "e2e4 d7d6 d2d4 g8f6 b1c3 g7g6", "b"),
    ("grunfeld-defense", "Grunfeld Defense", "1. d4 Nf6 2. c4 g6 3. Nc3 d5",
     "d2d4 g8f6 c2c4 g7g6 b1c3 d7d5", "b"),
]

OPENINGS: tuple[OpeningPreset, ...] = tuple(
    OpeningPreset(id=i, name=name, description=desc, seed_moves=tuple(moves.split()), user_color=color)
    for i, name, desc, moves, color in _PRESET_ROWS
)


def get_opening(opening_id: str) -> OpeningPreset | None:
    return next((o for o in OPENINGS if o.id == opening_id), None)


def search_openings(query: str) -> list[OpeningPreset]:
    """Case-insensitive substring match on name and description."""
    q = query.strip().lower()
    return [o for o in OPENINGS if q in f"{o.name} {o.description}".lower()]
