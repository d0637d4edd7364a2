import math
import secrets
import time
from typing import Iterable

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6


def now_ts() -> float:
    return time.time()


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_word(raw: str) -> str:
    return " ".join((raw or "").split()).casefold()


def unique_nickname(requested: str, taken: Iterable[str]) -> str:
    name = (requested or "").strip() or "Player"
    existing = set(taken)
    if name not in existing:
        return name
    counter = 2
    while f"{name} {counter}" in existing:
        counter += 1
    return f"{name} {counter}"


def sort_leaderboard(players: list[dict]) -> list[dict]:
    return sorted(players, key=lambda p: (-p.get("score", 0), p["nickname"].lower()))
