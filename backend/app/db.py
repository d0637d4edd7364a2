from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Quiz

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    DEFAULT_TIME_LIMIT_SEC: float = 30.0
    HOST_GRACE_PERIOD_SEC: float = 10.0
    LEADERBOARD_SIZE: int = 5
    EVENT_LOG_LIMIT: int = 500

    WORD_LIMIT_PER_PLAYER: int = 5
    WORD_MAX_LENGTH: int = 32
    WORD_DENYLIST: str = "merde,putain,connard,salope,fuck,shit,bitch,asshole"
    PLAYER_COLORS: str = "bg-accent-red,bg-accent-blue,bg-accent-green,bg-accent-yellow"

    QUIZ_SEED_FILE: Optional[str] = None

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def denylist(self) -> frozenset:
        return frozenset(w.strip().casefold() for w in self.WORD_DENYLIST.split(",") if w.strip())

    @property
    def palette(self) -> tuple:
        return tuple(c.strip() for c in self.PLAYER_COLORS.split(",") if c.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


class QuizProvider(Protocol):
    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]: ...


SAMPLE_QUIZ = {
    "id": "sample-quiz",
    "title": "General Knowledge",
    "description": "A short warm-up quiz.",
    "questions": [
        {
            "id": "q1",
            "text": "Which of these are primary colours of light?",
            "hint": "Think of screen pixels",
            "explanation_part1": "Screens mix red, green and blue light.",
            "explanation_part2": "Yellow is a primary colour of pigment, not light.",
            "points": 1000,
            "time_limit": 20,
            "answers": [
                {"id": "q1-a", "text": "Red", "is_correct": True},
                {"id": "q1-b", "text": "Yellow", "is_correct": False},
                {"id": "q1-c", "text": "Green", "is_correct": True},
                {"id": "q1-d", "text": "Blue", "is_correct": True},
            ],
        },
        {
            "id": "q2",
            "text": "How many continents are there?",
            "hint": "Count them on a world map",
            "explanation_part1": "The usual convention counts seven continents.",
            "points": 1000,
            "time_limit": 20,
            "answers": [
                {"id": "q2-a", "text": "5", "is_correct": False},
                {"id": "q2-b", "text": "6", "is_correct": False},
                {"id": "q2-c", "text": "7", "is_correct": True},
                {"id": "q2-d", "text": "8", "is_correct": False},
            ],
        },
        {
            "id": "q3",
            "text": "Which planet is closest to the sun?",
            "hint": "It is also the smallest",
            "explanation_part1": "Mercury orbits the sun in 88 days.",
            "points": 1000,
            "time_limit": 20,
            "answers": [
                {"id": "q3-a", "text": "Venus", "is_correct": False},
                {"id": "q3-b", "text": "Mercury", "is_correct": True},
                {"id": "q3-c", "text": "Mars", "is_correct": False},
            ],
        },
    ],
}


class QuizStore:
    """Read-only, in-memory quiz provider.

    Quizzes are validated into frozen models once when they are added, so every
    session that fetches one shares the same immutable snapshot.
    """

    def __init__(self, quizzes: Optional[List[dict]] = None):
        self._quizzes: Dict[str, Quiz] = {}
        for doc in quizzes or []:
            self.add(doc)

    def add(self, doc: dict) -> Quiz:
        quiz = Quiz.model_validate(doc)
        self._quizzes[quiz.id] = quiz
        return quiz

    def load_file(self, path: str) -> int:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        docs = raw if isinstance(raw, list) else [raw]
        for doc in docs:
            self.add(doc)
        logger.info("Loaded %d quiz(zes) from %s", len(docs), path)
        return len(docs)

    def list(self) -> List[dict]:
        return [{"id": q.id, "title": q.title, "questions": len(q.questions)} for q in self._quizzes.values()]

    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        return self._quizzes.get(quiz_id)


def build_quiz_store(config: Settings) -> QuizStore:
    store = QuizStore([SAMPLE_QUIZ])
    if config.QUIZ_SEED_FILE:
        store.load_file(config.QUIZ_SEED_FILE)
    return store
