import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class Phase(str, Enum):
    LOBBY = "lobby"
    WORDCLOUD = "wordcloud"
    QUESTION = "question"
    EXPLANATION = "explanation"
    RESULTS = "results"
    FINAL = "final"


# Quiz content comes from the provider and is never mutated by a session.
class Answer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    is_correct: bool = False


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    hint: str = ""
    explanation_part1: str = ""
    explanation_part2: str = ""
    image: Optional[str] = None
    points: int = 1000
    time_limit: Optional[float] = None
    answers: Tuple[Answer, ...] = ()

    @property
    def answer_ids(self) -> frozenset:
        return frozenset(a.id for a in self.answers)

    @property
    def correct_ids(self) -> frozenset:
        return frozenset(a.id for a in self.answers if a.is_correct)


class Quiz(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    questions: Tuple[Question, ...] = ()


class AnswerRecord(BaseModel):
    question_id: str
    answer_ids: List[str]
    correct: bool
    score: int
    time: float  # seconds since the question was armed


class Player(BaseModel):
    nickname: str
    color: str
    score: int = 0
    answers: List[AnswerRecord] = Field(default_factory=list)
    connected: bool = True

    def has_answered(self, question_id: str) -> bool:
        return any(a.question_id == question_id for a in self.answers)


class DistributionEntry(BaseModel):
    answer_id: str
    text: str
    count: int = 0
    percent: int = 0


class LeaderboardEntry(BaseModel):
    nickname: str
    score: int


class PlayerStats(BaseModel):
    nickname: str
    score: int
    accuracy: int
    avg_response_time: float


class FinalResults(BaseModel):
    leaderboard: List[LeaderboardEntry]
    stats: List[PlayerStats]


class WordEntry(BaseModel):
    text: str
    count: int = 0
    contributors: Dict[str, int] = Field(default_factory=dict)


class WordBank(BaseModel):
    entries: Dict[str, WordEntry] = Field(default_factory=dict)
    per_player: Dict[str, int] = Field(default_factory=dict)

    @property
    def total_submissions(self) -> int:
        return sum(e.count for e in self.entries.values())


# States: lobby -> wordcloud -> question -> explanation -> results -> (question | final)
class Session(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    code: str
    quiz_id: str
    quiz: Quiz
    phase: Phase = Phase.LOBBY
    current_question_index: int = 0
    question_start_time: Optional[float] = None
    time_limit: float = 0
    players: Dict[str, Player] = Field(default_factory=dict)
    distribution: List[DistributionEntry] = Field(default_factory=list)
    answered_count: int = 0
    leaderboard: List[LeaderboardEntry] = Field(default_factory=list)
    final_results: Optional[FinalResults] = None
    word_bank: WordBank = Field(default_factory=WordBank)
    host_connection_id: Optional[str] = None
    pending_deadline: Optional[Any] = Field(default=None, exclude=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def total_questions(self) -> int:
        return len(self.quiz.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < self.total_questions:
            return self.quiz.questions[self.current_question_index]
        return None

    def connected_players(self) -> List[Player]:
        return [p for p in self.players.values() if p.connected]

    def find_player(self, nickname: str) -> Optional[Tuple[str, Player]]:
        for connection_id, player in self.players.items():
            if player.nickname == nickname:
                return connection_id, player
        return None

    def all_answered(self) -> bool:
        question = self.current_question
        connected = self.connected_players()
        if question is None or not connected:
            return False
        return all(p.has_answered(question.id) for p in connected)
