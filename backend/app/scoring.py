from __future__ import annotations

from typing import Iterable, List

from .errors import DuplicateAnswer
from .models import (
    AnswerRecord,
    DistributionEntry,
    LeaderboardEntry,
    Player,
    PlayerStats,
    Question,
    Session,
)
from .utils import round_half_up, sort_leaderboard

SPEED_BONUS = 0.5


def filter_selection(question: Question, answer_ids: Iterable[str]) -> List[str]:
    """De-duplicate the submitted ids and drop the ones foreign to ``question``."""
    valid = question.answer_ids
    selected: List[str] = []
    for answer_id in answer_ids or []:
        if answer_id in valid and answer_id not in selected:
            selected.append(answer_id)
    return selected


def is_correct(question: Question, selected: List[str]) -> bool:
    # all-or-nothing: the selection must be exactly the correct set
    return bool(selected) and set(selected) == question.correct_ids


def compute_score(points: int, time_limit: float, elapsed: float, correct: bool) -> int:
    if not correct:
        return 0
    if time_limit <= 0:
        return round_half_up(points)
    remaining = max(0.0, time_limit - max(0.0, elapsed))
    bonus = SPEED_BONUS * min(1.0, remaining / time_limit)
    return round_half_up(points * (1 + bonus))


def new_distribution(question: Question) -> List[DistributionEntry]:
    return [DistributionEntry(answer_id=a.id, text=a.text) for a in question.answers]


def apply_answer(session: Session, player: Player, answer_ids: Iterable[str], elapsed: float) -> AnswerRecord:
    """Score one submission for the active question and record its side effects.

    Raises ``DuplicateAnswer`` without touching any state when the player has
    already answered this question.
    """
    question = session.current_question
    if question is None:
        raise ValueError("No active question")
    if player.has_answered(question.id):
        raise DuplicateAnswer(f"{player.nickname} already answered {question.id}")

    selected = filter_selection(question, answer_ids)
    correct = is_correct(question, selected)
    score = compute_score(question.points, session.time_limit, elapsed, correct)

    record = AnswerRecord(
        question_id=question.id,
        answer_ids=selected,
        correct=correct,
        score=score,
        time=round(max(0.0, elapsed), 3),
    )
    player.score += score
    player.answers.append(record)

    counts = {entry.answer_id: entry for entry in session.distribution}
    for answer_id in selected:
        if answer_id in counts:
            counts[answer_id].count += 1
    session.answered_count += 1
    return record


def full_leaderboard(session: Session) -> List[LeaderboardEntry]:
    rows = sort_leaderboard([{"nickname": p.nickname, "score": p.score} for p in session.players.values()])
    return [LeaderboardEntry(**row) for row in rows]


def top_leaderboard(session: Session, size: int = 5) -> List[LeaderboardEntry]:
    return full_leaderboard(session)[:size]


def rank_of(session: Session, nickname: str) -> int:
    for idx, entry in enumerate(full_leaderboard(session), start=1):
        if entry.nickname == nickname:
            return idx
    return 0


def finalize_distribution(session: Session) -> List[DistributionEntry]:
    total = len(session.connected_players()) or 1
    for entry in session.distribution:
        entry.percent = round_half_up(entry.count / total * 100)
    return session.distribution


def build_stats(session: Session) -> List[PlayerStats]:
    """Per-player accuracy and mean response time, consumed by report export."""
    total_questions = session.total_questions or 1
    stats = []
    for player in session.players.values():
        correct = sum(1 for a in player.answers if a.correct)
        avg_time = sum(a.time for a in player.answers) / len(player.answers) if player.answers else 0.0
        stats.append(
            PlayerStats(
                nickname=player.nickname,
                score=player.score,
                accuracy=round_half_up(correct / total_questions * 100),
                avg_response_time=round(avg_time, 2),
            )
        )
    return stats
