from __future__ import annotations

from unittest import TestCase

from .errors import DuplicateAnswer
from .models import Phase, Player, Quiz, Session
from .scoring import (
    apply_answer,
    build_stats,
    compute_score,
    filter_selection,
    finalize_distribution,
    full_leaderboard,
    is_correct,
    new_distribution,
    rank_of,
)

QUIZ = {
    "id": "quiz",
    "title": "Scoring",
    "questions": [
        {
            "id": "q1",
            "text": "Pick A",
            "points": 1000,
            "time_limit": 20,
            "answers": [
                {"id": "A", "text": "a", "is_correct": True},
                {"id": "B", "text": "b"},
                {"id": "C", "text": "c"},
            ],
        },
        {
            "id": "q2",
            "text": "Pick X and Y",
            "points": 500,
            "time_limit": 10,
            "answers": [
                {"id": "X", "text": "x", "is_correct": True},
                {"id": "Y", "text": "y", "is_correct": True},
                {"id": "Z", "text": "z"},
            ],
        },
    ],
}


def _session(question_index: int = 0) -> Session:
    quiz = Quiz.model_validate(QUIZ)
    session = Session(code="ABCDEF", quiz_id=quiz.id, quiz=quiz, phase=Phase.QUESTION)
    session.current_question_index = question_index
    session.time_limit = quiz.questions[question_index].time_limit
    session.distribution = new_distribution(quiz.questions[question_index])
    return session


class SelectionTests(TestCase):
    def setUp(self) -> None:
        self.question = Quiz.model_validate(QUIZ).questions[1]

    def test_filter_drops_duplicates_and_foreign_ids(self):
        self.assertEqual(filter_selection(self.question, ["Y", "X", "Y", "nope", "A"]), ["Y", "X"])

    def test_exact_set_is_correct(self):
        self.assertTrue(is_correct(self.question, ["Y", "X"]))

    def test_partial_superset_and_empty_are_incorrect(self):
        self.assertFalse(is_correct(self.question, ["X"]))
        self.assertFalse(is_correct(self.question, ["X", "Y", "Z"]))
        self.assertFalse(is_correct(self.question, []))


class ComputeScoreTests(TestCase):
    def test_speed_bonus_decays_with_elapsed_time(self):
        self.assertEqual(compute_score(1000, 20, 0, True), 1500)
        self.assertEqual(compute_score(1000, 20, 10, True), 1250)
        self.assertEqual(compute_score(1000, 20, 20, True), 1000)

    def test_elapsed_is_clamped(self):
        self.assertEqual(compute_score(1000, 20, -3, True), 1500)
        self.assertEqual(compute_score(1000, 20, 45, True), 1000)

    def test_halves_round_up(self):
        # 1 * (1 + 0.5 * 0.5) = 1.25 -> 1 ; 3 * 1.5 = 4.5 -> 5
        self.assertEqual(compute_score(1, 20, 10, True), 1)
        self.assertEqual(compute_score(3, 20, 0, True), 5)

    def test_incorrect_scores_zero(self):
        self.assertEqual(compute_score(1000, 20, 0, False), 0)


class ApplyAnswerTests(TestCase):
    def setUp(self) -> None:
        self.session = _session()
        self.alice = Player(nickname="Alice", color="red")
        self.bob = Player(nickname="Bob", color="blue")
        self.session.players = {"c1": self.alice, "c2": self.bob}

    def test_correct_answer_updates_score_history_and_distribution(self):
        record = apply_answer(self.session, self.alice, ["A"], 0)

        self.assertTrue(record.correct)
        self.assertEqual(record.score, 1500)
        self.assertEqual(self.alice.score, 1500)
        self.assertEqual([a.question_id for a in self.alice.answers], ["q1"])
        self.assertEqual(self.session.answered_count, 1)
        counts = {d.answer_id: d.count for d in self.session.distribution}
        self.assertEqual(counts, {"A": 1, "B": 0, "C": 0})

    def test_over_inclusive_selection_is_wrong_but_counted(self):
        record = apply_answer(self.session, self.bob, ["A", "B"], 1)

        self.assertFalse(record.correct)
        self.assertEqual(self.bob.score, 0)
        counts = {d.answer_id: d.count for d in self.session.distribution}
        self.assertEqual(counts, {"A": 1, "B": 1, "C": 0})

    def test_second_submission_changes_nothing(self):
        apply_answer(self.session, self.alice, ["B"], 2)
        with self.assertRaises(DuplicateAnswer):
            apply_answer(self.session, self.alice, ["A"], 3)

        self.assertEqual(self.alice.score, 0)
        self.assertEqual(len(self.alice.answers), 1)
        self.assertEqual(self.session.answered_count, 1)
        counts = {d.answer_id: d.count for d in self.session.distribution}
        self.assertEqual(counts, {"A": 0, "B": 1, "C": 0})

    def test_score_is_sum_over_questions(self):
        apply_answer(self.session, self.alice, ["A"], 5)  # 1000 * 1.375
        self.session.current_question_index = 1
        self.session.time_limit = 10
        self.session.distribution = new_distribution(self.session.current_question)
        apply_answer(self.session, self.alice, ["X", "Y", "X"], 4)  # 500 * 1.3

        self.assertEqual(self.alice.score, 1375 + 650)
        self.assertEqual(sum(a.score for a in self.alice.answers), self.alice.score)


class AggregateTests(TestCase):
    def setUp(self) -> None:
        self.session = _session()
        self.session.players = {
            "c1": Player(nickname="bob", color="red"),
            "c2": Player(nickname="Alice", color="blue"),
            "c3": Player(nickname="Carol", color="green", connected=False),
        }

    def test_leaderboard_orders_by_score_then_name(self):
        apply_answer(self.session, self.session.players["c3"], ["A"], 20)

        board = full_leaderboard(self.session)

        self.assertEqual([e.nickname for e in board], ["Carol", "Alice", "bob"])
        self.assertEqual(rank_of(self.session, "Alice"), 2)
        self.assertEqual(rank_of(self.session, "nobody"), 0)

    def test_percentages_use_connected_players(self):
        apply_answer(self.session, self.session.players["c1"], ["A"], 1)
        apply_answer(self.session, self.session.players["c2"], ["B"], 1)

        finalize_distribution(self.session)

        percents = {d.answer_id: d.percent for d in self.session.distribution}
        self.assertEqual(percents, {"A": 50, "B": 50, "C": 0})

    def test_stats_accuracy_and_average_time(self):
        alice = self.session.players["c2"]
        apply_answer(self.session, alice, ["A"], 4)
        self.session.current_question_index = 1
        self.session.time_limit = 10
        self.session.distribution = new_distribution(self.session.current_question)
        apply_answer(self.session, alice, ["Z"], 3)

        stats = {s.nickname: s for s in build_stats(self.session)}

        self.assertEqual(stats["Alice"].accuracy, 50)
        self.assertEqual(stats["Alice"].avg_response_time, 3.5)
        self.assertEqual(stats["bob"].accuracy, 0)
        self.assertEqual(stats["bob"].avg_response_time, 0.0)
