from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, AsyncIterator, Dict, Optional

from pydantic import ValidationError

from .connections import ConnectionTracker
from .db import Settings
from .errors import DuplicateAnswer, GameError, NotHost, SessionNotFound, Unauthorized, WordRejected
from .events import Broadcaster
from .models import FinalResults, Phase, Session, WordBank
from .registry import SessionRegistry
from .schemas import (
    INBOUND_KINDS,
    AdvanceIn,
    AnswerIn,
    ContinueIn,
    CreateSessionIn,
    DisconnectIn,
    JoinIn,
    PublicPlayerOut,
    PublicSessionOut,
    RestartSessionIn,
    StartGameIn,
    WordIn,
    parse_inbound,
)
from .scoring import (
    apply_answer,
    build_stats,
    finalize_distribution,
    full_leaderboard,
    new_distribution,
    rank_of,
    top_leaderboard,
)
from .timers import DeadlineKind
from .utils import now_ts
from .wordcloud import cloud_payload, submit_word

logger = logging.getLogger(__name__)


# Host commands that move the phase forward. Any (phase, command) pair missing
# here is ignored, which absorbs duplicate client retries.
TRANSITIONS = {
    (Phase.LOBBY, StartGameIn): "start_wordcloud",
    (Phase.WORDCLOUD, ContinueIn): "start_question",
    (Phase.EXPLANATION, AdvanceIn): "show_results",
    (Phase.RESULTS, AdvanceIn): "next_question",
}


class GameController:
    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        tracker: ConnectionTracker,
        config: Settings,
    ):
        self.registry = registry
        self.scheduler = registry.scheduler
        self.broadcaster = broadcaster
        self.tracker = tracker
        self.settings = config
        self._handlers = {
            CreateSessionIn: self._on_create,
            RestartSessionIn: self._on_restart,
            JoinIn: self._on_join,
            StartGameIn: self._on_host_command,
            ContinueIn: self._on_host_command,
            AdvanceIn: self._on_host_command,
            AnswerIn: self._on_answer,
            WordIn: self._on_word,
            DisconnectIn: self._on_disconnect,
        }
        missing = [kind.__name__ for kind in INBOUND_KINDS if kind not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler for inbound message(s): {', '.join(missing)}")

    # ---- event boundary ----

    async def handle_text(self, connection_id: str, text: Optional[str]) -> None:
        if text is None:
            self._reject(connection_id, "bad_request", "Expected a JSON text frame")
            return
        try:
            data = json.loads(text)
        except ValueError:
            logger.info("Rejected non-JSON frame from %s", connection_id)
            self._reject(connection_id, "bad_request", "Frame is not valid JSON")
            return
        await self.handle_raw(connection_id, data)

    async def handle_raw(self, connection_id: str, data: Any) -> None:
        try:
            message = parse_inbound(data)
        except ValidationError as exc:
            logger.info("Rejected malformed message from %s: %s", connection_id, exc.errors()[:1])
            self._reject(connection_id, "bad_request", "Malformed message")
            return
        await self.handle(connection_id, message)

    async def handle(self, connection_id: str, message) -> None:
        handler = self._handlers[type(message)]
        try:
            await handler(connection_id, message)
        except DuplicateAnswer as exc:
            logger.debug("Ignored duplicate answer: %s", exc)
        except WordRejected as exc:
            self.broadcaster.emit_to_connection(
                connection_id, "word-submit-result", {"ok": False, "reason": exc.reason}
            )
        except GameError as exc:
            self._reject(connection_id, exc.reason, str(exc))
        except Exception:
            logger.exception("Unhandled error processing %s from %s", message.type, connection_id)
            self._reject(connection_id, "internal_error", "Internal error")

    def _reject(self, connection_id: str, reason: str, message: str) -> None:
        self.broadcaster.emit_to_connection(connection_id, "error", {"reason": reason, "message": message})

    @asynccontextmanager
    async def _locked(self, code: Optional[str]) -> AsyncIterator[Session]:
        session = self.registry.get_by_code(code)
        if session is None:
            raise SessionNotFound(f"Session {code!r} not found")
        async with session.lock:
            # the session may have been destroyed while we waited
            if not self.registry.is_live(session):
                raise SessionNotFound(f"Session {code!r} not found")
            yield session

    def _check_host_key(self, host_key: Optional[str]) -> None:
        if host_key != self.settings.ADMIN_KEY:
            raise Unauthorized("Invalid host credential")

    # ---- inbound handlers ----

    async def _on_create(self, connection_id: str, msg: CreateSessionIn) -> None:
        self._check_host_key(msg.host_key)
        existing = self.registry.get_by_code(msg.quiz_id) or self.registry.get_active_by_quiz(msg.quiz_id)
        if existing is not None:
            async with self._locked(existing.code) as session:
                self._bind_host(session, connection_id)
                self._send_created(session, connection_id, reused=True)
            return

        session = await self.registry.create(msg.quiz_id, connection_id)
        async with session.lock:
            self._bind_host(session, connection_id)
            self._send_created(session, connection_id, reused=False)

    async def _on_restart(self, connection_id: str, msg: RestartSessionIn) -> None:
        self._check_host_key(msg.host_key)
        by_code = self.registry.get_by_code(msg.identifier)
        quiz_id = by_code.quiz_id if by_code else msg.identifier
        live = self.registry.get_active_by_quiz(quiz_id)
        if live is not None:
            async with self._locked(live.code) as session:
                self.broadcaster.emit_to_session(
                    session.code, "error", {"reason": "session_restarted", "message": "Session restarted by the host"}
                )
                self._close(session, "restarted")

        session = await self.registry.create(quiz_id, connection_id)
        async with session.lock:
            self._bind_host(session, connection_id)
            self._send_created(session, connection_id, reused=False, restarted=True)

    async def _on_join(self, connection_id: str, msg: JoinIn) -> None:
        async with self._locked(msg.code) as session:
            player, reconnected = self.tracker.join(session, connection_id, msg.nickname)
            self.broadcaster.join_session(session.code, connection_id)
            self.broadcaster.emit_to_session(
                session.code,
                "player-joined",
                {
                    "nickname": player.nickname,
                    "color": player.color,
                    "player_count": len(session.players),
                    "reconnected": reconnected,
                },
            )
            self.broadcaster.emit_to_connection(
                connection_id,
                "joined",
                {
                    "code": session.code,
                    "nickname": player.nickname,
                    "color": player.color,
                    "score": player.score,
                    "phase": session.phase.value,
                },
            )
            self.broadcaster.emit_to_connection(connection_id, "wordcloud-update", cloud_payload(session.word_bank))
            self._catch_up(session, connection_id)

    async def _on_host_command(self, connection_id: str, msg) -> None:
        async with self._locked(msg.code) as session:
            if session.host_connection_id != connection_id:
                raise NotHost("Only the host can do that")
            action = TRANSITIONS.get((session.phase, type(msg)))
            if action is None:
                logger.debug("Ignored %s in phase %s for %s", msg.type, session.phase.value, session.code)
                return
            getattr(self, action)(session)

    async def _on_answer(self, connection_id: str, msg: AnswerIn) -> None:
        async with self._locked(msg.code) as session:
            question = session.current_question
            if session.phase != Phase.QUESTION or question is None or question.id != msg.question_id:
                return
            player = session.players.get(connection_id)
            if player is None:
                return

            elapsed = now_ts() - (session.question_start_time or now_ts())
            record = apply_answer(session, player, msg.answer_ids, elapsed)

            self.broadcaster.emit_to_connection(
                connection_id,
                "answer-feedback",
                {
                    "question_id": question.id,
                    "correct": record.correct,
                    "score": record.score,
                    "total_score": player.score,
                    "rank": rank_of(session, player.nickname),
                },
            )
            self.broadcaster.emit_to_session(
                session.code,
                "answer-received",
                {"answered_count": session.answered_count, "total_players": len(session.connected_players())},
            )
            if session.all_answered():
                self.end_question(session)

    async def _on_word(self, connection_id: str, msg: WordIn) -> None:
        async with self._locked(msg.code) as session:
            player = session.players.get(connection_id)
            if player is None:
                raise WordRejected(WordRejected.INVALID)
            total = submit_word(
                session,
                player.nickname,
                msg.word,
                limit=self.settings.WORD_LIMIT_PER_PLAYER,
                max_length=self.settings.WORD_MAX_LENGTH,
                denylist=self.settings.denylist,
            )
            self.broadcaster.emit_to_connection(
                connection_id, "word-submit-result", {"ok": True, "total_submissions": total}
            )
            self.broadcaster.emit_to_session(session.code, "wordcloud-update", cloud_payload(session.word_bank))

    async def _on_disconnect(self, connection_id: str, msg: DisconnectIn) -> None:
        for code in self.tracker.sessions_for(connection_id):
            session = self.registry.get_by_code(code)
            if session is None:
                continue
            async with session.lock:
                if not self.registry.is_live(session):
                    continue
                role = self.tracker.disconnect(
                    session, connection_id, on_host_absent=partial(self._on_host_absent, session.code)
                )
                if role == "player" and session.phase == Phase.QUESTION and session.all_answered():
                    self.end_question(session)
        self.tracker.forget(connection_id)

    # ---- deadlines ----

    async def _on_question_deadline(self, code: str, question_index: int) -> None:
        session = self.registry.get_by_code(code)
        if session is None:
            return
        async with session.lock:
            if not self.registry.is_live(session):
                return
            if session.phase != Phase.QUESTION or session.current_question_index != question_index:
                return
            self.end_question(session)

    async def _on_host_absent(self, code: str) -> None:
        session = self.registry.get_by_code(code)
        if session is None:
            return
        async with session.lock:
            if not self.registry.is_live(session) or session.host_connection_id is not None:
                return
            self.broadcaster.emit_to_session(
                session.code, "error", {"reason": "host_absent", "message": "Session closed (host absent)"}
            )
            self._close(session, "host_absent")

    def _arm_question_deadline(self, session: Session, delay: float) -> None:
        self.scheduler.arm(
            session,
            DeadlineKind.QUESTION,
            delay,
            partial(self._on_question_deadline, session.code, session.current_question_index),
        )

    # ---- transitions; callers hold session.lock ----

    def start_wordcloud(self, session: Session) -> None:
        if not session.connected_players():
            return
        session.phase = Phase.WORDCLOUD
        session.word_bank = WordBank()
        self.broadcaster.emit_to_session(session.code, "wordcloud-started", cloud_payload(session.word_bank))

    def start_question(self, session: Session) -> None:
        question = session.current_question
        if question is None:
            self.finish(session)
            return
        session.phase = Phase.QUESTION
        session.question_start_time = now_ts()
        session.time_limit = question.time_limit or self.settings.DEFAULT_TIME_LIMIT_SEC
        session.answered_count = 0
        session.distribution = new_distribution(question)
        self.broadcaster.emit_to_session(session.code, "question-started", self._question_payload(session))
        self._arm_question_deadline(session, session.time_limit)

    def end_question(self, session: Session) -> None:
        if session.phase != Phase.QUESTION:
            return
        self.scheduler.cancel(session, DeadlineKind.QUESTION)
        session.phase = Phase.EXPLANATION
        logger.info("Session %s question %d closed", session.code, session.current_question_index)
        self.broadcaster.emit_to_session(session.code, "explanation", self._explanation_payload(session))

    def show_results(self, session: Session) -> None:
        session.phase = Phase.RESULTS
        finalize_distribution(session)
        session.leaderboard = top_leaderboard(session, self.settings.LEADERBOARD_SIZE)
        self.broadcaster.emit_to_session(session.code, "question-results", self._results_payload(session))

    def next_question(self, session: Session) -> None:
        if session.current_question_index + 1 < session.total_questions:
            session.current_question_index += 1
            self.start_question(session)
        else:
            self.finish(session)

    def finish(self, session: Session) -> None:
        self.scheduler.cancel(session, DeadlineKind.QUESTION)
        session.phase = Phase.FINAL
        session.final_results = FinalResults(leaderboard=full_leaderboard(session), stats=build_stats(session))
        logger.info("Session %s finished with %d player(s)", session.code, len(session.players))
        self.broadcaster.emit_to_session(session.code, "final-results", session.final_results.model_dump())

    # ---- helpers ----

    def _bind_host(self, session: Session, connection_id: str) -> None:
        self.tracker.bind_host(session, connection_id)
        self.broadcaster.join_session(session.code, connection_id)
        # host absence shares the deadline slot with the question timer
        if session.phase == Phase.QUESTION and session.pending_deadline is None:
            self._arm_question_deadline(session, self._remaining(session))

    def _close(self, session: Session, reason: str) -> None:
        self.broadcaster.emit_to_session(session.code, "session-closed", {"code": session.code, "reason": reason})
        self.registry.remove(session.code)
        self.tracker.forget_session(session.code)
        self.broadcaster.discard_session(session.code)

    def _send_created(self, session: Session, connection_id: str, reused: bool, restarted: bool = False) -> None:
        self.broadcaster.emit_to_connection(
            connection_id,
            "session-created",
            {"code": session.code, "reused": reused, "restarted": restarted, **self.host_view(session)},
        )
        self.broadcaster.emit_to_connection(connection_id, "wordcloud-update", cloud_payload(session.word_bank))
        self._catch_up(session, connection_id)

    def _catch_up(self, session: Session, connection_id: str) -> None:
        emit = partial(self.broadcaster.emit_to_connection, connection_id)
        if session.phase == Phase.WORDCLOUD:
            emit("wordcloud-started", cloud_payload(session.word_bank))
        elif session.phase == Phase.QUESTION:
            emit("question-started", self._question_payload(session))
        elif session.phase == Phase.EXPLANATION:
            emit("explanation", self._explanation_payload(session))
        elif session.phase == Phase.RESULTS:
            emit("question-results", self._results_payload(session))
        elif session.phase == Phase.FINAL and session.final_results is not None:
            emit("final-results", session.final_results.model_dump())

    def _remaining(self, session: Session) -> float:
        if session.question_start_time is None:
            return session.time_limit
        return max(0.0, session.question_start_time + session.time_limit - now_ts())

    def host_view(self, session: Session) -> Dict[str, Any]:
        return {
            "quiz_id": session.quiz_id,
            "title": session.quiz.title,
            "phase": session.phase.value,
            "current_question_index": session.current_question_index,
            "total_questions": session.total_questions,
            "players": [PublicPlayerOut(**p.model_dump()).model_dump() for p in session.players.values()],
            "player_count": len(session.players),
        }

    def describe(self, session: Session) -> PublicSessionOut:
        deadline = None
        if session.phase == Phase.QUESTION and session.question_start_time is not None:
            deadline = session.question_start_time + session.time_limit
        return PublicSessionOut(
            code=session.code,
            quiz_id=session.quiz_id,
            title=session.quiz.title,
            phase=session.phase,
            players=[PublicPlayerOut(**p.model_dump()) for p in session.players.values()],
            current_question_idx=session.current_question_index,
            total_questions=session.total_questions,
            question_deadline_ts=deadline,
        )

    def _question_payload(self, session: Session) -> Dict[str, Any]:
        q = session.current_question
        index, total = session.current_question_index, session.total_questions
        return {
            "question": {
                "id": q.id,
                "text": q.text,
                "hint": q.hint,
                "image": q.image,
                "points": q.points,
                "time_limit": session.time_limit,
                "index": index,
                "total": total,
            },
            "answers": [{"id": a.id, "text": a.text} for a in q.answers],
            "index": index,
            "total": total,
            "time_limit": session.time_limit,
            "deadline_ts": (session.question_start_time or now_ts()) + session.time_limit,
            "remaining": self._remaining(session),
        }

    def _explanation_payload(self, session: Session) -> Dict[str, Any]:
        q = session.current_question
        return {
            "question_id": q.id,
            "correct_answers": [a.text for a in q.answers if a.is_correct],
            "correct_answer_ids": [a.id for a in q.answers if a.is_correct],
            "hint": q.hint,
            "part1": q.explanation_part1,
            "part2": q.explanation_part2,
        }

    def _results_payload(self, session: Session) -> Dict[str, Any]:
        q = session.current_question
        return {
            "question_id": q.id,
            "correct_answer_ids": [a.id for a in q.answers if a.is_correct],
            "distribution": [d.model_dump() for d in session.distribution],
            "leaderboard": [e.model_dump() for e in session.leaderboard],
        }
