from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .db import QuizProvider
from .errors import QuizNotFound
from .models import Session
from .timers import TimerScheduler
from .utils import generate_code

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live session of the process."""

    def __init__(
        self,
        quiz_provider: QuizProvider,
        scheduler: TimerScheduler,
        code_factory: Callable[[], str] = generate_code,
    ):
        self.quiz_provider = quiz_provider
        self.scheduler = scheduler
        self._code_factory = code_factory
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    async def create(self, quiz_id: str, host_connection_id: Optional[str] = None) -> Session:
        quiz = await self.quiz_provider.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFound(f"Quiz {quiz_id!r} not found")

        code = self._code_factory()
        while code in self._sessions:
            code = self._code_factory()
        session = Session(code=code, quiz_id=quiz.id, quiz=quiz, host_connection_id=host_connection_id)
        self._sessions[code] = session

        logger.info("Session %s created for quiz %s", code, quiz.id)
        return session

    def get_by_code(self, code: Optional[str]) -> Optional[Session]:
        if not code:
            return None
        return self._sessions.get(code.strip().upper())

    def get_active_by_quiz(self, quiz_id: str) -> Optional[Session]:
        for session in self._sessions.values():
            if session.quiz_id == quiz_id:
                return session
        return None

    def is_live(self, session: Session) -> bool:
        return self._sessions.get(session.code) is session

    def remove(self, code: str) -> Optional[Session]:
        session = self._sessions.pop(code.strip().upper(), None)
        if session is not None:
            self.scheduler.cancel(session)
            logger.info("Session %s removed", session.code)
        return session

    async def shutdown(self) -> None:
        for code in list(self._sessions):
            self.remove(code)
        await self.scheduler.shutdown()
