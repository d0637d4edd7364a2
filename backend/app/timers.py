"""Per-session deadlines.

A session owns at most one pending deadline (``session.pending_deadline``).
Arming a new one cancels the previous one, and a deadline that lost its slot
never runs its callback, so a stale timer can't act on a newer question.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from .models import Session
from .utils import now_ts

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class DeadlineKind(str, Enum):
    QUESTION = "question"
    HOST_ABSENCE = "host_absence"


class Deadline:
    def __init__(self, code: str, kind: DeadlineKind, delay: float):
        self.code = code
        self.kind = kind
        self.due_ts = now_ts() + delay
        self.cancelled = False
        self.fired = False
        self.task: Optional[asyncio.Task] = None

    @property
    def remaining(self) -> float:
        return max(0.0, self.due_ts - now_ts())

    def cancel(self) -> None:
        self.cancelled = True
        if self.task is not None and self.task is not asyncio.current_task() and not self.task.done():
            self.task.cancel()

    def __repr__(self) -> str:
        return f"Deadline(code={self.code!r}, kind={self.kind.value}, due_ts={self.due_ts:.3f})"


class TimerScheduler:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def arm(self, session: Session, kind: DeadlineKind, delay: float, callback: Callback) -> Deadline:
        self.cancel(session)
        deadline = Deadline(session.code, kind, delay)
        session.pending_deadline = deadline
        task = asyncio.create_task(self._run(session, deadline, max(0.0, delay), callback))
        deadline.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("[timer-set] session=%s kind=%s delay=%.1fs", session.code, kind.value, delay)
        return deadline

    def cancel(self, session: Session, kind: Optional[DeadlineKind] = None) -> bool:
        """Cancel the pending deadline, optionally only if it is of ``kind``."""
        deadline = session.pending_deadline
        if deadline is None or (kind is not None and deadline.kind != kind):
            return False
        session.pending_deadline = None
        deadline.cancel()
        logger.info("[timer-cancel] session=%s kind=%s", session.code, deadline.kind.value)
        return True

    async def _run(self, session: Session, deadline: Deadline, delay: float, callback: Callback) -> None:
        await asyncio.sleep(delay)
        if deadline.cancelled or session.pending_deadline is not deadline:
            logger.info("[timer-abort] session=%s kind=%s superseded", session.code, deadline.kind.value)
            return
        session.pending_deadline = None
        deadline.fired = True
        logger.info("[timer-fire] session=%s kind=%s", session.code, deadline.kind.value)
        try:
            await callback()
        except Exception:
            logger.exception("Deadline callback failed for session %s", session.code)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
