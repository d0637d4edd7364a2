from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .errors import GameAlreadyStarted
from .models import Phase, Player, Session
from .timers import Callback, DeadlineKind, TimerScheduler
from .utils import unique_nickname

logger = logging.getLogger(__name__)

JOINABLE_PHASES = (Phase.LOBBY, Phase.WORDCLOUD)


class ConnectionTracker:
    """Binds transport connection ids to hosts and players of live sessions."""

    def __init__(self, scheduler: TimerScheduler, palette: Sequence[str], grace_period: float = 10.0):
        if not palette:
            raise ValueError("palette must not be empty")
        self.scheduler = scheduler
        self.palette = tuple(palette)
        self.grace_period = grace_period
        self._memberships: Dict[str, Set[str]] = {}

    def track(self, connection_id: str, code: str) -> None:
        self._memberships.setdefault(connection_id, set()).add(code)

    def sessions_for(self, connection_id: str) -> List[str]:
        return sorted(self._memberships.get(connection_id, ()))

    def forget(self, connection_id: str) -> None:
        self._memberships.pop(connection_id, None)

    def forget_session(self, code: str) -> None:
        for codes in self._memberships.values():
            codes.discard(code)

    def join(self, session: Session, connection_id: str, nickname: str) -> Tuple[Player, bool]:
        """Return ``(player, reconnected)`` for a join request.

        A disconnected player with the requested nickname is rebound to the new
        connection; a connected one keeps its name and the newcomer gets a
        suffixed nickname instead.
        """
        current = session.players.get(connection_id)
        if current is not None:
            current.connected = True
            self.track(connection_id, session.code)
            return current, True

        match = session.find_player((nickname or "").strip())
        if match is not None and not match[1].connected:
            old_id, player = match
            del session.players[old_id]
            player.connected = True
            session.players[connection_id] = player
            self.track(connection_id, session.code)
            logger.info("Player %r reconnected to %s", player.nickname, session.code)
            return player, True

        if session.phase not in JOINABLE_PHASES:
            raise GameAlreadyStarted(f"Session {session.code} is already in {session.phase.value}")

        player = Player(
            nickname=unique_nickname(nickname, (p.nickname for p in session.players.values())),
            color=self.palette[len(session.players) % len(self.palette)],
        )
        session.players[connection_id] = player
        self.track(connection_id, session.code)
        logger.info("Player %r joined %s", player.nickname, session.code)
        return player, False

    def bind_host(self, session: Session, connection_id: str) -> bool:
        """Make ``connection_id`` the host; return True if a pending absence was cancelled."""
        previous = session.host_connection_id
        session.host_connection_id = connection_id
        self.track(connection_id, session.code)
        cancelled = self.scheduler.cancel(session, DeadlineKind.HOST_ABSENCE)
        if previous and previous != connection_id:
            logger.info("Host of %s superseded by %s", session.code, connection_id)
        return cancelled

    def disconnect(self, session: Session, connection_id: str, on_host_absent: Callback) -> Optional[str]:
        role = None
        player = session.players.get(connection_id)
        if player is not None:
            player.connected = False
            role = "player"
        if session.host_connection_id == connection_id:
            session.host_connection_id = None
            self.scheduler.arm(session, DeadlineKind.HOST_ABSENCE, self.grace_period, on_host_absent)
            logger.info("Host left %s, closing in %.1fs unless it returns", session.code, self.grace_period)
            role = "host"
        codes = self._memberships.get(connection_id)
        if codes is not None:
            codes.discard(session.code)
            if not codes:
                self.forget(connection_id)
        return role
