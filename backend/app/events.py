from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Protocol, Set

from .utils import now_ts

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):
    """Outbound capability handed to the engine.

    Implementations must not block: emits are queued and delivered in order.
    """

    def emit_to_session(self, code: str, event: str, payload: Dict[str, Any]) -> None: ...

    def emit_to_connection(self, connection_id: str, event: str, payload: Dict[str, Any]) -> None: ...

    def join_session(self, code: str, connection_id: str) -> None: ...

    def discard_session(self, code: str) -> None: ...


class EventStore:
    """Keep recent session events so clients can poll via HTTP."""

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self._events: Dict[str, Deque[Dict[str, Any]]] = {}
        self._seq: Dict[str, int] = {}

    def append(self, code: str, payload: Dict[str, Any]) -> int:
        """Store a new event for a session and return its sequence number."""
        seq = self._seq.get(code, 0) + 1
        self._seq[code] = seq
        log = self._events.setdefault(code, deque(maxlen=self.max_events))
        log.append({"seq": seq, "timestamp": now_ts(), "payload": payload})
        return seq

    def list(self, code: str, after: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        """Return events for a session that occur after the given sequence."""
        events = [e for e in self._events.get(code, ()) if after is None or e["seq"] > after]
        return events[:limit]

    def drop(self, code: str) -> None:
        self._events.pop(code, None)
        self._seq.pop(code, None)


class SocketHub:
    """Broadcaster backed by one ordered outbound queue per WebSocket connection."""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store
        self._queues: Dict[str, asyncio.Queue] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def register(self, connection_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[connection_id] = queue
        return queue

    def unregister(self, connection_id: str) -> None:
        self._queues.pop(connection_id, None)
        for members in self._rooms.values():
            members.discard(connection_id)

    def members(self, code: str) -> Set[str]:
        return set(self._rooms.get(code, ()))

    def join_session(self, code: str, connection_id: str) -> None:
        self._rooms.setdefault(code, set()).add(connection_id)

    def discard_session(self, code: str) -> None:
        self._rooms.pop(code, None)
        self.event_store.drop(code)

    def emit_to_session(self, code: str, event: str, payload: Dict[str, Any]) -> None:
        seq = self.event_store.append(code, {"type": event, **payload})
        message = {"type": event, "seq": seq, "payload": payload}
        for connection_id in sorted(self._rooms.get(code, ())):
            self._send(connection_id, message)

    def emit_to_connection(self, connection_id: str, event: str, payload: Dict[str, Any]) -> None:
        self._send(connection_id, {"type": event, "seq": None, "payload": payload})

    def _send(self, connection_id: str, message: Dict[str, Any]) -> None:
        queue = self._queues.get(connection_id)
        if queue is None:
            logger.debug("Dropping %s for closed connection %s", message["type"], connection_id)
            return
        queue.put_nowait(message)
