"""Per-session conversational state with sliding expiry."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Any, Callable, Mapping, Protocol

from cachetools import TTLCache

from omsassist.metrics.observability import get_logger
from omsassist.models import ChatMessage, Session, SessionContext

_CONTEXT_FIELDS = frozenset(SessionContext.__dataclass_fields__)


class SessionStore(Protocol):
    """Storage abstraction for chat sessions."""

    def get_or_create_session(self, session_id: str) -> Session:
        """Return the live session for ``session_id`` or start an empty one."""

    def get_session(self, session_id: str) -> Session | None:
        """Return the live session without touching it."""

    def append_message(self, session_id: str, message: ChatMessage) -> Session:
        """Append ``message`` and truncate history to the configured window."""

    def update_context(self, session_id: str, patch: Mapping[str, Any]) -> Session:
        """Overwrite the named context fields."""

    def evict_expired(self) -> int:
        """Drop idle sessions and return how many were removed."""

    def count(self) -> int:
        """Return the number of live sessions."""


class InMemorySessionStore:
    """Single-process session map; a session idle for ``ttl_seconds`` is gone for good."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600.0,
        max_messages: int = 20,
        max_sessions: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be positive")
        self._clock = clock
        self._max_messages = max_messages
        self._sessions: TTLCache = TTLCache(maxsize=max_sessions, ttl=ttl_seconds, timer=clock)
        self._lock = threading.Lock()
        self._created = 0
        self._logger = get_logger("sessions")

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def get_or_create_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            now = self._clock()
            if session is None:
                session = Session(session_id=session_id, last_activity=now)
                self._created += 1
                self._logger.info("session.created", session_id=session_id)
            else:
                session = replace(session, last_activity=now)
            self._sessions[session_id] = session
            return session

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def append_message(self, session_id: str, message: ChatMessage) -> Session:
        with self._lock:
            session = self._live_or_new(session_id)
            messages = (session.messages + (message,))[-self._max_messages :]
            session = replace(session, messages=messages, last_activity=self._clock())
            self._sessions[session_id] = session
            return session

    def update_context(self, session_id: str, patch: Mapping[str, Any]) -> Session:
        unknown = set(patch) - _CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown session context fields: {sorted(unknown)}")
        with self._lock:
            session = self._live_or_new(session_id)
            context = replace(session.context, **dict(patch))
            if "shown_orders" in patch:
                context = replace(context, shown_orders=tuple(patch["shown_orders"] or ()))
            session = replace(session, context=context, last_activity=self._clock())
            self._sessions[session_id] = session
            return session

    def evict_expired(self) -> int:
        with self._lock:
            before = len(self._sessions)
            self._sessions.expire()
            removed = before - len(self._sessions)
        if removed:
            self._logger.info("session.evicted", count=removed)
        return removed

    def count(self) -> int:
        with self._lock:
            self._sessions.expire()
            return len(self._sessions)

    def stats(self) -> dict[str, int]:
        return {"activeSessions": self.count(), "sessionsCreated": self._created}

    def _live_or_new(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            self._created += 1
            return Session(session_id=session_id, last_activity=self._clock())
        return session


__all__ = ["InMemorySessionStore", "SessionStore"]
