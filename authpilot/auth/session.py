"""
In-memory session cache: one live session per (agent, service).

Sessions are not persisted. An expired session is treated exactly like a
missing one and is evicted on read.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0


@dataclass
class Session:
    agent_id: str
    service: str
    token: str | None
    cookies: str | None
    created_at: float
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class SessionService:
    """TTL cache of established auth sessions."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._sessions: dict[tuple[str, str], Session] = {}

    def create_session(
        self,
        agent_id: str,
        service: str,
        token: str | None = None,
        cookies: str | None = None,
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> Session:
        """Create or replace the session for (agent_id, service)."""
        now = self._clock()
        session = Session(
            agent_id=agent_id,
            service=service,
            token=token,
            cookies=cookies,
            created_at=now,
            expires_at=now + ttl,
        )
        self._sessions[(agent_id, service)] = session
        logger.debug("Session created for %s on %s (ttl=%.0fs)", agent_id, service, ttl)
        return session

    def get_session(self, agent_id: str, service: str) -> Session | None:
        key = (agent_id, service)
        session = self._sessions.get(key)
        if session is None:
            return None
        if not session.is_valid(self._clock()):
            del self._sessions[key]
            return None
        return session

    def has_valid_session(self, agent_id: str, service: str) -> bool:
        return self.get_session(agent_id, service) is not None

    def revoke_session(self, agent_id: str, service: str) -> bool:
        return self._sessions.pop((agent_id, service), None) is not None

    def clear(self) -> None:
        self._sessions.clear()
