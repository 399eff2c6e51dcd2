"""
Session Registry
In-memory map of live session controllers with idle expiry
FILE: app/services/session_registry.py
"""
import logging
import time
from typing import Callable, Dict, Optional

from app.core.config import settings
from app.models.session import SessionStatus
from app.services.session_controller import SessionController

logger = logging.getLogger(__name__)

# Kept past the TTL: a submission in flight, or one waiting for retry
PINNED_STATUSES = frozenset({SessionStatus.FINALIZING, SessionStatus.ERROR})


class SessionNotFoundError(Exception):
    """Unknown or expired session id"""
    pass


class SessionRegistry:
    """
    One controller per attempt, keyed by session id.

    Each access refreshes the entry; entries idle for longer than the TTL
    are abandoned (if still running) and dropped by cleanup_expired().
    Sessions in PINNED_STATUSES never expire.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
        self._clock = clock
        self._controllers: Dict[str, SessionController] = {}
        self._touched: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._controllers

    def add(self, controller: SessionController) -> str:
        session_id = controller.session_id
        if session_id is None:
            raise ValueError("Only started sessions can be registered")
        self._controllers[session_id] = controller
        self._touched[session_id] = self._clock()
        return session_id

    def get(self, session_id: str) -> SessionController:
        controller = self._controllers.get(session_id)
        if controller is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        idle = self._clock() - self._touched[session_id]
        if idle > self.ttl_seconds and controller.status not in PINNED_STATUSES:
            self._expire(session_id)
            raise SessionNotFoundError(f"Session expired: {session_id}")
        self._touched[session_id] = self._clock()
        return controller

    def remove(self, session_id: str) -> Optional[SessionController]:
        self._touched.pop(session_id, None)
        return self._controllers.pop(session_id, None)

    def _expire(self, session_id: str) -> None:
        controller = self.remove(session_id)
        if controller is not None and controller.status in (SessionStatus.IN_PROGRESS, SessionStatus.TIME_UP):
            controller.abandon()
        logger.info(f"🧹 Session expired: {session_id}")

    def close_all(self) -> int:
        """Abandon every running attempt and empty the registry (shutdown)"""
        closed = 0
        for session_id in list(self._controllers):
            controller = self.remove(session_id)
            if controller.status in (SessionStatus.IN_PROGRESS, SessionStatus.TIME_UP):
                controller.abandon()
                closed += 1
        return closed

    def cleanup_expired(self) -> int:
        """Drop idle sessions; sessions being submitted or awaiting retry are kept"""
        now = self._clock()
        expired = [
            sid for sid, ts in self._touched.items()
            if now - ts > self.ttl_seconds
            and self._controllers[sid].status not in PINNED_STATUSES
        ]
        for sid in expired:
            self._expire(sid)
        return len(expired)


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
