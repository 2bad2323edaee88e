"""
Session Registry - authoritative in-memory state of live proctoring
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from app.models.proctoring import ProctoringSession, SessionHealth, SessionSnapshot, utcnow

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Holds the active student sessions (one per student id) and the set of
    admin observer connections.

    Methods here never await, so each call is atomic on the event loop.
    Compound operations (mutate, resample, notify) are serialized by the
    coordinator through ``lock``.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._sessions: Dict[str, ProctoringSession] = {}
        self._observers: Set[str] = set()
        self._clock = clock
        self.lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, student_id: str) -> bool:
        return student_id in self._sessions

    def register_session(
        self,
        student_id: str,
        connection_id: str,
        student_name: str = "",
        test_id: str = "",
        test_title: str = "",
    ) -> Tuple[ProctoringSession, Optional[ProctoringSession]]:
        """
        Insert or replace the session keyed by student id

        Returns:
            Tuple of (new session, replaced session or None)
        """
        now = self._clock()
        session = ProctoringSession(
            student_id=student_id,
            connection_id=connection_id,
            student_name=student_name,
            test_id=test_id,
            test_title=test_title,
            start_time=now,
            is_observed=False,
            last_heartbeat=now,
        )
        replaced = self._sessions.get(student_id)
        self._sessions[student_id] = session

        if replaced is not None:
            logger.info(
                f"Session for student {student_id} replaced: "
                f"{replaced.connection_id} -> {connection_id}"
            )
        return session, replaced

    def remove_session(self, student_id: str) -> Optional[ProctoringSession]:
        """Delete the entry if present; a missing id is not an error"""
        session = self._sessions.pop(student_id, None)
        if session is not None:
            session.health = SessionHealth.EVICTED
            session.is_observed = False
        return session

    def get_session(self, student_id: str) -> Optional[ProctoringSession]:
        return self._sessions.get(student_id)

    def sessions(self) -> List[ProctoringSession]:
        """Live session objects, for the coordinator and reaper"""
        return list(self._sessions.values())

    def list_sessions(self) -> List[SessionSnapshot]:
        """Detached snapshots used to hydrate newly connected admins"""
        return [session.snapshot() for session in self._sessions.values()]

    def student_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def observed_ids(self) -> List[str]:
        return [sid for sid, session in self._sessions.items() if session.is_observed]

    def is_observed(self, student_id: str) -> bool:
        session = self._sessions.get(student_id)
        return bool(session and session.is_observed)

    def apply_observed_set(self, observed: Iterable[str]) -> None:
        """Replace the observed set wholesale"""
        observed = set(observed)
        for student_id, session in self._sessions.items():
            session.is_observed = student_id in observed

    def record_heartbeat(self, student_id: str, at: Optional[datetime] = None) -> bool:
        session = self._sessions.get(student_id)
        if session is None:
            return False
        session.last_heartbeat = at or self._clock()
        session.health = SessionHealth.ALIVE
        return True

    # Observers (admin room membership)

    def register_observer(self, connection_id: str) -> None:
        self._observers.add(connection_id)

    def remove_observer(self, connection_id: str) -> bool:
        if connection_id in self._observers:
            self._observers.discard(connection_id)
            return True
        return False

    def has_observer(self, connection_id: str) -> bool:
        return connection_id in self._observers

    @property
    def observers(self) -> List[str]:
        return list(self._observers)

    @property
    def observer_count(self) -> int:
        return len(self._observers)
