"""
Health Reaper - detects dead or stale student connections and evicts them
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Tuple

from app.config import MonitoringConfig
from app.models.proctoring import ProctoringSession, SessionHealth, utcnow
from app.services.connection_gateway import ConnectionGateway
from app.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

EvictCallback = Callable[[List[str]], Awaitable[List[str]]]


class HealthReaper:
    """
    Periodic liveness sweep: ALIVE -> SUSPECT -> EVICTED.

    A closed transport is evicted immediately. A live transport without a
    heartbeat for longer than the stale threshold is probed with a
    ``health-check`` event and evicted only if it is still suspect after the
    grace period.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        gateway: ConnectionGateway,
        config: MonitoringConfig,
        evict: EvictCallback,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.gateway = gateway
        self.config = config
        self._evict = evict
        self._clock = clock
        self._sleep = sleep

    def record_heartbeat(self, student_id: str) -> bool:
        """Liveness signal from the student (ping, probe ack, any event)"""
        return self.registry.record_heartbeat(student_id, self._clock())

    def _is_stale(self, session: ProctoringSession, now: datetime) -> bool:
        return (now - session.last_heartbeat).total_seconds() > self.config.stale_threshold_seconds

    def _still_suspect(self, student_id: str, connection_id: str) -> bool:
        session = self.registry.get_session(student_id)
        return (
            session is not None
            and session.connection_id == connection_id
            and session.health == SessionHealth.SUSPECT
        )

    async def sweep(self) -> List[str]:
        """
        Run one health check over every session

        Returns:
            Student ids evicted by this sweep
        """
        now = self._clock()
        disconnected: List[str] = []
        suspects: List[Tuple[str, str]] = []

        for session in self.registry.sessions():
            if not self.gateway.is_connected(session.connection_id):
                disconnected.append(session.student_id)
            elif self._is_stale(session, now):
                suspects.append((session.student_id, session.connection_id))

        evicted: List[str] = []

        if disconnected:
            logger.warning(f"Removing {len(disconnected)} disconnected session(s): {disconnected}")
            evicted.extend(await self._evict(disconnected))

        if suspects:
            for student_id, connection_id in suspects:
                session = self.registry.get_session(student_id)
                if session is not None:
                    session.health = SessionHealth.SUSPECT
                self.gateway.emit(connection_id, "health-check", {"timestamp": now.isoformat()})

            await self._sleep(self.config.probe_grace_seconds)

            confirmed = [sid for sid, cid in suspects if self._still_suspect(sid, cid)]
            if confirmed:
                logger.warning(f"Removing stale connection(s) after probe: {confirmed}")
                evicted.extend(await self._evict(confirmed))

        if len(self.registry) > 0 or evicted:
            logger.debug(
                f"Connection health check completed: sessions={len(self.registry)} "
                f"monitored={len(self.registry.observed_ids())} "
                f"admins={self.registry.observer_count} removed={len(evicted)}"
            )
        return evicted

    async def run(self) -> None:
        """Sweep forever on a fixed interval; cancelled on shutdown"""
        while True:
            await self._sleep(self.config.health_interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Connection health check failed")
