"""
Live proctoring coordinator - sample-based monitoring of active exam sessions
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.config import MonitoringConfig
from app.models.proctoring import (
    LeaveReason,
    PoolSummary,
    ProctoringSession,
    ViolationRecord,
    utcnow,
)
from app.schemas.proctoring import (
    FramePayload,
    JoinProctoringPayload,
    ViolationPayload,
)
from app.services.connection_gateway import ADMIN_ROOM, ConnectionGateway
from app.services.event_router import EventRouter
from app.services.health_reaper import HealthReaper
from app.services.monitoring_sampler import MonitoringSampler
from app.services.session_registry import SessionRegistry
from app.services.violation_sink import ViolationSink, ViolationStore

logger = logging.getLogger(__name__)


class ProctoringCoordinator:
    """
    Owns the registry, sampler, router, sink and reaper for one application.

    Every registry mutation (join, leave, eviction, resample) runs under the
    registry lock, and each resample is computed and published as one unit.
    Frame routing only reads the observed set and never takes the lock.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        gateway: ConnectionGateway,
        store: ViolationStore,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.gateway = gateway
        self._clock = clock

        self.registry = SessionRegistry(clock=clock)
        self.sampler = MonitoringSampler(self.registry, config, rng=rng, clock=clock)
        self.sink = ViolationSink(store, gateway)
        self.router = EventRouter(self.registry, gateway, self.sink)
        self.reaper = HealthReaper(
            self.registry,
            gateway,
            config,
            evict=self.evict_sessions,
            clock=clock,
        )

        self._tasks: List[asyncio.Task] = []

    # Lifecycle

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self.sampler.schedule_next_rotation()
        self._tasks = [
            asyncio.create_task(self._rotation_loop(), name="proctoring-rotation"),
            asyncio.create_task(self.reaper.run(), name="proctoring-health-check"),
        ]
        logger.info(
            f"Live proctoring started: sample_rate={self.config.sample_rate} "
            f"min={self.config.min_monitored} max={self.config.max_monitored} "
            f"rotation={self.config.rotation_interval_minutes}min fps={self.config.frame_rate_fps}"
        )

    async def stop(self) -> None:
        """Cancel the rotation and health-check timers together"""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Live proctoring stopped")

    async def _rotation_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.rotation_interval_seconds)
            try:
                if len(self.registry) > 0:
                    logger.info("Rotating monitored students")
                    await self.resample()
                else:
                    self.sampler.schedule_next_rotation()
            except Exception:
                logger.exception("Monitoring rotation failed")

    # Sampling

    def _publish_pool(self, summary: Optional[PoolSummary]) -> None:
        if summary is None:
            return

        for session in self.registry.sessions():
            self.gateway.emit(session.connection_id, "monitoring-status", {
                "isMonitored": session.is_observed,
                "frameRate": self.config.frame_rate_fps,
            })

        self.gateway.broadcast(ADMIN_ROOM, "monitoring-pool-updated", summary.to_wire())

    def _resample_locked(self) -> Optional[PoolSummary]:
        summary = self.sampler.resample()
        self._publish_pool(summary)
        return summary

    async def resample(self) -> Optional[PoolSummary]:
        """Force a fresh selection (rotation timer, admin refresh)"""
        async with self.registry.lock:
            return self._resample_locked()

    # Student sessions

    async def register_session(self, connection_id: str, payload: JoinProctoringPayload) -> ProctoringSession:
        """Join (or rejoin) the monitoring pool; last connection wins"""
        async with self.registry.lock:
            session, _ = self.registry.register_session(
                student_id=payload.student_id,
                connection_id=connection_id,
                student_name=payload.student_name,
                test_id=payload.test_id,
                test_title=payload.test_title,
            )
            logger.info(
                f"Student joined proctoring: {payload.student_id} ({payload.student_name}) "
                f"test={payload.test_id} '{payload.test_title}'"
            )

            self._resample_locked()

            self.gateway.broadcast(ADMIN_ROOM, "student:joined", session.snapshot().to_wire())
            return session

    def _drop_session(
        self,
        student_id: str,
        reason: LeaveReason,
        connection_id: Optional[str] = None,
    ) -> Optional[ProctoringSession]:
        session = self.registry.get_session(student_id)
        if session is None:
            logger.debug(f"Remove requested for unknown student {student_id}")
            return None
        if connection_id is not None and session.connection_id != connection_id:
            # A newer connection already owns this student
            return None

        self.registry.remove_session(student_id)
        now = self._clock()
        duration = session.duration_ms(now)

        logger.info(
            f"Student left proctoring: {student_id} ({session.student_name}) "
            f"reason={reason.value} duration={duration}ms"
        )

        self.gateway.broadcast(ADMIN_ROOM, "student:left", {
            "studentId": student_id,
            "studentName": session.student_name,
            "reason": reason.value,
            "timestamp": now.isoformat(),
            "sessionDuration": duration,
        })
        return session

    async def remove_session(
        self,
        student_id: str,
        reason: LeaveReason,
        connection_id: Optional[str] = None,
    ) -> Optional[ProctoringSession]:
        """
        Remove a student from the pool

        Args:
            student_id: Student to remove
            reason: explicit_leave, disconnect or connection_timeout
            connection_id: When given, only remove if the session still belongs
                to this connection

        Returns:
            The removed session, or None when not found
        """
        async with self.registry.lock:
            session = self._drop_session(student_id, reason, connection_id)
            if session is not None and len(self.registry) > 0:
                self._resample_locked()
            return session

    async def evict_sessions(self, student_ids: List[str]) -> List[str]:
        """Health Reaper eviction: remove a batch, then resample once"""
        async with self.registry.lock:
            removed = [
                student_id
                for student_id in student_ids
                if self._drop_session(student_id, LeaveReason.CONNECTION_TIMEOUT) is not None
            ]
            if removed and len(self.registry) > 0:
                self._resample_locked()
            return removed

    def owns_session(self, student_id: str, connection_id: str) -> bool:
        """True while the student's live session belongs to this connection"""
        session = self.registry.get_session(student_id)
        return session is not None and session.connection_id == connection_id

    def record_heartbeat(self, student_id: str, connection_id: Optional[str] = None) -> bool:
        """Heartbeat from the connection that currently owns the session"""
        if connection_id is None:
            if student_id not in self.registry:
                return False
        elif not self.owns_session(student_id, connection_id):
            return False
        return self.reaper.record_heartbeat(student_id)

    # Observers

    async def register_observer(self, connection_id: str) -> None:
        """Admin joins the monitoring room and is hydrated with current state"""
        async with self.registry.lock:
            self.registry.register_observer(connection_id)
            self.gateway.join_room(ADMIN_ROOM, connection_id)
            logger.info(f"Admin joined monitoring room: {connection_id}")

            self.gateway.emit(
                connection_id,
                "active-sessions",
                [snapshot.to_wire() for snapshot in self.registry.list_sessions()],
            )
            self.gateway.emit(connection_id, "monitoring-config", self.monitoring_config())

    async def remove_observer(self, connection_id: str, reason: str = "disconnect") -> bool:
        async with self.registry.lock:
            removed = self.registry.remove_observer(connection_id)
            self.gateway.leave_room(ADMIN_ROOM, connection_id)
            if removed:
                logger.info(f"Admin left monitoring room: {connection_id} ({reason})")
                self.gateway.broadcast(ADMIN_ROOM, "admin:left", {
                    "connectionId": connection_id,
                    "timestamp": self._clock().isoformat(),
                    "reason": reason,
                })
            return removed

    # Event routing

    def handle_frame(self, student_id: str, payload: FramePayload) -> bool:
        return self.router.route_frame(student_id, payload.frame, payload.metadata())

    async def handle_violation(self, student_id: str, payload: ViolationPayload) -> bool:
        record = ViolationRecord(
            student_id=student_id,
            test_id=payload.test_id,
            violation_type=payload.violation.type,
            severity=payload.violation.severity,
            message=payload.violation.message,
            timestamp=payload.timestamp or self._clock(),
        )
        return await self.router.route_violation(record)

    def report_client_error(self, student_id: str, error: Any) -> None:
        logger.error(f"Client-side error reported by student {student_id}: {error}")
        self.gateway.broadcast(ADMIN_ROOM, "student:error", {
            "studentId": student_id,
            "error": error,
            "timestamp": self._clock().isoformat(),
        })

    # Read models

    def monitoring_config(self) -> Dict[str, Any]:
        return {
            "sampleRate": self.config.sample_rate,
            "frameRate": self.config.frame_rate_fps,
            "rotationInterval": self.config.rotation_interval_minutes,
            "totalStudents": len(self.registry),
            "monitoredCount": len(self.registry.observed_ids()),
        }

    def pool_status(self) -> Dict[str, Any]:
        status = self.sampler.summary().to_wire()
        status["adminCount"] = self.registry.observer_count
        return status
