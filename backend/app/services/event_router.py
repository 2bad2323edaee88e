"""
Event Router - fans student frames and violations out to admins
"""

import logging
from typing import Any, Dict

from app.models.proctoring import ViolationRecord
from app.services.connection_gateway import ADMIN_ROOM, ConnectionGateway
from app.services.session_registry import SessionRegistry
from app.services.violation_sink import ViolationSink

logger = logging.getLogger(__name__)


class EventRouter:
    """Frames are gated by the observed set; violations bypass sampling"""

    def __init__(self, registry: SessionRegistry, gateway: ConnectionGateway, sink: ViolationSink):
        self.registry = registry
        self.gateway = gateway
        self.sink = sink

    def route_frame(self, student_id: str, frame: str, metadata: Dict[str, Any]) -> bool:
        """
        Relay a frame to the admin room if the student is observed

        Unobserved frames and frames nobody receives are dropped, never
        buffered or retried.

        Returns:
            True when at least one admin connection accepted the frame
        """
        if not self.registry.is_observed(student_id):
            return False

        payload = {"studentId": student_id, **metadata, "frame": frame}
        delivered = self.gateway.broadcast(ADMIN_ROOM, "proctoring:frame", payload)
        if not delivered:
            logger.debug(f"Frame from student {student_id} dropped: no admin accepted it")
        return delivered > 0

    async def route_violation(self, record: ViolationRecord) -> bool:
        return await self.sink.persist_and_notify(record)
