"""
Violation Sink - persists AI violations, then alerts admins
"""

import logging
from datetime import datetime
from typing import Any, Callable, Protocol

from starlette.concurrency import run_in_threadpool

from app.core.supabase_client import get_supabase_client
from app.models.proctoring import ViolationRecord
from app.services.connection_gateway import ADMIN_ROOM, ConnectionGateway
from app.utils.exceptions import ViolationPersistenceError

logger = logging.getLogger(__name__)


class ViolationStore(Protocol):
    """Append-only write path into the relational store"""

    def insert_violation(
        self,
        student_id: str,
        test_id: str,
        violation_type: str,
        severity: str,
        message: str,
        timestamp: datetime,
    ) -> Any:
        ...


class SupabaseViolationStore:
    """Inserts violation rows through the Supabase client"""

    def __init__(
        self,
        table: str = "proctoring_violations",
        client_factory: Callable[[], Any] = get_supabase_client,
    ):
        self.table = table
        self._client = client_factory

    def insert_violation(
        self,
        student_id: str,
        test_id: str,
        violation_type: str,
        severity: str,
        message: str,
        timestamp: datetime,
    ) -> Any:
        """
        Insert one violation row

        Returns:
            The new row id

        Raises:
            ViolationPersistenceError: the insert failed or returned nothing
        """
        row = {
            "student_id": student_id,
            "test_id": test_id,
            "violation_type": violation_type,
            "severity": severity,
            "message": message,
            "timestamp": timestamp.isoformat(),
        }

        try:
            response = self._client().table(self.table).insert(row).execute()
        except Exception as e:
            raise ViolationPersistenceError(f"Failed to insert violation: {str(e)}") from e

        if not response.data:
            raise ViolationPersistenceError("Violation insert returned no data")

        return response.data[0].get("id")


class ViolationSink:
    """Persist first, broadcast only on success"""

    def __init__(self, store: ViolationStore, gateway: ConnectionGateway):
        self.store = store
        self.gateway = gateway

    async def persist_and_notify(self, record: ViolationRecord) -> bool:
        """
        Write the violation to the store, then alert the admin room

        A failed write is logged and the alert is suppressed so admins never
        see a violation that was not recorded.

        Returns:
            True when the violation was persisted and broadcast
        """
        logger.warning(
            f"AI violation detected: student={record.student_id} test={record.test_id} "
            f"type={record.violation_type.value} severity={record.severity.value}"
        )

        try:
            row_id = await run_in_threadpool(
                self.store.insert_violation,
                record.student_id,
                record.test_id,
                record.violation_type.value,
                record.severity.value,
                record.message,
                record.timestamp,
            )
        except Exception as e:
            logger.error(
                f"Error storing AI violation for student {record.student_id} "
                f"test {record.test_id}: {str(e)}"
            )
            return False

        self.gateway.broadcast(ADMIN_ROOM, "ai-violation-alert", record.to_alert())
        logger.info(f"AI violation {row_id} stored and admins notified (student {record.student_id})")
        return True
