"""
Live Proctoring Endpoints - WebSocket gateway for students and admins, plus
read-only monitoring status
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Any, Awaitable, Callable, Dict, List
from datetime import datetime, timezone
import asyncio
import logging

from app.dependencies import get_coordinator
from app.models.proctoring import LeaveReason
from app.schemas.proctoring import (
    FramePayload,
    JoinProctoringPayload,
    LeaveProctoringPayload,
    SocketMessage,
    ViolationPayload,
)
from app.services.connection_gateway import Connection
from app.services.proctoring_coordinator import ProctoringCoordinator

logger = logging.getLogger(__name__)
router = APIRouter()

Handler = Callable[[ProctoringCoordinator, Connection, Dict[str, Any]], Awaitable[None]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# SHARED CONNECTION HANDLING
# ============================================================================

async def _on_ping(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    coordinator.gateway.emit(connection.connection_id, "pong", {"timestamp": _now_iso()})


async def _on_reconnect_request(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    logger.info(f"Client requesting reconnection: {connection.connection_id} student={data.get('studentId')}")
    coordinator.gateway.emit(connection.connection_id, "reconnect-approved", {
        "message": "Reconnection approved",
        "timestamp": _now_iso()
    })


async def _dispatch(
    coordinator: ProctoringCoordinator,
    connection: Connection,
    raw: str,
    handlers: Dict[str, Handler]
) -> None:
    """Handle one inbound message; failures stay local to this event"""
    gateway = coordinator.gateway

    try:
        message = SocketMessage.model_validate_json(raw)
    except ValidationError:
        logger.warning(f"Malformed message on connection {connection.connection_id}")
        gateway.emit(connection.connection_id, "socket-error", {
            "message": "Malformed message",
            "shouldReconnect": False
        })
        return

    handler = handlers.get(message.event)
    if handler is None:
        logger.debug(f"Ignoring unknown event '{message.event}' on {connection.connection_id}")
        return

    if connection.student_id and message.event != "student:join-proctoring":
        if coordinator.owns_session(connection.student_id, connection.connection_id):
            coordinator.record_heartbeat(connection.student_id, connection.connection_id)
        else:
            # Replaced by a newer connection or evicted: stop speaking for the student
            logger.warning(
                f"Connection {connection.connection_id} no longer owns student "
                f"{connection.student_id}; dropping '{message.event}'"
            )
            connection.student_id = None

    try:
        await handler(coordinator, connection, message.data)
    except ValidationError as e:
        logger.warning(f"Invalid '{message.event}' payload on {connection.connection_id}: {e.error_count()} error(s)")
        gateway.emit(connection.connection_id, "socket-error", {
            "message": f"Invalid '{message.event}' payload",
            "shouldReconnect": False
        })
    except Exception:
        logger.exception(f"Error handling '{message.event}' on {connection.connection_id}")
        gateway.emit(connection.connection_id, "socket-error", {
            "message": "Connection error occurred",
            "shouldReconnect": True
        })


async def _serve_connection(
    websocket: WebSocket,
    coordinator: ProctoringCoordinator,
    handlers: Dict[str, Handler],
    on_close: Callable[[ProctoringCoordinator, Connection, str], Awaitable[None]]
) -> None:
    """Receive loop shared by student and admin sockets"""
    gateway = coordinator.gateway
    connection = await gateway.accept(websocket)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + gateway.identify_timeout
    reason = "disconnect"

    try:
        while True:
            if connection.identified:
                raw = await websocket.receive_text()
            else:
                try:
                    raw = await asyncio.wait_for(
                        websocket.receive_text(),
                        timeout=max(deadline - loop.time(), 0)
                    )
                except asyncio.TimeoutError:
                    logger.warning(f"Socket connection timeout - no identification received: {connection.connection_id}")
                    gateway.emit(connection.connection_id, "connection-timeout", {
                        "message": "Connection timeout - please refresh and try again"
                    })
                    reason = "identification_timeout"
                    await gateway.close(connection.connection_id)
                    break

            await _dispatch(coordinator, connection, raw, handlers)

    except WebSocketDisconnect as e:
        logger.debug(f"WebSocket disconnected: {connection.connection_id} (code {e.code})")

    finally:
        try:
            await on_close(coordinator, connection, reason)
        finally:
            await gateway.disconnect(connection.connection_id)


# ============================================================================
# STUDENT SOCKET
# ============================================================================

async def _on_student_join(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    payload = JoinProctoringPayload.model_validate(data)

    if connection.student_id and connection.student_id != payload.student_id:
        await coordinator.remove_session(
            connection.student_id,
            LeaveReason.EXPLICIT_LEAVE,
            connection_id=connection.connection_id
        )

    connection.student_id = payload.student_id
    connection.identified = True
    await coordinator.register_session(connection.connection_id, payload)


async def _on_student_leave(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    payload = LeaveProctoringPayload.model_validate(data)
    student_id = connection.student_id

    if student_id is None:
        return
    if payload.student_id and payload.student_id != student_id:
        logger.warning(
            f"Connection {connection.connection_id} tried to remove student "
            f"{payload.student_id} while joined as {student_id}"
        )
        return

    await coordinator.remove_session(
        student_id,
        LeaveReason.EXPLICIT_LEAVE,
        connection_id=connection.connection_id
    )
    connection.student_id = None


async def _on_frame(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    if connection.student_id is None:
        return
    payload = FramePayload.model_validate(data)
    coordinator.handle_frame(connection.student_id, payload)


async def _on_ai_violation(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    if connection.student_id is None:
        return
    payload = ViolationPayload.model_validate(data)

    if not payload.test_id:
        session = coordinator.registry.get_session(connection.student_id)
        if session is not None:
            payload.test_id = session.test_id

    await coordinator.handle_violation(connection.student_id, payload)


async def _on_health_check_ack(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    # The heartbeat itself is recorded for every event from a joined student
    return None


async def _on_client_error(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    if connection.student_id is None:
        logger.error(f"Client-side error reported on {connection.connection_id}: {data}")
        return
    coordinator.report_client_error(connection.student_id, data)


STUDENT_HANDLERS: Dict[str, Handler] = {
    "student:join-proctoring": _on_student_join,
    "student:leave-proctoring": _on_student_leave,
    "proctoring:frame": _on_frame,
    "proctoring:ai-violation": _on_ai_violation,
    "health-check-ack": _on_health_check_ack,
    "client-error": _on_client_error,
    "ping": _on_ping,
    "reconnect-request": _on_reconnect_request,
}


async def _close_student(coordinator: ProctoringCoordinator, connection: Connection, reason: str) -> None:
    if connection.student_id:
        await coordinator.remove_session(
            connection.student_id,
            LeaveReason.DISCONNECT,
            connection_id=connection.connection_id
        )


@router.websocket("/ws/student")
async def websocket_student_proctoring(
    websocket: WebSocket,
    coordinator: ProctoringCoordinator = Depends(get_coordinator)
):
    """
    WebSocket endpoint for students taking a proctored test
    Students join the pool, stream frames (relayed only while monitored) and
    report AI violations (always stored and relayed)
    """
    await _serve_connection(websocket, coordinator, STUDENT_HANDLERS, _close_student)


# ============================================================================
# ADMIN (MONITORING) SOCKET
# ============================================================================

async def _on_admin_join(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    connection.is_admin = True
    connection.identified = True
    await coordinator.register_observer(connection.connection_id)


async def _on_admin_refresh(coordinator: ProctoringCoordinator, connection: Connection, data: Dict[str, Any]) -> None:
    if not connection.is_admin:
        return
    logger.info(f"Admin requested monitoring pool refresh: {connection.connection_id}")
    await coordinator.resample()


ADMIN_HANDLERS: Dict[str, Handler] = {
    "admin:join-monitoring": _on_admin_join,
    "admin:refresh-monitoring": _on_admin_refresh,
    "ping": _on_ping,
    "reconnect-request": _on_reconnect_request,
}


async def _close_admin(coordinator: ProctoringCoordinator, connection: Connection, reason: str) -> None:
    if connection.is_admin:
        await coordinator.remove_observer(connection.connection_id, reason)


@router.websocket("/ws/monitor")
async def websocket_admin_monitoring(
    websocket: WebSocket,
    coordinator: ProctoringCoordinator = Depends(get_coordinator)
):
    """
    WebSocket endpoint for the admin monitoring dashboard
    Admins receive the active sessions, pool updates, relayed frames and
    violation alerts
    """
    await _serve_connection(websocket, coordinator, ADMIN_HANDLERS, _close_admin)


# ============================================================================
# MONITORING STATUS (read-only)
# ============================================================================

@router.get("/monitoring/status")
async def get_monitoring_status(coordinator: ProctoringCoordinator = Depends(get_coordinator)):
    """Current monitoring pool summary"""
    return coordinator.pool_status()


@router.get("/monitoring/sessions")
async def get_active_sessions(coordinator: ProctoringCoordinator = Depends(get_coordinator)) -> List[Dict[str, Any]]:
    """Snapshots of every active proctoring session"""
    return [snapshot.to_wire() for snapshot in coordinator.registry.list_sessions()]


@router.get("/monitoring/config")
async def get_monitoring_config(coordinator: ProctoringCoordinator = Depends(get_coordinator)):
    """Sampling configuration and current counts"""
    return coordinator.monitoring_config()
