from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection

from app.services.proctoring_coordinator import ProctoringCoordinator


def get_coordinator(connection: HTTPConnection) -> ProctoringCoordinator:
    """Coordinator built by the application lifespan (HTTP and WebSocket routes)"""
    coordinator = getattr(connection.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Live proctoring is not running"
        )
    return coordinator
