import random
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, get_settings
from app.core.logging_config import setup_logging
from app.api.v1.endpoints import proctoring
from app.services.connection_gateway import ConnectionGateway
from app.services.proctoring_coordinator import ProctoringCoordinator
from app.services.violation_sink import SupabaseViolationStore, ViolationStore


def get_application(
    settings: Optional[Settings] = None,
    violation_store: Optional[ViolationStore] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    # Invalid sampling bounds fail here, before anything starts
    monitoring_config = settings.monitoring_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        gateway = ConnectionGateway(
            queue_size=settings.PROCTORING_OUTBOUND_QUEUE_SIZE,
            identify_timeout=settings.PROCTORING_IDENTIFY_TIMEOUT_SECONDS,
        )
        store = violation_store or SupabaseViolationStore(table=settings.PROCTORING_VIOLATIONS_TABLE)
        coordinator = ProctoringCoordinator(monitoring_config, gateway, store, rng=rng)

        app.state.coordinator = coordinator
        await coordinator.start()
        try:
            yield
        finally:
            await coordinator.stop()
            await gateway.shutdown()
            app.state.coordinator = None

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register health endpoint
    @app.get("/health", tags=["health"])
    def health_check() -> dict:
        return {"status": "ok"}

    # API v1 routers
    api_router = APIRouter(prefix=settings.API_V1_PREFIX)

    api_router.include_router(proctoring.router, prefix="/proctoring", tags=["proctoring"])

    app.include_router(api_router)

    return app


app = get_application()
