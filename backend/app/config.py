from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from functools import lru_cache

from app.utils.exceptions import ConfigurationError


class MonitoringConfig(BaseModel):
    """Sampling, rotation and liveness policy for live proctoring"""
    model_config = ConfigDict(frozen=True)

    sample_rate: float = Field(default=0.15, gt=0, le=1)  # fraction of students monitored
    min_monitored: int = Field(default=5, ge=0)
    max_monitored: int = Field(default=60, ge=1)
    rotation_interval_minutes: float = Field(default=5, gt=0)
    frame_rate_fps: int = Field(default=2, ge=1)
    health_interval_seconds: float = Field(default=30, gt=0)
    stale_threshold_seconds: float = Field(default=60, gt=0)
    probe_grace_seconds: float = Field(default=10, ge=0)

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid monitoring configuration: {e}") from e

    @model_validator(mode="after")
    def check_bounds(self) -> "MonitoringConfig":
        if self.min_monitored > self.max_monitored:
            raise ValueError(
                f"min_monitored ({self.min_monitored}) exceeds max_monitored ({self.max_monitored})"
            )
        return self

    @property
    def rotation_interval_seconds(self) -> float:
        return self.rotation_interval_minutes * 60


class Settings(BaseSettings):
    # Application Settings
    APP_NAME: str = "Live Proctoring Coordinator"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    @property
    def debug(self) -> bool:
        return self.DEBUG

    # API Settings
    API_V1_PREFIX: str = "/api/v1"

    # Supabase Configuration (violation persistence)
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    PROCTORING_VIOLATIONS_TABLE: str = "proctoring_violations"

    @property
    def supabase_url(self) -> str:
        return self.SUPABASE_URL

    @property
    def supabase_key(self) -> str:
        return self.SUPABASE_KEY

    @property
    def supabase_service_role_key(self) -> str:
        return self.SUPABASE_SERVICE_ROLE_KEY

    # CORS Settings
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    @property
    def host(self) -> str:
        return self.HOST

    @property
    def port(self) -> int:
        return self.PORT

    # Live Proctoring Settings
    PROCTORING_SAMPLE_RATE: float = 0.15  # fraction of students monitored
    PROCTORING_MIN_MONITORED: int = 5
    PROCTORING_MAX_MONITORED: int = 60
    PROCTORING_ROTATION_MINUTES: float = 5
    PROCTORING_FRAME_RATE: int = 2  # FPS requested from monitored students
    PROCTORING_HEALTH_INTERVAL_SECONDS: float = 30
    PROCTORING_STALE_THRESHOLD_SECONDS: float = 60
    PROCTORING_PROBE_GRACE_SECONDS: float = 10
    PROCTORING_IDENTIFY_TIMEOUT_SECONDS: float = 30
    PROCTORING_OUTBOUND_QUEUE_SIZE: int = 256

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
    )

    def monitoring_config(self) -> MonitoringConfig:
        """Build the validated monitoring policy; raises ConfigurationError"""
        return MonitoringConfig(
            sample_rate=self.PROCTORING_SAMPLE_RATE,
            min_monitored=self.PROCTORING_MIN_MONITORED,
            max_monitored=self.PROCTORING_MAX_MONITORED,
            rotation_interval_minutes=self.PROCTORING_ROTATION_MINUTES,
            frame_rate_fps=self.PROCTORING_FRAME_RATE,
            health_interval_seconds=self.PROCTORING_HEALTH_INTERVAL_SECONDS,
            stale_threshold_seconds=self.PROCTORING_STALE_THRESHOLD_SECONDS,
            probe_grace_seconds=self.PROCTORING_PROBE_GRACE_SECONDS,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
