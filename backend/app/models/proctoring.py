from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ViolationType(str, Enum):
    """AI-detected violation categories reported by the student client"""
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    PHONE_DETECTED = "phone_detected"
    LOOKING_DOWN = "looking_down"
    VIDEO_BLUR = "video_blur"
    LOUD_NOISE = "loud_noise"
    VOICE_DETECTED = "voice_detected"
    MICROPHONE_SILENT = "microphone_silent"


class ViolationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LeaveReason(str, Enum):
    """Why a session left the monitoring pool"""
    EXPLICIT_LEAVE = "explicit_leave"
    DISCONNECT = "disconnect"
    CONNECTION_TIMEOUT = "connection_timeout"


class SessionHealth(str, Enum):
    ALIVE = "alive"
    SUSPECT = "suspect"
    EVICTED = "evicted"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SessionSnapshot(CamelModel):
    """Read-only view of a session sent to admins"""
    student_id: str
    student_name: str
    test_id: str
    test_title: str
    start_time: datetime
    is_monitored: bool


class ProctoringSession(CamelModel):
    """One actively connected student taking a proctored test"""
    student_id: str
    connection_id: str
    student_name: str = ""
    test_id: str = ""
    test_title: str = ""
    start_time: datetime = Field(default_factory=utcnow)
    is_observed: bool = False
    last_heartbeat: datetime = Field(default_factory=utcnow)
    health: SessionHealth = SessionHealth.ALIVE

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            student_id=self.student_id,
            student_name=self.student_name,
            test_id=self.test_id,
            test_title=self.test_title,
            start_time=self.start_time,
            is_monitored=self.is_observed,
        )

    def duration_ms(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return int((now - self.start_time).total_seconds() * 1000)


class ViolationRecord(CamelModel):
    """Immutable AI violation fact, persisted once then broadcast"""
    model_config = ConfigDict(frozen=True)

    student_id: str
    test_id: str
    violation_type: ViolationType
    severity: ViolationSeverity
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)

    def to_alert(self) -> Dict[str, Any]:
        """Payload of the ai-violation-alert event"""
        return {
            "studentId": self.student_id,
            "testId": self.test_id,
            "violation": {
                "type": self.violation_type.value,
                "severity": self.severity.value,
                "message": self.message,
            },
            "timestamp": self.timestamp.isoformat(),
        }


class PoolSummary(CamelModel):
    """Result of one resample, broadcast as monitoring-pool-updated"""
    total_students: int
    monitored_count: int
    monitored_students: List[str] = []
    sample_rate: float
    next_rotation: Optional[datetime] = None
