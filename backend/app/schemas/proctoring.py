from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator

from app.models.proctoring import CamelModel, ViolationSeverity, ViolationType


class SocketMessage(BaseModel):
    """Envelope of every WebSocket text frame: {"event": ..., "data": {...}}"""
    event: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def null_data_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class JoinProctoringPayload(CamelModel):
    student_id: str = Field(min_length=1)
    student_name: str = ""
    test_id: str = ""
    test_title: str = ""


class LeaveProctoringPayload(CamelModel):
    student_id: Optional[str] = None
    student_name: str = ""


class FramePayload(CamelModel):
    student_id: Optional[str] = None
    student_name: str = ""
    test_id: str = ""
    test_title: str = ""
    frame: str = Field(min_length=1)  # base64 encoded image
    timestamp: Optional[Any] = None
    ai_violations: Optional[Dict[str, Any]] = None

    def metadata(self) -> Dict[str, Any]:
        """Everything relayed to admins alongside the frame itself"""
        return {
            "studentName": self.student_name,
            "testId": self.test_id,
            "testTitle": self.test_title,
            "timestamp": self.timestamp,
            "aiViolations": self.ai_violations,
        }


class ViolationDetail(BaseModel):
    type: ViolationType
    severity: ViolationSeverity
    message: str = ""


class ViolationPayload(CamelModel):
    student_id: Optional[str] = None
    test_id: str = ""
    violation: ViolationDetail
    timestamp: Optional[datetime] = None
