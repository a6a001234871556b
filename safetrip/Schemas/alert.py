# safetrip/Schemas/alert.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PanicLocation(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PanicAlert_create(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=100)
    message: Optional[str] = Field(None, max_length=1000)
    location: Optional[PanicLocation] = None
    battery: Optional[float] = Field(None, ge=0, le=100)
    network_type: Optional[str] = None


class AlertAssign(BaseModel):
    officer_id: Optional[str] = Field(
        None, description="Defaults to the calling officer"
    )


class AlertStatus_update(BaseModel):
    status: str = Field(..., pattern='^(created|acknowledged|investigating|resolved|false_alarm)$')
    notes: Optional[str] = Field(None, max_length=2000)


class AlertResolve(BaseModel):
    outcome: str = Field(..., pattern='^(safe|assisted|false_alarm|escalated_to_authorities|other)$')
    notes: Optional[str] = Field(None, max_length=2000)


class AlertEscalate(BaseModel):
    severity: str = Field(..., pattern='^(low|medium|high|critical)$')
    reason: str = Field(..., min_length=1, max_length=500)


class Alert_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    alert_id: str
    session_id: str
    tourist_id: str
    alert_type: str
    severity: str
    status: str
    description: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    detected_at: datetime
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    assigned_officer: Optional[str] = None
    assigned_at: Optional[datetime] = None

    escalation_history: List[Dict[str, Any]] = Field(default_factory=list)
    status_history: List[Dict[str, Any]] = Field(default_factory=list)

    resolution_outcome: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None

    auto_escalate_enabled: bool
    escalate_after_minutes: int
    has_escalated: bool

    response_time_minutes: Optional[float] = None
    resolution_time_minutes: Optional[float] = None


class AlertStatistics_get(BaseModel):
    total: int
    by_type: Dict[str, int]
    by_severity: Dict[str, int]
    by_status: Dict[str, int]
    avg_response_minutes: Optional[float] = None
    avg_resolution_minutes: Optional[float] = None
