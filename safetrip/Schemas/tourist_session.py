# safetrip/Schemas/tourist_session.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from safetrip.Schemas.geofence import Geofence_def


class EmergencyContact(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    relationship: Optional[str] = None
    phone: str = Field(..., pattern=r'^\+?[1-9]\d{1,14}$')
    email: Optional[str] = None
    isPrimary: bool = False


# ============================================
# CREATE SCHEMA
# ============================================
class Session_create(BaseModel):
    """
    Payload for creating a session. The tourist id comes from the verified
    identity, never from the body.
    """
    destination: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    start_date: datetime
    end_date: datetime
    geofences: List[Geofence_def] = Field(default_factory=list)
    emergency_contacts: List[EmergencyContact] = Field(default_factory=list)
    check_in_interval: int = Field(60, ge=15, le=1440, description="Minutes")
    inactivity_threshold: int = Field(120, ge=30, le=720, description="Minutes")
    device_info: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _unique_fence_names(self):
        # Breach alerts are deduplicated per fence name
        seen = set()
        for fence in self.geofences:
            if fence.name in seen:
                raise ValueError(f"Duplicate geofence name '{fence.name}'")
            seen.add(fence.name)
        return self


class Session_activate(BaseModel):
    consent_given: bool = Field(..., description="Explicit consent to location tracking")


class Session_terminate(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CheckIn_create(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    message: Optional[str] = Field(None, max_length=1000)


# ============================================
# GET SCHEMA
# ============================================
class Session_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    tourist_id: str
    destination: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    status: str

    consent_given: bool
    consent_timestamp: Optional[datetime] = None

    geofences: List[Dict[str, Any]] = Field(default_factory=list)
    emergency_contacts: List[Dict[str, Any]] = Field(default_factory=list)
    check_in_interval: int
    inactivity_threshold: int

    last_activity_at: Optional[datetime] = None
    last_location_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    terminated_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    termination_reason: Optional[str] = None

    session_hash: str
    alert_count: int
    duration_days: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class Session_summary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    tourist_id: str
    destination: str
    status: str
    start_date: datetime
    end_date: datetime
    last_location_at: Optional[datetime] = None
    alert_count: int
