# safetrip/Schemas/location_sample.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


"""
Incoming sample as sent by the mobile client.

Readings are not range-constrained here: a bad coordinate or battery value
fails only its own item, in the ingestion pipeline.
"""
class LocationSample_in(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    recorded_at: Optional[datetime] = Field(None, description="Device clock")
    battery_level: Optional[float] = None
    is_charging: bool = False
    network_type: Optional[str] = None
    network_strength: Optional[float] = None
    platform: Optional[str] = None
    os_version: Optional[str] = None


class LocationBatch_in(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=100)
    locations: List[LocationSample_in] = Field(..., min_length=1)


"""
Persisted sample returned by history queries.
"""
class LocationSample_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    tourist_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    recorded_at: datetime
    uploaded_at: datetime
    battery_level: Optional[float] = None
    battery_is_charging: bool = False
    batch_id: Optional[str] = None
    is_offline_sync: bool = False
    flag_out_of_bounds: bool = False
    flag_rapid_movement: bool = False
    flag_suspicious_gap: bool = False


class FailedSample(BaseModel):
    sample: Dict[str, Any]
    reason: str


class BatchAnomaly(BaseModel):
    type: str
    alert_id: str
    severity: str


class BatchIngest_response(BaseModel):
    batch_id: str
    succeeded: List[int]
    failed: List[FailedSample]
    anomalies: List[BatchAnomaly]
    message: str


class CurrentPosition_get(BaseModel):
    tourist_id: str
    session_id: str
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    battery_level: Optional[float] = None
    recorded_at: datetime
    updated_at: datetime
