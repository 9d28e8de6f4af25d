from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field
from enum import Enum


class LocationStatusEnum(str, Enum):
    inside = "inside"
    outside = "outside"
    warning = "warning"
    absent = "absent"


class TimerReasonEnum(str, Enum):
    outside = "outside"
    stale = "stale"


class AlertTypeEnum(str, Enum):
    left_geofence = "left_geofence"
    returned = "returned"
    warning = "warning"
    exceeded_limit = "exceeded_limit"


# Requests from the mobile client
class InitializeTrackingRequest(BaseModel):
    event_id: int = Field(..., gt=0)
    participant_id: int = Field(..., gt=0)
    attendance_log_id: int = Field(..., gt=0)


class LocationUpdateRequest(BaseModel):
    event_id: int = Field(..., gt=0)
    participant_id: int = Field(..., gt=0)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(default=0, ge=0)
    battery_level: Optional[float] = Field(default=None, ge=0, le=100)


class StopTrackingRequest(BaseModel):
    event_id: int = Field(..., gt=0)
    participant_id: int = Field(..., gt=0)


class AcknowledgeAlertRequest(BaseModel):
    status_id: int = Field(..., gt=0)
    alert_id: int = Field(..., gt=0)


# Location status
class CurrentLocation(BaseModel):
    latitude: float
    longitude: float
    accuracy: float = 0
    timestamp: Optional[datetime] = None


class OutsideTimer(BaseModel):
    is_active: bool
    reason: Optional[TimerReasonEnum] = None
    start_time: Optional[datetime] = None
    current_session_start: Optional[datetime] = None
    total_time_outside: int = 0


class LocationAlertInDB(BaseModel):
    id: int
    type: AlertTypeEnum
    timestamp: datetime
    acknowledged: bool

    class Config:
        from_attributes = True


class LocationStatusResponse(BaseModel):
    id: int
    event_id: int
    participant_id: int
    attendance_log_id: int
    attendance_status: Optional[str] = None
    current_location: CurrentLocation
    is_within_geofence: bool
    distance_from_center: Optional[int] = None
    outside_timer: OutsideTimer
    status: LocationStatusEnum
    alerts_sent: List[LocationAlertInDB]
    is_active: bool
    last_location_update: datetime
    current_time_outside: int

    @classmethod
    def from_record(cls, record, current_time_outside: int, attendance_status: Optional[str] = None):
        return cls(
            id=record.id,
            event_id=record.event_id,
            participant_id=record.participant_id,
            attendance_log_id=record.attendance_log_id,
            attendance_status=attendance_status,
            current_location=CurrentLocation(
                latitude=record.current_latitude,
                longitude=record.current_longitude,
                accuracy=record.current_accuracy or 0,
                timestamp=record.current_location_at,
            ),
            is_within_geofence=record.is_within_geofence,
            distance_from_center=record.distance_from_center,
            outside_timer=OutsideTimer(
                is_active=record.timer_active,
                reason=record.timer_reason,
                start_time=record.timer_start_time,
                current_session_start=record.timer_session_start,
                total_time_outside=record.total_time_outside,
            ),
            status=record.status,
            alerts_sent=[LocationAlertInDB.model_validate(alert) for alert in record.alerts],
            is_active=record.is_active,
            last_location_update=record.last_location_update,
            current_time_outside=current_time_outside,
        )


class LocationUpdateResponse(BaseModel):
    accepted: bool
    location_status: Optional[LocationStatusResponse] = None
    message: str


# Dashboard
class EventLocationSummary(BaseModel):
    total_participants: int
    inside_geofence: int
    outside_geofence: int
    inside: int
    outside: int
    warning: int
    absent: int


class EventLocationStatusResponse(BaseModel):
    participants: List[LocationStatusResponse]
    summary: EventLocationSummary


class EventAlert(BaseModel):
    alert_id: int
    status_id: int
    participant_id: int
    type: AlertTypeEnum
    timestamp: datetime
    acknowledged: bool
    current_status: LocationStatusEnum
    is_within_geofence: bool
    current_time_outside: int


class TeardownResponse(BaseModel):
    event_id: int
    deactivated: int
