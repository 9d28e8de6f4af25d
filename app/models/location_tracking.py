from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Float, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

# Display status of a tracked participant
STATUS_INSIDE = "inside"
STATUS_OUTSIDE = "outside"
STATUS_WARNING = "warning"  # kept for stored data; nothing sets it
STATUS_ABSENT = "absent"

# Why the outside timer is running
TIMER_REASON_OUTSIDE = "outside"
TIMER_REASON_STALE = "stale"

ALERT_LEFT_GEOFENCE = "left_geofence"
ALERT_RETURNED = "returned"
ALERT_WARNING = "warning"
ALERT_EXCEEDED_LIMIT = "exceeded_limit"


# One row per (event, participant), reused across check-ins
class ParticipantLocationStatus(Base):
    __tablename__ = "participant_location_statuses"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id = Column(Integer, nullable=False, index=True)
    attendance_log_id = Column(Integer, ForeignKey("attendance_logs.id"), nullable=False)

    # Last reported fix; (0, 0) until the device sends a real one
    current_latitude = Column(Float, nullable=False, default=0.0)
    current_longitude = Column(Float, nullable=False, default=0.0)
    current_accuracy = Column(Float, nullable=False, default=0.0)
    current_location_at = Column(DateTime)

    is_within_geofence = Column(Boolean, nullable=False, default=False)
    distance_from_center = Column(Integer)

    # Outside timer
    timer_active = Column(Boolean, nullable=False, default=False)
    timer_reason = Column(String(20))
    timer_start_time = Column(DateTime)
    timer_session_start = Column(DateTime)
    total_time_outside = Column(Integer, nullable=False, default=0)  # seconds

    status = Column(String(20), nullable=False, default=STATUS_OUTSIDE)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_location_update = Column(DateTime, nullable=False)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "participant_id", name="uq_location_status_event_participant"),
        CheckConstraint(
            "status IN ('inside', 'outside', 'warning', 'absent')",
            name="check_location_status",
        ),
        CheckConstraint(
            "timer_reason IS NULL OR timer_reason IN ('outside', 'stale')",
            name="check_timer_reason",
        ),
    )

    # Every UPDATE is conditional on the version that was read
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    event = relationship("Event", back_populates="location_statuses")
    attendance_log = relationship("AttendanceLog")
    alerts = relationship(
        "LocationAlert",
        back_populates="location_status",
        order_by="LocationAlert.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @classmethod
    def baseline(cls, event_id: int, participant_id: int, attendance_log_id: int, now: datetime):
        """
        A fresh record: no real fix yet, assumed outside until one arrives.
        """
        return cls(
            event_id=event_id,
            participant_id=participant_id,
            attendance_log_id=attendance_log_id,
            current_latitude=0.0,
            current_longitude=0.0,
            current_accuracy=0.0,
            current_location_at=now,
            is_within_geofence=False,
            distance_from_center=None,
            timer_active=False,
            timer_reason=None,
            timer_start_time=None,
            timer_session_start=None,
            total_time_outside=0,
            status=STATUS_OUTSIDE,
            is_active=True,
            last_location_update=now,
            alerts=[],
        )

    def has_real_fix(self) -> bool:
        return not (self.current_latitude == 0 and self.current_longitude == 0)

    def current_time_outside(self, now: datetime) -> int:
        """Accumulated seconds outside, including the running session."""
        if self.timer_active and self.timer_session_start is not None:
            elapsed = int((now - self.timer_session_start).total_seconds())
            return self.total_time_outside + max(0, elapsed)
        return self.total_time_outside

    def start_timer(self, now: datetime, reason: str, anchor: Optional[datetime] = None):
        session_start = anchor or now
        self.timer_active = True
        self.timer_reason = reason
        self.timer_session_start = session_start
        if self.timer_start_time is None:
            self.timer_start_time = session_start

    def pause_timer(self, now: datetime):
        # Folds the running session into the total; the total never shrinks
        if self.timer_active:
            self.total_time_outside = self.current_time_outside(now)
        self.timer_active = False
        self.timer_reason = None
        self.timer_session_start = None

    def reset_timer(self):
        self.timer_active = False
        self.timer_reason = None
        self.timer_start_time = None
        self.timer_session_start = None
        self.total_time_outside = 0

    def add_alert(self, alert_type: str, now: datetime) -> "LocationAlert":
        alert = LocationAlert(type=alert_type, timestamp=now, acknowledged=False)
        self.alerts.append(alert)
        return alert

    def has_unacknowledged_alert(self, alert_type: str) -> bool:
        return any(a.type == alert_type and not a.acknowledged for a in self.alerts)


# Alerts raised for a tracked participant, oldest first
class LocationAlert(Base):
    __tablename__ = "location_alerts"

    id = Column(Integer, primary_key=True, index=True)
    location_status_id = Column(
        Integer,
        ForeignKey("participant_location_statuses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    acknowledged = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "type IN ('left_geofence', 'returned', 'warning', 'exceeded_limit')",
            name="check_alert_type",
        ),
    )

    # Relationships
    location_status = relationship("ParticipantLocationStatus", back_populates="alerts")
