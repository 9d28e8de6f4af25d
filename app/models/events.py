from sqlalchemy import Column, Integer, String, DateTime, Float, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

EVENT_STATUS_UPCOMING = "upcoming"
EVENT_STATUS_ACTIVE = "active"
EVENT_STATUS_COMPLETED = "completed"
EVENT_STATUS_CANCELLED = "cancelled"

# Event model. Owned by the event service; the monitor only reads it.
class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    geofence_latitude = Column(Float, nullable=False)
    geofence_longitude = Column(Float, nullable=False)
    geofence_radius = Column(Float, nullable=False, default=100)
    max_time_outside = Column(Integer, default=15)  # minutes
    status = Column(String(20), nullable=False, default=EVENT_STATUS_UPCOMING, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('upcoming', 'active', 'completed', 'cancelled')",
            name="check_event_status",
        ),
    )

    # Relationships
    attendance_logs = relationship("AttendanceLog", back_populates="event")
    location_statuses = relationship("ParticipantLocationStatus", back_populates="event")
