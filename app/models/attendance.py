from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

ATTENDANCE_REGISTERED = "registered"
ATTENDANCE_CHECKED_IN = "checked-in"
ATTENDANCE_CHECKED_OUT = "checked-out"
ATTENDANCE_ABSENT = "absent"

# Attendance log model. Written by the check-in flow; the monitor only moves
# a checked-in log to absent. A participant who checks out and back in gets a
# new log for the same event.
class AttendanceLog(Base):
    __tablename__ = "attendance_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ATTENDANCE_REGISTERED)
    check_in_time = Column(DateTime)
    check_out_time = Column(DateTime)
    notes = Column(String(200))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('registered', 'checked-in', 'checked-out', 'absent')",
            name="check_attendance_log_status",
        ),
    )

    # Relationships
    event = relationship("Event", back_populates="attendance_logs")
