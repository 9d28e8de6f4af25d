# Import all models to ensure they're registered with SQLAlchemy
from app.database import Base
from app.models.events import Event
from app.models.attendance import AttendanceLog
from app.models.location_tracking import ParticipantLocationStatus, LocationAlert
