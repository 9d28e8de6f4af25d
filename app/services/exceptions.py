class LocationTrackingError(Exception):
    """Base class for errors raised by the location monitor."""


class NotFoundError(LocationTrackingError):
    """Raised when an event, tracking record or alert does not exist."""
