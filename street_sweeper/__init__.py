"""Street Sweeper GPS tracking core."""

from .errors import InvalidTransition, PersistenceFailure, StreetSweeperError
from .models import LocationFix, Segment, SessionState, TracePoint
from .tracking import TrackingPolicy, TrackingSession

__all__ = [
    "InvalidTransition",
    "PersistenceFailure",
    "StreetSweeperError",
    "LocationFix",
    "Segment",
    "SessionState",
    "TracePoint",
    "TrackingPolicy",
    "TrackingSession",
]
