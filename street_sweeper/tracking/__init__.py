"""GPS trace processing: filtering, distance, painting, buffering, session."""

from .distance_tracker import DistanceSpeedTracker
from .fix_filter import FixFilter
from .segment_painter import SegmentPainter
from .session import TrackingPolicy, TrackingSession
from .trace_buffer import TraceBuffer

__all__ = [
    "DistanceSpeedTracker",
    "FixFilter",
    "SegmentPainter",
    "TraceBuffer",
    "TrackingPolicy",
    "TrackingSession",
]
