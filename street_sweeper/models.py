"""Dataclasses describing fixes, painted segments, traces and result values."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import math
from typing import Any, Dict, List, Optional, Tuple

LngLat = Tuple[float, float]
SegmentKey = str


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class MovementKind(str, Enum):
    """How the distance tracker interpreted a fix."""

    BASELINE = "baseline"
    JITTER = "jitter"
    MOVED = "moved"
    OUT_OF_ORDER = "out_of_order"


@dataclass(frozen=True, slots=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_lnglat(self) -> LngLat:
        return (self.longitude, self.latitude)


@dataclass(frozen=True, slots=True)
class LocationFix:
    """A single reported GPS position.

    Attributes:
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        accuracy_meters: Reported horizontal accuracy radius.
        timestamp: Seconds on a monotonic clock.
    """

    latitude: float
    longitude: float
    accuracy_meters: float
    timestamp: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if not math.isfinite(self.accuracy_meters) or self.accuracy_meters < 0:
            raise ValueError(f"accuracy_meters must be >= 0: {self.accuracy_meters}")
        if not math.isfinite(self.timestamp):
            raise ValueError(f"timestamp must be finite: {self.timestamp}")

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class TracePoint:
    latitude: float
    longitude: float
    timestamp: float
    accuracy: Optional[float] = None

    @classmethod
    def from_fix(cls, fix: LocationFix) -> "TracePoint":
        return cls(fix.latitude, fix.longitude, fix.timestamp, fix.accuracy_meters)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "lat": self.latitude,
            "lng": self.longitude,
            "timestamp": self.timestamp,
        }
        if self.accuracy is not None:
            payload["accuracy"] = self.accuracy
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TracePoint":
        accuracy = payload.get("accuracy")
        return cls(
            latitude=float(payload["lat"]),
            longitude=float(payload["lng"]),
            timestamp=float(payload.get("timestamp") or 0.0),
            accuracy=float(accuracy) if accuracy is not None else None,
        )


@dataclass(slots=True)
class Segment:
    """A painted grid cell. Only ``visit_count`` changes after creation."""

    key: SegmentKey
    geometry: Tuple[LngLat, LngLat]
    visit_count: int = 1
    distance_m: float = 0.0

    def geojson(self) -> Dict[str, Any]:
        return {
            "type": "LineString",
            "coordinates": [list(self.geometry[0]), list(self.geometry[1])],
        }


@dataclass(frozen=True, slots=True)
class DeltaResult:
    distance_delta_m: float
    speed_mps: float
    movement_m: float
    kind: MovementKind


@dataclass(frozen=True, slots=True)
class PaintResult:
    segment_key: SegmentKey
    is_new: bool
    visit_count: int
    geometry: Tuple[LngLat, LngLat]
    distance_m: float


@dataclass(frozen=True, slots=True)
class FlushDecision:
    """Outcome of a trace append; ``points`` is a snapshot copy when due."""

    due: bool
    points: Tuple[TracePoint, ...] = ()
    point_count: int = 0
    generation: int = 0


@dataclass(frozen=True, slots=True)
class TrackingUpdate:
    coordinate: Coordinate
    accuracy_meters: float
    total_distance_m: float
    current_speed_mps: float


@dataclass(slots=True)
class SegmentRecord:
    user_id: str
    segment_key: SegmentKey
    geometry: Dict[str, Any]
    distance_meters: float
    visit_count: int

    @classmethod
    def from_segment(cls, user_id: str, segment: Segment) -> "SegmentRecord":
        return cls(
            user_id=user_id,
            segment_key=segment.key,
            geometry=segment.geojson(),
            distance_meters=segment.distance_m,
            visit_count=segment.visit_count,
        )

    def to_segment(self) -> Segment:
        coords = self.geometry.get("coordinates") or []
        if len(coords) < 2:
            raise ValueError(f"segment {self.segment_key} has no line geometry")
        start = (float(coords[0][0]), float(coords[0][1]))
        end = (float(coords[-1][0]), float(coords[-1][1]))
        return Segment(
            key=self.segment_key,
            geometry=(start, end),
            visit_count=max(1, int(self.visit_count)),
            distance_m=float(self.distance_meters or 0.0),
        )


@dataclass(slots=True)
class TraceRecord:
    user_id: str
    points: List[TracePoint]
    trace_id: Optional[str] = None
    summary: Dict[str, Any] = field(default_factory=dict)
