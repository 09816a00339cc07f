"""Incremental distance and instantaneous speed from consecutive fixes."""

from __future__ import annotations

from typing import Optional

from ..config import JITTER_FLOOR_M
from ..geo import haversine_m
from ..models import DeltaResult, LocationFix, MovementKind

_ZERO_BASELINE = DeltaResult(0.0, 0.0, 0.0, MovementKind.BASELINE)
_ZERO_OUT_OF_ORDER = DeltaResult(0.0, 0.0, 0.0, MovementKind.OUT_OF_ORDER)


class DistanceSpeedTracker:
    """Holds the last accepted fix and measures each new one against it."""

    def __init__(self, jitter_floor_m: float = JITTER_FLOOR_M) -> None:
        if jitter_floor_m < 0:
            raise ValueError("jitter_floor_m must be >= 0")
        self.jitter_floor_m = jitter_floor_m
        self.last_accepted_fix: Optional[LocationFix] = None

    def update(self, fix: LocationFix) -> DeltaResult:
        last = self.last_accepted_fix
        if last is None:
            self.last_accepted_fix = fix
            return _ZERO_BASELINE

        dt = fix.timestamp - last.timestamp
        if dt <= 0:
            # Duplicate or late delivery; keep the reference point.
            return _ZERO_OUT_OF_ORDER

        d = haversine_m(last.coordinate, fix.coordinate)
        self.last_accepted_fix = fix
        if d < self.jitter_floor_m:
            return DeltaResult(0.0, 0.0, d, MovementKind.JITTER)
        return DeltaResult(d, d / dt, d, MovementKind.MOVED)

    def reset(self) -> None:
        self.last_accepted_fix = None


__all__ = ["DistanceSpeedTracker"]
