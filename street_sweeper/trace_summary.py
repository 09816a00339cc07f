"""Trace summary stored alongside the raw points for later map-matching."""

from __future__ import annotations

from typing import Any, Dict, Sequence

from polyline import encode as polyline_encode

from .geo import path_length_m
from .models import TracePoint


def summarize_trace(points: Sequence[TracePoint]) -> Dict[str, Any]:
    """Return ``{distance, duration, start_time, end_time, point_count, polyline}``.

    ``distance`` is the raw path length in metres over every trace hop, so it
    can be slightly larger than the session total which drops jitter.
    """

    if not points:
        return {
            "distance": 0.0,
            "duration": 0.0,
            "start_time": None,
            "end_time": None,
            "point_count": 0,
            "polyline": "",
        }
    latlon = [(p.latitude, p.longitude) for p in points]
    start = points[0].timestamp
    end = points[-1].timestamp
    return {
        "distance": round(path_length_m(latlon), 2),
        "duration": max(0.0, end - start),
        "start_time": start,
        "end_time": end,
        "point_count": len(points),
        "polyline": polyline_encode(latlon, 5),
    }


__all__ = ["summarize_trace"]
