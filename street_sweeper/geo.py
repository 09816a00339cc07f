"""Geodesic helpers: haversine distance and segment-key quantization."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np

from .config import EARTH_RADIUS_M, SEGMENT_GRID_DECIMALS
from .models import Coordinate

LatLon = Tuple[float, float]


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in metres between two coordinates.

    Args:
        a: First coordinate.
        b: Second coordinate.

    Returns:
        Distance in metres, never negative and exactly 0.0 for identical
        inputs.
    """

    if a.latitude == b.latitude and a.longitude == b.longitude:
        return 0.0
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    h = min(1.0, max(0.0, h))
    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))
    return EARTH_RADIUS_M * c


def _quantize(value: float, scale: int) -> int:
    # Halves round toward +inf, matching keys already stored by the web client.
    return int(math.floor(value * scale + 0.5))


def segment_key(
    latitude: float, longitude: float, decimals: int = SEGMENT_GRID_DECIMALS
) -> str:
    """Return the grid-cell key for a position, e.g. ``"40001_-74000"``."""

    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    scale = 10**decimals
    return f"{_quantize(latitude, scale)}_{_quantize(longitude, scale)}"


def path_length_m(points: Sequence[LatLon]) -> float:
    """Sum of haversine hops along an ordered ``(lat, lon)`` sequence."""

    if len(points) < 2:
        return 0.0
    arr = np.radians(np.asarray(points, dtype=np.float64))
    lat = arr[:, 0]
    lon = arr[:, 1]
    d_lat = np.diff(lat)
    d_lon = np.diff(lon)
    h = (
        np.sin(d_lat / 2.0) ** 2
        + np.cos(lat[:-1]) * np.cos(lat[1:]) * np.sin(d_lon / 2.0) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    hops = 2.0 * np.arctan2(np.sqrt(h), np.sqrt(1.0 - h)) * EARTH_RADIUS_M
    return float(hops.sum())


__all__ = ["haversine_m", "segment_key", "path_length_m"]
