"""Display helpers for the tracking HUD."""

from __future__ import annotations

import math


def format_distance(meters: float) -> str:
    """``"850m"`` below a kilometre, ``"1.2km"`` above."""

    if meters < 1000:
        return f"{_round_half_up(meters)}m"
    return f"{meters / 1000:.1f}km"


def format_speed(meters_per_second: float) -> str:
    return f"{meters_per_second * 3.6:.1f} km/h"


def format_elapsed(seconds: int) -> str:
    """Format seconds into ``Xh Ym`` (or ``Ym`` under an hour)."""

    hours, rem = divmod(max(0, int(seconds)), 3600)
    minutes = rem // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def accuracy_grade(accuracy_m: float) -> str:
    if accuracy_m <= 10:
        return "good"
    if accuracy_m <= 25:
        return "fair"
    return "poor"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


__all__ = ["format_distance", "format_speed", "format_elapsed", "accuracy_grade"]
