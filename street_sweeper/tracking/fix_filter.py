"""Accuracy-threshold policy for raw location fixes."""

from __future__ import annotations

from ..config import MAX_FIX_ACCURACY_M
from ..models import LocationFix


class FixFilter:
    """Reject fixes whose reported accuracy exceeds a hard ceiling.

    This is not a smoothing filter; no state is carried between calls.
    """

    def __init__(self, max_accuracy_m: float = MAX_FIX_ACCURACY_M) -> None:
        if max_accuracy_m < 0:
            raise ValueError("max_accuracy_m must be >= 0")
        self.max_accuracy_m = max_accuracy_m

    def accept(self, fix: LocationFix) -> bool:
        return fix.accuracy_meters <= self.max_accuracy_m


__all__ = ["FixFilter"]
