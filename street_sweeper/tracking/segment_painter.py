"""Quantized road-segment painting.

Each significant movement is keyed by the grid cell of its end point. The
first visit to a cell records the movement as the cell's geometry; later
visits only bump the visit count. Keying on the end point alone means two
different approaches ending in the same cell collapse into one segment.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from ..config import SEGMENT_GRID_DECIMALS
from ..geo import segment_key
from ..models import Coordinate, PaintResult, Segment, SegmentKey

LOGGER = logging.getLogger(__name__)


class SegmentPainter:
    def __init__(self, grid_decimals: int = SEGMENT_GRID_DECIMALS) -> None:
        self.grid_decimals = grid_decimals
        self._segments: Dict[SegmentKey, Segment] = {}

    def paint(
        self, prev: Coordinate, curr: Coordinate, distance_m: float = 0.0
    ) -> PaintResult:
        key = segment_key(curr.latitude, curr.longitude, self.grid_decimals)
        existing = self._segments.get(key)
        if existing is None:
            segment = Segment(
                key=key,
                geometry=(prev.as_lnglat(), curr.as_lnglat()),
                visit_count=1,
                distance_m=distance_m,
            )
            self._segments[key] = segment
            LOGGER.debug("New segment %s (%.1fm)", key, distance_m)
            return PaintResult(key, True, 1, segment.geometry, segment.distance_m)

        existing.visit_count += 1
        return PaintResult(
            key, False, existing.visit_count, existing.geometry, existing.distance_m
        )

    def load(self, segments: Iterable[Segment]) -> int:
        """Seed the map with stored segments; keeps the higher visit count."""

        loaded = 0
        for segment in segments:
            current = self._segments.get(segment.key)
            if current is None:
                self._segments[segment.key] = segment
                loaded += 1
            elif segment.visit_count > current.visit_count:
                current.visit_count = segment.visit_count
        return loaded

    def get(self, key: SegmentKey) -> Segment | None:
        return self._segments.get(key)

    def segments(self) -> List[Segment]:
        return list(self._segments.values())

    @property
    def streets_discovered(self) -> int:
        return len(self._segments)

    def clear(self) -> None:
        self._segments.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._segments

    def __len__(self) -> int:
        return len(self._segments)


__all__ = ["SegmentPainter"]
