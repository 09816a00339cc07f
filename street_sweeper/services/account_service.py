"""Account restore at sign-in: painted segments and the latest trace."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Optional

from ..errors import PersistenceFailure
from ..models import Segment, TraceRecord
from ..storage.base import StorageBackend
from ..tracking.segment_painter import SegmentPainter


@dataclass(slots=True)
class AccountSnapshot:
    """What a signed-in user had painted before this run."""

    segments: List[Segment] = field(default_factory=list)
    latest_trace: Optional[TraceRecord] = None

    @property
    def streets_discovered(self) -> int:
        return len(self.segments)

    @property
    def painted_distance_m(self) -> float:
        return sum(seg.distance_m for seg in self.segments)


class AccountService:
    def __init__(self, storage: StorageBackend, logger: logging.Logger | None = None):
        self.storage = storage
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def load(self, user_id: str) -> AccountSnapshot:
        """Fetch stored segments and the newest trace.

        A storage failure is logged and yields an empty snapshot; tracking
        can start without history.
        """

        snapshot = AccountSnapshot()
        try:
            records = self.storage.fetch_segments(user_id)
        except PersistenceFailure as exc:
            self._log.error("Failed to load segments for user=%s: %s", user_id, exc)
            return snapshot
        for record in records:
            try:
                snapshot.segments.append(record.to_segment())
            except ValueError as exc:
                self._log.warning("Skipping stored segment: %s", exc)
        try:
            snapshot.latest_trace = self.storage.fetch_latest_trace(user_id)
        except PersistenceFailure as exc:
            self._log.warning(
                "Failed to load latest trace for user=%s: %s", user_id, exc
            )
        self._log.info(
            "Loaded %d segments (%.1fm painted) for user=%s",
            snapshot.streets_discovered,
            snapshot.painted_distance_m,
            user_id,
        )
        return snapshot

    def restore(self, user_id: str, painter: SegmentPainter) -> AccountSnapshot:
        """Load the account and seed ``painter`` so revisits keep counting."""

        snapshot = self.load(user_id)
        painter.load(snapshot.segments)
        return snapshot


__all__ = ["AccountService", "AccountSnapshot"]
