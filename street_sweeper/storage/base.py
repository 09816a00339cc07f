"""Storage collaborator interface."""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from ..models import SegmentRecord, TraceRecord


@runtime_checkable
class StorageBackend(Protocol):
    """Durable store for painted segments and session traces.

    Implementations raise :class:`~street_sweeper.errors.PersistenceFailure`
    (or a subclass) when a read or write cannot be completed.
    """

    def upsert_segment(self, record: SegmentRecord) -> None:
        """Insert the segment, or overwrite its visit count when it exists."""
        ...

    def upsert_trace(self, record: TraceRecord) -> str:
        """Create the trace when ``trace_id`` is absent, else update it.

        Returns the trace id.
        """
        ...

    def fetch_segments(self, user_id: str) -> List[SegmentRecord]: ...

    def fetch_latest_trace(self, user_id: str) -> Optional[TraceRecord]: ...


__all__ = ["StorageBackend"]
