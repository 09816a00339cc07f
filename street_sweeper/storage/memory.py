"""In-memory storage used for offline replays and tests."""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from typing import Dict, List, Optional, Tuple

from ..errors import StorageNotFoundError
from ..models import SegmentRecord, TraceRecord

LOGGER = logging.getLogger(__name__)


class InMemoryStorage:
    """Thread-safe dict-backed store with the same upsert semantics as Supabase."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._segments: Dict[Tuple[str, str], SegmentRecord] = {}
        self._traces: Dict[str, TraceRecord] = {}
        self._trace_order: List[str] = []
        self._ids = itertools.count(1)
        self.segment_writes = 0
        self.trace_writes = 0

    def upsert_segment(self, record: SegmentRecord) -> None:
        with self._lock:
            self.segment_writes += 1
            self._segments[(record.user_id, record.segment_key)] = copy.deepcopy(
                record
            )

    def upsert_trace(self, record: TraceRecord) -> str:
        with self._lock:
            self.trace_writes += 1
            trace_id = record.trace_id
            if trace_id is None:
                trace_id = f"trace-{next(self._ids)}"
                self._trace_order.append(trace_id)
            elif trace_id not in self._traces:
                raise StorageNotFoundError(f"trace {trace_id} does not exist")
            stored = TraceRecord(
                user_id=record.user_id,
                points=list(record.points),
                trace_id=trace_id,
                summary=dict(record.summary),
            )
            self._traces[trace_id] = stored
            LOGGER.debug(
                "Stored trace %s with %d points", trace_id, len(stored.points)
            )
            return trace_id

    def fetch_segments(self, user_id: str) -> List[SegmentRecord]:
        with self._lock:
            return [
                copy.deepcopy(rec)
                for (owner, _), rec in self._segments.items()
                if owner == user_id
            ]

    def fetch_latest_trace(self, user_id: str) -> Optional[TraceRecord]:
        with self._lock:
            for trace_id in reversed(self._trace_order):
                trace = self._traces[trace_id]
                if trace.user_id == user_id:
                    return copy.deepcopy(trace)
        return None

    def get_trace(self, trace_id: str) -> Optional[TraceRecord]:
        with self._lock:
            trace = self._traces.get(trace_id)
            return copy.deepcopy(trace) if trace is not None else None

    def get_segment(self, user_id: str, segment_key: str) -> Optional[SegmentRecord]:
        with self._lock:
            rec = self._segments.get((user_id, segment_key))
            return copy.deepcopy(rec) if rec is not None else None


__all__ = ["InMemoryStorage"]
