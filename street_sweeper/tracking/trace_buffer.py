"""Session trace accumulation with a batched flush policy."""

from __future__ import annotations

import itertools
from typing import List, Optional

from ..config import TRACE_FLUSH_BATCH_SIZE
from ..models import FlushDecision, TracePoint

_NOT_DUE = FlushDecision(due=False)

# Process-wide: no two buffers ever hand out the same generation.
_GENERATIONS = itertools.count(1)


class TraceBuffer:
    """Append-only trace for the active session.

    ``generation`` is replaced with a process-unique value on every reset, so
    a write that completes after its session ended can tell that its trace id
    is stale and two buffers never share persistence bookkeeping.
    """

    def __init__(self, batch_size: int = TRACE_FLUSH_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self._points: List[TracePoint] = []
        self.pending_since_flush = 0
        self.remote_trace_id: Optional[str] = None
        self.generation = next(_GENERATIONS)

    def append(self, point: TracePoint) -> FlushDecision:
        self._points.append(point)
        self.pending_since_flush += 1
        if self.pending_since_flush < self.batch_size:
            return _NOT_DUE
        self.pending_since_flush = 0
        return self._snapshot()

    def flush_now(self) -> FlushDecision:
        self.pending_since_flush = 0
        return self._snapshot()

    def reset(self) -> None:
        self._points = []
        self.pending_since_flush = 0
        self.remote_trace_id = None
        self.generation = next(_GENERATIONS)

    def assign_remote_id(self, trace_id: str, generation: int) -> bool:
        """Record the store's id for this session's trace if still current."""

        if generation != self.generation:
            return False
        self.remote_trace_id = trace_id
        return True

    @property
    def points(self) -> List[TracePoint]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def _snapshot(self) -> FlushDecision:
        return FlushDecision(
            due=True,
            points=tuple(self._points),
            point_count=len(self._points),
            generation=self.generation,
        )


__all__ = ["TraceBuffer"]
