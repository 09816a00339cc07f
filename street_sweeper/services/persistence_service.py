"""Asynchronous, serialized persistence of traces and painted segments.

Writes run on a single worker thread so they reach the store in submission
order and never block ingestion. A failed write is logged and counted; the
next trace snapshot already contains every unpersisted point, and failed
segment writes are retried ahead of the next job.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
import threading
from typing import Callable, Dict, List, Optional

from ..errors import PersistenceFailure
from ..models import FlushDecision, SegmentKey, SegmentRecord, TraceRecord
from ..storage.base import StorageBackend
from ..trace_summary import summarize_trace

# Receives (trace_id, generation) once a snapshot has been stored.
TraceIdCallback = Callable[[str, int], None]


@dataclass(slots=True)
class PersistenceServiceConfig:
    storage: StorageBackend
    user_id: str
    # Run writes inline on the caller's thread (tests, replay without I/O).
    synchronous: bool = False
    logger: logging.Logger | None = None


class PersistenceService:
    def __init__(self, config: PersistenceServiceConfig):
        self.config = config
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if not config.synchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="street-sweeper-persist"
            )
        self._futures: List[Future] = []
        self._latest_submitted: Dict[int, int] = {}
        self._persisted: Dict[int, int] = {}
        self._trace_ids: Dict[int, str] = {}
        self._failed_segments: Dict[SegmentKey, SegmentRecord] = {}
        self._written_counts: Dict[SegmentKey, int] = {}
        self.failures = 0
        self.trace_writes = 0
        self.segment_writes = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit_trace(
        self, decision: FlushDecision, on_trace_id: TraceIdCallback | None = None
    ) -> Optional[Future]:
        """Queue a trace snapshot.

        ``decision.generation`` identifies the session trace; ``on_trace_id``
        is called from the writer once the store has assigned an id.
        """

        if not decision.due or not decision.points:
            return None
        with self._lock:
            gen = decision.generation
            self._latest_submitted[gen] = max(
                decision.point_count, self._latest_submitted.get(gen, 0)
            )
        return self._dispatch(lambda: self._write_trace(decision, on_trace_id))

    def submit_segment(self, record: SegmentRecord) -> Optional[Future]:
        with self._lock:
            # A newer count for the same key supersedes a failed older one.
            self._failed_segments.pop(record.segment_key, None)
        return self._dispatch(lambda: self._write_segment(record))

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued writes; returns False when the timeout expired."""

        with self._lock:
            pending = [f for f in self._futures if not f.done()]
            self._futures = pending
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            self._log.warning(
                "%d persistence jobs still pending after %.1fs",
                len(not_done),
                timeout or 0.0,
            )
        return not not_done

    def close(self, timeout: float | None = None) -> None:
        self.drain(timeout)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    @property
    def user_id(self) -> str:
        return self.config.user_id

    def trace_id_for(self, generation: int) -> Optional[str]:
        with self._lock:
            return self._trace_ids.get(generation)

    @property
    def pending_segment_retries(self) -> int:
        with self._lock:
            return len(self._failed_segments)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "failures": self.failures,
                "trace_writes": self.trace_writes,
                "segment_writes": self.segment_writes,
                "pending_segment_retries": len(self._failed_segments),
            }

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def _dispatch(self, job: Callable[[], None]) -> Optional[Future]:
        if self._executor is None:
            if not self.config.synchronous:
                raise RuntimeError("PersistenceService is closed")
            job()
            return None
        future = self._executor.submit(job)
        with self._lock:
            self._futures.append(future)
        return future

    def _record_failure(self) -> None:
        with self._lock:
            self.failures += 1

    def _write_trace(
        self, decision: FlushDecision, on_trace_id: TraceIdCallback | None
    ) -> None:
        self._retry_failed_segments()
        gen = decision.generation
        with self._lock:
            latest = self._latest_submitted.get(gen, 0)
            persisted = self._persisted.get(gen, 0)
            trace_id = self._trace_ids.get(gen)
        if decision.point_count < latest or decision.point_count <= persisted:
            self._log.debug(
                "Skipping superseded trace snapshot (%d points, latest=%d persisted=%d)",
                decision.point_count,
                latest,
                persisted,
            )
            return
        record = TraceRecord(
            user_id=self.config.user_id,
            points=list(decision.points),
            trace_id=trace_id,
            summary=summarize_trace(decision.points),
        )
        try:
            new_id = self.config.storage.upsert_trace(record)
        except PersistenceFailure as exc:
            self._record_failure()
            self._log.warning(
                "Trace flush of %d points failed; will retry on next flush: %s",
                decision.point_count,
                exc,
            )
            return
        except Exception as exc:  # pragma: no cover - defensive logging
            self._record_failure()
            self._log.error(
                "Trace flush failed due to unexpected error: %s", exc, exc_info=True
            )
            return
        with self._lock:
            self.trace_writes += 1
            self._trace_ids[gen] = new_id
            self._persisted[gen] = max(persisted, decision.point_count)
        self._log.debug("Trace %s holds %d points", new_id, decision.point_count)
        if on_trace_id is not None:
            on_trace_id(new_id, gen)

    def _write_segment(self, record: SegmentRecord) -> None:
        self._retry_failed_segments()
        if not self._upsert_segment(record):
            self._stash_failed(record)

    def _retry_failed_segments(self) -> None:
        with self._lock:
            retry = list(self._failed_segments.values())
            self._failed_segments.clear()
        for idx, record in enumerate(retry):
            if not self._upsert_segment(record):
                # Store still failing; leave the rest for the next job.
                for rest in retry[idx:]:
                    self._stash_failed(rest)
                return

    def _stash_failed(self, record: SegmentRecord) -> None:
        key = record.segment_key
        with self._lock:
            if record.visit_count <= self._written_counts.get(key, 0):
                return
            pending = self._failed_segments.get(key)
            if pending is None or pending.visit_count < record.visit_count:
                self._failed_segments[key] = record

    def _upsert_segment(self, record: SegmentRecord) -> bool:
        key = record.segment_key
        with self._lock:
            written = self._written_counts.get(key, 0)
        if record.visit_count < written:
            self._log.debug(
                "Skipping stale segment %s (visit_count=%d, stored=%d)",
                key,
                record.visit_count,
                written,
            )
            return True
        try:
            self.config.storage.upsert_segment(record)
        except PersistenceFailure as exc:
            self._record_failure()
            self._log.warning(
                "Segment %s write failed (visit_count=%d): %s",
                record.segment_key,
                record.visit_count,
                exc,
            )
            return False
        except Exception as exc:  # pragma: no cover - defensive logging
            self._record_failure()
            self._log.error(
                "Segment %s write failed due to unexpected error: %s",
                record.segment_key,
                exc,
                exc_info=True,
            )
            return False
        with self._lock:
            self.segment_writes += 1
            self._written_counts[key] = max(
                self._written_counts.get(key, 0), record.visit_count
            )
            pending = self._failed_segments.get(key)
            if pending is not None and pending.visit_count <= record.visit_count:
                del self._failed_segments[key]
        return True


__all__ = ["PersistenceService", "PersistenceServiceConfig"]
