"""Tests for PersistenceService ordering, supersession and failure recovery."""

from __future__ import annotations

import logging
import threading

import pytest

from street_sweeper.errors import PersistenceFailure
from street_sweeper.models import SegmentRecord, TracePoint
from street_sweeper.services import PersistenceService, PersistenceServiceConfig
from street_sweeper.storage import InMemoryStorage
from street_sweeper.tracking import TraceBuffer, TrackingSession

from conftest import USER_ID, northbound_fixes


class FlakyStorage(InMemoryStorage):
    """In-memory store that fails the next ``fail_next`` writes of each kind."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_traces = 0
        self.fail_segments = 0
        self.trace_calls: list[int] = []

    def upsert_trace(self, record):
        self.trace_calls.append(len(record.points))
        if self.fail_traces:
            self.fail_traces -= 1
            raise PersistenceFailure("store unavailable")
        return super().upsert_trace(record)

    def upsert_segment(self, record):
        if self.fail_segments:
            self.fail_segments -= 1
            raise PersistenceFailure("store unavailable")
        return super().upsert_segment(record)


class GatedStorage(InMemoryStorage):
    """Blocks the first trace write until released."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.entered = threading.Event()
        self.trace_calls: list[int] = []

    def upsert_trace(self, record):
        self.entered.set()
        self.gate.wait(2.0)
        self.trace_calls.append(len(record.points))
        return super().upsert_trace(record)


def _point(i: int) -> TracePoint:
    return TracePoint(40.0 + i * 1e-3, -74.0, float(i))


def _service(storage, synchronous=True):
    return PersistenceService(
        PersistenceServiceConfig(storage=storage, user_id=USER_ID, synchronous=synchronous)
    )


def test_trace_failure_is_recovered_by_next_flush(caplog):
    storage = FlakyStorage()
    storage.fail_traces = 1
    service = _service(storage)
    session = TrackingSession(persistence=service)
    session.start()

    with caplog.at_level(logging.WARNING, logger="PersistenceService"):
        for fix in northbound_fixes(15):
            session.ingest(fix)
    assert service.failures == 1
    assert storage.fetch_latest_trace(USER_ID) is None
    assert "will retry on next flush" in caplog.text
    # In-memory totals are untouched by the failed write.
    assert session.total_distance_m > 0

    session.stop()
    trace = storage.fetch_latest_trace(USER_ID)
    assert trace is not None
    assert len(trace.points) == 15
    assert storage.trace_calls == [15, 15]


def test_failed_segment_write_is_retried_before_next_job():
    storage = FlakyStorage()
    storage.fail_segments = 1
    service = _service(storage)
    record = SegmentRecord(
        USER_ID,
        "40001_-74000",
        {"type": "LineString", "coordinates": [[-74.0, 40.0], [-74.0, 40.001]]},
        111.19,
        1,
    )
    service.submit_segment(record)
    assert service.pending_segment_retries == 1
    assert storage.get_segment(USER_ID, "40001_-74000") is None

    buffer = TraceBuffer()
    buffer.append(_point(0))
    service.submit_trace(buffer.flush_now(), buffer.assign_remote_id)
    assert service.pending_segment_retries == 0
    assert storage.get_segment(USER_ID, "40001_-74000").visit_count == 1


def test_newer_segment_count_supersedes_failed_one():
    storage = FlakyStorage()
    storage.fail_segments = 1
    service = _service(storage)
    geometry = {"type": "LineString", "coordinates": [[0.0, 0.0], [0.0, 0.001]]}
    service.submit_segment(SegmentRecord(USER_ID, "1_0", geometry, 111.0, 1))
    service.submit_segment(SegmentRecord(USER_ID, "1_0", geometry, 111.0, 2))
    assert service.pending_segment_retries == 0
    assert storage.get_segment(USER_ID, "1_0").visit_count == 2


def test_not_due_or_empty_decisions_are_ignored():
    storage = InMemoryStorage()
    service = _service(storage)
    buffer = TraceBuffer()
    not_due = buffer.append(_point(0))
    assert service.submit_trace(not_due, buffer.assign_remote_id) is None
    empty = TraceBuffer()
    assert service.submit_trace(empty.flush_now()) is None
    assert storage.trace_writes == 0


def test_async_writes_do_not_block_and_keep_order():
    storage = GatedStorage()
    service = _service(storage, synchronous=False)
    buffer = TraceBuffer(batch_size=2)
    try:
        for i in range(2):
            decision = buffer.append(_point(i))
        service.submit_trace(decision, buffer.assign_remote_id)
        assert storage.entered.wait(2.0)
        # The worker is blocked; further submissions return immediately.
        for i in range(2, 6):
            decision = buffer.append(_point(i))
            if decision.due:
                service.submit_trace(decision, buffer.assign_remote_id)
        storage.gate.set()
        assert service.drain(5.0)
    finally:
        service.close()
    # The 4-point snapshot was superseded by the 6-point one queued after it.
    assert storage.trace_calls == [2, 6]
    trace = storage.get_trace(buffer.remote_trace_id)
    assert len(trace.points) == 6
    assert storage.trace_writes == 2


def test_late_completion_does_not_leak_trace_id_into_new_session():
    storage = InMemoryStorage()
    service = _service(storage)
    buffer = TraceBuffer()
    buffer.append(_point(0))
    decision = buffer.flush_now()
    buffer.reset()
    service.submit_trace(decision, buffer.assign_remote_id)
    assert buffer.remote_trace_id is None
    assert service.trace_id_for(decision.generation) is not None


def test_closed_async_service_rejects_work():
    service = _service(InMemoryStorage(), synchronous=False)
    service.close()
    buffer = TraceBuffer()
    buffer.append(_point(0))
    with pytest.raises(RuntimeError):
        service.submit_trace(buffer.flush_now(), buffer.assign_remote_id)


def test_snapshot_counts_writes():
    storage = InMemoryStorage()
    service = _service(storage)
    session = TrackingSession(persistence=service)
    session.start()
    for fix in northbound_fixes(4):
        session.ingest(fix)
    session.stop()
    snap = service.snapshot()
    assert snap["trace_writes"] == 1
    assert snap["segment_writes"] == 3
    assert snap["failures"] == 0


@pytest.mark.parametrize("second_count", [16, 25])
def test_sessions_sharing_a_service_get_separate_traces(second_count):
    storage = InMemoryStorage()
    service = _service(storage)

    first = TrackingSession(persistence=service)
    first.start()
    for fix in northbound_fixes(20):
        first.ingest(fix)
    first.stop()

    second = TrackingSession(persistence=service)
    second.start()
    for fix in northbound_fixes(second_count, start_lat=41.0):
        second.ingest(fix)
    second.stop()

    assert first.remote_trace_id is not None
    assert second.remote_trace_id not in (None, first.remote_trace_id)
    assert len(storage.get_trace(first.remote_trace_id).points) == 20
    latest = storage.fetch_latest_trace(USER_ID)
    assert latest.trace_id == second.remote_trace_id
    assert len(latest.points) == second_count
    assert latest.points[0].latitude == 41.0


def test_async_trace_id_reaches_session():
    storage = InMemoryStorage()
    service = _service(storage, synchronous=False)
    session = TrackingSession(persistence=service)
    session.start()
    try:
        for fix in northbound_fixes(15):
            session.ingest(fix)
        assert service.drain(5.0)
    finally:
        service.close()
    assert session.remote_trace_id == storage.fetch_latest_trace(USER_ID).trace_id


class RacingStorage(InMemoryStorage):
    """Fails the first write of a key and lands a newer count meanwhile."""

    def __init__(self) -> None:
        super().__init__()
        self.service = None
        self.newer = None

    def upsert_segment(self, record):
        if self.newer is not None and record.visit_count < self.newer.visit_count:
            newer, self.newer = self.newer, None
            self.service.submit_segment(newer)
            raise PersistenceFailure("store unavailable")
        return super().upsert_segment(record)


def test_stale_segment_retry_never_lowers_stored_count():
    storage = RacingStorage()
    service = _service(storage)
    storage.service = service
    geometry = {"type": "LineString", "coordinates": [[0.0, 0.0], [0.0, 0.001]]}
    storage.newer = SegmentRecord(USER_ID, "1_0", geometry, 111.0, 2)

    service.submit_segment(SegmentRecord(USER_ID, "1_0", geometry, 111.0, 1))

    assert storage.get_segment(USER_ID, "1_0").visit_count == 2
    assert service.pending_segment_retries == 0
    # A later job has nothing stale left to replay.
    service.submit_segment(SegmentRecord(USER_ID, "2_0", geometry, 111.0, 1))
    assert storage.get_segment(USER_ID, "1_0").visit_count == 2
