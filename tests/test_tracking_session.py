"""State machine, ingestion pipeline and end-to-end tracking behaviour."""

from __future__ import annotations

import random

import pytest

from street_sweeper.errors import InvalidTransition
from street_sweeper.models import SessionState
from street_sweeper.tracking import TrackingPolicy, TrackingSession

from conftest import USER_ID, make_fix, northbound_fixes


def test_new_session_is_idle(session):
    assert session.state is SessionState.IDLE
    assert session.ingest(make_fix(40.0, -74.0, 0)) is None
    assert session.trace_points == []


def test_pause_from_idle_fails(session):
    with pytest.raises(InvalidTransition) as excinfo:
        session.pause()
    assert excinfo.value.action == "pause"
    assert session.state is SessionState.IDLE


def test_start_from_active_fails_without_corrupting_state(active_session):
    for fix in northbound_fixes(3):
        active_session.ingest(fix)
    before = active_session.total_distance_m
    with pytest.raises(InvalidTransition):
        active_session.start()
    assert active_session.state is SessionState.ACTIVE
    assert active_session.total_distance_m == before


def test_start_from_paused_fails_and_resume_is_required(active_session):
    active_session.pause()
    with pytest.raises(InvalidTransition):
        active_session.start()
    active_session.resume()
    assert active_session.state is SessionState.ACTIVE


def test_stop_requires_active_or_paused(session):
    with pytest.raises(InvalidTransition):
        session.stop()
    session.start()
    session.pause()
    session.stop()
    assert session.state is SessionState.STOPPED
    with pytest.raises(InvalidTransition):
        session.stop()
    with pytest.raises(InvalidTransition):
        session.resume()


def test_end_to_end_first_movement(active_session, memory_storage):
    first = active_session.ingest(make_fix(40.0000, -74.0000, 0, accuracy=10))
    assert first.total_distance_m == 0
    update = active_session.ingest(make_fix(40.0010, -74.0000, 10, accuracy=10))
    assert update.total_distance_m == pytest.approx(111.19, abs=0.01)
    assert update.current_speed_mps == pytest.approx(11.12, abs=0.01)
    segment = active_session.painter.get("40001_-74000")
    assert segment is not None
    assert segment.visit_count == 1
    assert active_session.streets_discovered == 1
    stored = memory_storage.get_segment(USER_ID, "40001_-74000")
    assert stored.visit_count == 1
    assert stored.geometry == {
        "type": "LineString",
        "coordinates": [[-74.0, 40.0], [-74.0, 40.001]],
    }
    assert stored.distance_meters == pytest.approx(111.19, abs=0.01)


def test_inaccurate_fix_changes_nothing(active_session):
    for fix in northbound_fixes(2):
        active_session.ingest(fix)
    distance = active_session.total_distance_m
    speed = active_session.current_speed_mps
    segments = active_session.streets_discovered
    points = len(active_session.trace_points)

    assert active_session.ingest(make_fix(40.01, -74.0, 100, accuracy=51)) is None

    assert active_session.total_distance_m == distance
    assert active_session.current_speed_mps == speed
    assert active_session.streets_discovered == segments
    assert len(active_session.trace_points) == points
    assert active_session.rejected_fixes == 1
    assert active_session.last_accepted_fix.timestamp == 10


def test_short_movements_do_not_paint(active_session):
    active_session.ingest(make_fix(40.0, -74.0, 0))
    # ~11 m: counts as distance, below the 20 m painting threshold.
    update = active_session.ingest(make_fix(40.0001, -74.0, 5))
    assert update.total_distance_m == pytest.approx(11.12, abs=0.01)
    assert active_session.streets_discovered == 0


def test_jitter_zeroes_speed_but_keeps_total(active_session):
    for fix in northbound_fixes(2):
        active_session.ingest(fix)
    total = active_session.total_distance_m
    update = active_session.ingest(make_fix(40.001001, -74.0, 11))
    assert update.total_distance_m == total
    assert update.current_speed_mps == 0


def test_out_of_order_fix_is_not_traced(active_session):
    for fix in northbound_fixes(2):
        active_session.ingest(fix)
    assert active_session.ingest(make_fix(40.005, -74.0, 3)) is None
    assert len(active_session.trace_points) == 2


def test_same_cell_from_two_paths_counts_twice(active_session):
    active_session.ingest(make_fix(40.0, -74.0, 0))
    active_session.ingest(make_fix(40.001, -74.0, 10))
    geometry = active_session.painter.get("40001_-74000").geometry
    active_session.ingest(make_fix(40.0, -74.001, 30))
    active_session.ingest(make_fix(40.0012, -74.0002, 40))
    segment = active_session.painter.get("40001_-74000")
    assert segment.visit_count == 2
    assert segment.geometry == geometry


def test_distance_and_visits_are_monotonic_on_noisy_walk(active_session):
    rng = random.Random(7)
    lat, lng, t = 40.0, -74.0, 0.0
    last_total = 0.0
    last_counts: dict[str, int] = {}
    for _ in range(300):
        lat += rng.uniform(-0.0008, 0.0008)
        lng += rng.uniform(-0.0008, 0.0008)
        t += rng.choice([-1.0, 0.0, 1.0, 2.0, 5.0])
        accuracy = rng.uniform(0.0, 80.0)
        active_session.ingest(make_fix(lat, lng, t, accuracy=accuracy))
        assert active_session.total_distance_m >= last_total
        last_total = active_session.total_distance_m
        for seg in active_session.painter.segments():
            assert seg.visit_count >= last_counts.get(seg.key, 0)
            last_counts[seg.key] = seg.visit_count


def test_paused_session_ignores_fixes_and_clock(active_session):
    active_session.ingest(make_fix(40.0, -74.0, 0))
    active_session.tick()
    active_session.pause()
    assert active_session.ingest(make_fix(40.001, -74.0, 10)) is None
    active_session.tick(5)
    assert active_session.elapsed_seconds == 1
    active_session.resume()
    update = active_session.ingest(make_fix(40.001, -74.0, 20))
    # Measured from the last fix before the pause.
    assert update.total_distance_m == pytest.approx(111.19, abs=0.01)


def test_tick_counts_only_while_active(session):
    session.tick()
    assert session.elapsed_seconds == 0
    session.start()
    session.tick()
    session.tick()
    assert session.elapsed_seconds == 2


def test_stop_mid_batch_forces_final_flush(active_session, memory_storage):
    for fix in northbound_fixes(8):
        active_session.ingest(fix)
    assert memory_storage.trace_writes == 0
    active_session.tick(3)

    decision = active_session.stop()

    assert decision.point_count == 8
    assert memory_storage.trace_writes == 1
    trace = memory_storage.fetch_latest_trace(USER_ID)
    assert len(trace.points) == 8
    assert trace.summary["point_count"] == 8
    assert active_session.remote_trace_id == trace.trace_id
    assert active_session.elapsed_seconds == 0
    assert active_session.current_speed_mps == 0
    assert active_session.total_distance_m > 0
    assert active_session.streets_discovered == 7


def test_batch_flush_then_update_in_place(active_session, memory_storage):
    for fix in northbound_fixes(15):
        active_session.ingest(fix)
    assert memory_storage.trace_writes == 1
    trace_id = active_session.remote_trace_id
    assert trace_id is not None
    for fix in northbound_fixes(5, start_lat=40.02):
        active_session.ingest(
            make_fix(fix.latitude, fix.longitude, fix.timestamp + 200)
        )
    active_session.stop()
    trace = memory_storage.get_trace(trace_id)
    assert len(trace.points) == 20
    assert memory_storage.fetch_latest_trace(USER_ID).trace_id == trace_id


def test_restart_creates_new_trace_and_keeps_segments(active_session, memory_storage):
    for fix in northbound_fixes(4):
        active_session.ingest(fix)
    active_session.stop()
    first_id = active_session.remote_trace_id
    streets = active_session.streets_discovered

    active_session.start()
    assert active_session.total_distance_m == 0
    assert active_session.trace_points == []
    assert active_session.remote_trace_id is None
    assert active_session.streets_discovered == streets
    for fix in northbound_fixes(3):
        active_session.ingest(make_fix(fix.latitude, fix.longitude, fix.timestamp + 500))
    active_session.stop()
    assert active_session.remote_trace_id not in (None, first_id)
    # Revisited cells incremented the account-wide counts.
    assert active_session.painter.get("40001_-74000").visit_count == 2
    assert memory_storage.get_segment(USER_ID, "40001_-74000").visit_count == 2


def test_stop_with_empty_trace_skips_write(active_session, memory_storage):
    decision = active_session.stop()
    assert decision.point_count == 0
    assert memory_storage.trace_writes == 0


def test_reset_returns_to_idle_and_can_clear_segments(active_session):
    for fix in northbound_fixes(3):
        active_session.ingest(fix)
    active_session.reset()
    assert active_session.state is SessionState.IDLE
    assert active_session.total_distance_m == 0
    assert active_session.streets_discovered == 2
    active_session.reset(clear_segments=True)
    assert active_session.streets_discovered == 0


def test_listeners_receive_updates_segments_and_states():
    updates, segments, states = [], [], []
    session = TrackingSession(
        on_update=updates.append,
        on_new_segment=segments.append,
        on_state_change=states.append,
    )
    session.start()
    for fix in northbound_fixes(3):
        session.ingest(fix)
    session.pause()
    session.resume()
    session.stop()
    assert len(updates) == 3
    assert [s.segment_key for s in segments] == ["40001_-74000", "40002_-74000"]
    assert states == [
        SessionState.ACTIVE,
        SessionState.PAUSED,
        SessionState.ACTIVE,
        SessionState.STOPPED,
    ]


def test_listener_failure_does_not_break_ingestion(caplog):
    def boom(_update):
        raise RuntimeError("render failed")

    session = TrackingSession(on_update=boom)
    session.start()
    assert session.ingest(make_fix(40.0, -74.0, 0)) is not None
    assert "render failed" in caplog.text


def test_custom_policy_thresholds():
    policy = TrackingPolicy(max_accuracy_m=5.0, flush_batch_size=2)
    session = TrackingSession(policy)
    session.start()
    assert session.ingest(make_fix(40.0, -74.0, 0, accuracy=6.0)) is None
    assert session.ingest(make_fix(40.0, -74.0, 0, accuracy=4.0)) is not None


def test_session_without_persistence_still_tracks():
    session = TrackingSession()
    session.start()
    for fix in northbound_fixes(16):
        session.ingest(fix)
    decision = session.stop()
    assert decision.point_count == 16
    assert session.streets_discovered == 15
