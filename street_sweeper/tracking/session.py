"""Tracking session state machine and the single fix ingestion entry point."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

from ..config import (
    JITTER_FLOOR_M,
    MAX_FIX_ACCURACY_M,
    SEGMENT_GRID_DECIMALS,
    SEGMENT_MIN_MOVEMENT_M,
    TRACE_FLUSH_BATCH_SIZE,
)
from ..errors import InvalidTransition
from ..models import (
    FlushDecision,
    LocationFix,
    MovementKind,
    PaintResult,
    SegmentRecord,
    SessionState,
    TracePoint,
    TrackingUpdate,
)
from .distance_tracker import DistanceSpeedTracker
from .fix_filter import FixFilter
from .segment_painter import SegmentPainter
from .trace_buffer import TraceBuffer

if TYPE_CHECKING:
    from ..services.persistence_service import PersistenceService

UpdateListener = Callable[[TrackingUpdate], None]
SegmentListener = Callable[[PaintResult], None]
StateListener = Callable[[SessionState], None]


@dataclass(frozen=True, slots=True)
class TrackingPolicy:
    """Thresholds applied to the fix stream."""

    max_accuracy_m: float = MAX_FIX_ACCURACY_M
    jitter_floor_m: float = JITTER_FLOOR_M
    segment_min_movement_m: float = SEGMENT_MIN_MOVEMENT_M
    grid_decimals: int = SEGMENT_GRID_DECIMALS
    flush_batch_size: int = TRACE_FLUSH_BATCH_SIZE


class TrackingSession:
    """One user-facing tracking run.

    States: idle -> active -> (paused <-> active) -> stopped -> active ...
    Distance and speed are session state; painted segments belong to the
    account and survive ``stop()``/``start()``. Every public method holds the
    session lock, so concurrent callers are serialized.
    """

    def __init__(
        self,
        policy: TrackingPolicy | None = None,
        *,
        persistence: PersistenceService | None = None,
        painter: SegmentPainter | None = None,
        on_update: UpdateListener | None = None,
        on_new_segment: SegmentListener | None = None,
        on_state_change: StateListener | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.policy = policy or TrackingPolicy()
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._filter = FixFilter(self.policy.max_accuracy_m)
        self._tracker = DistanceSpeedTracker(self.policy.jitter_floor_m)
        self._painter = painter or SegmentPainter(self.policy.grid_decimals)
        self._buffer = TraceBuffer(self.policy.flush_batch_size)
        self._persistence = persistence
        self._on_update = on_update
        self._on_new_segment = on_new_segment
        self._on_state_change = on_state_change

        self._state = SessionState.IDLE
        self._total_distance_m = 0.0
        self._current_speed_mps = 0.0
        self._elapsed_seconds = 0
        self.rejected_fixes = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def total_distance_m(self) -> float:
        return self._total_distance_m

    @property
    def current_speed_mps(self) -> float:
        return self._current_speed_mps

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed_seconds

    @property
    def last_accepted_fix(self) -> Optional[LocationFix]:
        return self._tracker.last_accepted_fix

    @property
    def painter(self) -> SegmentPainter:
        return self._painter

    @property
    def streets_discovered(self) -> int:
        return self._painter.streets_discovered

    @property
    def trace_points(self) -> List[TracePoint]:
        return self._buffer.points

    @property
    def remote_trace_id(self) -> Optional[str]:
        return self._buffer.remote_trace_id

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._state not in (SessionState.IDLE, SessionState.STOPPED):
                raise InvalidTransition("start", self._state)
            self._total_distance_m = 0.0
            self._current_speed_mps = 0.0
            self._elapsed_seconds = 0
            self._tracker.reset()
            self._buffer.reset()
            self._state = SessionState.ACTIVE
            self._log.info(
                "Tracking started (streets discovered so far: %d)",
                self._painter.streets_discovered,
            )
        self._notify_state(SessionState.ACTIVE)

    def pause(self) -> None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                raise InvalidTransition("pause", self._state)
            self._state = SessionState.PAUSED
            self._log.info("Tracking paused at %.1fm", self._total_distance_m)
        self._notify_state(SessionState.PAUSED)

    def resume(self) -> None:
        with self._lock:
            if self._state is not SessionState.PAUSED:
                raise InvalidTransition("resume", self._state)
            self._state = SessionState.ACTIVE
            self._log.info("Tracking resumed")
        self._notify_state(SessionState.ACTIVE)

    def stop(self) -> FlushDecision:
        """Stop the run and persist the full trace regardless of batching."""

        with self._lock:
            if self._state not in (SessionState.ACTIVE, SessionState.PAUSED):
                raise InvalidTransition("stop", self._state)
            decision = self._buffer.flush_now()
            if self._persistence is not None and decision.points:
                self._persistence.submit_trace(decision, self._assign_remote_id)
            self._elapsed_seconds = 0
            self._current_speed_mps = 0.0
            self._tracker.reset()
            self._state = SessionState.STOPPED
            self._log.info(
                "Tracking stopped: %.1fm, %d trace points, %d streets",
                self._total_distance_m,
                decision.point_count,
                self._painter.streets_discovered,
            )
        self._notify_state(SessionState.STOPPED)
        return decision

    def reset(self, *, clear_segments: bool = False) -> None:
        """Return to idle, dropping session state; ``clear_segments`` on sign-out."""

        with self._lock:
            self._total_distance_m = 0.0
            self._current_speed_mps = 0.0
            self._elapsed_seconds = 0
            self._tracker.reset()
            self._buffer.reset()
            if clear_segments:
                self._painter.clear()
            changed = self._state is not SessionState.IDLE
            self._state = SessionState.IDLE
        if changed:
            self._notify_state(SessionState.IDLE)

    def tick(self, seconds: int = 1) -> int:
        """Advance the elapsed clock; only counts while active."""

        with self._lock:
            if self._state is SessionState.ACTIVE and seconds > 0:
                self._elapsed_seconds += seconds
            return self._elapsed_seconds

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def ingest(self, fix: LocationFix) -> Optional[TrackingUpdate]:
        """Process one fix; returns None when it was ignored or dropped."""

        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return None
            if not self._filter.accept(fix):
                self.rejected_fixes += 1
                self._log.debug(
                    "Dropping fix with accuracy %.1fm (limit %.1fm)",
                    fix.accuracy_meters,
                    self.policy.max_accuracy_m,
                )
                return None

            prev = self._tracker.last_accepted_fix
            delta = self._tracker.update(fix)
            if delta.kind is MovementKind.OUT_OF_ORDER:
                self._log.debug(
                    "Ignoring non-monotonic fix at t=%.3f", fix.timestamp
                )
                return None

            self._total_distance_m += delta.distance_delta_m
            self._current_speed_mps = delta.speed_mps

            painted: Optional[PaintResult] = None
            if (
                prev is not None
                and delta.movement_m > self.policy.segment_min_movement_m
            ):
                painted = self._paint(prev, fix, delta.movement_m)

            decision = self._buffer.append(TracePoint.from_fix(fix))
            if decision.due and self._persistence is not None:
                self._persistence.submit_trace(decision, self._assign_remote_id)

            update = TrackingUpdate(
                coordinate=fix.coordinate,
                accuracy_meters=fix.accuracy_meters,
                total_distance_m=self._total_distance_m,
                current_speed_mps=self._current_speed_mps,
            )

        if painted is not None and painted.is_new:
            self._notify(self._on_new_segment, painted)
        self._notify(self._on_update, update)
        return update

    def _paint(
        self, prev: LocationFix, fix: LocationFix, movement_m: float
    ) -> PaintResult:
        result = self._painter.paint(prev.coordinate, fix.coordinate, movement_m)
        if result.is_new:
            self._log.info(
                "Discovered street %s (%d total)",
                result.segment_key,
                self._painter.streets_discovered,
            )
        if self._persistence is not None:
            segment = self._painter.get(result.segment_key)
            if segment is not None:
                self._persistence.submit_segment(
                    SegmentRecord.from_segment(self._persistence.user_id, segment)
                )
        return result

    def _assign_remote_id(self, trace_id: str, generation: int) -> None:
        with self._lock:
            self._buffer.assign_remote_id(trace_id, generation)

    # ------------------------------------------------------------------
    # Listener plumbing
    # ------------------------------------------------------------------
    def _notify_state(self, state: SessionState) -> None:
        self._notify(self._on_state_change, state)

    def _notify(self, listener: Optional[Callable], payload: object) -> None:
        if listener is None:
            return
        try:
            listener(payload)
        except Exception as exc:  # pragma: no cover - listener bugs stay local
            self._log.error(
                "Tracking listener %r failed: %s", listener, exc, exc_info=True
            )

    def snapshot(self) -> Tuple[SessionState, float, float, int]:
        with self._lock:
            return (
                self._state,
                self._total_distance_m,
                self._current_speed_mps,
                self._elapsed_seconds,
            )


__all__ = ["TrackingSession", "TrackingPolicy"]
