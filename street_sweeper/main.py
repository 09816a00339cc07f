"""Replay a recorded fix log through a tracking session.

Usage:
    python -m street_sweeper replay fixes.csv --offline --export run.xlsx

The CSV needs ``latitude``, ``longitude``, ``accuracy`` and ``timestamp``
columns. Timestamps may be epoch seconds or ISO-8601 strings.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

import pandas as pd

from .config import OFFLINE_MODE, PERSISTENCE_DRAIN_TIMEOUT
from .errors import PersistenceFailure
from .export import build_session_summary, write_session_workbook
from .models import LocationFix, PaintResult
from .services import AccountService, PersistenceService, PersistenceServiceConfig
from .stats import format_distance, format_elapsed, format_speed
from .storage import StorageBackend, build_storage
from .trace_summary import summarize_trace
from .tracking import TrackingSession

LOGGER = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("latitude", "longitude", "accuracy", "timestamp")


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def read_fix_log(path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing columns {', '.join(missing)}")
    if not pd.api.types.is_numeric_dtype(df["timestamp"]):
        parsed = pd.to_datetime(df["timestamp"], utc=True)
        df["timestamp"] = (parsed - pd.Timestamp(0, tz="UTC")).dt.total_seconds()
    return df


def iter_fixes(df: pd.DataFrame) -> Iterator[LocationFix]:
    for row in df.itertuples(index=False):
        try:
            yield LocationFix(
                latitude=float(row.latitude),
                longitude=float(row.longitude),
                accuracy_meters=float(row.accuracy),
                timestamp=float(row.timestamp),
            )
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Skipping malformed fix row %s: %s", tuple(row), exc)


def replay(
    fixes: Sequence[LocationFix] | Iterator[LocationFix],
    *,
    storage: StorageBackend,
    user_id: str,
    export_path: str | Path | None = None,
    synchronous: bool = False,
) -> Dict[str, Any]:
    persistence = PersistenceService(
        PersistenceServiceConfig(
            storage=storage, user_id=user_id, synchronous=synchronous
        )
    )
    new_segments: List[PaintResult] = []
    session = TrackingSession(
        persistence=persistence, on_new_segment=new_segments.append
    )
    account = AccountService(storage).restore(user_id, session.painter)

    session.start()
    clock_origin: float | None = None
    ingested = 0
    for fix in fixes:
        if clock_origin is None:
            clock_origin = fix.timestamp
        # Drive the one-second timer from the recorded clock.
        due = int(fix.timestamp - clock_origin) - session.elapsed_seconds
        if due > 0:
            session.tick(due)
        if session.ingest(fix) is not None:
            ingested += 1
    elapsed = session.elapsed_seconds
    speed = session.current_speed_mps
    trace = session.trace_points
    session.stop()

    try:
        drained = persistence.drain(PERSISTENCE_DRAIN_TIMEOUT)
    finally:
        persistence.close()
    if not drained:
        LOGGER.warning("Some writes did not finish before shutdown")

    trace_summary = summarize_trace(trace)
    summary = build_session_summary(
        session.total_distance_m,
        elapsed,
        session.streets_discovered,
        trace_summary,
    )
    if export_path is not None:
        write_session_workbook(
            export_path, trace, session.painter.segments(), summary
        )
    result = {
        "accepted_fixes": ingested,
        "rejected_fixes": session.rejected_fixes,
        "total_distance_m": session.total_distance_m,
        "last_speed_mps": speed,
        "elapsed_seconds": elapsed,
        "new_segments": len(new_segments),
        "streets_discovered": session.streets_discovered,
        "previously_discovered": account.streets_discovered,
        "trace_points": len(trace),
        "persistence": persistence.snapshot(),
    }
    LOGGER.info(
        "Replay done: %s in %s, last speed %s, %d new streets (%d total)",
        format_distance(session.total_distance_m),
        format_elapsed(elapsed),
        format_speed(speed),
        len(new_segments),
        session.streets_discovered,
    )
    return result


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="street_sweeper", description="Street Sweeper GPS tracking tools"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    rp = sub.add_parser("replay", help="Replay a CSV fix log through a session")
    rp.add_argument("fixes", help="CSV file with latitude,longitude,accuracy,timestamp")
    rp.add_argument(
        "--user-id",
        default=os.getenv("STREET_SWEEPER_USER_ID", "local"),
        help="Owner of the painted segments and trace",
    )
    rp.add_argument(
        "--access-token",
        default=os.getenv("SUPABASE_ACCESS_TOKEN"),
        help="User JWT for Supabase row-level security",
    )
    rp.add_argument("--export", help="Write a session workbook (.xlsx) here")
    rp.add_argument(
        "--offline",
        action="store_true",
        default=OFFLINE_MODE,
        help="Keep writes in memory instead of calling Supabase",
    )
    rp.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.verbose)

    try:
        df = read_fix_log(args.fixes)
    except (FileNotFoundError, ValueError) as exc:
        LOGGER.error("Failed to load fix log '%s': %s", args.fixes, exc)
        return 2

    try:
        storage = build_storage(offline=args.offline, access_token=args.access_token)
    except ValueError as exc:
        LOGGER.error("Storage is not configured: %s (use --offline)", exc)
        return 2

    try:
        replay(
            iter_fixes(df),
            storage=storage,
            user_id=args.user_id,
            export_path=args.export,
        )
    except PersistenceFailure as exc:  # pragma: no cover - writes are async
        LOGGER.error("Replay aborted: %s", exc)
        return 1
    return 0
