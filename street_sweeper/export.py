"""Excel export of a tracking session: trace points, painted segments, summary."""

from __future__ import annotations

import logging
from os import PathLike
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Sequence

import pandas as pd
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from .config import (
    EXCEL_AUTOSIZE_COLUMNS,
    EXCEL_AUTOSIZE_MAX_ROWS,
    EXCEL_AUTOSIZE_MAX_WIDTH,
    EXCEL_AUTOSIZE_MIN_WIDTH,
    EXCEL_AUTOSIZE_PADDING,
)
from .models import Segment, TracePoint
from .stats import format_distance, format_elapsed

TRACE_SHEET = "Trace"
SEGMENTS_SHEET = "Segments"
SUMMARY_SHEET = "Summary"

TRACE_COLUMNS = ["Timestamp (s)", "Latitude", "Longitude", "Accuracy (m)"]
SEGMENT_COLUMNS = [
    "Segment Key",
    "Visits",
    "Distance (m)",
    "Start Lng",
    "Start Lat",
    "End Lng",
    "End Lat",
]

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(patternType="solid", fgColor="FFFFD400")
HEADER_BORDER = Border(
    left=Side(style="thin", color="000000"),
    right=Side(style="thin", color="000000"),
    top=Side(style="thin", color="000000"),
    bottom=Side(style="thin", color="000000"),
)

PathInput = str | Path | PathLike[str]

LOGGER = logging.getLogger(__name__)


def _trace_frame(points: Iterable[TracePoint]) -> pd.DataFrame:
    rows = [
        {
            "Timestamp (s)": p.timestamp,
            "Latitude": p.latitude,
            "Longitude": p.longitude,
            "Accuracy (m)": p.accuracy,
        }
        for p in points
    ]
    return pd.DataFrame(rows, columns=TRACE_COLUMNS)


def _segments_frame(segments: Iterable[Segment]) -> pd.DataFrame:
    rows = []
    for seg in segments:
        (start_lng, start_lat), (end_lng, end_lat) = seg.geometry
        rows.append(
            {
                "Segment Key": seg.key,
                "Visits": seg.visit_count,
                "Distance (m)": round(seg.distance_m, 2),
                "Start Lng": start_lng,
                "Start Lat": start_lat,
                "End Lng": end_lng,
                "End Lat": end_lat,
            }
        )
    df = pd.DataFrame(rows, columns=SEGMENT_COLUMNS)
    if not df.empty:
        df = df.sort_values(["Visits", "Segment Key"], ascending=[False, True])
    return df


def _summary_frame(summary: Mapping[str, Any]) -> pd.DataFrame:
    rows: list[Dict[str, Any]] = []
    for key, value in summary.items():
        rows.append({"Metric": key, "Value": value})
    return pd.DataFrame(rows, columns=["Metric", "Value"])


def build_session_summary(
    total_distance_m: float,
    elapsed_seconds: int,
    streets_discovered: int,
    trace_summary: Mapping[str, Any] | None = None,
) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "Total Distance": format_distance(total_distance_m),
        "Total Distance (m)": round(total_distance_m, 2),
        "Elapsed": format_elapsed(elapsed_seconds),
        "Streets Discovered": streets_discovered,
    }
    if trace_summary:
        summary["Trace Points"] = trace_summary.get("point_count", 0)
        summary["Trace Path Length (m)"] = trace_summary.get("distance", 0.0)
        summary["Trace Polyline"] = trace_summary.get("polyline", "")
    return summary


def write_session_workbook(
    filepath: PathInput,
    trace_points: Sequence[TracePoint],
    segments: Sequence[Segment],
    summary: Mapping[str, Any] | None = None,
) -> Path:
    path = Path(filepath)
    sheets = [
        (TRACE_SHEET, _trace_frame(trace_points)),
        (SEGMENTS_SHEET, _segments_frame(segments)),
    ]
    if summary:
        sheets.append((SUMMARY_SHEET, _summary_frame(summary)))
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, df in sheets:
            df.to_excel(writer, sheet_name=name, index=False)
            ws = writer.sheets[name]
            _style_header_row(ws, len(df.columns))
            _autosize(ws)
    LOGGER.info(
        "Wrote %s (trace points=%d, segments=%d)",
        path,
        len(trace_points),
        len(segments),
    )
    return path


def _style_header_row(ws: Worksheet, columns: int) -> None:
    for col_idx in range(1, columns + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.border = HEADER_BORDER


def _autosize(ws: Worksheet) -> None:
    if not EXCEL_AUTOSIZE_COLUMNS:
        return
    try:
        if ws.max_row > EXCEL_AUTOSIZE_MAX_ROWS:
            return
        for col_cells in ws.columns:
            max_len = 0
            col_letter = getattr(col_cells[0], "column_letter", None)
            for cell in col_cells:
                if cell.value is None:
                    continue
                max_len = max(max_len, len(str(cell.value)))
            width = min(
                EXCEL_AUTOSIZE_MAX_WIDTH,
                max(EXCEL_AUTOSIZE_MIN_WIDTH, max_len + EXCEL_AUTOSIZE_PADDING),
            )
            if col_letter:
                ws.column_dimensions[col_letter].width = width
    except Exception as exc:  # pragma: no cover - autosize is best-effort
        LOGGER.debug("Autosize failed for sheet %s: %s", getattr(ws, "title", "?"), exc)


__all__ = ["write_session_workbook", "build_session_summary"]
