"""Supabase (PostgREST) storage backend for segments and traces."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ..config import (
    REQUEST_TIMEOUT,
    SEGMENTS_TABLE,
    STORAGE_BACKOFF_MAX_SECONDS,
    STORAGE_MAX_RETRIES,
    SUPABASE_ANON_KEY,
    SUPABASE_URL,
    TRACES_TABLE,
)
from ..errors import PersistenceFailure
from ..models import SegmentRecord, TracePoint, TraceRecord
from .response_handling import classify_response_status
from .session import create_supabase_session

LOGGER = logging.getLogger(__name__)

# Column holding the segment key; the schema names it after OSM way ids.
SEGMENT_KEY_COLUMN = "osm_way_id"

# Postgres: no unique or exclusion constraint matches the ON CONFLICT target.
NO_CONFLICT_TARGET_CODE = "42P10"


class SupabaseStorage:
    """Writes segments and traces through the Supabase REST API.

    ``access_token`` is the signed-in user's JWT; row-level security on the
    tables only admits rows whose ``user_id`` matches it.
    """

    def __init__(
        self,
        *,
        url: str = SUPABASE_URL,
        api_key: str = SUPABASE_ANON_KEY,
        access_token: str | None = None,
        session: requests.Session | None = None,
        timeout: int = REQUEST_TIMEOUT,
        max_retries: int = STORAGE_MAX_RETRIES,
    ) -> None:
        if not url:
            raise ValueError("Supabase URL is not configured (SUPABASE_URL)")
        if not api_key:
            raise ValueError("Supabase API key is not configured (SUPABASE_ANON_KEY)")
        self._base = url.rstrip("/") + "/rest/v1"
        self._api_key = api_key
        self.access_token = access_token
        self._session = session or create_supabase_session(api_key)
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        # Cleared once the schema turns out to lack the (user_id, key) constraint.
        self._segment_upsert_supported = True

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------
    def upsert_segment(self, record: SegmentRecord) -> None:
        row = {
            "user_id": record.user_id,
            SEGMENT_KEY_COLUMN: record.segment_key,
            "geometry": record.geometry,
            "distance_meters": record.distance_meters,
            "visit_count": record.visit_count,
            "last_visited_at": _utc_now_iso(),
        }
        if self._segment_upsert_supported:
            try:
                self._request(
                    "POST",
                    SEGMENTS_TABLE,
                    context=f"Segment upsert {record.segment_key}",
                    params={"on_conflict": f"user_id,{SEGMENT_KEY_COLUMN}"},
                    json=row,
                    prefer="resolution=merge-duplicates,return=minimal",
                )
                return
            except PersistenceFailure as exc:
                if exc.code != NO_CONFLICT_TARGET_CODE:
                    raise
                LOGGER.warning(
                    "segments has no unique (user_id, %s) constraint; "
                    "falling back to update-then-insert",
                    SEGMENT_KEY_COLUMN,
                )
                self._segment_upsert_supported = False
        self._update_or_insert_segment(record, row)

    def _update_or_insert_segment(
        self, record: SegmentRecord, row: Dict[str, Any]
    ) -> None:
        updated = self._request(
            "PATCH",
            SEGMENTS_TABLE,
            context=f"Segment update {record.segment_key}",
            params={
                "user_id": f"eq.{record.user_id}",
                SEGMENT_KEY_COLUMN: f"eq.{record.segment_key}",
                "select": "id",
            },
            json={
                "visit_count": row["visit_count"],
                "last_visited_at": row["last_visited_at"],
            },
            prefer="return=representation",
        )
        if updated:
            return
        self._request(
            "POST",
            SEGMENTS_TABLE,
            context=f"Segment insert {record.segment_key}",
            json=row,
            prefer="return=minimal",
        )

    def upsert_trace(self, record: TraceRecord) -> str:
        body: Dict[str, Any] = {
            "points": [p.to_payload() for p in record.points],
            "summary": record.summary or None,
        }
        if record.trace_id is None:
            body["user_id"] = record.user_id
            rows = self._request(
                "POST",
                TRACES_TABLE,
                context="Trace create",
                json=body,
                prefer="return=representation",
            )
            trace_id = _first_row_id(rows)
            if trace_id is None:
                raise PersistenceFailure("Trace create returned no id")
            LOGGER.info(
                "Created trace %s with %d points", trace_id, len(record.points)
            )
            return trace_id

        self._request(
            "PATCH",
            TRACES_TABLE,
            context=f"Trace update {record.trace_id}",
            params={"id": f"eq.{record.trace_id}"},
            json=body,
            prefer="return=minimal",
        )
        LOGGER.debug(
            "Updated trace %s with %d points", record.trace_id, len(record.points)
        )
        return record.trace_id

    def fetch_segments(self, user_id: str) -> List[SegmentRecord]:
        rows = self._request(
            "GET",
            SEGMENTS_TABLE,
            context="Segment load",
            params={
                "user_id": f"eq.{user_id}",
                "select": f"{SEGMENT_KEY_COLUMN},geometry,distance_meters,visit_count",
            },
        )
        records: List[SegmentRecord] = []
        for row in rows or []:
            if not isinstance(row, dict):
                continue
            records.append(
                SegmentRecord(
                    user_id=user_id,
                    segment_key=str(row.get(SEGMENT_KEY_COLUMN)),
                    geometry=row.get("geometry") or {},
                    distance_meters=float(row.get("distance_meters") or 0.0),
                    visit_count=int(row.get("visit_count") or 1),
                )
            )
        return records

    def fetch_latest_trace(self, user_id: str) -> Optional[TraceRecord]:
        rows = self._request(
            "GET",
            TRACES_TABLE,
            context="Trace load",
            params={
                "user_id": f"eq.{user_id}",
                "select": "id,points,summary",
                "order": "created_at.desc",
                "limit": "1",
            },
        )
        if not rows:
            return None
        row = rows[0]
        points = [
            TracePoint.from_payload(p)
            for p in row.get("points") or []
            if isinstance(p, dict)
        ]
        return TraceRecord(
            user_id=user_id,
            points=points,
            trace_id=str(row.get("id")),
            summary=row.get("summary") or {},
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _headers(self, prefer: str | None) -> Dict[str, str]:
        token = self.access_token or self._api_key
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        *,
        context: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        url = f"{self._base}/{table}"
        backoff = 1.0
        attempt = 0
        while True:
            attempt += 1
            can_retry = attempt < self._max_retries
            try:
                response = self._session.request(
                    method,
                    url,
                    headers=self._headers(prefer),
                    params=params,
                    json=json,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                if can_retry:
                    LOGGER.warning(
                        "%s network error attempt=%s err=%s; retrying in %.1fs",
                        context,
                        attempt,
                        exc.__class__.__name__,
                        backoff,
                    )
                    time.sleep(backoff)
                    backoff = min(backoff * 2, STORAGE_BACKOFF_MAX_SECONDS)
                    continue
                message = f"{context} network error: {exc.__class__.__name__}"
                LOGGER.error(message)
                raise PersistenceFailure(message) from exc

            action, error = classify_response_status(
                response,
                context,
                attempt=attempt,
                backoff=backoff,
                can_retry=can_retry,
            )
            if action == "retry":
                time.sleep(backoff)
                backoff = min(backoff * 2, STORAGE_BACKOFF_MAX_SECONDS)
                continue
            if action == "raise" and error is not None:
                raise error

            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                message = f"{context} returned non-JSON payload"
                LOGGER.error(message)
                raise PersistenceFailure(message) from exc


def _first_row_id(rows: Any) -> Optional[str]:
    if isinstance(rows, list) and rows and isinstance(rows[0], dict):
        value = rows[0].get("id")
        return str(value) if value is not None else None
    if isinstance(rows, dict) and rows.get("id") is not None:
        return str(rows["id"])
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = ["SupabaseStorage", "SEGMENT_KEY_COLUMN"]
