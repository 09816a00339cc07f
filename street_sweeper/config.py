"""Central configuration for the Street Sweeper tracking core.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Tracking policy
# ---------------------------------------------------------------------------
# Fixes reporting a horizontal accuracy worse than this (metres) are dropped.
MAX_FIX_ACCURACY_M = _env_float("MAX_FIX_ACCURACY_M", 50.0)

# Movements shorter than this (metres) are GPS jitter: no distance, no speed.
JITTER_FLOOR_M = _env_float("JITTER_FLOOR_M", 0.5)

# Minimum movement (metres) between accepted fixes before a segment is painted.
SEGMENT_MIN_MOVEMENT_M = _env_float("SEGMENT_MIN_MOVEMENT_M", 20.0)

# Decimal places kept per axis when quantizing a fix into a segment key.
# Three decimals is roughly a 100 m cell at mid-latitudes.
SEGMENT_GRID_DECIMALS = _env_int("SEGMENT_GRID_DECIMALS", 3)

# Trace points appended between batch flushes.
TRACE_FLUSH_BATCH_SIZE = _env_int("TRACE_FLUSH_BATCH_SIZE", 15)

# Mean Earth radius used by the haversine formula.
EARTH_RADIUS_M = 6_371_000.0


# ---------------------------------------------------------------------------
# Storage settings
# ---------------------------------------------------------------------------
# Supabase project URL and anon key. Do not hardcode secrets.
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")

# Table names in the public schema.
SEGMENTS_TABLE = os.getenv("SEGMENTS_TABLE", "segments")
TRACES_TABLE = os.getenv("TRACES_TABLE", "traces")

# When enabled the replay CLI never talks to Supabase and keeps every write
# in memory instead.
OFFLINE_MODE = _env_bool("STREET_SWEEPER_OFFLINE_MODE", False)


# ---------------------------------------------------------------------------
# Performance tuning
# ---------------------------------------------------------------------------
# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 4
HTTP_POOL_MAXSIZE = 4

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_int("REQUEST_TIMEOUT", 15)

# Retry/backoff behaviour for storage writes.
# STORAGE_MAX_RETRIES covers network failures, 429s and bad payloads.
STORAGE_MAX_RETRIES = _env_int("STORAGE_MAX_RETRIES", 3)
# STORAGE_BACKOFF_MAX_SECONDS caps the exponential backoff per attempt.
STORAGE_BACKOFF_MAX_SECONDS = _env_float("STORAGE_BACKOFF_MAX_SECONDS", 4.0)

# Seconds the CLI waits for queued writes on shutdown.
PERSISTENCE_DRAIN_TIMEOUT = _env_float("PERSISTENCE_DRAIN_TIMEOUT", 30.0)


# ---------------------------------------------------------------------------
# Excel formatting
# ---------------------------------------------------------------------------
# Automatically size columns after writing each sheet (openpyxl only).
EXCEL_AUTOSIZE_COLUMNS = True
EXCEL_AUTOSIZE_MAX_WIDTH = 50  # characters
EXCEL_AUTOSIZE_MIN_WIDTH = 6  # characters
EXCEL_AUTOSIZE_PADDING = 2  # extra characters added to the detected max
EXCEL_AUTOSIZE_MAX_ROWS = (
    5000  # skip autosize for very large sheets (performance guard)
)
