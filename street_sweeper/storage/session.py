"""Pooled HTTP session for the Supabase REST endpoint."""

from __future__ import annotations

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_supabase_session"]


def _transport_retry() -> Retry:
    # Gateway hiccups only; 429 and 5xx bodies are handled by the caller's
    # backoff loop so PostgREST error details can be logged.
    return Retry(
        total=2,
        connect=2,
        read=0,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST", "PATCH"],
        raise_on_status=False,
        respect_retry_after_header=True,
    )


def create_supabase_session(api_key: str | None = None) -> Session:
    """Return a session with pooled connections and the project key attached."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_transport_retry(),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept": "application/json",
            "Accept-Profile": "public",
            "Content-Profile": "public",
        }
    )
    if api_key:
        session.headers["apikey"] = api_key
    return session
