"""Storage collaborators (Supabase REST, in-memory)."""

from __future__ import annotations

from .. import config
from .base import StorageBackend
from .memory import InMemoryStorage
from .session import create_supabase_session
from .supabase import SupabaseStorage


def build_storage(
    *, offline: bool | None = None, access_token: str | None = None
) -> StorageBackend:
    """Return the configured backend; in-memory when offline mode is on."""

    if offline is None:
        offline = config.OFFLINE_MODE
    if offline:
        return InMemoryStorage()
    return SupabaseStorage(access_token=access_token)


__all__ = [
    "StorageBackend",
    "InMemoryStorage",
    "SupabaseStorage",
    "build_storage",
    "create_supabase_session",
]
