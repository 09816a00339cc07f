"""Service layer package.

Exports high-level services consumed by the host application.
"""

from .account_service import AccountService, AccountSnapshot
from .persistence_service import PersistenceService, PersistenceServiceConfig

__all__ = [
    "AccountService",
    "AccountSnapshot",
    "PersistenceService",
    "PersistenceServiceConfig",
]
