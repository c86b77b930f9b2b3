"""
Storage layer for the crawl frontier.
"""

from .database import (
    DatabaseManager,
    DatabaseError,
    StoreUnavailableError,
    InsertResult,
    StorageBackend,
    SQLiteStorageBackend,
    RedisStorageBackend,
    VisitedUrl,
    VisitedHost,
    PendingUrl,
)

__all__ = [
    'DatabaseManager', 'DatabaseError', 'StoreUnavailableError', 'InsertResult',
    'StorageBackend', 'SQLiteStorageBackend', 'RedisStorageBackend',
    'VisitedUrl', 'VisitedHost', 'PendingUrl',
]
