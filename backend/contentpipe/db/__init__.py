"""Database utilities and session management."""

from contentpipe.db.base import Base, BaseModel, String255, String500, String1000
from contentpipe.db.session import (
    AsyncSessionLocal,
    check_db_health,
    close_db,
    engine,
    init_db,
)

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    # String types
    "String255",
    "String500",
    "String1000",
    # Session management
    "engine",
    "AsyncSessionLocal",
    "init_db",
    "close_db",
    "check_db_health",
]
