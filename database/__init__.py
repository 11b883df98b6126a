"""
Database Package Initialization.

============================================================
RELATIONAL PERSISTENCE LAYER
============================================================

Optional SQL backend for persisted alert state. All writes go
through explicit async transactions with commit/rollback.

============================================================
"""

from .engine import (
    # Declarative base
    Base,
    DEFAULT_DATABASE_URL,

    # Engine and sessions
    to_async_url,
    create_database_engine,
    create_session_factory,
    transaction_scope,

    # Initialization
    create_all_tables,

    # Exceptions
    DatabasePersistenceError,
    DatabaseInitializationError,
)
from .models import KeyValueRecord


__all__ = [
    "Base",
    "DEFAULT_DATABASE_URL",
    "to_async_url",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "create_all_tables",
    "DatabasePersistenceError",
    "DatabaseInitializationError",
    "KeyValueRecord",
]
