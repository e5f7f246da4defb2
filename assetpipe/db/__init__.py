"""
Database module.
Contains database connection helpers and models for the postgres backends.
"""

from assetpipe.db.connection import (
    create_engine,
    create_session_factory,
    create_tables,
    get_test_engine,
    session_scope,
)
from assetpipe.db.models import Base, DeadLetter, LedgerRecord, QueuedJob

__all__ = [
    "create_engine",
    "create_session_factory",
    "create_tables",
    "get_test_engine",
    "session_scope",
    "Base",
    "QueuedJob",
    "DeadLetter",
    "LedgerRecord",
]
