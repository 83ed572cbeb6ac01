"""
Database Package - SQLAlchemy
=============================

Key/value table backing the SQL store.
"""

from .models import Base, KeyValueRecord
from .session import get_db_session, init_db, drop_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Tables
    "KeyValueRecord",
    # Session
    "get_db_session", "init_db", "drop_db", "get_engine", "reset_engine",
]
