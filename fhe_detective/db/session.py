"""
Database Session Management
===========================

Engine and session handling with SQLAlchemy for the key/value backend.
Engines are cached per database URL so tests can point at a fresh file.
"""

import os
from contextlib import contextmanager
from typing import Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from .models import Base

_engines: Dict[str, Engine] = {}
_sessionmakers: Dict[str, sessionmaker] = {}


def _create_engine_for_url(database_url: str) -> Engine:
    echo = os.environ.get("SQL_ECHO", "false").lower() == "true"

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT", "5")),
        },
        echo=echo,
    )


def get_engine(database_url: str) -> Engine:
    """Get (or lazily create) the SQLAlchemy engine for a URL"""
    engine = _engines.get(database_url)
    if engine is None:
        engine = _create_engine_for_url(database_url)
        _engines[database_url] = engine
        _sessionmakers[database_url] = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    return engine


def reset_engine():
    """Dispose all cached engines (primarily for tests)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _sessionmakers.clear()


def init_db(database_url: str):
    """Initialize database tables"""
    engine = get_engine(database_url)
    Base.metadata.create_all(bind=engine)


def drop_db(database_url: str):
    """Drop all database tables (use with caution!)"""
    engine = get_engine(database_url)
    Base.metadata.drop_all(bind=engine)


@contextmanager
def get_db_session(database_url: str) -> Generator[Session, None, None]:
    """
    Context manager for database session.

    Usage:
        with get_db_session(url) as db:
            db.get(KeyValueRecord, "testimony_keys")
    """
    get_engine(database_url)
    db = _sessionmakers[database_url]()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
