"""
Key/Value Store Accessors
=========================

The persisted backend is opaque: string keys, byte payloads holding UTF-8
JSON. Two accessors exist:

- KeyValueReader: read-only (availability check + get)
- KeyValueWriter: signer-bound (adds set)

A missing key reads as empty bytes, never as an error.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy import text

from .db.models import KeyValueRecord
from .db.session import get_db_session, init_db


class KeyValueReader(ABC):
    """Read-only accessor"""

    @abstractmethod
    async def is_available(self) -> bool:
        """Backend readiness check"""
        pass

    @abstractmethod
    async def get_data(self, key: str) -> bytes:
        """Payload for key, b"" when absent"""
        pass


class KeyValueWriter(KeyValueReader):
    """Signer-bound accessor"""

    @abstractmethod
    async def set_data(self, key: str, value: bytes) -> None:
        pass


# =============================================================================
# In-memory backend
# =============================================================================

class MemoryStore(KeyValueWriter):
    """
    Process-local store.

    Used for development and tests; `available` toggles the readiness check.
    """

    def __init__(self, data: Optional[Dict[str, bytes]] = None, available: bool = True):
        self._data: Dict[str, bytes] = dict(data or {})
        self.available = available

    async def is_available(self) -> bool:
        return self.available

    async def get_data(self, key: str) -> bytes:
        return self._data.get(key, b"")

    async def set_data(self, key: str, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise TypeError(f"Payload for {key} must be bytes, got {type(value).__name__}")
        self._data[key] = bytes(value)

    def keys(self):
        return list(self._data.keys())


# =============================================================================
# SQLAlchemy backend
# =============================================================================

class SqlStore(KeyValueWriter):
    """
    SQLAlchemy-backed store (SQLite or PostgreSQL).

    Session work is blocking, so every call runs in a worker thread.
    """

    def __init__(self, database_url: str, create_tables: bool = True):
        self.database_url = database_url
        if create_tables:
            init_db(database_url)

    def _ping(self) -> bool:
        with get_db_session(self.database_url) as db:
            db.execute(text("SELECT 1"))
        return True

    def _get(self, key: str) -> bytes:
        with get_db_session(self.database_url) as db:
            record = db.get(KeyValueRecord, key)
            return bytes(record.value) if record is not None else b""

    def _set(self, key: str, value: bytes) -> None:
        with get_db_session(self.database_url) as db:
            record = db.get(KeyValueRecord, key)
            if record is None:
                db.add(KeyValueRecord(key=key, value=bytes(value)))
            else:
                record.value = bytes(value)

    async def is_available(self) -> bool:
        """
        Round-trip a SELECT 1.

        Connection errors propagate as SQLAlchemyError; the repository maps
        them to "unavailable" and check_availability reports them.
        """
        return await asyncio.to_thread(self._ping)

    async def get_data(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get, key)

    async def set_data(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._set, key, value)
