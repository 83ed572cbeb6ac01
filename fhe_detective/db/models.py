"""
SQLAlchemy Models for the Key/Value Backend
===========================================

A single table holding opaque byte payloads by string key.
Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

from datetime import datetime

from sqlalchemy import Column, String, LargeBinary, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class KeyValueRecord(Base):
    """One stored payload (testimony record, index or journal)"""
    __tablename__ = "kv_records"

    key = Column(String(255), primary_key=True)
    value = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<KeyValueRecord {self.key} ({len(self.value or b'')} bytes)>"
