"""
Tests for the SQL key/value store
=================================

Runs against a throwaway SQLite file.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

# Add parent to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fhe_detective import models
from fhe_detective.config import Settings
from fhe_detective.db import drop_db, reset_engine
from fhe_detective.repository import TestimonyRepository
from fhe_detective.schemas import ActionStatus
from fhe_detective.service import create_service
from fhe_detective.store import SqlStore


@pytest.fixture
def sql_store(tmp_path):
    url = f"sqlite:///{tmp_path / 'detective.db'}"
    yield SqlStore(url)
    drop_db(url)
    reset_engine()


class TestSqlStore:
    """Tests for SqlStore"""

    @pytest.mark.asyncio
    async def test_available(self, sql_store):
        assert await sql_store.is_available() is True

    @pytest.mark.asyncio
    async def test_missing_key_is_empty(self, sql_store):
        assert await sql_store.get_data("nothing") == b""

    @pytest.mark.asyncio
    async def test_set_then_get(self, sql_store):
        await sql_store.set_data("k", b'["a"]')
        assert await sql_store.get_data("k") == b'["a"]'

    @pytest.mark.asyncio
    async def test_overwrite(self, sql_store):
        await sql_store.set_data("k", b"1")
        await sql_store.set_data("k", b"2")
        assert await sql_store.get_data("k") == b"2"

    @pytest.mark.asyncio
    async def test_repository_over_sql(self, sql_store):
        repository = TestimonyRepository(sql_store, sql_store)
        testimony = models.Testimony("t-1", "Professor Plum", "", 123, "case-2", "FHE-NTU=")

        await repository.append(testimony)

        assert await repository.load_all() == [testimony]


@pytest.fixture
def unreachable_store(tmp_path):
    store = SqlStore(f"sqlite:///{tmp_path / 'missing' / 'detective.db'}", create_tables=False)
    yield store
    reset_engine()


class TestUnreachableSqlStore:
    """Tests for a database that cannot be opened"""

    @pytest.mark.asyncio
    async def test_unreachable_database_raises(self, unreachable_store):
        with pytest.raises(SQLAlchemyError):
            await unreachable_store.is_available()

    @pytest.mark.asyncio
    async def test_repository_reads_degrade(self, unreachable_store):
        repository = TestimonyRepository(unreachable_store)
        assert await repository.is_available() is False
        assert await repository.load_all() == []

    @pytest.mark.asyncio
    async def test_availability_check_reports_error(self, unreachable_store):
        service = create_service(Settings(_env_file=None, decrypt_delay_seconds=0), store=unreachable_store)

        result = await service.check_availability()

        assert result.status == ActionStatus.ERROR
        assert result.message.startswith("Check failed: ")
