"""
Tests for the Testimony Repository
==================================

Tests:
1. Index parsing and degraded reads
2. Record loading, ordering and malformed-record handling
3. Append, write failures and journal reconciliation
"""

import json

import pytest

# Add parent to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fhe_detective import models
from fhe_detective import repository as repo
from fhe_detective.errors import SubmissionFailure, SubmissionRejected
from fhe_detective.store import MemoryStore


def record(witness="Alice", timestamp=1000, case_id="case-1", credibility="FHE-NjA=", content="FHE-c2F3") -> bytes:
    return json.dumps({
        "witness": witness,
        "content": content,
        "timestamp": timestamp,
        "caseId": case_id,
        "credibility": credibility,
    }).encode("utf-8")


def index(*ids) -> bytes:
    return json.dumps(list(ids)).encode("utf-8")


def make(testimony_id="testimony-1-abcd", timestamp=1000):
    return models.Testimony(
        id=testimony_id,
        witness="Alice",
        encrypted_content="FHE-c2F3",
        timestamp=timestamp,
        case_id="case-1",
        credibility="FHE-NjA=",
    )


class FlakyStore(MemoryStore):
    """MemoryStore whose writes to chosen keys fail"""

    def __init__(self, fail_keys=(), message="boom", **kwargs):
        super().__init__(**kwargs)
        self.fail_keys = set(fail_keys)
        self.message = message

    async def set_data(self, key, value):
        if key in self.fail_keys:
            raise RuntimeError(self.message)
        await super().set_data(key, value)


class BrokenReader(MemoryStore):
    async def get_data(self, key):
        raise ConnectionError("node unreachable")


# =============================================================================
# Index
# =============================================================================

class TestListKeys:
    """Tests for index reads"""

    @pytest.mark.asyncio
    async def test_missing_index(self):
        assert await repo.TestimonyRepository(MemoryStore()).list_keys() == []

    @pytest.mark.asyncio
    async def test_empty_payload(self):
        store = MemoryStore({repo.INDEX_KEY: b""})
        assert await repo.TestimonyRepository(store).list_keys() == []

    @pytest.mark.asyncio
    async def test_unparsable_index(self):
        store = MemoryStore({repo.INDEX_KEY: b"{not json"})
        assert await repo.TestimonyRepository(store).list_keys() == []

    @pytest.mark.asyncio
    async def test_index_not_an_array(self):
        store = MemoryStore({repo.INDEX_KEY: b'{"a": 1}'})
        assert await repo.TestimonyRepository(store).list_keys() == []

    @pytest.mark.asyncio
    async def test_reader_failure(self):
        assert await repo.TestimonyRepository(BrokenReader()).list_keys() == []

    @pytest.mark.asyncio
    async def test_order_preserved(self):
        store = MemoryStore({repo.INDEX_KEY: index("b", "a", "c")})
        assert await repo.TestimonyRepository(store).list_keys() == ["b", "a", "c"]

    def test_parse_id_list_filters_non_strings(self):
        assert repo.parse_id_list(b'["a", 3, null, "b"]') == ["a", "b"]


# =============================================================================
# Loading
# =============================================================================

class TestLoadAll:
    """Tests for load_all"""

    @pytest.mark.asyncio
    async def test_sorted_newest_first(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("old", "new", "mid"),
            "testimony_old": record(timestamp=100),
            "testimony_new": record(timestamp=300),
            "testimony_mid": record(timestamp=200),
        })

        testimonies = await repo.TestimonyRepository(store).load_all()
        assert [t.id for t in testimonies] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_malformed_record_dropped(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("a", "b", "c", "d"),
            "testimony_a": record(timestamp=1),
            "testimony_b": b"not json",
            "testimony_c": json.dumps({"witness": "x"}).encode(),
            "testimony_d": record(timestamp=2),
        })

        testimonies = await repo.TestimonyRepository(store).load_all()
        assert sorted(t.id for t in testimonies) == ["a", "d"]

    @pytest.mark.asyncio
    async def test_indexed_id_without_record_dropped(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("a", "ghost"),
            "testimony_a": record(),
        })
        testimonies = await repo.TestimonyRepository(store).load_all()
        assert [t.id for t in testimonies] == ["a"]

    @pytest.mark.asyncio
    async def test_unavailable_backend(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("a"),
            "testimony_a": record(),
        }, available=False)
        assert await repo.TestimonyRepository(store).load_all() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_timestamp", [b"Infinity", b"-Infinity", b"NaN"])
    async def test_non_finite_timestamp_dropped(self, bad_timestamp):
        broken = (
            b'{"witness":"x","content":"","timestamp":' + bad_timestamp
            + b',"caseId":"case-1","credibility":"FHE-NjA="}'
        )
        store = MemoryStore({
            repo.INDEX_KEY: index("good", "bad"),
            "testimony_good": record(),
            "testimony_bad": broken,
        })

        testimonies = await repo.TestimonyRepository(store).load_all()
        assert [t.id for t in testimonies] == ["good"]

    @pytest.mark.asyncio
    async def test_duplicate_index_entries(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("a", "a"),
            "testimony_a": record(),
        })
        assert len(await repo.TestimonyRepository(store).load_all()) == 1

    @pytest.mark.asyncio
    async def test_fields_mapped(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("a"),
            "testimony_a": record(witness="Bob", timestamp=42, case_id="case-2", credibility="FHE-NzU="),
        })

        testimony = (await repo.TestimonyRepository(store).load_all())[0]
        assert testimony.witness == "Bob"
        assert testimony.timestamp == 42
        assert testimony.case_id == "case-2"
        assert testimony.credibility == "FHE-NzU="
        assert testimony.encrypted_content == "FHE-c2F3"

    @pytest.mark.asyncio
    async def test_legacy_numeric_credibility(self):
        store = MemoryStore({
            repo.INDEX_KEY: index("a"),
            "testimony_a": record(credibility=50),
        })
        testimony = (await repo.TestimonyRepository(store).load_all())[0]
        assert testimony.credibility == "50"

    def test_serialization_is_compact(self):
        payload = repo.testimony_to_json(make())
        assert payload == (
            b'{"witness":"Alice","content":"FHE-c2F3","timestamp":1000,'
            b'"caseId":"case-1","credibility":"FHE-NjA="}'
        )
        assert repo.testimony_from_json("testimony-1-abcd", payload) == make()


# =============================================================================
# Writing
# =============================================================================

class TestAppend:
    """Tests for append and reconcile"""

    @pytest.mark.asyncio
    async def test_append_updates_record_and_index(self):
        store = MemoryStore({repo.INDEX_KEY: index("existing")})
        repository = repo.TestimonyRepository(store, store)

        await repository.append(make("new-id"))

        assert await repository.list_keys() == ["existing", "new-id"]
        assert await store.get_data("testimony_new-id") == repo.testimony_to_json(make("new-id"))
        assert repo.parse_id_list(await store.get_data(repo.JOURNAL_KEY)) == []

    @pytest.mark.asyncio
    async def test_append_then_load(self):
        store = MemoryStore()
        repository = repo.TestimonyRepository(store, store)

        await repository.append(make("first", timestamp=1))
        await repository.append(make("second", timestamp=2))

        assert [t.id for t in await repository.load_all()] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_append_without_writer(self):
        repository = repo.TestimonyRepository(MemoryStore())
        with pytest.raises(SubmissionFailure, match="Failed to get contract with signer"):
            await repository.append(make())

    @pytest.mark.asyncio
    async def test_unparsable_index_is_not_overwritten(self):
        store = MemoryStore({repo.INDEX_KEY: b"{corrupt"})
        repository = repo.TestimonyRepository(store, store)

        with pytest.raises(SubmissionFailure):
            await repository.append(make())
        assert await store.get_data(repo.INDEX_KEY) == b"{corrupt"

    @pytest.mark.asyncio
    async def test_write_failure(self):
        store = FlakyStore(fail_keys={"testimony_testimony-1-abcd"}, message="gas estimation failed")
        repository = repo.TestimonyRepository(store, store)

        with pytest.raises(SubmissionFailure, match="gas estimation failed"):
            await repository.append(make())

    @pytest.mark.asyncio
    async def test_user_rejection(self):
        store = FlakyStore(fail_keys={repo.JOURNAL_KEY}, message="User rejected the request")
        repository = repo.TestimonyRepository(store, store)

        with pytest.raises(SubmissionRejected):
            await repository.append(make())

    @pytest.mark.asyncio
    async def test_reconcile_reattaches_orphan(self):
        store = FlakyStore(fail_keys={repo.INDEX_KEY})
        repository = repo.TestimonyRepository(store, store)

        with pytest.raises(SubmissionFailure):
            await repository.append(make("orphan"))
        assert await repository.list_keys() == []

        store.fail_keys.clear()
        assert await repository.reconcile() == ["orphan"]
        assert [t.id for t in await repository.load_all()] == ["orphan"]
        assert repo.parse_id_list(await store.get_data(repo.JOURNAL_KEY)) == []

    @pytest.mark.asyncio
    async def test_reconcile_drops_unwritten_record(self):
        store = MemoryStore({repo.JOURNAL_KEY: index("never-written")})
        repository = repo.TestimonyRepository(store, store)

        assert await repository.reconcile() == []
        assert await repository.list_keys() == []
        assert repo.parse_id_list(await store.get_data(repo.JOURNAL_KEY)) == []

    @pytest.mark.asyncio
    async def test_append_with_unreadable_journal(self):
        store = MemoryStore({repo.JOURNAL_KEY: b"{garbage"})
        repository = repo.TestimonyRepository(store, store)

        await repository.append(make("fresh"))

        assert await repository.list_keys() == ["fresh"]
        assert repo.parse_id_list(await store.get_data(repo.JOURNAL_KEY)) == []

    @pytest.mark.asyncio
    async def test_reconcile_with_unreadable_journal(self):
        store = MemoryStore({repo.JOURNAL_KEY: b"\xff\xfe"})
        assert await repo.TestimonyRepository(store, store).reconcile() == []

    @pytest.mark.asyncio
    async def test_reconcile_noop(self):
        store = MemoryStore()
        assert await repo.TestimonyRepository(store, store).reconcile() == []


def test_repository_class_is_not_collected():
    assert repo.TestimonyRepository.__test__ is False
