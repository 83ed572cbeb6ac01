"""
Testimony Repository
====================

Loads and stores testimony records through the key/value backend.

Layout:
    testimony_keys       JSON array of testimony ids (the index)
    testimony_<id>       JSON object {witness, content, timestamp, caseId, credibility}
    testimony_journal    JSON array of ids whose append has not finished

Read path never raises: an unavailable backend, a missing index or a
malformed record degrade to fewer (or zero) results and are logged.

Write path: append() writes the record, then rewrites the index. The two
writes are not atomic; the journal key lets reconcile() re-attach a record
whose index append was interrupted.
"""

import json
import logging
import math
from typing import Any, List, Optional

from .codec import js_number_string
from .errors import MalformedRecordError, SubmissionFailure, SubmissionRejected
from .models import Testimony
from .store import KeyValueReader, KeyValueWriter

logger = logging.getLogger(__name__)

INDEX_KEY = "testimony_keys"
JOURNAL_KEY = "testimony_journal"
RECORD_KEY_PREFIX = "testimony_"

REQUIRED_FIELDS = ("witness", "timestamp", "caseId", "credibility")


def record_key(testimony_id: str) -> str:
    return f"{RECORD_KEY_PREFIX}{testimony_id}"


# =============================================================================
# Serialization
# =============================================================================

def _dumps(value: Any) -> bytes:
    # Compact separators keep payloads byte-identical to JSON.stringify output
    return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def testimony_to_json(testimony: Testimony) -> bytes:
    """Serialize the stored part of a testimony (the id lives in the key)"""
    return _dumps({
        "witness": testimony.witness,
        "content": testimony.encrypted_content,
        "timestamp": testimony.timestamp,
        "caseId": testimony.case_id,
        "credibility": testimony.credibility,
    })


def testimony_from_json(testimony_id: str, payload: bytes) -> Testimony:
    """
    Parse a stored record.

    Raises:
        MalformedRecordError: payload is not a JSON object with the required fields
    """
    key = record_key(testimony_id)
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedRecordError(key, f"invalid JSON ({e})") from e

    if not isinstance(data, dict):
        raise MalformedRecordError(key, f"expected object, got {type(data).__name__}")

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise MalformedRecordError(key, f"missing fields {missing}")

    timestamp = data["timestamp"]
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise MalformedRecordError(key, f"timestamp is not a number: {timestamp!r}")
    if not math.isfinite(timestamp):
        raise MalformedRecordError(key, f"timestamp is not finite: {timestamp!r}")

    credibility = data["credibility"]
    if isinstance(credibility, (int, float)) and not isinstance(credibility, bool):
        # Legacy records stored the bare score
        try:
            credibility = js_number_string(credibility)
        except ValueError as e:
            raise MalformedRecordError(key, str(e)) from e
    elif not isinstance(credibility, str):
        raise MalformedRecordError(key, f"credibility has type {type(credibility).__name__}")

    content = data.get("content")
    return Testimony(
        id=testimony_id,
        witness=str(data["witness"]),
        encrypted_content="" if content is None else str(content),
        timestamp=int(timestamp),
        case_id=str(data["caseId"]),
        credibility=credibility,
    )


def parse_id_list(payload: bytes) -> List[str]:
    """
    Parse an index/journal payload.

    Empty payload -> []. Raises ValueError when the payload is not a JSON
    array of strings.
    """
    if not payload:
        return []
    text = payload.decode("utf-8")
    if not text.strip():
        return []
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"expected array, got {type(data).__name__}")
    return [item for item in data if isinstance(item, str)]


# =============================================================================
# Repository
# =============================================================================

class TestimonyRepository:
    """
    Owns the authoritative testimony list.

    Args:
        reader: read-only accessor
        writer: signer-bound accessor; None makes append() fail with SubmissionFailure
    """

    __test__ = False

    def __init__(self, reader: KeyValueReader, writer: Optional[KeyValueWriter] = None):
        self.reader = reader
        self.writer = writer

    async def is_available(self) -> bool:
        try:
            return bool(await self.reader.is_available())
        except Exception as e:
            logger.warning(f"Availability check failed: {e}")
            return False

    async def list_keys(self) -> List[str]:
        """Ordered testimony ids from the index. Never raises."""
        try:
            payload = await self.reader.get_data(INDEX_KEY)
        except Exception as e:
            logger.error(f"Error reading testimony index: {e}")
            return []

        try:
            return parse_id_list(payload)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Error parsing testimony keys: {e}")
            return []

    async def load_all(self) -> List[Testimony]:
        """
        Load every indexed testimony, newest first.

        Unavailable backend -> []. Unreadable or malformed records are skipped.
        """
        if not await self.is_available():
            logger.info("Backend not available - returning no testimonies")
            return []

        keys = await self.list_keys()
        testimonies: List[Testimony] = []
        skipped = 0
        seen = set()

        for testimony_id in keys:
            if testimony_id in seen:
                continue
            seen.add(testimony_id)

            try:
                payload = await self.reader.get_data(record_key(testimony_id))
            except Exception as e:
                logger.error(f"Error loading testimony {testimony_id}: {e}")
                skipped += 1
                continue

            if not payload:
                logger.warning(f"Indexed testimony {testimony_id} has no record")
                skipped += 1
                continue

            try:
                testimonies.append(testimony_from_json(testimony_id, payload))
            except MalformedRecordError as e:
                logger.warning(f"Skipping malformed testimony record {e}")
                skipped += 1

        testimonies.sort(key=lambda t: t.timestamp, reverse=True)
        logger.info(f"Loaded {len(testimonies)} testimonies ({skipped} skipped, {len(keys)} indexed)")
        return testimonies

    async def append(self, testimony: Testimony) -> None:
        """
        Persist a new testimony and add it to the index.

        Raises:
            SubmissionFailure: no writer, unreadable index, or any store write failure
        """
        writer = self._require_writer()

        journal = await self._read_journal(writer)
        if testimony.id not in journal:
            journal.append(testimony.id)
        await self._write(writer, JOURNAL_KEY, _dumps(journal))

        await self._write(writer, record_key(testimony.id), testimony_to_json(testimony))

        keys = await self._read_strict(writer, INDEX_KEY)
        if testimony.id not in keys:
            keys.append(testimony.id)
        await self._write(writer, INDEX_KEY, _dumps(keys))

        journal = [tid for tid in await self._read_journal(writer) if tid != testimony.id]
        await self._write(writer, JOURNAL_KEY, _dumps(journal))

        logger.info(f"Appended testimony {testimony.id} (case={testimony.case_id}, index size={len(keys)})")

    async def reconcile(self) -> List[str]:
        """
        Finish appends interrupted between the record and index writes.

        Returns:
            Ids re-attached to the index
        """
        writer = self._require_writer()
        journal = await self._read_journal(writer)
        if not journal:
            return []

        keys = await self._read_strict(writer, INDEX_KEY)
        reattached: List[str] = []

        for testimony_id in journal:
            if testimony_id in keys:
                continue
            payload = await writer.get_data(record_key(testimony_id))
            if not payload:
                logger.info(f"Dropping journal entry {testimony_id}: record never written")
                continue
            try:
                testimony_from_json(testimony_id, payload)
            except MalformedRecordError as e:
                logger.warning(f"Dropping journal entry {testimony_id}: {e}")
                continue
            keys.append(testimony_id)
            reattached.append(testimony_id)

        if reattached:
            await self._write(writer, INDEX_KEY, _dumps(keys))
        await self._write(writer, JOURNAL_KEY, _dumps([]))

        if reattached:
            logger.warning(f"Reconciled {len(reattached)} orphaned testimonies: {reattached}")
        return reattached

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def _require_writer(self) -> KeyValueWriter:
        if self.writer is None:
            raise SubmissionFailure("Failed to get contract with signer")
        return self.writer

    async def _read_strict(self, store: KeyValueReader, key: str) -> List[str]:
        # Rewriting a list we could not parse would wipe it, so fail instead
        try:
            return parse_id_list(await store.get_data(key))
        except (UnicodeDecodeError, ValueError) as e:
            raise SubmissionFailure(f"Cannot parse {key}: {e}") from e
        except SubmissionFailure:
            raise
        except Exception as e:
            raise SubmissionFailure(str(e)) from e

    async def _read_journal(self, store: KeyValueReader) -> List[str]:
        # Unreadable journal reads as empty
        try:
            payload = await store.get_data(JOURNAL_KEY)
        except Exception as e:
            raise SubmissionFailure(str(e)) from e
        try:
            return parse_id_list(payload)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Discarding unreadable {JOURNAL_KEY}: {e}")
            return []

    async def _write(self, store: KeyValueWriter, key: str, value: bytes) -> None:
        try:
            await store.set_data(key, value)
        except SubmissionFailure:
            raise
        except Exception as e:
            logger.error(f"Write to {key} failed: {e}")
            if "user rejected" in str(e).lower():
                raise SubmissionRejected(str(e)) from e
            raise SubmissionFailure(str(e)) from e
