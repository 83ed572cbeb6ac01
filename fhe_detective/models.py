"""
Domain Models
=============

- Testimony          - an immutable witness statement with a confidential score
- ContradictionPair  - unordered pair of contradicting testimony ids
- Case               - static case reference data
- LoadSnapshot       - immutable result of one load cycle
"""

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import UnknownCaseError


# =============================================================================
# CASES
# =============================================================================

@dataclass(frozen=True)
class Case:
    """Criminal case under investigation"""
    id: str
    title: str
    description: str


CASES: Tuple[Case, ...] = (
    Case("case-1", "The Midnight Murder", "Banker found dead in his penthouse"),
    Case("case-2", "The Vanished Diamonds", "Museum heist with no forced entry"),
    Case("case-3", "The Poisoned Chalice", "Political assassination at gala event"),
)

_CASES_BY_ID: Dict[str, Case] = {case.id: case for case in CASES}


def get_case(case_id: str) -> Case:
    """Look up a case, raising UnknownCaseError for ids outside the catalog"""
    try:
        return _CASES_BY_ID[case_id]
    except KeyError:
        raise UnknownCaseError(f"Unknown case: {case_id}") from None


def is_known_case(case_id: str) -> bool:
    return case_id in _CASES_BY_ID


# =============================================================================
# TESTIMONY
# =============================================================================

TESTIMONY_ID_PREFIX = "testimony"
_ID_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def generate_testimony_id(now_ms: Optional[int] = None) -> str:
    """
    Create a testimony id: testimony-<epoch ms>-<4 base-36 chars>.

    The millisecond clock plus random suffix keeps ids unique across
    submitters without coordination.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_SUFFIX_ALPHABET) for _ in range(4))
    return f"{TESTIMONY_ID_PREFIX}-{now_ms}-{suffix}"


@dataclass(frozen=True)
class Testimony:
    """Witness statement. Never mutated after creation."""
    id: str
    witness: str
    encrypted_content: str
    timestamp: int  # seconds since epoch
    case_id: str
    credibility: str  # confidential token


@dataclass(frozen=True)
class ContradictionPair:
    """
    Two same-case testimonies judged contradictory.

    Ids are stored in sorted order so (a, b) and (b, a) compare and hash equal.
    """
    id1: str
    id2: str

    def __post_init__(self):
        if self.id1 > self.id2:
            low, high = self.id2, self.id1
            object.__setattr__(self, "id1", low)
            object.__setattr__(self, "id2", high)

    @property
    def ids(self) -> FrozenSet[str]:
        return frozenset((self.id1, self.id2))

    def involves(self, testimony_id: str) -> bool:
        return testimony_id in (self.id1, self.id2)


@dataclass(frozen=True)
class LoadSnapshot:
    """Testimonies and contradictions of one load cycle"""
    testimonies: Tuple[Testimony, ...] = ()
    contradictions: FrozenSet[ContradictionPair] = frozenset()
    loaded_at: datetime = field(default_factory=datetime.now)

    def find(self, testimony_id: str) -> Optional[Testimony]:
        for testimony in self.testimonies:
            if testimony.id == testimony_id:
                return testimony
        return None

    def for_case(self, case_id: str) -> Tuple[Testimony, ...]:
        return tuple(t for t in self.testimonies if t.case_id == case_id)
