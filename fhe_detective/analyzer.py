"""
Contradiction Analyzer
======================

Finds pairs of same-case testimonies whose confidential credibility scores
are judged contradictory by the codec predicate (abs(a - b) < tolerance).

Approach:
- Bucket testimonies by case (cross-case pairs are never compared)
- Decode each credibility once, sort the bucket by score
- Sweep: for each score, pair it with following scores until the gap
  reaches the tolerance

This yields exactly the pairs a full pairwise scan would, in
O(n log n + k) instead of O(n^2). Output order carries no meaning.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .codec import DEFAULT_TOLERANCE, ValueCodec, get_codec, values_contradict
from .errors import DecodeError
from .models import ContradictionPair, Testimony
from .schemas import CredibilityBand

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class CaseStatistics:
    """Summary of one case"""
    case_id: str
    testimony_count: int
    average_credibility: float
    contradiction_count: int


@dataclass
class AnalysisResult:
    """Result from one analysis run"""
    contradictions: List[ContradictionPair]
    analysis_time_ms: float
    testimonies_analyzed: int
    undecodable: List[str]


# =============================================================================
# Analyzer
# =============================================================================

class ContradictionAnalyzer:
    """
    Pairwise contradiction detection over a case-mixed testimony list.

    Args:
        codec: confidential value codec used to read credibility tokens
        tolerance: closeness threshold in percentage points
    """

    def __init__(self, codec: Optional[ValueCodec] = None, tolerance: float = DEFAULT_TOLERANCE):
        self.codec = codec or get_codec()
        self.tolerance = tolerance

    def find_contradictions(self, testimonies: Iterable[Testimony]) -> List[ContradictionPair]:
        """All unordered same-case pairs within tolerance"""
        return self.analyze(testimonies).contradictions

    def analyze(self, testimonies: Iterable[Testimony]) -> AnalysisResult:
        start_time = datetime.now()
        buckets, undecodable, analyzed = self._bucket_by_case(testimonies)

        contradictions: List[ContradictionPair] = []
        for case_id, scored in buckets.items():
            found = self._sweep(scored)
            logger.debug(f"Case {case_id}: {len(found)} contradictions among {len(scored)} testimonies")
            contradictions.extend(found)

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
        logger.info(
            f"Contradiction analysis complete: {len(contradictions)} pairs "
            f"across {len(buckets)} cases ({analyzed} testimonies, "
            f"{len(undecodable)} undecodable) in {elapsed_ms:.1f}ms"
        )

        return AnalysisResult(
            contradictions=contradictions,
            analysis_time_ms=elapsed_ms,
            testimonies_analyzed=analyzed,
            undecodable=undecodable,
        )

    def _bucket_by_case(
        self,
        testimonies: Iterable[Testimony],
    ) -> Tuple[Dict[str, List[Tuple[float, str]]], List[str], int]:
        buckets: Dict[str, List[Tuple[float, str]]] = defaultdict(list)
        undecodable: List[str] = []
        seen = set()

        for testimony in testimonies:
            # A testimony never contradicts itself
            if testimony.id in seen:
                continue
            seen.add(testimony.id)

            try:
                score = self.codec.decode(testimony.credibility)
            except DecodeError as e:
                logger.warning(f"Skipping testimony {testimony.id}: credibility not decodable ({e})")
                undecodable.append(testimony.id)
                continue
            buckets[testimony.case_id].append((score, testimony.id))

        return buckets, undecodable, len(seen)

    def _sweep(self, scored: List[Tuple[float, str]]) -> List[ContradictionPair]:
        ordered = sorted(scored)
        pairs: List[ContradictionPair] = []

        for i, (score_i, id_i) in enumerate(ordered):
            for score_j, id_j in ordered[i + 1:]:
                if not values_contradict(score_i, score_j, self.tolerance):
                    break
                pairs.append(ContradictionPair(id_i, id_j))

        return pairs


# =============================================================================
# Case views
# =============================================================================

def case_statistics(
    testimonies: Sequence[Testimony],
    contradictions: Iterable[ContradictionPair],
    case_id: str,
    codec: Optional[ValueCodec] = None,
) -> CaseStatistics:
    """
    Count, average credibility and contradiction count of one case.

    Average is 0 for a case without decodable scores.
    """
    codec = codec or get_codec()
    in_case = [t for t in testimonies if t.case_id == case_id]
    case_ids = {t.id for t in in_case}

    scores = []
    for testimony in in_case:
        try:
            scores.append(codec.decode(testimony.credibility))
        except DecodeError:
            continue

    average = sum(scores) / len(scores) if scores else 0.0
    contradiction_count = sum(
        1 for pair in contradictions if pair.id1 in case_ids and pair.id2 in case_ids
    )

    return CaseStatistics(
        case_id=case_id,
        testimony_count=len(in_case),
        average_credibility=average,
        contradiction_count=contradiction_count,
    )


def case_timeline(testimonies: Iterable[Testimony], case_id: str) -> List[Testimony]:
    """Same-case testimonies, oldest first"""
    return sorted(
        (t for t in testimonies if t.case_id == case_id),
        key=lambda t: t.timestamp,
    )


def credibility_band(score: float) -> CredibilityBand:
    if score > 75:
        return CredibilityBand.HIGHLY_CREDIBLE
    if score > 50:
        return CredibilityBand.MODERATELY_CREDIBLE
    if score > 25:
        return CredibilityBand.QUESTIONABLE
    return CredibilityBand.LOW


# =============================================================================
# Singleton & Convenience Functions
# =============================================================================

_analyzer = None


def get_analyzer() -> ContradictionAnalyzer:
    """Get singleton analyzer instance"""
    global _analyzer
    if _analyzer is None:
        _analyzer = ContradictionAnalyzer()
    return _analyzer


def find_contradictions(testimonies: Iterable[Testimony]) -> List[ContradictionPair]:
    """
    Convenience function to find contradictions with the default tolerance.

    Args:
        testimonies: testimonies of any number of cases

    Returns:
        Contradicting pairs (unordered)
    """
    return get_analyzer().find_contradictions(testimonies)
