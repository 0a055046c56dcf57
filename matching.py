"""
Correlation of Attio meetings with HubSpot meetings.

correlate() is the exact join on the "Original ID:" token embedded in HubSpot
meeting bodies. MeetingMatcher is the fallback for meetings that were never
tagged: a weighted title/date score with greedy one-to-one assignment.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from models import DestinationRecord, MatchCandidate, SourceRecord

logger = logging.getLogger(__name__)


@dataclass
class CorrelationResult:
    missing: List[SourceRecord] = field(default_factory=list)
    existing_pairs: List[Tuple[SourceRecord, DestinationRecord]] = field(default_factory=list)


@dataclass
class MatchResult:
    matches: List[MatchCandidate] = field(default_factory=list)
    unmatched_source: List[SourceRecord] = field(default_factory=list)
    unmatched_destination: List[DestinationRecord] = field(default_factory=list)


def index_by_source_id(destinations: List[DestinationRecord]) -> Dict[str, DestinationRecord]:
    """Map embedded source id -> destination record; the last one seen wins"""
    index = {}
    for destination in destinations:
        if destination.source_id:
            if destination.source_id in index:
                logger.warning(f"⚠️  Attio id {destination.source_id} embedded in HubSpot meetings "
                               f"{index[destination.source_id].record_id} and {destination.record_id}")
            index[destination.source_id] = destination
    return index


def correlate(sources: List[SourceRecord], destinations: List[DestinationRecord]) -> CorrelationResult:
    """Partition source records into already-present pairs and missing records"""
    index = index_by_source_id(destinations)
    result = CorrelationResult()
    for source in sources:
        destination = index.get(source.record_id)
        if destination is not None:
            result.existing_pairs.append((source, destination))
        else:
            result.missing.append(source)

    logger.info(f"🔗 Correlated {len(sources)} Attio records: "
                f"{len(result.existing_pairs)} already in HubSpot, {len(result.missing)} missing")
    return result


class MeetingMatcher:
    """Title/date similarity matcher for meetings that carry no embedded id"""

    def __init__(self, threshold: float = 0.6, title_weight: float = 0.6, date_weight: float = 0.4):
        self.threshold = threshold
        self.title_weight = title_weight
        self.date_weight = date_weight

    @staticmethod
    def normalize_title(title: str) -> str:
        title = re.sub(r"[^\w\s]", " ", (title or "").lower())
        return re.sub(r"\s+", " ", title).strip()

    def title_similarity(self, title1: Optional[str], title2: Optional[str]) -> float:
        """
        1.0 on equal normalised titles, 0.9 when one contains the other,
        otherwise word overlap (words longer than two characters) capped at 0.8.
        """
        norm1 = self.normalize_title(title1)
        norm2 = self.normalize_title(title2)
        if not norm1 or not norm2:
            return 0.0

        if norm1 == norm2:
            return 1.0
        if norm1 in norm2 or norm2 in norm1:
            return 0.9

        words1 = [w for w in norm1.split(" ") if len(w) > 2]
        words2 = [w for w in norm2.split(" ") if len(w) > 2]
        if not words1 or not words2:
            return 0.0

        common = [w for w in words1 if w in words2]
        return min(0.8, (len(common) * 2) / (len(words1) + len(words2)))

    @staticmethod
    def date_similarity(date1: Optional[datetime], date2: Optional[datetime]) -> float:
        if date1 is None or date2 is None:
            return 0.0

        hours = abs((date1 - date2).total_seconds()) / 3600
        if hours <= 12:
            return 1.0
        if hours <= 24:
            return 0.8
        if hours <= 48:
            return 0.6
        if hours <= 168:
            return 0.3
        return 0.0

    def calculate_score(self, source: SourceRecord, destination: DestinationRecord) -> Tuple[float, Dict[str, float]]:
        breakdown = {
            "title": self.title_similarity(source.title, destination.title),
            "date": self.date_similarity(source.start, destination.start),
        }
        total = self.title_weight * breakdown["title"] + self.date_weight * breakdown["date"]
        return round(total, 2), breakdown

    def find_best_match(self, source: SourceRecord,
                        candidates: List[DestinationRecord]) -> Optional[MatchCandidate]:
        """Highest-scoring candidate at or above the threshold; ties keep the earlier candidate"""
        best: Optional[MatchCandidate] = None
        for destination in candidates:
            score, breakdown = self.calculate_score(source, destination)
            if score >= self.threshold and (best is None or score > best.score):
                best = MatchCandidate(source=source, destination=destination,
                                      score=score, breakdown=breakdown)
        return best

    def match_meetings(self, sources: List[SourceRecord],
                       destinations: List[DestinationRecord]) -> MatchResult:
        """Greedy first-source-first matching; each destination is used at most once"""
        result = MatchResult()
        pool = list(destinations)

        logger.info(f"🔍 Starting meeting matching: {len(sources)} Attio vs {len(pool)} HubSpot meetings")

        for source in sources:
            match = self.find_best_match(source, pool)
            if match is None:
                result.unmatched_source.append(source)
                continue
            result.matches.append(match)
            pool = [d for d in pool if d is not match.destination]

        result.unmatched_destination = pool

        logger.info("✅ Matching results:")
        logger.info(f"   📍 Matched pairs: {len(result.matches)}")
        logger.info(f"   🔴 Unmatched Attio: {len(result.unmatched_source)}")
        logger.info(f"   🔵 Unmatched HubSpot: {len(result.unmatched_destination)}")
        return result
