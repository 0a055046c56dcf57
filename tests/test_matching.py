"""
Tests for identity correlation and the fuzzy meeting matcher
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from matching import MeetingMatcher, correlate, index_by_source_id
from models import DestinationRecord, SourceRecord

from conftest import MEETING_A, MEETING_B

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def matcher():
    return MeetingMatcher()


def source(record_id, title, start=T0):
    return SourceRecord(record_id=record_id, title=title, start=start)


def destination(record_id, title, start=T0, source_id=None):
    return DestinationRecord(record_id=record_id, title=title, start=start, source_id=source_id)


# ==================== CORRELATION ====================

def test_correlate_partitions_on_embedded_id():
    sources = [source(MEETING_A, "Kickoff"), source(MEETING_B, "Review")]
    destinations = [destination("900", "Kickoff", source_id=MEETING_A), destination("901", "Other")]

    result = correlate(sources, destinations)

    assert [(s.record_id, d.record_id) for s, d in result.existing_pairs] == [(MEETING_A, "900")]
    assert [s.record_id for s in result.missing] == [MEETING_B]


def test_last_destination_wins_on_duplicate_id():
    index = index_by_source_id([
        destination("900", "x", source_id=MEETING_A),
        destination("901", "y", source_id=MEETING_A),
    ])
    assert index[MEETING_A].record_id == "901"


# ==================== TITLE ====================

def test_title_normalisation_collapses_to_equal(matcher):
    assert matcher.title_similarity("Q1 Sync", "q1   sync!!") == 1.0


def test_title_substring(matcher):
    assert matcher.title_similarity("Weekly sync", "Weekly sync with Acme") == 0.9


def test_title_word_overlap(matcher):
    score = matcher.title_similarity("Quarterly planning review", "Planning review session budget")
    assert score == pytest.approx(4 / 7)


def test_title_overlap_capped(matcher):
    assert matcher.title_similarity("alpha beta gamma", "gamma beta alpha") == 0.8


def test_title_short_words_ignored(matcher):
    assert matcher.title_similarity("a b c", "c b a x") == 0.0


@pytest.mark.parametrize("t1,t2", [("", "Sync"), ("Sync", None), ("!!!", "Sync")])
def test_title_empty(matcher, t1, t2):
    assert matcher.title_similarity(t1, t2) == 0.0


# ==================== DATE ====================

@pytest.mark.parametrize("hours,expected", [
    (0, 1.0), (10, 1.0), (12, 1.0), (20, 0.8), (24, 0.8), (30, 0.6), (48, 0.6),
    (100, 0.3), (168, 0.3), (200, 0.0),
])
def test_date_similarity(matcher, hours, expected):
    assert matcher.date_similarity(T0, T0 + timedelta(hours=hours)) == expected
    assert matcher.date_similarity(T0 + timedelta(hours=hours), T0) == expected


def test_date_similarity_uses_fractional_hours(matcher):
    assert matcher.date_similarity(T0, T0 + timedelta(hours=12, minutes=30)) == 0.8


def test_date_similarity_unknown(matcher):
    assert matcher.date_similarity(None, T0) == 0.0


# ==================== SCORE / MATCH ====================

def test_score_is_weighted_and_rounded(matcher):
    score, breakdown = matcher.calculate_score(
        source(MEETING_A, "Quarterly planning review"),
        destination("1", "Planning review session budget", start=T0 + timedelta(hours=30)),
    )
    assert breakdown == {"title": pytest.approx(4 / 7), "date": 0.6}
    assert score == round(0.6 * 4 / 7 + 0.4 * 0.6, 2)


def test_weights_are_configurable():
    title_only = MeetingMatcher(threshold=0.5, title_weight=1.0, date_weight=0.0)
    match = title_only.find_best_match(source(MEETING_A, "Kickoff"),
                                       [destination("1", "Kickoff", start=T0 + timedelta(days=60))])
    assert match is not None and match.score == 1.0


def test_below_threshold_is_no_match(matcher):
    # title 0 + date 1.0 -> 0.4
    assert matcher.find_best_match(source(MEETING_A, "Kickoff"), [destination("1", "Budget")]) is None


def test_best_match_picks_highest(matcher):
    candidates = [
        destination("1", "Kickoff", start=T0 + timedelta(hours=100)),
        destination("2", "Kickoff", start=T0 + timedelta(hours=1)),
        destination("3", "Kickoff call", start=T0),
    ]
    match = matcher.find_best_match(source(MEETING_A, "Kickoff"), candidates)
    assert match.destination.record_id == "2"
    assert match.breakdown == {"title": 1.0, "date": 1.0}


def test_best_match_stable_under_reordering(matcher):
    candidates = [
        destination("1", "Kickoff", start=T0 + timedelta(hours=100)),
        destination("2", "Kickoff", start=T0 + timedelta(hours=1)),
        destination("3", "Kickoff call", start=T0 + timedelta(hours=30)),
        destination("4", "Unrelated", start=T0),
    ]
    rng = random.Random(7)
    for _ in range(10):
        shuffled = candidates[:]
        rng.shuffle(shuffled)
        assert matcher.find_best_match(source(MEETING_A, "Kickoff"), shuffled).destination.record_id == "2"


def test_ties_keep_first_candidate(matcher):
    candidates = [destination("1", "Kickoff"), destination("2", "Kickoff")]
    assert matcher.find_best_match(source(MEETING_A, "Kickoff"), candidates).destination.record_id == "1"


def test_match_meetings_is_injective(matcher):
    sources = [source(MEETING_A, "Kickoff"), source(MEETING_B, "Kickoff")]
    result = matcher.match_meetings(sources, [destination("1", "Kickoff")])

    assert [(m.source.record_id, m.destination.record_id) for m in result.matches] == [(MEETING_A, "1")]
    assert [s.record_id for s in result.unmatched_source] == [MEETING_B]
    assert result.unmatched_destination == []


def test_match_meetings_consumes_then_falls_back_to_next_best(matcher):
    sources = [source(MEETING_A, "Kickoff"), source(MEETING_B, "Kickoff")]
    destinations = [destination("1", "Kickoff"), destination("2", "Kickoff", start=T0 + timedelta(hours=20))]
    result = matcher.match_meetings(sources, destinations)

    used = [m.destination.record_id for m in result.matches]
    assert used == ["1", "2"]
    assert len(set(used)) == len(used)
    assert result.matches[1].score == round(0.6 + 0.4 * 0.8, 2)


def test_unmatched_destinations_reported(matcher):
    result = matcher.match_meetings([source(MEETING_A, "Kickoff")],
                                    [destination("1", "Kickoff"), destination("2", "Budget")])
    assert [d.record_id for d in result.unmatched_destination] == ["2"]
