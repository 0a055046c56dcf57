"""
Tests for the Attio and HubSpot record fetchers
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fetchers import SourceRecordFetcher, TargetRecordFetcher, admissibility
from models import (
    SKIP_FUTURE_START_TIME, SKIP_IMPLAUSIBLE_START_TIME, SKIP_NO_RECORD_ID, SKIP_NO_START_TIME, SourceRecord,
)

from conftest import (
    MEETING_A, MEETING_B, MEETING_C, FakeAttioClient, FakeHubSpotClient, attio_meeting, hubspot_meeting,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_admissibility_reasons():
    assert admissibility(SourceRecord("a"), NOW, NOW) == SKIP_NO_START_TIME
    assert admissibility(SourceRecord("a", start=NOW + timedelta(days=1)), NOW, NOW) == SKIP_FUTURE_START_TIME
    assert admissibility(SourceRecord("a", start=datetime(2027, 1, 1, tzinfo=timezone.utc)), NOW, NOW) \
        == SKIP_IMPLAUSIBLE_START_TIME
    assert admissibility(SourceRecord("a", start=NOW), NOW, NOW) is None


def test_implausible_year_applies_even_with_late_cutoff():
    far = datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert admissibility(SourceRecord("a", start=far), far, NOW) == SKIP_IMPLAUSIBLE_START_TIME


def test_fetch_filters_by_cutoff():
    meetings = [
        attio_meeting(MEETING_A, start=NOW - timedelta(days=30)),
        attio_meeting(MEETING_B, start=NOW + timedelta(hours=1)),
        attio_meeting(MEETING_C),
    ]
    result = SourceRecordFetcher(FakeAttioClient(meetings=meetings), page_delay=0).fetch_all(cutoff=NOW, now=NOW)

    assert [r.record_id for r in result.records] == [MEETING_A]
    assert {s.record_id: s.reason for s in result.rejected} == {
        MEETING_B: SKIP_FUTURE_START_TIME,
        MEETING_C: SKIP_NO_START_TIME,
    }
    assert all(r.start <= NOW for r in result.records)


def test_partial_date_is_not_a_start_time():
    meetings = [
        attio_meeting(MEETING_A, start="March"),
        attio_meeting(MEETING_B, start=NOW - timedelta(days=2)),
    ]
    result = SourceRecordFetcher(FakeAttioClient(meetings=meetings), page_delay=0).fetch_all(cutoff=NOW, now=NOW)

    assert [r.record_id for r in result.records] == [MEETING_B]
    assert [(s.record_id, s.reason) for s in result.rejected] == [(MEETING_A, SKIP_NO_START_TIME)]


def test_fetch_follows_cursor_with_fixed_page_delay():
    pages = [
        [attio_meeting(MEETING_A, start=NOW - timedelta(days=3))],
        [attio_meeting(MEETING_B, start=NOW - timedelta(days=2))],
    ]
    client = FakeAttioClient(meeting_pages=pages)
    fetcher = SourceRecordFetcher(client, page_delay=0.5, include_calls=False)

    with patch("fetchers.time.sleep") as sleep:
        result = fetcher.fetch_all(now=NOW)

    assert [r.record_id for r in result.records] == [MEETING_A, MEETING_B]
    assert client.cursors == [None, "1"]
    sleep.assert_called_once_with(0.5)


def test_calls_merged_and_meetings_take_precedence():
    meeting = attio_meeting(MEETING_A, title="From meetings", start=NOW - timedelta(days=1))
    duplicate_call = {"id": {"call_id": MEETING_A}, "title": "From calls", "start": NOW.isoformat()}
    call = {"id": {"call_id": MEETING_B}, "title": "A call", "start": (NOW - timedelta(hours=5)).isoformat()}
    client = FakeAttioClient(meetings=[meeting], calls=[duplicate_call, call])

    result = SourceRecordFetcher(client, page_delay=0).fetch_all(now=NOW)

    assert [(r.record_id, r.source_type) for r in result.records] == [(MEETING_A, "meeting"), (MEETING_B, "call")]
    assert result.records[0].title == "From meetings"


def test_calls_can_be_disabled():
    client = FakeAttioClient(calls=[{"id": {"call_id": MEETING_B}, "start": NOW.isoformat()}])
    result = SourceRecordFetcher(client, page_delay=0, include_calls=False).fetch_all(now=NOW)
    assert result.records == []


def test_since_bound_is_not_a_skip():
    meetings = [
        attio_meeting(MEETING_A, start=NOW - timedelta(days=30), created_at=NOW - timedelta(days=30)),
        attio_meeting(MEETING_B, start=NOW - timedelta(days=2)),
    ]
    result = SourceRecordFetcher(FakeAttioClient(meetings=meetings), page_delay=0).fetch_all(
        since=NOW - timedelta(days=7), now=NOW)

    assert [r.record_id for r in result.records] == [MEETING_B]
    assert result.out_of_window == 1
    assert result.rejected == []


def test_records_without_id_are_rejected():
    client = FakeAttioClient(meetings=[{"title": "No id", "start": NOW.isoformat()}])
    result = SourceRecordFetcher(client, page_delay=0).fetch_all(now=NOW)
    assert [s.reason for s in result.rejected] == [SKIP_NO_RECORD_ID]


def test_target_fetch_merges_crm_and_legacy():
    hub = FakeHubSpotClient(
        meetings=[hubspot_meeting(1, start=NOW), hubspot_meeting(2)],
        engagements=[
            {"engagement": {"id": 2, "type": "MEETING"}, "metadata": {}},
            {"engagement": {"id": 3, "type": "MEETING", "timestamp": 1709287200000}, "metadata": {"title": "Old"}},
        ],
    )
    records = TargetRecordFetcher(hub, page_delay=0).fetch_all()

    assert [(r.record_id, r.legacy) for r in records] == [("1", False), ("2", False), ("3", True)]


def test_target_fetch_without_legacy():
    hub = FakeHubSpotClient(meetings=[hubspot_meeting(1)],
                            engagements=[{"engagement": {"id": 3, "type": "MEETING"}, "metadata": {}}])
    records = TargetRecordFetcher(hub, page_delay=0, include_legacy=False).fetch_all()
    assert [r.record_id for r in records] == ["1"]


def test_target_fetch_follows_after_cursor():
    class PagedHub(FakeHubSpotClient):
        def list_meetings(self, after=None):
            if after is None:
                return {"results": [hubspot_meeting(1)], "paging": {"next": {"after": "p2"}}}
            return {"results": [hubspot_meeting(2)]}

    records = TargetRecordFetcher(PagedHub(), page_delay=0, include_legacy=False).fetch_all()
    assert [r.record_id for r in records] == ["1", "2"]
