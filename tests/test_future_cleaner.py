"""
Tests for the future-meeting audit and cleanup
"""

from datetime import datetime, timedelta, timezone

import pytest

from future_cleaner import FutureMeetingCleaner, end_of_day
from snapshot_store import SnapshotStore

from conftest import MEETING_A, FakeHubSpotClient, http_error, hubspot_meeting, imported_body

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def hub():
    return FakeHubSpotClient(meetings=[
        hubspot_meeting("1", title="Past", start=NOW - timedelta(days=3)),
        hubspot_meeting("2", title="Tonight", start=NOW + timedelta(hours=6)),
        hubspot_meeting("3", title="Next week", start=NOW + timedelta(days=7)),
        hubspot_meeting("4", title="Broken", start=datetime(2031, 1, 1, tzinfo=timezone.utc),
                        body=imported_body(MEETING_A)),
        hubspot_meeting("5", title="No start"),
    ])


def test_end_of_day():
    assert end_of_day(NOW) == datetime(2025, 6, 1, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_identify_reports_meetings_after_today(hub, tmp_path):
    store = SnapshotStore(str(tmp_path), run_id="r1")
    report = FutureMeetingCleaner(hub, store=store, request_delay=0).identify(now=NOW)

    assert report["total_meetings_checked"] == 5
    assert [m["hubspot_id"] for m in report["meetings"]] == ["4", "3"]
    assert report["invalid_meetings_found"] == 1
    assert report["years_represented"] == [2031, 2025]
    broken = report["meetings"][0]
    assert broken["invalid"] is True
    assert broken["attio_id"] == MEETING_A
    assert report["meetings"][1]["days_from_now"] == 7
    assert store.load("future_meetings_report")["suspicious_meetings_found"] == 2


def test_dry_run_deletes_nothing(hub):
    outcome = FutureMeetingCleaner(hub, request_delay=0).run(dry_run=True, now=NOW)
    assert outcome["cleanup"] == {"flagged": 1, "deleted": 0, "failed": 0}
    assert hub.deleted_calls == []


def test_apply_deletes_only_invalid(hub):
    outcome = FutureMeetingCleaner(hub, request_delay=0).run(dry_run=False, now=NOW)
    assert hub.deleted_calls == ["4"]
    assert outcome["cleanup"]["deleted"] == 1


def test_failed_delete_is_counted(hub):
    class FailingHub(FakeHubSpotClient):
        def delete_meeting(self, meeting_id):
            raise http_error(403, "forbidden")

    failing = FailingHub(meetings=hub.meetings)
    outcome = FutureMeetingCleaner(failing, request_delay=0).run(dry_run=False, now=NOW)
    assert outcome["cleanup"] == {"flagged": 1, "deleted": 0, "failed": 1}
