"""
Shared fixtures: in-memory Attio/HubSpot fakes and a zero-delay config.
"""

import itertools
import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from config import Config

MEETING_A = "11111111-1111-1111-1111-111111111111"
MEETING_B = "22222222-2222-2222-2222-222222222222"
MEETING_C = "33333333-3333-3333-3333-333333333333"


def make_response(status: int, body=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.encoding = "utf-8"
    response._content = json.dumps(body if body is not None else {}).encode("utf-8")
    return response


def http_error(status: int, message: str = "error") -> requests.exceptions.HTTPError:
    response = make_response(status, {"message": message})
    return requests.exceptions.HTTPError(f"{status} Error: {message}", response=response)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def attio_meeting(meeting_id, title="Weekly sync", start=None, end=None, description="",
                  participants=None, linked_records=None, created_at=None):
    payload = {
        "id": {"workspace_id": "ws-1", "meeting_id": meeting_id},
        "title": title,
        "description": description,
        "participants": participants or [],
        "linked_records": linked_records or [],
    }
    if start is not None:
        payload["start"] = {"datetime": iso(start) if isinstance(start, datetime) else start}
    if end is not None:
        payload["end"] = {"datetime": iso(end) if isinstance(end, datetime) else end}
    if created_at is not None:
        payload["created_at"] = iso(created_at)
    return payload


def hubspot_meeting(meeting_id, title="Weekly sync", body="", start=None, **extra):
    properties = {"hs_meeting_title": title, "hs_meeting_body": body}
    if start is not None:
        properties["hs_meeting_start_time"] = iso(start)
        properties["hs_timestamp"] = str(int(start.timestamp() * 1000))
    properties.update(extra)
    return {"id": str(meeting_id), "properties": properties}


def imported_body(meeting_id, text="No description provided"):
    return f"Meeting imported from Attio. Original ID: {meeting_id}\n\n{text}"


class FakeAttioClient:
    """Serves pre-built pages; cursors are page indexes"""

    def __init__(self, meetings=None, calls=None, meeting_pages=None, call_pages=None, fail_with=None,
                 recordings=None, transcripts=None):
        self.meeting_pages = meeting_pages if meeting_pages is not None else [meetings or []]
        self.call_pages = call_pages if call_pages is not None else [calls or []]
        self.fail_with = fail_with
        self.cursors = []
        self.recordings = recordings or {}
        self.transcripts = transcripts or {}
        self.transcript_requests = []

    def _page(self, pages, cursor):
        if self.fail_with is not None:
            raise self.fail_with
        self.cursors.append(cursor)
        index = int(cursor or 0)
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return {"data": pages[index] if pages else [], "pagination": {"next_cursor": next_cursor}}

    def list_meetings(self, cursor=None):
        return self._page(self.meeting_pages, cursor)

    def list_calls(self, cursor=None):
        return self._page(self.call_pages, cursor)

    def get_call_recordings(self, meeting_id):
        found = self.recordings.get(meeting_id, [])
        if isinstance(found, Exception):
            raise found
        return found

    def get_transcript(self, meeting_id, call_recording_id):
        self.transcript_requests.append((meeting_id, call_recording_id))
        return self.transcripts.get((meeting_id, call_recording_id), {"transcript": []})

    def test_connection(self):
        return True


class FakeHubSpotClient:
    """Records every write; associations and search results come from plain dicts"""

    def __init__(self, meetings=None, engagements=None, search_index=None, associations=None,
                 deleted=None, connected=True):
        self.meetings = meetings or []
        self.engagements = engagements or []
        self.search_index = search_index or {}
        self.associations = associations or {}
        self.deleted = set(deleted or [])
        self.connected = connected
        self.ids = itertools.count(9001)

        self.created = []
        self.updated = []
        self.deleted_calls = []
        self.batches = []
        self.searches = []
        self.fail_create = None
        self.fail_batch = None
        self.batch_errors = []

    def list_meetings(self, after=None):
        return {"results": self.meetings}

    def list_engagements(self, offset=0):
        return {"results": self.engagements, "hasMore": False, "offset": offset}

    def search_one(self, object_type, property_name, value, properties=None):
        self.searches.append((object_type, property_name, value))
        found = self.search_index.get((object_type, property_name, value))
        if isinstance(found, Exception):
            raise found
        return {"id": found, "properties": {}} if found else None

    def get_associated_ids(self, meeting_id, to_object_type):
        if meeting_id in self.deleted:
            raise http_error(404, "Not found")
        return list(self.associations.get((meeting_id, to_object_type), []))

    def create_meeting(self, properties):
        if self.fail_create is not None:
            error, self.fail_create = self.fail_create, None
            raise error
        meeting_id = str(next(self.ids))
        self.created.append((meeting_id, properties))
        return {"id": meeting_id, "properties": properties}

    def update_meeting(self, meeting_id, properties):
        self.updated.append((meeting_id, properties))
        return {"id": meeting_id, "properties": properties}

    def delete_meeting(self, meeting_id):
        self.deleted_calls.append(meeting_id)

    def batch_create_associations(self, from_object_type, to_object_type, pairs, association_kind):
        if self.fail_batch is not None:
            raise self.fail_batch
        self.batches.append((from_object_type, to_object_type, pairs, association_kind))
        return {"status": "COMPLETE", "results": pairs, "errors": list(self.batch_errors)}

    def test_connection(self):
        return self.connected


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def last_month(now):
    return now - timedelta(days=30)


@pytest.fixture
def cfg():
    """Credentials present, every delay zero"""
    return Config(raw={
        "attio": {"api_key": "attio-key", "page_delay_seconds": 0},
        "hubspot": {"access_token": "hub-token", "page_delay_seconds": 0},
        "retry": {"base_delay_seconds": 0},
        "migration": {"request_delay_seconds": 0, "progress_every": 1},
    })
