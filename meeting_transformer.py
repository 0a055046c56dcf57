"""
Maps an Attio meeting onto HubSpot meeting properties.

The body always opens with the import header carrying the Attio id, which is
what the correlator later recovers to recognise already-migrated meetings.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from models import MeetingDraft, Participant, SourceRecord

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description provided"
DEFAULT_DURATION = timedelta(hours=1)
MANUAL_EDIT_LENGTH = 500
TRANSCRIPT_MARKER = "=== TRANSCRIPT ==="
UNKNOWN_SPEAKER = "Unknown Speaker"

HTML_TAG = re.compile(r"<[^>]*>")


class MissingRequiredFieldError(Exception):
    """A field HubSpot requires is absent on the source record"""

    def __init__(self, field: str, record_id: str, title: str = ""):
        self.field = field
        self.record_id = record_id
        self.title = title
        super().__init__(f"Meeting \"{title or record_id}\" has no {field} - HubSpot requires it")


def to_iso_z(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def import_header(record_id: str, source_label: str = "Attio") -> str:
    return f"Meeting imported from {source_label}. Original ID: {record_id}"


def participant_line(participant: Participant) -> str:
    """``- Name <email> (host) [status]``"""
    if participant.name and participant.email:
        label = f"{participant.name} <{participant.email}>"
    else:
        label = participant.name or participant.email or "Unknown participant"
    role = " (host)" if participant.is_organizer else ""
    status = f" [{participant.status}]" if participant.status else ""
    return f"- {label}{role}{status}"


def build_body(record: SourceRecord, source_label: str = "Attio") -> str:
    sections = [import_header(record.record_id, source_label), record.description or NO_DESCRIPTION]
    if record.participants:
        lines = [f"{source_label} participants:"]
        lines.extend(participant_line(p) for p in record.participants)
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def attendee_emails(participants: List[Participant]) -> str:
    """Semicolon-joined emails of participants with a syntactically valid address"""
    emails = []
    for participant in participants:
        if participant.has_valid_email and participant.email not in emails:
            emails.append(participant.email)
    return ";".join(emails)


def resolve_end_time(start: datetime, end: Optional[datetime]) -> datetime:
    if end is None or end <= start:
        return start + DEFAULT_DURATION
    return end


# ==================== TRANSCRIPTS ====================

def _speaker_name(segment: Dict[str, Any]) -> str:
    speaker = segment.get("speaker")
    if isinstance(speaker, dict):
        speaker = speaker.get("name")
    return (speaker or segment.get("name") or UNKNOWN_SPEAKER).strip()


def _segment_text(segment: Dict[str, Any]) -> str:
    for key in ("speech", "text", "content", "word"):
        value = segment.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def format_transcript(transcript: Any) -> Optional[str]:
    """
    Readable transcript text from an Attio transcript.

    Accepts the transcript object (segment list under ``transcript``, plain
    text under ``raw_transcript``), a bare segment list, or a string.
    Consecutive segments by the same speaker are merged into one
    ``Speaker: text`` paragraph. Returns None when there is nothing to show.
    """
    if isinstance(transcript, dict):
        segments = transcript.get("transcript")
        if segments:
            return format_transcript(segments)
        return format_transcript(transcript.get("raw_transcript"))

    if isinstance(transcript, str):
        text = " ".join(HTML_TAG.sub("", transcript).split())
        return text or None

    if not isinstance(transcript, list):
        return None

    paragraphs: List[Tuple[str, List[str]]] = []
    for segment in transcript:
        if not isinstance(segment, dict):
            continue
        text = _segment_text(segment)
        if not text:
            continue
        speaker = _speaker_name(segment)
        if paragraphs and paragraphs[-1][0] == speaker:
            paragraphs[-1][1].append(text)
        else:
            paragraphs.append((speaker, [text]))

    if not paragraphs:
        return None
    return "\n\n".join(f"{speaker}: {' '.join(words)}" for speaker, words in paragraphs)


def has_transcript(body: Optional[str]) -> bool:
    return TRANSCRIPT_MARKER in (body or "")


def with_transcript(body: str, transcript: Optional[str]) -> str:
    """Append a marked transcript section; the body is returned unchanged without one"""
    if not transcript:
        return body
    section = f"{TRANSCRIPT_MARKER}\n{transcript}\n{TRANSCRIPT_MARKER}"
    return f"{body}\n\n{section}" if body else section


def split_transcript(body: str) -> Tuple[str, str]:
    """(body before the transcript section, the section itself)"""
    index = body.find(TRANSCRIPT_MARKER)
    if index < 0:
        return body, ""
    return body[:index].rstrip("\n"), body[index:]


def prepare(record: SourceRecord, source_label: str = "Attio", transcript: Optional[str] = None) -> MeetingDraft:
    """
    Build the HubSpot property bag for a source meeting. A formatted
    ``transcript`` is appended to the body as a marked section.

    Raises:
        MissingRequiredFieldError: when no start time could be extracted
    """
    if record.start is None:
        raise MissingRequiredFieldError("start_time", record.record_id, record.title or "")

    start = record.start
    end = resolve_end_time(start, record.end)

    properties: Dict[str, object] = {
        "hs_meeting_title": record.title or f"Meeting imported from {source_label}",
        "hs_meeting_body": with_transcript(build_body(record, source_label), transcript),
        "hs_meeting_location": record.location or "",
        "hs_timestamp": to_epoch_ms(start),
        "hs_meeting_start_time": to_iso_z(start),
        "hs_meeting_end_time": to_iso_z(end),
    }
    emails = attendee_emails(record.participants)
    if emails:
        properties["hs_attendee_emails"] = emails

    return MeetingDraft(source_id=record.record_id, properties=properties)


def looks_auto_generated(body: str, source_label: str = "Attio") -> bool:
    """
    True when a body still looks like our own import output: it starts with
    the import header and is either the no-description placeholder or short.
    """
    body = body or ""
    if not body.startswith(f"Meeting imported from {source_label}. Original ID:"):
        return False
    return NO_DESCRIPTION in body or len(body) < MANUAL_EDIT_LENGTH


def upgraded_body(current_body: str, record: SourceRecord, source_label: str = "Attio") -> Optional[str]:
    """
    New body with the participant roster, or None when the current body must be
    left alone. A transcript section already on the meeting is carried over.
    """
    head, transcript_section = split_transcript(current_body or "")
    if not looks_auto_generated(head, source_label):
        return None
    new_body = build_body(record, source_label)
    if transcript_section:
        new_body = f"{new_body}\n\n{transcript_section}"
    if new_body == current_body:
        return None
    return new_body
