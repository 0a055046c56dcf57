"""
Payload parsing for loosely-typed Attio and HubSpot JSON.

The same semantic value (a start time, a participant list, a linked record)
turns up under several keys and in several shapes. Each shape family has one
normalising probe, and each field has an ordered tuple of extractors; the
first extractor returning a non-None value wins.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from dateutil import parser as dtparser

from models import (
    COMPANY, DEAL, PERSON,
    DestinationRecord, LinkedReference, Participant, SourceRecord,
)

logger = logging.getLogger(__name__)

Extractor = Callable[[Dict[str, Any]], Any]

ORIGINAL_ID_PATTERN = re.compile(
    r"Original ID:\s*([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})"
)

REFERENCE_KINDS = {
    "person": PERSON, "people": PERSON,
    "company": COMPANY, "companies": COMPANY, "account": COMPANY, "accounts": COMPANY,
    "deal": DEAL, "deals": DEAL, "opportunity": DEAL, "opportunities": DEAL,
}


def first_result(extractors: Iterable[Extractor], payload: Dict[str, Any]) -> Any:
    """Run extractors in order and return the first non-None result"""
    for extractor in extractors:
        result = extractor(payload)
        if result is not None:
            return result
    return None


# ==================== TIMESTAMPS ====================

# Digit strings shorter than this are compact ISO dates (20240101), not epoch ms
MIN_EPOCH_DIGITS = 10

# Two defaults that differ in every date component; a free-form string is only
# accepted when it names its own year, month and day
_LOOSE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def _parse_loose(text: str) -> Optional[datetime]:
    """dateutil's free-form parser, rejecting strings that leave part of the date unset"""
    try:
        first, second = (dtparser.parse(text, default=d) for d in _LOOSE_DEFAULTS)
    except (ValueError, OverflowError):
        return None
    if first.date() != second.date():
        return None
    return first


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-ish string or an epoch-milliseconds number into an aware UTC datetime.
    Naive values are taken as UTC. Returns None when the value cannot be parsed or
    does not name a complete date.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit() and len(text) >= MIN_EPOCH_DIGITS:
            return _from_epoch_ms(int(text))
        try:
            dt = dtparser.isoparse(text)
        except (ValueError, OverflowError):
            dt = _parse_loose(text)
            if dt is None:
                return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _from_epoch_ms(ms: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def probe_time(value: Any) -> Optional[datetime]:
    """
    Normalise one time-ish value.

    Shapes: a structured object (``datetime``, then ``date``, then ``timestamp``,
    then an Attio attribute ``value``), a flat string, an epoch number, or an
    Attio attribute-value list whose first entry is probed.
    """
    if isinstance(value, list):
        return probe_time(value[0]) if value else None
    if isinstance(value, dict):
        for key in ("datetime", "date", "timestamp", "value"):
            if value.get(key):
                found = probe_time(value[key])
                if found is not None:
                    return found
        return None
    return parse_datetime(value)


def _time_field(container_key: Optional[str], keys: Sequence[str]) -> Extractor:
    def extractor(payload: Dict[str, Any]) -> Optional[datetime]:
        container = payload if container_key is None else payload.get(container_key)
        if not isinstance(container, dict):
            return None
        for key in keys:
            found = probe_time(container.get(key))
            if found is not None:
                return found
        return None

    extractor.__name__ = f"time_from_{container_key or 'record'}_{'_'.join(keys)}"
    return extractor


START_TIME_EXTRACTORS = (
    _time_field(None, ("start",)),
    _time_field("values", ("start_time", "start", "start_at")),
    _time_field("attributes", ("start_time", "start")),
    _time_field(None, ("start_time", "start_at")),
)

END_TIME_EXTRACTORS = (
    _time_field(None, ("end",)),
    _time_field("values", ("end_time", "end", "end_at")),
    _time_field("attributes", ("end_time", "end")),
    _time_field(None, ("end_time", "end_at")),
)


def extract_start_time(payload: Dict[str, Any]) -> Optional[datetime]:
    """Scheduled start, or None when no known shape yields one (never created_at)"""
    return first_result(START_TIME_EXTRACTORS, payload)


def extract_end_time(payload: Dict[str, Any]) -> Optional[datetime]:
    return first_result(END_TIME_EXTRACTORS, payload)


# ==================== ATTRIBUTE VALUES ====================

def attribute_value(container: Any, key: str) -> Any:
    """Unwrap Attio ``[{"value": ...}]`` / ``{"value": ...}`` / bare values"""
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("value")
    if value in ("", None):
        return None
    return value


def _text_field(key: str) -> Sequence[Extractor]:
    return (
        lambda payload: attribute_value(payload.get("values"), key),
        lambda payload: attribute_value(payload, key),
    )


TITLE_EXTRACTORS = _text_field("title")
DESCRIPTION_EXTRACTORS = _text_field("description")
LOCATION_EXTRACTORS = _text_field("location")


def extract_source_id(payload: Dict[str, Any]) -> Optional[str]:
    record_id = payload.get("id")
    if isinstance(record_id, dict):
        for key in ("meeting_id", "call_id", "record_id"):
            if record_id.get(key):
                return str(record_id[key])
        return None
    return str(record_id) if record_id else None


def extract_created_at(payload: Dict[str, Any]) -> Optional[datetime]:
    return parse_datetime(payload.get("created_at")) or probe_time(
        (payload.get("values") or {}).get("created_at"))


# ==================== PARTICIPANTS ====================

def _list_field(container_key: Optional[str], key: str) -> Extractor:
    def extractor(payload: Dict[str, Any]) -> Optional[list]:
        container = payload if container_key is None else payload.get(container_key)
        if not isinstance(container, dict):
            return None
        value = container.get(key)
        return value if isinstance(value, list) and value else None

    return extractor


PARTICIPANT_LIST_EXTRACTORS = (
    _list_field("values", "participants"),
    _list_field("values", "attendees"),
    _list_field("values", "people"),
    _list_field(None, "participants"),
    _list_field(None, "attendees"),
    _list_field(None, "people"),
)


def reference_kind(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return REFERENCE_KINDS.get(value.strip().lower())


def _reference_id(entry: Dict[str, Any]) -> Optional[str]:
    for key in ("target_record_id", "record_id", "id"):
        value = entry.get(key)
        if isinstance(value, dict):
            value = value.get("record_id")
        if value:
            return str(value)
    return None


def parse_participant(entry: Dict[str, Any]) -> Participant:
    name = (
        entry.get("name")
        or entry.get("full_name")
        or " ".join(p for p in (entry.get("first_name"), entry.get("last_name")) if p)
        or entry.get("display_name")
        or ""
    )
    email = entry.get("email_address") or entry.get("email") or ""

    person_id = None
    kind = reference_kind(entry.get("target_object")) or reference_kind(entry.get("type"))
    if kind == PERSON:
        person_id = _reference_id(entry)

    return Participant(
        name=str(name).strip(),
        email=str(email).strip(),
        status=entry.get("status") or None,
        is_organizer=bool(entry.get("is_organizer")),
        person_id=person_id,
    )


def extract_participants(payload: Dict[str, Any], record_id: str = "") -> List[Participant]:
    """Participants from the first populated list; non-object entries are skipped"""
    entries = first_result(PARTICIPANT_LIST_EXTRACTORS, payload) or []
    participants = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning(f"⚠️  Skipping malformed participant #{index} on {record_id or 'record'}: {entry!r}")
            continue
        participants.append(parse_participant(entry))
    return participants


# ==================== LINKED RECORDS ====================

LINKED_LIST_EXTRACTORS = (
    _list_field("values", "linked_records"),
    _list_field("values", "accounts"),
    _list_field("values", "organizations"),
    _list_field(None, "linked_records"),
)

# (extractor, kind assumed when an entry carries no type of its own)
LEGACY_LINKED_LISTS = (
    (_list_field("values", "companies"), COMPANY),
    (_list_field(None, "companies"), COMPANY),
    (_list_field("values", "deals"), DEAL),
    (_list_field(None, "deals"), DEAL),
)


def parse_linked_reference(entry: Any, default_kind: Optional[str] = None) -> Optional[LinkedReference]:
    if not isinstance(entry, dict):
        return None
    kind = (
        reference_kind(entry.get("target_object"))
        or reference_kind(entry.get("object_slug"))
        or reference_kind(entry.get("type"))
        or default_kind
    )
    record_id = _reference_id(entry)
    if not kind or not record_id:
        return None
    return LinkedReference(kind=kind, record_id=record_id)


def extract_linked_references(payload: Dict[str, Any], record_id: str = "") -> List[LinkedReference]:
    """Typed references to people, companies and deals, de-duplicated in order"""
    candidates = []
    for entry in first_result(LINKED_LIST_EXTRACTORS, payload) or []:
        candidates.append((entry, None))
    for extractor, default_kind in LEGACY_LINKED_LISTS:
        for entry in extractor(payload) or []:
            candidates.append((entry, default_kind))

    references = []
    seen = set()
    for entry, default_kind in candidates:
        reference = parse_linked_reference(entry, default_kind)
        if reference is None:
            logger.warning(f"⚠️  Skipping unrecognised linked record on {record_id or 'record'}: {entry!r}")
            continue
        key = (reference.kind, reference.record_id)
        if key not in seen:
            seen.add(key)
            references.append(reference)
    return references


# ==================== RECORDS ====================

def parse_source_record(payload: Dict[str, Any], source_type: str = "meeting") -> SourceRecord:
    record_id = extract_source_id(payload) or ""
    return SourceRecord(
        record_id=record_id,
        title=first_result(TITLE_EXTRACTORS, payload),
        description=first_result(DESCRIPTION_EXTRACTORS, payload) or "",
        location=first_result(LOCATION_EXTRACTORS, payload) or "",
        start=extract_start_time(payload),
        end=extract_end_time(payload),
        created_at=extract_created_at(payload),
        participants=extract_participants(payload, record_id),
        linked_references=extract_linked_references(payload, record_id),
        source_type=source_type,
        raw=payload,
    )


def extract_embedded_source_id(body: str) -> Optional[str]:
    """Recover the ``Original ID: <uuid>`` token written into imported bodies"""
    if not body:
        return None
    match = ORIGINAL_ID_PATTERN.search(body)
    return match.group(1) if match else None


def _parse_crm_meeting(payload: Dict[str, Any]) -> DestinationRecord:
    props = payload.get("properties") or {}
    body = props.get("hs_meeting_body") or ""
    return DestinationRecord(
        record_id=str(payload.get("id")),
        title=props.get("hs_meeting_title") or "",
        body=body,
        start=parse_datetime(props.get("hs_meeting_start_time")) or parse_datetime(props.get("hs_timestamp")),
        end=parse_datetime(props.get("hs_meeting_end_time")),
        source_id=extract_embedded_source_id(body) or props.get("attio_meeting_id") or None,
        raw=payload,
    )


def _parse_legacy_engagement(payload: Dict[str, Any]) -> DestinationRecord:
    engagement = payload.get("engagement") or {}
    metadata = payload.get("metadata") or {}
    body = metadata.get("body") or ""
    return DestinationRecord(
        record_id=str(engagement.get("id")),
        title=metadata.get("title") or "",
        body=body,
        start=parse_datetime(metadata.get("startTime")) or parse_datetime(engagement.get("timestamp")),
        end=parse_datetime(metadata.get("endTime")),
        source_id=extract_embedded_source_id(body),
        legacy=True,
        raw=payload,
    )


def parse_destination_record(payload: Dict[str, Any]) -> DestinationRecord:
    """HubSpot meetings come either as CRM objects or as legacy engagements"""
    if "engagement" in payload:
        return _parse_legacy_engagement(payload)
    return _parse_crm_meeting(payload)
