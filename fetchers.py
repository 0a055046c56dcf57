"""
Record fetchers for both sides of the migration.

SourceRecordFetcher pages Attio meetings (and calls) and applies the date
admissibility filter. TargetRecordFetcher pages every HubSpot meeting, CRM
objects first and then legacy engagements, with no filtering.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from models import (
    SKIP_FUTURE_START_TIME, SKIP_IMPLAUSIBLE_START_TIME, SKIP_NO_RECORD_ID, SKIP_NO_START_TIME,
    DestinationRecord, FetchResult, SkippedRecord, SourceRecord,
)
from payloads import parse_destination_record, parse_source_record

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def admissibility(record: SourceRecord, cutoff: datetime, now: datetime) -> Optional[str]:
    """Skip reason for a record that must not be migrated, or None when it is admissible"""
    if record.start is None:
        return SKIP_NO_START_TIME
    if record.start.year > now.year + 1:
        return SKIP_IMPLAUSIBLE_START_TIME
    if record.start > cutoff:
        return SKIP_FUTURE_START_TIME
    return None


class SourceRecordFetcher:
    """Cursor-paginated fetch of Attio meetings and calls"""

    def __init__(self, client, page_delay: float = 0.5, include_calls: bool = True):
        self.client = client
        self.page_delay = page_delay
        self.include_calls = include_calls

    def _paginate(self, list_page: Callable[[Optional[str]], Dict[str, Any]],
                  label: str) -> Iterator[Dict[str, Any]]:
        cursor = None
        page = 0
        while True:
            page += 1
            data = list_page(cursor)
            items = data.get("data") or []
            logger.info(f"📄 Attio {label} page {page}: {len(items)} records")
            yield from items

            cursor = (data.get("pagination") or {}).get("next_cursor")
            if not cursor or not items:
                break
            if self.page_delay:
                time.sleep(self.page_delay)

    def fetch_all(self, cutoff: Optional[datetime] = None, since: Optional[datetime] = None,
                  now: Optional[datetime] = None) -> FetchResult:
        """
        Fetch every admissible source record.

        Args:
            cutoff: records scheduled after this instant are rejected (default: now)
            since: records created (or, lacking that, scheduled) before this are left out
            now: the invocation instant, used for the implausible-year check

        Returns:
            FetchResult with admissible records, rejected records and the out-of-window count
        """
        now = now or utc_now()
        cutoff = cutoff or now
        result = FetchResult()
        seen = set()

        sources = [("meetings", self.client.list_meetings, "meeting")]
        if self.include_calls:
            sources.append(("calls", self.client.list_calls, "call"))

        for label, list_page, source_type in sources:
            admitted = 0
            for payload in self._paginate(list_page, label):
                record = parse_source_record(payload, source_type=source_type)

                if not record.record_id:
                    logger.warning(f"⚠️  Skipping Attio {source_type} without an id")
                    result.rejected.append(SkippedRecord("", record.display_title, SKIP_NO_RECORD_ID))
                    continue
                if record.record_id in seen:
                    continue
                seen.add(record.record_id)

                reason = admissibility(record, cutoff, now)
                if reason:
                    start = record.start.isoformat() if record.start else "unknown"
                    logger.warning(f"⚠️  Skipping {source_type} {record.record_id} "
                                   f"\"{record.display_title}\": {reason} (start={start})")
                    result.rejected.append(SkippedRecord(record.record_id, record.display_title,
                                                         reason, f"start={start}"))
                    continue

                if since is not None and (record.created_at or record.start) < since:
                    result.out_of_window += 1
                    continue

                result.records.append(record)
                admitted += 1

            logger.info(f"✓ Attio {label}: {admitted} admissible")

        logger.info(f"Fetched {len(result.records)} Attio records "
                    f"({len(result.rejected)} rejected, {result.out_of_window} before {since or 'any date'})")
        return result


class TargetRecordFetcher:
    """Fully paginated fetch of HubSpot meetings"""

    def __init__(self, client, page_delay: float = 0.15, include_legacy: bool = True):
        self.client = client
        self.page_delay = page_delay
        self.include_legacy = include_legacy

    def _crm_meetings(self) -> Iterator[Dict[str, Any]]:
        after = None
        while True:
            data = self.client.list_meetings(after)
            yield from data.get("results") or []
            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break
            if self.page_delay:
                time.sleep(self.page_delay)

    def _legacy_meetings(self) -> Iterator[Dict[str, Any]]:
        offset = 0
        while True:
            data = self.client.list_engagements(offset)
            yield from data.get("results") or []
            if not data.get("hasMore"):
                break
            offset = data.get("offset", offset)
            if self.page_delay:
                time.sleep(self.page_delay)

    def fetch_all(self) -> List[DestinationRecord]:
        records: List[DestinationRecord] = []
        seen = set()

        streams = [("CRM", self._crm_meetings())]
        if self.include_legacy:
            streams.append(("legacy", self._legacy_meetings()))

        for label, stream in streams:
            count = 0
            for payload in stream:
                record = parse_destination_record(payload)
                if record.record_id in seen:
                    continue
                seen.add(record.record_id)
                records.append(record)
                count += 1
            logger.info(f"✓ HubSpot {label} meetings: {count}")

        with_ids = sum(1 for r in records if r.source_id)
        logger.info(f"Fetched {len(records)} HubSpot meetings ({with_ids} carry an Attio id)")
        return records
