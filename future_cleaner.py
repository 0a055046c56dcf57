"""
Audit of HubSpot meetings scheduled in the future.

Migrated meetings are historical, so anything dated after today is suspect;
anything more than a year past the current year is a broken date and is
flagged for deletion.
"""

import logging
import math
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import requests

from base_client import response_detail
from fetchers import TargetRecordFetcher, utc_now
from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def end_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1) - timedelta(microseconds=1)


class FutureMeetingCleaner:
    """Identifies future-dated HubSpot meetings and deletes the invalid ones"""

    def __init__(self, hub, fetcher: Optional[TargetRecordFetcher] = None,
                 store: Optional[SnapshotStore] = None, request_delay: float = 0.2):
        self.hub = hub
        self.fetcher = fetcher or TargetRecordFetcher(hub, include_legacy=False)
        self.store = store
        self.request_delay = request_delay

    def identify(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Report of meetings scheduled after the end of today, most suspicious first"""
        now = now or utc_now()
        limit = end_of_day(now)
        meetings = self.fetcher.fetch_all()

        suspicious = []
        for meeting in meetings:
            if meeting.start is None or meeting.start <= limit:
                continue
            suspicious.append({
                "hubspot_id": meeting.record_id,
                "title": meeting.title or "No title",
                "scheduled": meeting.start.isoformat(),
                "year": meeting.start.year,
                "days_from_now": math.ceil((meeting.start - now).total_seconds() / 86400),
                "attio_id": meeting.source_id,
                "invalid": meeting.start.year > now.year + 1,
            })
        suspicious.sort(key=lambda m: -m["year"])

        report = {
            "timestamp": now.isoformat(),
            "total_meetings_checked": len(meetings),
            "suspicious_meetings_found": len(suspicious),
            "invalid_meetings_found": sum(1 for m in suspicious if m["invalid"]),
            "years_represented": sorted({m["year"] for m in suspicious}, reverse=True),
            "meetings": suspicious,
        }

        logger.info("📊 FUTURE MEETINGS ANALYSIS:")
        logger.info(f"   Total meetings checked: {report['total_meetings_checked']}")
        logger.info(f"   Suspicious future meetings: {report['suspicious_meetings_found']}")
        logger.info(f"   Flagged invalid: {report['invalid_meetings_found']}")
        if suspicious:
            logger.info(f"   Years represented: {', '.join(str(y) for y in report['years_represented'])}")
            logger.warning("⚠️  TOP 10 MOST SUSPICIOUS:")
            for index, meeting in enumerate(suspicious[:10], 1):
                logger.warning(f"   {index}. {meeting['hubspot_id']} - {meeting['title']} (Year: {meeting['year']})")
        else:
            logger.info("✅ No suspicious future meetings found!")

        if self.store:
            self.store.save("future_meetings_report", report)
        return report

    def delete_invalid(self, report: Dict[str, Any], dry_run: bool = True) -> Dict[str, int]:
        """Delete only the meetings the report flags as invalid"""
        results = {"flagged": 0, "deleted": 0, "failed": 0}
        for meeting in report["meetings"]:
            if not meeting["invalid"]:
                continue
            results["flagged"] += 1
            if dry_run:
                logger.info(f"[DRY RUN] Would delete {meeting['hubspot_id']} - {meeting['title']} ({meeting['year']})")
                continue
            try:
                self.hub.delete_meeting(meeting["hubspot_id"])
                results["deleted"] += 1
                logger.info(f"🗑️  Deleted {meeting['hubspot_id']} - {meeting['title']} ({meeting['year']})")
            except requests.exceptions.RequestException as e:
                results["failed"] += 1
                logger.error(f"❌ Failed to delete {meeting['hubspot_id']}: {e} {response_detail(e)}")
            if self.request_delay:
                time.sleep(self.request_delay)
        return results

    def run(self, dry_run: bool = True, now: Optional[datetime] = None) -> Dict[str, Any]:
        report = self.identify(now)
        results = self.delete_invalid(report, dry_run=dry_run)
        logger.info(f"🧹 Cleanup {'(DRY RUN) ' if dry_run else ''}complete: {results['flagged']} flagged, "
                    f"{results['deleted']} deleted, {results['failed']} failed")
        return {"report": report, "cleanup": results}
