"""
Attio -> HubSpot Meeting Migration Engine
Fetches both sides, correlates them on the embedded Attio id, creates missing
meetings with their associations and fills in missing associations on
meetings that were migrated before.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from association_resolver import AssociationResolver, LookupCache
from base_client import response_detail
from config import Config
from fetchers import SourceRecordFetcher, TargetRecordFetcher, utc_now
from hubspot_client import ASSOCIATION_KIND_BY_OBJECT
from matching import CorrelationResult, MeetingMatcher, correlate
from meeting_transformer import (
    MissingRequiredFieldError, format_transcript, has_transcript, prepare, upgraded_body, with_transcript,
)
from models import (
    SKIP_DELETED_IN_DESTINATION, SKIP_FUTURE_START_TIME, SKIP_IMPLAUSIBLE_START_TIME,
    SKIP_NO_RECORD_ID, SKIP_NO_START_TIME,
    DesiredAssociations, DestinationRecord, FetchResult, SourceRecord,
)
from snapshot_store import SnapshotStore, record_summary

logger = logging.getLogger(__name__)


# --- Migration Diagnostics ---
class MigrationDiagnostics:
    """Tracks run outcomes and generates the end-of-run report"""

    ISSUE_CATEGORIES = {
        SKIP_NO_START_TIME: {
            "description": "Attio meeting has no determinable start time",
            "suggested_fix": "HubSpot requires a start time. Set one in Attio or leave the meeting out."
        },
        SKIP_FUTURE_START_TIME: {
            "description": "Attio meeting is scheduled after the run cutoff",
            "suggested_fix": "Re-run after the meeting has taken place."
        },
        SKIP_IMPLAUSIBLE_START_TIME: {
            "description": "Attio meeting start is more than a year past the current year",
            "suggested_fix": "Fix the date in Attio; it is most likely a data-entry error."
        },
        SKIP_NO_RECORD_ID: {
            "description": "Attio record carries no meeting or call id",
            "suggested_fix": "Inspect the raw Attio payload; the record cannot be referenced."
        },
        SKIP_DELETED_IN_DESTINATION: {
            "description": "HubSpot meeting was deleted (404)",
            "suggested_fix": "Nothing to do unless the meeting should exist; a later run will not recreate it."
        },
        "MEETING_CREATE_FAILED": {
            "description": "HubSpot rejected the meeting",
            "suggested_fix": "Check the logged response payload for the invalid property."
        },
        "MEETING_UPDATE_FAILED": {
            "description": "Fixing an existing HubSpot meeting failed",
            "suggested_fix": "Check the logged response payload; the run can be repeated safely."
        },
        "ASSOCIATION_FAILED": {
            "description": "HubSpot rejected an association",
            "suggested_fix": "Verify the contact/company/deal still exists and the token has association scopes."
        },
        "ASSOCIATION_READ_FAILED": {
            "description": "Could not read existing associations",
            "suggested_fix": "Re-run; existing meetings are only patched after a successful read."
        },
        "BODY_UPGRADE_FAILED": {
            "description": "Could not patch the meeting body with the participant list",
            "suggested_fix": "Re-run; the body is only rewritten while it still looks auto-generated."
        },
        "TRANSCRIPT_FETCH_FAILED": {
            "description": "Could not read call recordings or a transcript from Attio",
            "suggested_fix": "The meeting was migrated without it; a later run with --transcripts appends it."
        },
    }

    def __init__(self):
        self.issues = []
        self.skipped_records = []
        self.summary = {
            "total_records_processed": 0,
            "meetings_created": 0,
            "meetings_existing": 0,
            "fuzzy_matches": 0,
            "associations_created": 0,
            "association_errors": 0,
            "bodies_upgraded": 0,
            "transcripts_added": 0,
            "skipped": 0,
            "errors": 0,
        }

    def record_issue(self, category: str, record_id: str, record_name: str, details: str = None):
        self.issues.append({
            "category": category,
            "record_id": record_id,
            "record_name": record_name,
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    def record_skip(self, record_id: str, record_name: str, reason: str, details: str = None):
        self.skipped_records.append({
            "record_id": record_id,
            "record_name": record_name,
            "reason": reason,
            "details": details,
        })
        self.summary["skipped"] += 1

    def record_error(self, category: str, record_id: str, record_name: str, details: str = None):
        self.record_issue(category, record_id, record_name, details)
        self.summary["errors"] += 1

    def increment(self, key: str, amount: int = 1):
        self.summary[key] += amount

    def tally_line(self) -> str:
        s = self.summary
        return (f"📈 Progress: {s['total_records_processed']} processed | {s['meetings_created']} created | "
                f"{s['meetings_existing']} existing | {s['skipped']} skipped | {s['errors']} errors")

    def generate_report(self, dry_run: bool = False) -> List[str]:
        """Generate report lines for terminal display"""
        lines = []
        s = self.summary

        lines.append("")
        lines.append("═" * 70)
        lines.append("📊 MIGRATION REPORT" + (" (DRY RUN - nothing was written)" if dry_run else ""))
        lines.append("═" * 70)
        lines.append("")

        lines.append("┌─ SUMMARY")
        lines.append(f"│  Total Records Processed: {s['total_records_processed']}")
        lines.append(f"│  Meetings Created: {s['meetings_created']}")
        lines.append(f"│  Meetings Already In HubSpot: {s['meetings_existing']}"
                     + (f" ({s['fuzzy_matches']} by fuzzy match)" if s["fuzzy_matches"] else ""))
        lines.append(f"│  Associations Created: {s['associations_created']}")
        lines.append(f"│  Association Errors: {s['association_errors']}")
        lines.append(f"│  Bodies Upgraded: {s['bodies_upgraded']}")
        lines.append(f"│  Transcripts Added: {s['transcripts_added']}")
        lines.append(f"│  Skipped Records: {s['skipped']}")
        lines.append(f"│  Errors: {s['errors']}")
        lines.append("└─")
        lines.append("")

        counts = self._category_counts()
        if counts:
            lines.append("┌─ ISSUES BY CATEGORY")
            for cat, count in sorted(counts.items(), key=lambda x: -x[1]):
                cat_info = self.ISSUE_CATEGORIES.get(cat, {"description": cat})
                lines.append("│")
                lines.append(f"│  ⚠️  {cat} ({count} occurrences)")
                lines.append(f"│     Description: {cat_info.get('description', 'Unknown')}")
                lines.append(f"│     🔧 Suggested Fix: {cat_info.get('suggested_fix', 'No fix available')}")
            lines.append("└─")
            lines.append("")

        if self.skipped_records:
            lines.append("┌─ SKIPPED RECORDS (sample)")
            for skip in self.skipped_records[:10]:
                lines.append(f"│  • {skip['record_name'][:40]} ({skip['record_id'] or 'no id'})")
                lines.append(f"│    Reason: {skip['reason']}")
            if len(self.skipped_records) > 10:
                lines.append(f"│  ... and {len(self.skipped_records) - 10} more")
            lines.append("└─")
            lines.append("")

        lines.append("┌─ 🔧 RECOMMENDED ACTIONS")
        recommendations = self._generate_recommendations()
        if recommendations:
            for i, rec in enumerate(recommendations, 1):
                lines.append(f"│  {i}. {rec}")
        else:
            lines.append("│  ✅ No critical issues detected")
        lines.append("└─")
        lines.append("")
        lines.append("═" * 70)

        return lines

    def _category_counts(self) -> Dict[str, int]:
        counts = {}
        for entry in self.issues + self.skipped_records:
            cat = entry.get("category") or entry.get("reason")
            counts[cat] = counts.get(cat, 0) + 1
        return counts

    def _generate_recommendations(self) -> List[str]:
        recommendations = []
        counts = self._category_counts()

        if counts.get("ASSOCIATION_FAILED", 0) > 0:
            recommendations.append(
                "CHECK ASSOCIATIONS: some associations were rejected. Confirm the private app token "
                "has crm.objects.contacts/companies/deals write scopes"
            )
        if counts.get("MEETING_CREATE_FAILED", 0) > 0:
            recommendations.append(
                "REVIEW FAILED CREATES: inspect the logged HubSpot responses; the run can be repeated safely, "
                "created meetings are recognised by their Original ID"
            )
        if counts.get(SKIP_IMPLAUSIBLE_START_TIME, 0) > 0:
            recommendations.append(
                "FIX DATES IN ATTIO: meetings dated more than a year ahead are never migrated"
            )
        if self.summary["skipped"] > self.summary["meetings_created"] + self.summary["meetings_existing"]:
            recommendations.append(
                "HIGH SKIP RATE: more records are being skipped than migrated. Review skip reasons above"
            )
        return recommendations


def is_not_found(exc: Exception) -> bool:
    response = getattr(exc, "response", None)
    return response is not None and response.status_code == 404


# --- Migration Engine ---
class MigrationEngine:
    """FETCH -> CORRELATE -> CREATE_MISSING -> FIX_EXISTING"""

    def __init__(self, cfg: Config, attio, hub, store: Optional[SnapshotStore] = None):
        self.cfg = cfg
        self.attio = attio
        self.hub = hub
        self.store = store
        self.opts = cfg.migration
        self.source_label = self.opts["source_label"]
        self.request_delay = self.opts["request_delay_seconds"]
        self.progress_every = self.opts["progress_every"]

        self.source_fetcher = SourceRecordFetcher(
            attio, page_delay=cfg.attio["page_delay_seconds"], include_calls=cfg.attio["include_calls"])
        self.target_fetcher = TargetRecordFetcher(
            hub, page_delay=cfg.hubspot["page_delay_seconds"],
            include_legacy=cfg.hubspot["include_legacy_engagements"])
        self.matcher = MeetingMatcher(
            threshold=self.opts["match_threshold"],
            title_weight=self.opts["title_weight"],
            date_weight=self.opts["date_weight"],
        )

        self.dry_run = True
        self.transcripts = False
        self.diagnostics = MigrationDiagnostics()
        self.resolver = AssociationResolver(hub, cfg.hubspot, LookupCache())

    def _pause(self):
        if self.request_delay:
            time.sleep(self.request_delay)

    def _processed(self):
        self.diagnostics.increment("total_records_processed")
        if self.progress_every and self.diagnostics.summary["total_records_processed"] % self.progress_every == 0:
            logger.info(self.diagnostics.tally_line())

    # ==================== RUN ====================

    def run(self, cutoff: Optional[datetime] = None, since: Optional[datetime] = None,
            dry_run: bool = True, fuzzy: Optional[bool] = None,
            transcripts: Optional[bool] = None) -> Dict[str, Any]:
        """
        Run one complete migration.

        Args:
            cutoff: Attio meetings scheduled after this are not migrated (default: now)
            since: Attio meetings created before this are left out (default: no bound)
            dry_run: perform every read and decision but no writes
            fuzzy: fuzzy-match still-missing meetings against untagged HubSpot meetings
                   (default: migration.fuzzy_fallback)
            transcripts: append Attio call transcripts to new meetings and to existing ones lacking one
                   (default: migration.include_transcripts)

        Returns:
            Results dict with the summary, skipped records and report lines
        """
        now = utc_now()
        cutoff = cutoff or now
        fuzzy = self.opts["fuzzy_fallback"] if fuzzy is None else fuzzy
        transcripts = self.opts["include_transcripts"] if transcripts is None else transcripts

        self.dry_run = dry_run
        self.transcripts = transcripts
        self.diagnostics = MigrationDiagnostics()
        self.resolver = AssociationResolver(self.hub, self.cfg.hubspot, LookupCache())

        results = {
            "start_time": now.isoformat(),
            "run_id": self.store.run_id if self.store else None,
            "dry_run": dry_run,
            "transcripts": transcripts,
            "cutoff": cutoff.isoformat(),
            "since": since.isoformat() if since else None,
            "end_time": None,
            "duration_seconds": None,
        }

        mode = "DRY RUN" if dry_run else "LIVE"
        logger.info(f"Starting Attio -> HubSpot meeting migration ({mode}), cutoff {cutoff.isoformat()}"
                    + (f", since {since.isoformat()}" if since else ""))

        try:
            fetched, destinations = self.fetch(cutoff, since, now)
            for skipped in fetched.rejected:
                self.diagnostics.record_skip(skipped.record_id, skipped.title, skipped.reason, skipped.detail)

            correlation = self.correlate(fetched.records, destinations, fuzzy)

            if self.store:
                self.store.save("attio_records", [record_summary(r) for r in fetched.records])
                self.store.save("hubspot_meetings", [record_summary(r) for r in destinations])
                self.store.save("correlation", {
                    "missing": [r.record_id for r in correlation.missing],
                    "existing": {s.record_id: d.record_id for s, d in correlation.existing_pairs},
                })

            self.create_missing(correlation.missing)
            self.fix_existing(correlation.existing_pairs)

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            raise

        end = utc_now()
        results["end_time"] = end.isoformat()
        results["duration_seconds"] = (end - now).total_seconds()
        results["fetched"] = {
            "attio": len(fetched.records),
            "attio_rejected": len(fetched.rejected),
            "attio_out_of_window": fetched.out_of_window,
            "hubspot": len(destinations),
        }
        results["summary"] = dict(self.diagnostics.summary)
        results["skipped_records"] = list(self.diagnostics.skipped_records)
        results["issues"] = list(self.diagnostics.issues)
        results["lookup_cache"] = {"entries": len(self.resolver.cache), "hits": self.resolver.cache.hits}

        logger.info(f"Migration completed in {results['duration_seconds']:.2f} seconds")
        logger.info(self.diagnostics.tally_line())

        report_lines = self.diagnostics.generate_report(dry_run=dry_run)
        for line in report_lines:
            if "⚠️" in line:
                logger.warning(line)
            else:
                logger.info(line)
        results["diagnostic_report"] = report_lines

        if self.store:
            self.store.save("results", results)
            if self.diagnostics.skipped_records:
                self.store.export_csv(
                    "skipped", ["Attio ID", "Title", "Reason", "Details"],
                    ([s["record_id"], s["record_name"], s["reason"], s["details"] or ""]
                     for s in self.diagnostics.skipped_records))

        return results

    # ==================== FETCH / CORRELATE ====================

    def fetch(self, cutoff: datetime, since: Optional[datetime],
              now: datetime) -> Tuple[FetchResult, List[DestinationRecord]]:
        """Fetch both sides concurrently; a failure on either side propagates"""
        with ThreadPoolExecutor(max_workers=2) as pool:
            source_future = pool.submit(self.source_fetcher.fetch_all, cutoff, since, now)
            target_future = pool.submit(self.target_fetcher.fetch_all)
            return source_future.result(), target_future.result()

    def correlate(self, sources: List[SourceRecord], destinations: List[DestinationRecord],
                  fuzzy: bool = False) -> CorrelationResult:
        result = correlate(sources, destinations)
        if not fuzzy or not result.missing:
            return result

        untagged = [d for d in destinations if not d.source_id]
        if not untagged:
            return result

        logger.info(f"Fuzzy-matching {len(result.missing)} missing meetings against "
                    f"{len(untagged)} HubSpot meetings without an Attio id")
        matched = self.matcher.match_meetings(result.missing, untagged)
        for match in matched.matches:
            logger.info(f"   🔗 \"{match.source.display_title}\" ≈ HubSpot {match.destination.record_id} "
                        f"(score {match.score}, title {match.breakdown['title']:.2f}, "
                        f"date {match.breakdown['date']:.2f})")
            result.existing_pairs.append((match.source, match.destination))
        self.diagnostics.increment("fuzzy_matches", len(matched.matches))
        result.missing = matched.unmatched_source
        return result

    # ==================== CREATE_MISSING ====================

    def create_missing(self, records: List[SourceRecord]) -> None:
        logger.info(f"Creating {len(records)} missing meetings in HubSpot...")
        for record in records:
            self._processed()
            try:
                self.create_meeting(record)
            except MissingRequiredFieldError as e:
                logger.warning(f"└─ SKIPPED: {e}")
                self.diagnostics.record_skip(record.record_id, record.display_title, SKIP_NO_START_TIME, str(e))
            except Exception as e:
                logger.error(f"└─ FAILED: Attio meeting {record.record_id}: {e} {response_detail(e)}")
                self.diagnostics.record_error("MEETING_CREATE_FAILED", record.record_id,
                                              record.display_title, f"{e} {response_detail(e)}".strip())

    def create_meeting(self, record: SourceRecord) -> Optional[str]:
        """Create one meeting and attach its associations; returns the HubSpot id (None in dry run)"""
        transcript = self.fetch_transcript(record) if self.transcripts and record.start is not None else None
        draft = prepare(record, self.source_label, transcript)
        props = draft.properties

        logger.info(f"┌─ CREATE: {record.display_title}")
        logger.info(f"│  Attio {record.source_type} ID: {record.record_id}")
        logger.info(f"│  Start: {props['hs_meeting_start_time']}  End: {props['hs_meeting_end_time']}")
        logger.info(f"│  Participants: {len(record.participants)}  Linked records: {len(record.linked_references)}")
        if transcript:
            logger.info(f"│  Transcript: {len(transcript)} characters")

        desired = self.resolver.resolve(record)

        if self.dry_run:
            logger.info(f"│  [DRY RUN] Would create meeting and {desired.total()} associations")
            logger.info(f"└─ COMPLETE: {record.display_title}")
            self.diagnostics.increment("meetings_created")
            if transcript:
                self.diagnostics.increment("transcripts_added")
            return None

        created = self.hub.create_meeting(props)
        meeting_id = str(created.get("id"))
        self.diagnostics.increment("meetings_created")
        if transcript:
            self.diagnostics.increment("transcripts_added")
        logger.info(f"│  ✓ CREATED HubSpot meeting ID: {meeting_id}")
        self._pause()

        self.sync_associations(meeting_id, record, desired, existing={})
        logger.info(f"└─ COMPLETE: {record.display_title}")
        return meeting_id

    # ==================== FIX_EXISTING ====================

    def fix_existing(self, pairs: List[Tuple[SourceRecord, DestinationRecord]]) -> None:
        logger.info(f"Checking {len(pairs)} meetings already in HubSpot...")
        for record, destination in pairs:
            self._processed()
            logger.info(f"┌─ EXISTING: {record.display_title}")
            logger.info(f"│  Attio ID: {record.record_id} → HubSpot ID: {destination.record_id}")
            try:
                existing = self.read_associations(destination.record_id)
            except requests.exceptions.RequestException as e:
                if is_not_found(e):
                    logger.info(f"└─ SKIPPED: HubSpot meeting {destination.record_id} no longer exists")
                    self.diagnostics.record_skip(record.record_id, record.display_title,
                                                 SKIP_DELETED_IN_DESTINATION, f"hubspot_id={destination.record_id}")
                    continue
                logger.error(f"└─ FAILED: reading associations of {destination.record_id}: {e}")
                self.diagnostics.record_error("ASSOCIATION_READ_FAILED", record.record_id,
                                              record.display_title, f"{e} {response_detail(e)}".strip())
                continue

            self.diagnostics.increment("meetings_existing")
            try:
                desired = self.resolver.resolve(record)
                self.sync_associations(destination.record_id, record, desired, existing)
                self.upgrade_body(destination, record)
            except Exception as e:
                logger.error(f"└─ FAILED: Attio meeting {record.record_id}: {e} {response_detail(e)}")
                self.diagnostics.record_error("MEETING_UPDATE_FAILED", record.record_id,
                                              record.display_title, f"{e} {response_detail(e)}".strip())
                continue
            logger.info(f"└─ COMPLETE: {record.display_title}")

    def read_associations(self, meeting_id: str) -> Dict[str, set]:
        """Current association ids per object type; a 404 propagates as HTTPError"""
        existing = {}
        for object_type in ASSOCIATION_KIND_BY_OBJECT:
            existing[object_type] = set(self.hub.get_associated_ids(meeting_id, object_type))
            self._pause()
        logger.info(f"│  Existing: {len(existing['contacts'])} contacts, {len(existing['companies'])} companies, "
                    f"{len(existing['deals'])} deals")
        return existing

    # ==================== ASSOCIATIONS ====================

    def sync_associations(self, meeting_id: str, record: SourceRecord, desired: DesiredAssociations,
                          existing: Dict[str, set]) -> int:
        """
        Create only the associations in ``desired`` that are not in ``existing``.
        Used both for freshly created meetings (nothing existing) and for
        meetings found in HubSpot. Returns the number of associations created.
        """
        created = 0
        for object_type, wanted in desired.by_object_type().items():
            missing = sorted(wanted - existing.get(object_type, set()))
            if not missing:
                continue

            kind = ASSOCIATION_KIND_BY_OBJECT[object_type]
            if self.dry_run:
                logger.info(f"│  [DRY RUN] Would associate {len(missing)} {object_type}: {', '.join(missing)}")
                continue

            pairs = [{"from": meeting_id, "to": to_id} for to_id in missing]
            try:
                response = self.hub.batch_create_associations("meetings", object_type, pairs, kind)
            except requests.exceptions.RequestException as e:
                for to_id in missing:
                    logger.error(f"│  ✗ {kind} {meeting_id} → {to_id} failed: {e} {response_detail(e)}")
                    self.diagnostics.record_issue("ASSOCIATION_FAILED", record.record_id, record.display_title,
                                                  f"{kind} {meeting_id} -> {to_id}: {e}")
                self.diagnostics.increment("association_errors", len(missing))
                self._pause()
                continue

            errors = response.get("errors") or []
            for error in errors:
                logger.error(f"│  ✗ {kind} on meeting {meeting_id} rejected: {error.get('message', error)}")
                self.diagnostics.record_issue("ASSOCIATION_FAILED", record.record_id, record.display_title,
                                              str(error.get("message", error)))
            ok = len(missing) - len(errors)
            created += ok
            self.diagnostics.increment("associations_created", ok)
            self.diagnostics.increment("association_errors", len(errors))
            logger.info(f"│  ✓ Associated {ok} {object_type}")
            self._pause()

        return created

    # ==================== TRANSCRIPTS ====================

    def fetch_transcript(self, record: SourceRecord) -> Optional[str]:
        """
        Formatted transcripts of every call recording on an Attio meeting, or None.
        A meeting without recordings (404 included) has no transcript; any other
        read failure is recorded and the meeting is migrated without one.
        """
        if record.source_type != "meeting":
            return None

        try:
            recordings = self.attio.get_call_recordings(record.record_id)
            sections = []
            for recording in recordings:
                recording_id = recording.get("id")
                if isinstance(recording_id, dict):
                    recording_id = recording_id.get("call_recording_id")
                if not recording_id:
                    continue
                text = format_transcript(self.attio.get_transcript(record.record_id, recording_id))
                if text:
                    sections.append(text)
        except requests.exceptions.RequestException as e:
            if is_not_found(e):
                logger.debug(f"No call recordings for Attio meeting {record.record_id}")
                return None
            logger.warning(f"│  ⚠️ Transcript fetch failed: {e} {response_detail(e)}")
            self.diagnostics.record_issue("TRANSCRIPT_FETCH_FAILED", record.record_id, record.display_title, str(e))
            return None

        return "\n\n".join(sections) or None

    # ==================== BODY UPGRADE ====================

    def upgrade_body(self, destination: DestinationRecord, record: SourceRecord) -> bool:
        """
        Add the participant roster to a body that still looks auto-generated and,
        with transcripts enabled, append the transcript to a body that lacks one
        """
        roster_body = upgraded_body(destination.body, record, self.source_label)
        new_body = roster_body

        transcript = None
        if self.transcripts and not has_transcript(destination.body):
            transcript = self.fetch_transcript(record)
            if transcript:
                new_body = with_transcript(new_body or destination.body, transcript)

        if new_body is None:
            return False

        parts = []
        if roster_body is not None:
            parts.append(f"{len(record.participants)} participants")
        if transcript:
            parts.append("transcript")
        changes = " and ".join(parts)
        if self.dry_run:
            logger.info(f"│  [DRY RUN] Would upgrade description with {changes}")
            self.diagnostics.increment("bodies_upgraded")
            if transcript:
                self.diagnostics.increment("transcripts_added")
            return True

        try:
            self.hub.update_meeting(destination.record_id, {"hs_meeting_body": new_body})
        except requests.exceptions.RequestException as e:
            logger.warning(f"│  ⚠️ Failed to upgrade description: {e} {response_detail(e)}")
            self.diagnostics.record_issue("BODY_UPGRADE_FAILED", record.record_id, record.display_title, str(e))
            return False
        finally:
            self._pause()

        logger.info(f"│  ✓ Upgraded description with {changes}")
        self.diagnostics.increment("bodies_upgraded")
        if transcript:
            self.diagnostics.increment("transcripts_added")
        return True
