"""
Data models for the Attio -> HubSpot meeting migration.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Normalised linked-reference kinds
PERSON = "person"
COMPANY = "company"
DEAL = "deal"

# Skip reasons
SKIP_NO_RECORD_ID = "no_record_id"
SKIP_NO_START_TIME = "no_start_time"
SKIP_FUTURE_START_TIME = "future_start_time"
SKIP_IMPLAUSIBLE_START_TIME = "implausible_start_time"
SKIP_DELETED_IN_DESTINATION = "deleted_in_destination"


@dataclass
class Participant:
    """Meeting participant as reported by the source system"""
    name: str = ""
    email: str = ""
    status: Optional[str] = None
    is_organizer: bool = False
    person_id: Optional[str] = None  # set when the entry is a typed reference to a person record

    @property
    def has_valid_email(self) -> bool:
        return "@" in self.email


@dataclass
class LinkedReference:
    """Reference from a meeting to another source record"""
    kind: str  # PERSON, COMPANY or DEAL
    record_id: str


@dataclass
class SourceRecord:
    """Meeting (or call) fetched from the source system"""
    record_id: str
    title: Optional[str] = None
    description: str = ""
    location: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    created_at: Optional[datetime] = None
    participants: List[Participant] = field(default_factory=list)
    linked_references: List[LinkedReference] = field(default_factory=list)
    source_type: str = "meeting"
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def display_title(self) -> str:
        return self.title or "Untitled"


@dataclass
class DestinationRecord:
    """Meeting already present in the destination system"""
    record_id: str
    title: str = ""
    body: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    source_id: Optional[str] = None  # embedded source identifier, if any
    legacy: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class AssociationLink:
    """Directed edge meeting -> contact/company/deal"""
    from_type: str
    from_id: str
    to_type: str
    to_id: str
    kind: str  # e.g. meeting_to_contact


@dataclass
class MatchCandidate:
    """Scored pairing produced by the fuzzy matcher"""
    source: SourceRecord
    destination: DestinationRecord
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass
class MeetingDraft:
    """Destination property bag ready for the create call"""
    source_id: str
    properties: Dict[str, Any]


@dataclass
class DesiredAssociations:
    """Destination-side ids a meeting should be linked to"""
    contact_ids: set = field(default_factory=set)
    company_ids: set = field(default_factory=set)
    deal_ids: set = field(default_factory=set)

    def by_object_type(self) -> Dict[str, set]:
        return {"contacts": self.contact_ids, "companies": self.company_ids, "deals": self.deal_ids}

    def total(self) -> int:
        return len(self.contact_ids) + len(self.company_ids) + len(self.deal_ids)


@dataclass
class SkippedRecord:
    record_id: str
    title: str
    reason: str
    detail: str = ""


@dataclass
class FetchResult:
    """Admissible source records plus everything the fetcher rejected"""
    records: List[SourceRecord] = field(default_factory=list)
    rejected: List[SkippedRecord] = field(default_factory=list)
    out_of_window: int = 0
