"""
Resolves the people, companies and deals a source meeting references into
HubSpot contact/company/deal ids.
"""

import logging
from typing import Dict, Optional, Tuple

import requests

from base_client import response_detail
from models import COMPANY, DEAL, PERSON, DesiredAssociations, SourceRecord

logger = logging.getLogger(__name__)

LookupKey = Tuple[str, str, str]


class LookupCache:
    """
    Search results for one run, keyed by (object type, property, value).
    Misses are cached too, so a reference that resolves to nothing is only
    searched once.
    """

    def __init__(self):
        self._entries: Dict[LookupKey, Optional[str]] = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: LookupKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: LookupKey) -> Optional[str]:
        self.hits += 1
        return self._entries[key]

    def put(self, key: LookupKey, value: Optional[str]) -> None:
        self.misses += 1
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0


class AssociationResolver:
    """Turns a SourceRecord's references into the HubSpot ids it should be associated with"""

    def __init__(self, client, hubspot_config: Dict[str, str], cache: Optional[LookupCache] = None):
        self.client = client
        self.cache = cache if cache is not None else LookupCache()
        self.lookups = {
            PERSON: ("contacts", hubspot_config.get("contact_id_property", "contact_record_id_attio")),
            COMPANY: ("companies", hubspot_config.get("company_id_property", "company_record_id_attio")),
            DEAL: ("deals", hubspot_config.get("deal_id_property", "deal_record_id_attio")),
        }

    def lookup(self, object_type: str, property_name: str, value: str) -> Optional[str]:
        """Single-result exact-match search; the first result wins"""
        key = (object_type, property_name, value)
        if key in self.cache:
            return self.cache.get(key)
        result = self.client.search_one(object_type, property_name, value)
        hub_id = str(result["id"]) if result and result.get("id") is not None else None
        self.cache.put(key, hub_id)
        return hub_id

    def _lookup_reference(self, kind: str, record_id: str) -> Optional[str]:
        object_type, property_name = self.lookups[kind]
        return self.lookup(object_type, property_name, record_id)

    def resolve(self, record: SourceRecord) -> DesiredAssociations:
        """
        Participants resolve through their typed person reference when they
        carry one, and by exact email otherwise. Linked records resolve through
        the cross-reference property for their kind. A failing lookup is logged
        and skipped; it never aborts the record.
        """
        desired = DesiredAssociations()
        targets = {PERSON: desired.contact_ids, COMPANY: desired.company_ids, DEAL: desired.deal_ids}

        for participant in record.participants:
            if participant.person_id:
                how, value = "person reference", participant.person_id
            elif participant.has_valid_email:
                how, value = "email", participant.email
            else:
                continue
            try:
                if participant.person_id:
                    contact_id = self._lookup_reference(PERSON, value)
                else:
                    contact_id = self.lookup("contacts", "email", value)
            except requests.exceptions.RequestException as e:
                logger.warning(f"   ⚠️  Contact lookup by {how} {value} failed for {record.record_id}: "
                               f"{e} {response_detail(e)}")
                continue
            if contact_id:
                desired.contact_ids.add(contact_id)
            else:
                logger.info(f"   No HubSpot contact for {how} {value}")

        for reference in record.linked_references:
            try:
                hub_id = self._lookup_reference(reference.kind, reference.record_id)
            except requests.exceptions.RequestException as e:
                logger.warning(f"   ⚠️  {reference.kind} lookup {reference.record_id} failed for "
                               f"{record.record_id}: {e} {response_detail(e)}")
                continue
            if hub_id:
                targets[reference.kind].add(hub_id)
            else:
                logger.info(f"   No HubSpot {self.lookups[reference.kind][0]} for Attio {reference.record_id}")

        logger.info(f"   Resolved {len(desired.contact_ids)} contacts, {len(desired.company_ids)} companies, "
                    f"{len(desired.deal_ids)} deals for {record.record_id}")
        return desired
