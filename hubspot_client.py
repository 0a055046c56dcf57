"""
HubSpot Integration Module
Handles the HubSpot API interactions used by the migration: listing meetings,
creating/patching/deleting meetings, exact-match search and associations.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from base_client import BaseAPIClient

logger = logging.getLogger(__name__)

MEETING_PROPERTIES = [
    "hs_meeting_title",
    "hs_meeting_body",
    "hs_timestamp",
    "hs_meeting_start_time",
    "hs_meeting_end_time",
    "hs_meeting_location",
    "hs_attendee_emails",
    "attio_meeting_id",
]

# HUBSPOT_DEFINED association type ids, meeting -> other object
ASSOCIATION_TYPE_IDS = {
    "meeting_to_contact": 200,
    "meeting_to_company": 188,
    "meeting_to_deal": 212,
}

ASSOCIATION_KIND_BY_OBJECT = {
    "contacts": "meeting_to_contact",
    "companies": "meeting_to_company",
    "deals": "meeting_to_deal",
}


class HubSpotClient(BaseAPIClient):
    """HubSpot API integration (destination system)"""

    name = "HubSpot"

    def __init__(self, config: Dict[str, Any], retry: Optional[Dict[str, Any]] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize HubSpot client with configuration

        Args:
            config: the ``hubspot`` config section (access_token, base_url, page_size)
            retry: the ``retry`` config section
        """
        retry = retry or {}
        super().__init__(
            token=config.get("access_token", ""),
            base_url=config.get("base_url", "https://api.hubapi.com"),
            max_retries=retry.get("max_retries", 3),
            base_delay=retry.get("base_delay_seconds", 1.0),
            session=session,
        )
        self.page_size = config.get("page_size", 100)
        if config.get("access_token"):
            logger.info("HubSpot client initialized with Bearer token")
        else:
            logger.warning("HubSpot client initialized without API credentials")

    # ==================== MEETINGS ====================

    def list_meetings(self, after: Optional[str] = None) -> Dict[str, Any]:
        """One page of CRM meeting objects: ``{"results": [...], "paging": {"next": {"after": ...}}}``"""
        params = {"limit": self.page_size, "properties": ",".join(MEETING_PROPERTIES)}
        if after:
            params["after"] = after
        return self._get_json("/crm/v3/objects/meetings", params=params,
                              operation=f"CRM meetings fetch (after={after or 'null'})")

    def list_engagements(self, offset: int = 0) -> Dict[str, Any]:
        """One page of legacy engagements, filtered to meetings"""
        data = self._get_json("/engagements/v1/engagements/paged",
                              params={"limit": self.page_size, "offset": offset},
                              operation=f"legacy meetings fetch (offset={offset})")
        meetings = [e for e in data.get("results", [])
                    if (e.get("engagement") or {}).get("type") == "MEETING"]
        return {"results": meetings, "hasMore": data.get("hasMore", False),
                "offset": data.get("offset", offset)}

    def create_meeting(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Create a meeting"""
        response = self._request("POST", "/crm/v3/objects/meetings", json={"properties": properties})
        return response.json()

    def update_meeting(self, meeting_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Patch meeting properties"""
        response = self._request("PATCH", f"/crm/v3/objects/meetings/{meeting_id}",
                                 json={"properties": properties})
        return response.json()

    def delete_meeting(self, meeting_id: str) -> None:
        """Archive a meeting"""
        self._request("DELETE", f"/crm/v3/objects/meetings/{meeting_id}")

    # ==================== SEARCH ====================

    def search_one(self, object_type: str, property_name: str, value: str,
                   properties: Optional[List[str]] = None) -> Optional[Dict[str, Any]]:
        """Exact-match search returning the first result, or None"""
        body = {
            "filterGroups": [
                {
                    "filters": [
                        {
                            "propertyName": property_name,
                            "operator": "EQ",
                            "value": value
                        }
                    ]
                }
            ],
            "properties": properties or [property_name],
            "limit": 1,
        }
        response = self._request_with_retry("POST", f"/crm/v3/objects/{object_type}/search", json=body,
                                             operation=f"{object_type} search ({property_name})")
        results = response.json().get("results", [])
        return results[0] if results else None

    # ==================== ASSOCIATIONS ====================

    def get_associated_ids(self, meeting_id: str, to_object_type: str) -> List[str]:
        """Ids of ``to_object_type`` records already associated with a meeting"""
        ids = []
        after = None
        while True:
            params = {"limit": 500}
            if after:
                params["after"] = after
            data = self._get_json(f"/crm/v4/objects/meetings/{meeting_id}/associations/{to_object_type}",
                                  params=params,
                                  operation=f"{to_object_type} associations read for meeting {meeting_id}")
            for item in data.get("results", []):
                to_id = item.get("toObjectId")
                if to_id is not None:
                    ids.append(str(to_id))
            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                return ids

    def batch_create_associations(self, from_object_type: str, to_object_type: str,
                                  pairs: List[Dict[str, str]], association_kind: str) -> Dict[str, Any]:
        """
        Create associations in one call.

        Args:
            pairs: ``[{"from": id, "to": id}, ...]``
            association_kind: key of ASSOCIATION_TYPE_IDS
        """
        type_id = ASSOCIATION_TYPE_IDS[association_kind]
        body = {
            "inputs": [
                {
                    "from": {"id": p["from"]},
                    "to": {"id": p["to"]},
                    "types": [{"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": type_id}],
                }
                for p in pairs
            ]
        }
        path = f"/crm/v4/associations/{from_object_type}/{to_object_type}/batch/create"
        response = self._request("POST", path, json=body)
        return response.json() if response.content else {}

    # ==================== UTILITY ====================

    def test_connection(self) -> bool:
        """Test connection by fetching a single meeting"""
        try:
            self._request("GET", "/crm/v3/objects/meetings", params={"limit": 1})
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"HubSpot connection test failed: {e}")
            return False
