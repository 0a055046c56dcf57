"""
Attio Integration Module
Read-only access to Attio meetings, calls, call recordings and transcripts.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from base_client import BaseAPIClient

logger = logging.getLogger(__name__)


class AttioClient(BaseAPIClient):
    """Attio v2 API client (source system)"""

    name = "Attio"

    def __init__(self, config: Dict[str, Any], retry: Optional[Dict[str, Any]] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize Attio client with configuration

        Args:
            config: the ``attio`` config section (api_key, base_url, page_size)
            retry: the ``retry`` config section (max_retries, base_delay_seconds)
        """
        retry = retry or {}
        super().__init__(
            token=config.get("api_key", ""),
            base_url=config.get("base_url", "https://api.attio.com"),
            max_retries=retry.get("max_retries", 3),
            base_delay=retry.get("base_delay_seconds", 1.0),
            session=session,
        )
        self.page_size = config.get("page_size", 200)
        if not config.get("api_key"):
            logger.warning("Attio client initialized without API credentials")

    # ==================== LISTINGS ====================

    def list_meetings(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """One page of meetings: ``{"data": [...], "pagination": {"next_cursor": ...}}``"""
        params = {"limit": self.page_size}
        if cursor:
            params["cursor"] = cursor
        return self._get_json("/v2/meetings", params=params,
                              operation=f"meetings fetch (cursor={cursor or 'null'})")

    def list_calls(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """One page of calls, same envelope as meetings"""
        params = {"limit": self.page_size}
        if cursor:
            params["cursor"] = cursor
        return self._get_json("/v2/calls", params=params,
                              operation=f"calls fetch (cursor={cursor or 'null'})")

    # ==================== SUB-RESOURCES ====================

    def get_call_recordings(self, meeting_id: str) -> List[Dict[str, Any]]:
        """Call recordings attached to a meeting"""
        data = self._get_json(f"/v2/meetings/{meeting_id}/call_recordings",
                              operation=f"call recordings fetch for meeting {meeting_id}")
        return data.get("data", []) or []

    def get_transcript(self, meeting_id: str, call_recording_id: str) -> Dict[str, Any]:
        """
        Transcript of one call recording.

        The segment list is cursor-paginated; every page is fetched and the
        segments are merged into the returned ``transcript`` list.
        """
        path = f"/v2/meetings/{meeting_id}/call_recordings/{call_recording_id}/transcript"
        segments: List[Dict[str, Any]] = []
        transcript: Dict[str, Any] = {}
        cursor = None
        while True:
            params = {"cursor": cursor} if cursor else None
            page = self._get_json(path, params=params,
                                  operation=f"transcript fetch for call recording {call_recording_id}")
            data = page.get("data") or {}
            if not transcript:
                transcript = dict(data)
            segments.extend(data.get("transcript") or [])
            cursor = (page.get("pagination") or {}).get("next_cursor")
            if not cursor:
                break
        transcript["transcript"] = segments
        return transcript

    # ==================== UTILITY ====================

    def test_connection(self) -> bool:
        """Test connection by fetching a single meeting page"""
        try:
            self._request("GET", "/v2/meetings", params={"limit": 1})
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Attio connection test failed: {e}")
            return False
