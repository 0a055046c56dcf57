"""
Shared HTTP plumbing for the Attio and HubSpot clients.
Bearer auth on a requests.Session, plus retry with capped exponential backoff
for read calls.
"""

import logging
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


# Subclasses of ConnectionError that are not transient network faults
NON_RETRYABLE_CONNECTION_ERRORS = (requests.exceptions.SSLError, requests.exceptions.ProxyError)


def is_retryable(exc: Exception) -> bool:
    """Connection reset/refused, DNS failure, timeouts and 5xx responses are retryable"""
    if isinstance(exc, NON_RETRYABLE_CONNECTION_ERRORS):
        return False
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        return 500 <= exc.response.status_code <= 599
    return False


def response_detail(exc: Exception) -> str:
    """Best-effort response payload for error logs"""
    response = getattr(exc, "response", None)
    if response is None:
        return ""
    return response.text


class BaseAPIClient:
    """requests.Session wrapper with bearer auth and read retries"""

    name = "API"

    def __init__(self, token: str, base_url: str, max_retries: int = 3,
                 base_delay: float = 1.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Single request; raises requests.HTTPError on 4xx/5xx"""
        response = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        if response.status_code >= 400:
            logger.error(f"{self.name} error {response.status_code} on {method} {path}: {response.text}")
            response.raise_for_status()
        return response

    def _request_with_retry(self, method: str, path: str, operation: str = "",
                            **kwargs) -> requests.Response:
        """Make request with exponential backoff on the retryable allow-list only"""
        operation = operation or f"{method} {path}"

        for attempt in range(self.max_retries + 1):
            try:
                return self._request(method, path, **kwargs)
            except requests.exceptions.RequestException as e:
                if not is_retryable(e) or attempt == self.max_retries:
                    logger.error(f"❌ {self.name} {operation} failed after {attempt} retries: {e}")
                    raise
                wait_time = self.base_delay * (2 ** attempt)
                logger.warning(f"⚠️  {self.name} {operation} failed "
                               f"(attempt {attempt + 1}/{self.max_retries + 1}): {e}")
                logger.warning(f"   Retrying in {wait_time:.1f}s...")
                time.sleep(wait_time)

        raise Exception("Max retries exceeded")

    def _get_json(self, path: str, operation: str = "", **kwargs) -> Dict[str, Any]:
        response = self._request_with_retry("GET", path, operation=operation, **kwargs)
        return response.json()
