"""
Client for the mention indexing API.

Keeps resubmitting the `callbackPayload` of incomplete responses, unchanged,
until the long runner reports completion.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

INCOMPLETE_STATUS = 408


class LongRunnerAPIError(Exception):
    """Raised when the API rejects a long-runner request."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class LongRunnerClient:
    """HTTP client for starting and resuming mention indexing."""

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            base_url: Server root, e.g. http://localhost:8001
            timeout: Per-request timeout in seconds
            session: Optional requests session to reuse
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self.session.post(f"{self.base_url}{path}", json=body, timeout=self.timeout)
        if response.status_code not in (200, 201, INCOMPLETE_STATUS):
            try:
                message = response.json().get('message', response.text)
            except ValueError:
                message = response.text
            raise LongRunnerAPIError(response.status_code, message)

        data = response.json()
        data['statusCode'] = response.status_code
        return data

    def start_indexer(self, record_type: str = 'all') -> Dict[str, Any]:
        """Start indexing; the response has a callbackPayload if incomplete."""
        return self._post('/api/v2/user-mentions/indexer-start', {'recordType': record_type})

    def resume(self, callback_payload: str) -> Dict[str, Any]:
        """Resume a run with the payload of the previous response, verbatim."""
        return self._post('/api/v2/long-runner/run', {'callbackPayload': callback_payload})

    def run_to_completion(self, record_type: str = 'all', max_requests: int = 1000) -> Dict[str, Any]:
        """
        Start indexing and resume until complete.

        Args:
            record_type: Record filter
            max_requests: Upper bound on requests before giving up

        Returns:
            Final response body

        Raises:
            LongRunnerAPIError: if a request fails or max_requests is exceeded
        """
        response = self.start_indexer(record_type)
        requests_made = 1

        while response.get('status') != 'complete':
            if requests_made >= max_requests:
                raise LongRunnerAPIError(INCOMPLETE_STATUS, f"Not complete after {max_requests} requests")

            summary = response.get('summary', {})
            logger.info(f"Run incomplete ({summary.get('processed', 0)} processed), resuming")
            response = self.resume(response['callbackPayload'])
            requests_made += 1

        logger.info(f"Run complete after {requests_made} requests: {response.get('summary')}")
        return response

    def get_user_mentions(self, user_id: int) -> List[Dict[str, Any]]:
        response = self.session.get(
            f"{self.base_url}/api/v2/user-mentions/users/{user_id}",
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()
