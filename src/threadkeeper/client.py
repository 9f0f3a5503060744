"""HTTP client for the ThreadKeeper sync service.

Authentication is a bearer token issued by the service's login endpoint.
The base URL can be overridden with the THREADKEEPER_API_URL environment
variable or the [sync] api_url config setting.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from .models import ChangeRecord, Thread

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.environ.get(
    "THREADKEEPER_API_URL",
    "https://api.threadkeeper.app/api/v1",
)


class SyncError(RuntimeError):
    """Raised when the sync service rejects or fails a request."""


@dataclass
class SyncResult:
    """Server acknowledgement of a push."""

    synced: int = 0
    timestamp: str | None = None
    threads: list[dict] = field(default_factory=list)  # server-side changes to merge


class SyncClient:
    """Client for the sync service's REST API using bearer-token auth."""

    def __init__(self, token: str, api_url: str | None = None, timeout: float = 30.0):
        self._api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self._client = httpx.Client(
            headers={
                "authorization": f"Bearer {token}",
                "content-type": "application/json",
                "User-Agent": "threadkeeper-cli",
            },
            timeout=timeout,
            follow_redirects=True,
        )

    @property
    def api_url(self) -> str:
        return self._api_url

    def push(
        self,
        threads: list[Thread],
        changes: list[ChangeRecord],
        last_sync: datetime | None,
    ) -> SyncResult:
        """Send modified threads and pending change records to the server."""
        payload = {
            "threads": [t.to_dict() for t in threads],
            "changes": [c.to_dict() for c in changes],
            "lastSync": last_sync.isoformat() if last_sync else None,
        }
        logger.info(
            "Pushing %d threads and %d changes to %s",
            len(threads),
            len(changes),
            self._api_url,
        )
        response = self._client.post(f"{self._api_url}/sync/threads", json=payload)
        self._check_response(response)

        data = response.json()
        return SyncResult(
            synced=int(data.get("synced", len(threads))),
            timestamp=data.get("timestamp"),
            threads=data.get("threads") or [],
        )

    def status(self) -> dict:
        """Fetch the server's view of this account's sync status."""
        response = self._client.get(f"{self._api_url}/sync/status")
        self._check_response(response)
        return response.json()

    @staticmethod
    def _check_response(response: httpx.Response) -> None:
        if response.status_code == 401:
            raise SyncError(
                "Authentication failed. Your sync token may be expired. "
                "Run `threadkeeper setup` with a fresh token."
            )

        if response.status_code == 403:
            raise SyncError("Sync is only available for premium accounts.")

        if response.status_code == 429:
            reset_time = response.headers.get("x-rate-limit-reset")
            wait_msg = ""
            if reset_time:
                wait_seconds = int(reset_time) - int(time.time())
                if wait_seconds > 0:
                    wait_msg = f" Retry in {wait_seconds}s."
            raise SyncError(f"Rate limited by the sync service.{wait_msg}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SyncError(f"Sync request failed: {e}") from e

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
