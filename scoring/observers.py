"""
Observer adapters for the ranking publisher.

The publisher only knows callables taking a Snapshot. These adapters turn
that into a transport: a JSON state file per poll, or an HTTP webhook.
Raising from an adapter marks the delivery as failed; the publisher logs
it and retries.
"""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from scoring.errors import ObserverDeliveryError
from scoring.models import Snapshot
from shared.logging.logger import get_logger
from shared.storage.ranking_state import RankingStateStore

log = get_logger("scoring.observers")


class StateFileObserver:
    """Writes each snapshot to <state_dir>/<poll_id>.json atomically."""

    def __init__(self, store: RankingStateStore, *, digits: int = 2):
        self._store = store
        self._digits = digits

    def __call__(self, snapshot: Snapshot) -> None:
        ok = self._store.write_snapshot(
            snapshot.poll_id,
            snapshot.to_document(self._digits),
        )
        if not ok:
            raise ObserverDeliveryError(
                f"State file write failed for poll {snapshot.poll_id}",
                details={"poll_id": snapshot.poll_id, "version": snapshot.version},
            )


class WebhookObserver:
    """POSTs each snapshot document to a fixed URL."""

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 5.0,
        headers: Optional[Dict[str, str]] = None,
        digits: int = 2,
    ):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._digits = digits

    def __call__(self, snapshot: Snapshot) -> None:
        response = self._client.post(
            self.url,
            json=snapshot.to_document(self._digits),
            headers=self._headers,
        )
        response.raise_for_status()
        log.debug(f"[{snapshot.poll_id}] Webhook {self.url} accepted v{snapshot.version}")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


__all__ = ["StateFileObserver", "WebhookObserver"]
