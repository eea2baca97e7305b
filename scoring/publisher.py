"""
Ranking publisher.

Fans ranking snapshots out to observers. Each subscription owns a one-slot
mailbox and a daemon delivery thread:

- publish() only swaps the mailbox content and returns; writers never wait
  on observers
- a newer snapshot replaces a queued older one (bursts coalesce)
- versions at or below the subscription's high-water mark are dropped, so an
  observer never sees an older snapshot after a newer one
- observer exceptions are wrapped, logged and retried a bounded number of
  times without touching other subscriptions
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from scoring.errors import ObserverDeliveryError
from scoring.models import Snapshot
from shared.logging.logger import get_logger

log = get_logger("scoring.publisher")

Observer = Callable[[Snapshot], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    poll_id: str
    subscription_id: str


class _Subscription:
    def __init__(self, handle: SubscriptionHandle, observer: Observer, retries: int):
        self.handle = handle
        self._observer = observer
        self._retries = retries
        self._cond = threading.Condition()
        self._pending: Optional[Snapshot] = None
        self._high_water = -1
        self._busy = False
        self._closed = False

        self.delivered = 0
        self.failures = 0

        self._thread = threading.Thread(
            target=self._run,
            name=f"ranking-observer-{handle.subscription_id[:8]}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    # --------------------------------------------------

    def offer(self, snapshot: Snapshot) -> bool:
        with self._cond:
            if self._closed or snapshot.version <= self._high_water:
                return False
            self._pending = snapshot
            self._high_water = snapshot.version
            self._cond.notify_all()
            return True

    def _run(self) -> None:
        while True:
            with self._cond:
                while self._pending is None and not self._closed:
                    self._cond.wait()
                if self._closed:
                    return
                snapshot = self._pending
                self._pending = None
                self._busy = True

            try:
                self._deliver(snapshot)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()

    def _deliver(self, snapshot: Snapshot) -> bool:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._observer(snapshot)
                self.delivered += 1
                return True
            except Exception as e:
                self.failures += 1
                error = ObserverDeliveryError(
                    f"Observer {self.handle.subscription_id} rejected version {snapshot.version}: {e}",
                    details={
                        "poll_id": snapshot.poll_id,
                        "version": snapshot.version,
                        "attempt": attempt,
                    },
                )
                log.warning(f"[{snapshot.poll_id}] {error.message} (attempt {attempt}/{attempts})")

            with self._cond:
                # A newer snapshot supersedes the failed one.
                if self._pending is not None or self._closed:
                    return False

        log.error(
            f"[{snapshot.poll_id}] Giving up on version {snapshot.version} "
            f"for observer {self.handle.subscription_id}"
        )
        return False

    # --------------------------------------------------

    def wait_idle(self, timeout: Optional[float]) -> bool:
        with self._cond:
            return self._cond.wait_for(
                lambda: self._closed or (self._pending is None and not self._busy),
                timeout,
            )

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._pending = None
            self._cond.notify_all()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=1.0)


class RankingPublisher:
    def __init__(self, *, delivery_retries: int = 1):
        self._retries = max(0, int(delivery_retries))
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, _Subscription] = {}
        self._latest: Dict[str, Snapshot] = {}

    # ------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------

    def subscribe(self, poll_id: str, observer: Observer) -> SubscriptionHandle:
        handle = SubscriptionHandle(poll_id=poll_id, subscription_id=str(uuid.uuid4()))
        subscription = _Subscription(handle, observer, self._retries)
        subscription.start()

        with self._lock:
            self._subscriptions[handle.subscription_id] = subscription
            latest = self._latest.get(poll_id)

        if latest is not None:
            subscription.offer(latest)

        log.info(f"[{poll_id}] Observer subscribed ({handle.subscription_id})")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            subscription = self._subscriptions.pop(handle.subscription_id, None)

        if subscription is None:
            return False

        subscription.close()
        log.info(f"[{handle.poll_id}] Observer unsubscribed ({handle.subscription_id})")
        return True

    def subscriber_count(self, poll_id: str) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions.values() if s.handle.poll_id == poll_id)

    # ------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------

    def latest(self, poll_id: str) -> Optional[Snapshot]:
        with self._lock:
            return self._latest.get(poll_id)

    def publish(self, poll_id: str, snapshot: Snapshot) -> int:
        """Queue a snapshot for every observer of the poll. Never blocks on observers."""
        with self._lock:
            current = self._latest.get(poll_id)
            if current is not None and snapshot.version < current.version:
                log.debug(
                    f"[{poll_id}] Dropping stale snapshot v{snapshot.version} "
                    f"(latest v{current.version})"
                )
                return 0
            self._latest[poll_id] = snapshot
            targets: List[_Subscription] = [
                s for s in self._subscriptions.values() if s.handle.poll_id == poll_id
            ]

        queued = sum(1 for s in targets if s.offer(snapshot))
        log.debug(f"[{poll_id}] Snapshot v{snapshot.version} queued for {queued} observer(s)")
        return queued

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Wait until every mailbox is drained. Returns False on timeout."""
        with self._lock:
            targets = list(self._subscriptions.values())

        deadline = None if timeout is None else time.monotonic() + timeout
        for subscription in targets:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not subscription.wait_idle(remaining):
                return False
        return True

    def close(self) -> None:
        with self._lock:
            targets = list(self._subscriptions.values())
            self._subscriptions.clear()

        for subscription in targets:
            subscription.close()
        log.info(f"Ranking publisher closed ({len(targets)} subscription(s))")


__all__ = ["RankingPublisher", "SubscriptionHandle", "Observer"]
