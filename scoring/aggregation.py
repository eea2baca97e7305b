"""
Aggregation engine.

Builds per-candidate aggregates and the poll ranking from the full set of
contribution rows. compute_snapshot() is a pure function: the same rows
always give the same Snapshot, so repeated or overlapping triggers are
harmless and can be coalesced.

Scoring rules:
- judge_avg is the mean of whichever judge scores exist (0-3 of them)
- public_avg is the mean of every public vote, public_count their number
- total_score weighs both averages; with only one defined it is that value,
  with neither it is None
- ranking is total_score descending, None last, ties by display position
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence

from scoring.errors import StorageError, ValidationError
from scoring.models import (
    Aggregate,
    Candidate,
    Contribution,
    Poll,
    PollSummary,
    Role,
    Snapshot,
)
from scoring.publisher import RankingPublisher
from shared.config.scoring import WeightsConfig
from shared.logging.logger import get_logger
from shared.storage.contributions import ContributionStore

log = get_logger("scoring.aggregation")


def _mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return math.fsum(values) / len(values)


def combine_scores(
    judge_avg: Optional[float],
    public_avg: Optional[float],
    weights: WeightsConfig,
) -> Optional[float]:
    if judge_avg is not None and public_avg is not None:
        judge_weight, public_weight = weights.normalized()
        return judge_weight * judge_avg + public_weight * public_avg

    if weights.require_both_sources:
        return None
    if judge_avg is not None:
        return judge_avg
    return public_avg


def _rank_key(aggregate: Aggregate):
    if aggregate.total_score is None:
        return (1, 0.0, aggregate.position)
    return (0, -aggregate.total_score, aggregate.position)


def compute_snapshot(
    poll: Poll,
    candidates: Iterable[Candidate],
    contributions: Sequence[Contribution],
    weights: WeightsConfig,
) -> Snapshot:
    """Build a ranked Snapshot for a poll from its contribution rows."""
    ordered = sorted(candidates, key=lambda c: c.position)

    judge_values: Dict[str, List[float]] = {c.candidate_id: [] for c in ordered}
    judge_slots: Dict[str, Dict[int, float]] = {c.candidate_id: {} for c in ordered}
    public_values: Dict[str, List[float]] = {c.candidate_id: [] for c in ordered}

    for row in contributions:
        if row.candidate_id not in judge_values:
            continue
        if row.role is Role.JUDGE:
            judge_values[row.candidate_id].append(row.value)
            slot = poll.judge_slot(row.contributor_id)
            if slot is not None:
                judge_slots[row.candidate_id][slot] = row.value
        else:
            public_values[row.candidate_id].append(row.value)

    unranked: List[Aggregate] = []
    for candidate in ordered:
        cid = candidate.candidate_id
        judge_avg = _mean(judge_values[cid])
        public_avg = _mean(public_values[cid])
        slots = judge_slots[cid]
        unranked.append(
            Aggregate(
                poll_id=poll.poll_id,
                candidate_id=cid,
                candidate_name=candidate.name,
                position=candidate.position,
                judge_scores=(slots.get(1), slots.get(2), slots.get(3)),
                judge_avg=judge_avg,
                judge_count=len(judge_values[cid]),
                public_avg=public_avg,
                public_count=len(public_values[cid]),
                total_score=combine_scores(judge_avg, public_avg, weights),
                rank=0,
            )
        )

    ranked = sorted(unranked, key=_rank_key)
    aggregates = tuple(
        replace(aggregate, rank=index)
        for index, aggregate in enumerate(ranked, start=1)
    )

    known = [row for row in contributions if row.candidate_id in judge_values]
    all_judge = [row.value for row in known if row.role is Role.JUDGE]
    all_public = [row.value for row in known if row.role is Role.PUBLIC]
    totals = [a.total_score for a in aggregates if a.total_score is not None]

    summary = PollSummary(
        poll_id=poll.poll_id,
        judge_overall=_mean(all_judge),
        public_overall=_mean(all_public),
        total_overall=_mean(totals),
        contribution_count=len(contributions),
    )

    return Snapshot(
        poll_id=poll.poll_id,
        version=len(contributions),
        aggregates=aggregates,
        summary=summary,
    )



@dataclass
class _RecomputeState:
    running: bool = False
    dirty: bool = False


class AggregationEngine:
    def __init__(
        self,
        store: ContributionStore,
        publisher: RankingPublisher,
        *,
        weights: Optional[WeightsConfig] = None,
        recompute_retries: int = 2,
        retry_backoff: float = 0.05,
        recovery_delay: float = 0.5,
    ):
        self._store = store
        self._publisher = publisher
        self._weights = weights or WeightsConfig()
        self._retries = max(0, int(recompute_retries))
        self._backoff = max(0.0, float(retry_backoff))
        self._recovery_delay = max(0.01, float(recovery_delay))

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._stopped = threading.Event()
        self._states: Dict[str, _RecomputeState] = {}

        self._metrics = {
            "recomputed": 0,
            "coalesced": 0,
            "failed": 0,
        }

    @property
    def weights(self) -> WeightsConfig:
        return self._weights

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)

    # ------------------------------------------------------------
    # On-demand reads
    # ------------------------------------------------------------

    def recompute(self, poll_id: str) -> Snapshot:
        poll = self._store.get_poll(poll_id)
        if poll is None:
            raise ValidationError(f"Unknown poll {poll_id}", details={"poll_id": poll_id})

        candidates = self._store.list_candidates(poll_id)
        contributions = self._store.contributions_for(poll_id)
        snapshot = compute_snapshot(poll, candidates, contributions, self._weights)

        with self._lock:
            self._metrics["recomputed"] += 1
        return snapshot

    # ------------------------------------------------------------
    # Push-driven recompute
    # ------------------------------------------------------------

    def _recompute_with_retry(self, poll_id: str) -> Optional[Snapshot]:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.recompute(poll_id)
            except StorageError as e:
                log.warning(
                    f"[{poll_id}] Recompute attempt {attempt}/{attempts} failed: {e}"
                )
            if attempt < attempts and self._stopped.wait(self._backoff * 2 ** (attempt - 1)):
                break

        with self._lock:
            self._metrics["failed"] += 1
        log.error(f"[{poll_id}] Recompute gave up after {attempts} attempt(s)")
        return None

    def _claim(self, poll_id: str) -> Optional[_RecomputeState]:
        with self._lock:
            if self._stopped.is_set():
                return None
            state = self._states.setdefault(poll_id, _RecomputeState())
            if state.running:
                state.dirty = True
                self._metrics["coalesced"] += 1
                return None
            state.running = True
            return state

    def _run(self, poll_id: str, state: _RecomputeState, *, keep_trying: bool) -> Optional[Snapshot]:
        """
        Recompute and publish until no write arrived during the last pass.

        A pass that gives up leaves the poll dirty. With keep_trying the loop
        waits recovery_delay and goes again; otherwise the poll is handed to
        a background worker that does.
        """
        published: Optional[Snapshot] = None
        released = False
        handoff = False
        try:
            while not self._stopped.is_set():
                with self._lock:
                    state.dirty = False

                snapshot = self._recompute_with_retry(poll_id)
                if snapshot is None:
                    if not keep_trying:
                        handoff = True
                        break
                    log.info(f"[{poll_id}] Recompute deferred for {self._recovery_delay:g}s")
                    if self._stopped.wait(self._recovery_delay):
                        break
                    continue

                self._publisher.publish(poll_id, snapshot)
                published = snapshot

                with self._lock:
                    if not state.dirty:
                        state.running = False
                        released = True
                        self._idle.notify_all()
                        break
        finally:
            if not released:
                with self._lock:
                    state.running = False
                    self._idle.notify_all()

        if handoff:
            self.schedule(poll_id)
        return published

    def _work(self, poll_id: str, state: _RecomputeState) -> None:
        try:
            self._run(poll_id, state, keep_trying=True)
        except Exception as e:
            log.error(f"[{poll_id}] Recompute worker stopped: {e}")

    def schedule(self, poll_id: str) -> bool:
        """
        Recompute and publish on a background worker.

        Returns at once. If a recompute is already running for the poll it is
        marked dirty and the running worker makes one more pass. Returns True
        when a new worker was started.
        """
        state = self._claim(poll_id)
        if state is None:
            return False

        worker = threading.Thread(
            target=self._work,
            args=(poll_id, state),
            name=f"recompute-{poll_id}",
            daemon=True,
        )
        worker.start()
        return True

    def trigger(self, poll_id: str) -> Optional[Snapshot]:
        """
        Recompute and publish on the calling thread.

        Coalesces with schedule(): if a recompute is already running this
        only marks the poll dirty and returns None. When storage keeps
        failing the poll is handed to a background worker and None is
        returned.
        """
        state = self._claim(poll_id)
        if state is None:
            return None
        return self._run(poll_id, state, keep_trying=False)

    def on_contribution(self, contribution: Contribution) -> None:
        """Ledger listener hook. Never waits on the recompute."""
        self.schedule(contribution.poll_id)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Wait until no poll has a recompute running. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(
                lambda: not any(s.running for s in self._states.values()),
                timeout,
            )

    def close(self) -> None:
        self._stopped.set()
        self.flush(timeout=1.0)


__all__ = ["AggregationEngine", "combine_scores", "compute_snapshot"]
