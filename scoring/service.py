"""
Scoring service facade.

Wires access control, lifecycle gating, the ledger, aggregation and the
publisher together and exposes the operations the outer layers use.
Write path: AccessController -> PollLifecycleManager -> ContributionLedger,
then a background AggregationEngine recompute that publishes through
RankingPublisher. Writers never wait on the recompute.
Reads go straight to the AggregationEngine.
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from scoring.access import AccessController, IdentityLookup
from scoring.aggregation import AggregationEngine
from scoring.errors import ScoringError, ValidationError
from scoring.ledger import ContributionLedger, validate_identifier
from scoring.lifecycle import Clock, PollLifecycleManager, utc_now
from scoring.models import (
    BatchItem,
    BatchReport,
    Candidate,
    Poll,
    PollState,
    PollSummary,
    Role,
    Snapshot,
    SubmitOutcome,
    ensure_utc,
)
from scoring.publisher import Observer, RankingPublisher, SubscriptionHandle
from shared.config.scoring import ScoringConfig
from shared.logging.logger import get_logger
from shared.storage.contributions import ContributionStore

log = get_logger("scoring.service")

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 120
MIN_CANDIDATES = 2


class ScoringService:
    def __init__(
        self,
        store: ContributionStore,
        identities: IdentityLookup,
        *,
        config: Optional[ScoringConfig] = None,
        clock: Clock = utc_now,
        publisher: Optional[RankingPublisher] = None,
    ):
        self.config = config or ScoringConfig()
        self.store = store

        self.lifecycle = PollLifecycleManager(clock)
        self.access = AccessController(
            store,
            identities,
            allowed_email_domain=self.config.access.allowed_email_domain,
        )
        self.ledger = ContributionLedger(store, self.access, self.lifecycle)
        self.publisher = publisher or RankingPublisher(
            delivery_retries=self.config.publisher.delivery_retries,
        )
        self.engine = AggregationEngine(
            store,
            self.publisher,
            weights=self.config.weights,
            recompute_retries=self.config.publisher.recompute_retries,
            retry_backoff=self.config.publisher.retry_backoff_seconds,
            recovery_delay=self.config.publisher.recovery_delay_seconds,
        )
        self.ledger.add_listener(self.engine.on_contribution)

    @classmethod
    def from_config(
        cls,
        config: ScoringConfig,
        identities: IdentityLookup,
        *,
        clock: Clock = utc_now,
    ) -> "ScoringService":
        store = ContributionStore(
            config.storage.db_path,
            timeout=config.storage.timeout_seconds,
        )
        return cls(store, identities, config=config, clock=clock)

    @property
    def digits(self) -> int:
        return self.config.weights.round_digits

    # ------------------------------------------------------------
    # Poll authoring (seeded by the external authoring flow)
    # ------------------------------------------------------------

    def register_poll(
        self,
        *,
        poll_id: str,
        title: str,
        start_at: datetime,
        end_at: datetime,
        admin_id: str,
        judge_ids: Sequence[str],
        candidates: Sequence[Candidate],
        description: Optional[str] = None,
    ) -> Poll:
        validate_identifier(poll_id, "poll_id")
        validate_identifier(admin_id, "admin_id")

        title = (title or "").strip()
        if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Title must be {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters",
                details={"title": title},
            )

        if ensure_utc(end_at) <= ensure_utc(start_at):
            raise ValidationError("end_at must be after start_at")

        judges = list(judge_ids)
        if len(judges) != 2:
            raise ValidationError("Exactly two assigned judges are required")
        for judge_id in judges:
            validate_identifier(judge_id, "judge_id")
        if judges[0] == judges[1]:
            raise ValidationError("The same judge cannot be assigned twice")
        if admin_id in judges:
            raise ValidationError("The admin is already the first judge")

        if len(candidates) < MIN_CANDIDATES:
            raise ValidationError(f"At least {MIN_CANDIDATES} candidates are required")
        ids = [c.candidate_id for c in candidates]
        positions = [c.position for c in candidates]
        if len(set(ids)) != len(ids) or len(set(positions)) != len(positions):
            raise ValidationError("Candidate ids and positions must be unique")
        for candidate in candidates:
            validate_identifier(candidate.candidate_id, "candidate_id")
            if not (candidate.name or "").strip():
                raise ValidationError(
                    "Candidate name is required",
                    details={"candidate_id": candidate.candidate_id},
                )

        poll = Poll(
            poll_id=poll_id,
            title=title,
            description=description,
            start_at=ensure_utc(start_at),
            end_at=ensure_utc(end_at),
            admin_id=admin_id,
            judge_ids=(judges[0], judges[1]),
        )
        self.store.save_poll(poll, [replace(c, poll_id=poll_id) for c in candidates])
        return poll

    def get_poll(self, poll_id: str) -> Poll:
        poll = self.store.get_poll(poll_id)
        if poll is None:
            raise ValidationError(f"Unknown poll {poll_id}", details={"poll_id": poll_id})
        return poll

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    def submit_judge_score(
        self,
        poll_id: str,
        candidate_id: str,
        judge_id: str,
        value: Any,
        *,
        now: Optional[datetime] = None,
    ) -> SubmitOutcome:
        return self.ledger.submit(poll_id, candidate_id, judge_id, Role.JUDGE, value, now=now)

    def submit_public_vote(
        self,
        poll_id: str,
        candidate_id: str,
        contributor_id: str,
        value: Any,
        *,
        now: Optional[datetime] = None,
    ) -> SubmitOutcome:
        return self.ledger.submit(poll_id, candidate_id, contributor_id, Role.PUBLIC, value, now=now)

    def submit_batch(
        self,
        poll_id: str,
        contributor_id: str,
        role: Role | str,
        values: Mapping[str, Any],
        *,
        now: Optional[datetime] = None,
    ) -> BatchReport:
        """Submit several candidates at once; each one succeeds or fails alone."""
        report = BatchReport(poll_id=poll_id, contributor_id=contributor_id)
        for candidate_id, value in values.items():
            try:
                outcome = self.ledger.submit(
                    poll_id, candidate_id, contributor_id, role, value, now=now
                )
                report.items.append(BatchItem(candidate_id=candidate_id, outcome=outcome))
            except ScoringError as e:
                report.items.append(BatchItem(candidate_id=candidate_id, error=e))

        if report.rejected:
            log.info(
                f"[{poll_id}] Batch from {contributor_id}: "
                f"{len(report.accepted)} accepted, {len(report.rejected)} rejected"
            )
        return report

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def get_snapshot(self, poll_id: str) -> Snapshot:
        return self.engine.recompute(poll_id)

    def get_aggregates(self, poll_id: str) -> List[Dict[str, Any]]:
        snapshot = self.get_snapshot(poll_id)
        return [a.to_document(self.digits) for a in snapshot.aggregates]

    def get_summary(self, poll_id: str) -> PollSummary:
        return self.get_snapshot(poll_id).summary

    def get_poll_state(self, poll_id: str, now: Optional[datetime] = None) -> PollState:
        return self.lifecycle.current_state(self.get_poll(poll_id), now)

    def has_completed(self, poll_id: str, contributor_id: str) -> bool:
        return self.ledger.has_completed(poll_id, contributor_id)

    # ------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------

    def subscribe(self, poll_id: str, observer: Observer) -> SubscriptionHandle:
        self.get_poll(poll_id)
        handle = self.publisher.subscribe(poll_id, observer)
        # Make sure the new observer starts from the current state.
        self.engine.schedule(poll_id)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        return self.publisher.unsubscribe(handle)

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Wait for pending recomputes, then for every observer mailbox to drain."""
        deadline = None if timeout is None else time.monotonic() + timeout
        if not self.engine.flush(timeout):
            return False
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        return self.publisher.flush(remaining)

    def close(self) -> None:
        self.engine.close()
        self.publisher.close()


__all__ = ["ScoringService"]
