"""
Contribution ledger.

Records one immutable judge score or public vote per
(poll, candidate, contributor). Each call is validated and inserted on its
own; there is no poll-wide transaction, so a rejection for one candidate
never touches rows already accepted for another.
"""

from __future__ import annotations

import math
import numbers
from datetime import datetime
from typing import Any, Callable, List, Optional

from scoring.access import AccessController
from scoring.errors import (
    AuthorizationError,
    DuplicateContributionConflict,
    ValidationError,
)
from scoring.lifecycle import PollLifecycleManager
from scoring.models import (
    MAX_VALUE,
    MIN_VALUE,
    Contribution,
    Poll,
    Role,
    SubmitOutcome,
    to_iso,
)
from shared.logging.logger import get_logger
from shared.storage.contributions import ContributionStore

log = get_logger("scoring.ledger")

InsertListener = Callable[[Contribution], None]


def validate_value(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValidationError(
            f"Score must be a number between {MIN_VALUE:g} and {MAX_VALUE:g}",
            details={"value": repr(value)},
        )

    number = float(value)
    if not math.isfinite(number) or not (MIN_VALUE <= number <= MAX_VALUE):
        raise ValidationError(
            f"Score {value!r} is outside [{MIN_VALUE:g}, {MAX_VALUE:g}]",
            details={"value": number},
        )
    return number


def validate_identifier(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Malformed {name}", details={name: repr(value)})
    return value


class ContributionLedger:
    def __init__(
        self,
        store: ContributionStore,
        access: AccessController,
        lifecycle: PollLifecycleManager,
    ):
        self._store = store
        self._access = access
        self._lifecycle = lifecycle
        self._listeners: List[InsertListener] = []

    # ------------------------------------------------------------

    def add_listener(self, listener: InsertListener) -> None:
        """Register a callback fired after every newly inserted row."""
        self._listeners.append(listener)

    def _notify(self, contribution: Contribution) -> None:
        for listener in list(self._listeners):
            try:
                listener(contribution)
            except Exception as e:
                log.error(
                    f"[{contribution.poll_id}] Insert listener failed: {e}"
                )

    # ------------------------------------------------------------

    def _load_poll(self, poll_id: str) -> Poll:
        poll = self._store.get_poll(poll_id)
        if poll is None:
            raise ValidationError(f"Unknown poll {poll_id}", details={"poll_id": poll_id})
        return poll

    def submit(
        self,
        poll_id: str,
        candidate_id: str,
        contributor_id: str,
        role: Role | str,
        value: Any,
        *,
        now: Optional[datetime] = None,
    ) -> SubmitOutcome:
        number = validate_value(value)
        try:
            requested = Role.from_value(role)
        except ValueError as e:
            raise ValidationError(str(e), details={"role": repr(role)}) from e

        validate_identifier(poll_id, "poll_id")
        validate_identifier(candidate_id, "candidate_id")

        poll = self._load_poll(poll_id)
        if self._store.get_candidate(poll_id, candidate_id) is None:
            raise ValidationError(
                f"Candidate {candidate_id} does not belong to poll {poll_id}",
                details={"poll_id": poll_id, "candidate_id": candidate_id},
            )

        capabilities = self._access.resolve(contributor_id, poll_id)
        if not capabilities.allows(requested):
            raise AuthorizationError(
                f"{contributor_id} may not submit as {requested.value}",
                details={
                    "contributor_id": contributor_id,
                    "requested_role": requested.value,
                    "resolved_role": capabilities.role.value,
                },
            )

        moment = now if now is not None else self._lifecycle.now()
        self._lifecycle.ensure_writable(poll, moment)

        contribution = Contribution(
            poll_id=poll_id,
            candidate_id=candidate_id,
            contributor_id=contributor_id,
            role=requested,
            value=number,
            created_at=to_iso(moment),
        )
        inserted, stored = self._store.insert_contribution(contribution)

        if inserted:
            log.info(
                f"[{poll_id}] {requested.value} contribution recorded "
                f"candidate={candidate_id} contributor={contributor_id}"
            )
            self._notify(stored)
            return SubmitOutcome.INSERTED

        if stored.value == number:
            log.debug(
                f"[{poll_id}] Duplicate submission ignored "
                f"candidate={candidate_id} contributor={contributor_id}"
            )
            return SubmitOutcome.ALREADY_EXISTS

        log.warning(
            f"[{poll_id}] Conflicting resubmission rejected "
            f"candidate={candidate_id} contributor={contributor_id}"
        )
        raise DuplicateContributionConflict(
            f"{contributor_id} already scored {candidate_id} with {stored.value:g}",
            details={
                "poll_id": poll_id,
                "candidate_id": candidate_id,
                "stored_value": stored.value,
                "rejected_value": number,
            },
        )

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def contributions_for(self, poll_id: str) -> List[Contribution]:
        return self._store.contributions_for(poll_id)

    def has_completed(self, poll_id: str, contributor_id: str) -> bool:
        """True once the contributor has scored every candidate of the poll."""
        candidates = self._store.list_candidates(poll_id)
        if not candidates:
            return False
        scored = self._store.candidates_scored_by(poll_id, contributor_id)
        return all(c.candidate_id in scored for c in candidates)


__all__ = ["ContributionLedger", "validate_value", "validate_identifier"]
