"""
Scoring core package.

Judge scores and public votes go in through the ledger; ranked snapshots
come out through the publisher. ScoringService in scoring.service wires
the pieces together.
"""

from .errors import (
    AuthorizationError,
    DuplicateContributionConflict,
    ObserverDeliveryError,
    PollStateError,
    ScoringError,
    StorageError,
    ValidationError,
)
from .models import PollState, Role, SubmitOutcome

__all__ = [
    "AuthorizationError",
    "DuplicateContributionConflict",
    "ObserverDeliveryError",
    "PollStateError",
    "ScoringError",
    "StorageError",
    "ValidationError",
    "PollState",
    "Role",
    "SubmitOutcome",
]
