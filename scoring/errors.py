from __future__ import annotations

from typing import Any, Dict, Optional


# ======================================================================
# Exceptions
# ======================================================================

class ScoringError(RuntimeError):
    """Base class for every error the scoring core reports to callers."""

    code = "scoring_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_document(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ScoringError):
    """Value outside [0, 10] or a malformed / unknown identifier."""

    code = "validation_error"


class AuthorizationError(ScoringError):
    """Unknown identity or a role the contributor does not hold."""

    code = "authorization_error"


class PollStateError(ScoringError):
    """Write attempted while the poll is not ACTIVE."""

    code = "poll_state_error"


class DuplicateContributionConflict(ScoringError):
    """
    Resubmission with a value different from the stored one.
    The stored value is kept; the new value is discarded.
    """

    code = "duplicate_contribution_conflict"


class StorageError(ScoringError):
    """Transient storage fault. Callers may retry with backoff."""

    code = "storage_error"


class ObserverDeliveryError(ScoringError):
    """
    A single observer failed to accept a snapshot.
    Never raised to writers; logged and isolated per subscription.
    """

    code = "observer_delivery_error"


__all__ = [
    "ScoringError",
    "ValidationError",
    "AuthorizationError",
    "PollStateError",
    "DuplicateContributionConflict",
    "StorageError",
    "ObserverDeliveryError",
]
