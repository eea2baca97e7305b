"""
Typed records for polls, contributions and derived rankings.

Polls and candidates are authored elsewhere and are read-only here.
Contributions are written once by the ledger and never change.
Aggregates, summaries and snapshots are derived and hold no state of
their own; they are rebuilt from contribution rows on every recompute.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from runtime.version import SNAPSHOT_SCHEMA
from scoring.errors import ScoringError

MIN_VALUE = 0.0
MAX_VALUE = 10.0
JUDGE_SLOTS = (1, 2, 3)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def round_value(value: Optional[float], digits: int) -> Optional[float]:
    if value is None:
        return None
    return round(value, digits)


# ======================================================================
# Enums
# ======================================================================

class PollState(Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    CLOSED = "closed"


class Role(Enum):
    JUDGE = "judge"
    PUBLIC = "public"

    @classmethod
    def from_value(cls, value: Any) -> "Role":
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized in {member.name.lower(), member.value}:
                    return member

        raise ValueError(f"Unknown role: {value!r}")


class SubmitOutcome(Enum):
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"


# ======================================================================
# Authored records (read-only inside the core)
# ======================================================================

@dataclass(frozen=True)
class Poll:
    """
    A time-boxed competition.

    admin_id acts as the implicit first judge (slot 1); judge_ids holds the
    two assigned judges (slots 2 and 3). State is never stored here.
    """

    poll_id: str
    title: str
    start_at: datetime
    end_at: datetime
    admin_id: str
    judge_ids: Tuple[str, str]
    description: Optional[str] = None

    def judge_slot(self, contributor_id: str) -> Optional[int]:
        if contributor_id == self.admin_id:
            return 1
        for slot, judge_id in zip((2, 3), self.judge_ids):
            if contributor_id == judge_id:
                return slot
        return None

    def to_document(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "title": self.title,
            "description": self.description,
            "start_at": to_iso(self.start_at),
            "end_at": to_iso(self.end_at),
            "admin_id": self.admin_id,
            "judge_ids": list(self.judge_ids),
        }


@dataclass(frozen=True)
class Candidate:
    candidate_id: str
    poll_id: str
    name: str
    position: int
    description: Optional[str] = None


@dataclass(frozen=True)
class Identity:
    """Authenticated identity as supplied by the upstream identity provider."""

    contributor_id: str
    display_name: str = ""
    email: Optional[str] = None


@dataclass(frozen=True)
class Contributor:
    contributor_id: str
    display_name: str
    email: Optional[str]
    created_at: str


@dataclass(frozen=True)
class Contribution:
    poll_id: str
    candidate_id: str
    contributor_id: str
    role: Role
    value: float
    created_at: str = field(default_factory=_utc_now_iso)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.poll_id, self.candidate_id, self.contributor_id)


@dataclass(frozen=True)
class Capabilities:
    """Immutable answer to "what may this contributor do in this poll"."""

    is_judge: bool
    is_public: bool
    judge_slot: Optional[int] = None

    def allows(self, role: Role) -> bool:
        if role is Role.JUDGE:
            return self.is_judge
        return self.is_public

    @property
    def role(self) -> Role:
        return Role.JUDGE if self.is_judge else Role.PUBLIC


# ======================================================================
# Derived records
# ======================================================================

@dataclass(frozen=True)
class Aggregate:
    poll_id: str
    candidate_id: str
    candidate_name: str
    position: int
    judge_scores: Tuple[Optional[float], Optional[float], Optional[float]]
    judge_avg: Optional[float]
    judge_count: int
    public_avg: Optional[float]
    public_count: int
    total_score: Optional[float]
    rank: int

    def to_document(self, digits: int = 2) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "candidate_name": self.candidate_name,
            "position": self.position,
            "judge_scores": [round_value(v, digits) for v in self.judge_scores],
            "judge_avg": round_value(self.judge_avg, digits),
            "judge_count": self.judge_count,
            "public_avg": round_value(self.public_avg, digits),
            "public_count": self.public_count,
            "total_score": round_value(self.total_score, digits),
            "rank": self.rank,
        }


@dataclass(frozen=True)
class PollSummary:
    """Poll-wide figures shown above the ranking table."""

    poll_id: str
    judge_overall: Optional[float]
    public_overall: Optional[float]
    total_overall: Optional[float]
    contribution_count: int

    def to_document(self, digits: int = 2) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "judge_overall": round_value(self.judge_overall, digits),
            "public_overall": round_value(self.public_overall, digits),
            "total_overall": round_value(self.total_overall, digits),
            "contribution_count": self.contribution_count,
        }


@dataclass(frozen=True)
class Snapshot:
    """
    Versioned, fully ordered view of a poll's aggregates.

    version is the poll's contribution row count, so it only grows and two
    recomputes over the same rows compare equal.
    """

    poll_id: str
    version: int
    aggregates: Tuple[Aggregate, ...]
    summary: PollSummary
    generated_at: str = field(default_factory=_utc_now_iso, compare=False)

    def ranking(self) -> List[str]:
        return [a.candidate_id for a in self.aggregates]

    def get(self, candidate_id: str) -> Optional[Aggregate]:
        for aggregate in self.aggregates:
            if aggregate.candidate_id == candidate_id:
                return aggregate
        return None

    def to_document(self, digits: int = 2) -> Dict[str, Any]:
        return {
            "schema_version": SNAPSHOT_SCHEMA,
            "poll_id": self.poll_id,
            "version": self.version,
            "generated_at": self.generated_at,
            "aggregates": [a.to_document(digits) for a in self.aggregates],
            "summary": self.summary.to_document(digits),
        }


# ======================================================================
# Batch reporting
# ======================================================================

@dataclass
class BatchItem:
    candidate_id: str
    outcome: Optional[SubmitOutcome] = None
    error: Optional[ScoringError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"candidate_id": self.candidate_id, "ok": self.ok}
        if self.outcome is not None:
            doc["outcome"] = self.outcome.value
        if self.error is not None:
            doc["error"] = self.error.to_document()
        return doc


@dataclass
class BatchReport:
    """Per-candidate outcomes of a multi-candidate submission."""

    poll_id: str
    contributor_id: str
    items: List[BatchItem] = field(default_factory=list)

    @property
    def accepted(self) -> List[BatchItem]:
        return [item for item in self.items if item.ok]

    @property
    def rejected(self) -> List[BatchItem]:
        return [item for item in self.items if not item.ok]

    def to_document(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "contributor_id": self.contributor_id,
            "items": [item.to_document() for item in self.items],
        }


__all__ = [
    "MIN_VALUE",
    "MAX_VALUE",
    "JUDGE_SLOTS",
    "PollState",
    "Role",
    "SubmitOutcome",
    "Poll",
    "Candidate",
    "Identity",
    "Contributor",
    "Contribution",
    "Capabilities",
    "Aggregate",
    "PollSummary",
    "Snapshot",
    "BatchItem",
    "BatchReport",
    "ensure_utc",
    "to_iso",
    "parse_iso",
    "round_value",
]
