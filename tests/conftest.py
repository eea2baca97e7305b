"""Shared test helpers and fixtures."""

import os

os.environ.setdefault("SCORING_LOG_FILE", "0")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from scoring.access import IdentityDirectory  # noqa: E402
from scoring.models import Candidate, Identity  # noqa: E402
from scoring.service import ScoringService  # noqa: E402
from shared.config.scoring import ScoringConfig  # noqa: E402
from shared.storage.contributions import ContributionStore  # noqa: E402

START = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=2)
DURING = START + timedelta(minutes=30)

ADMIN = "admin"
JUDGE_2 = "judge-2"
JUDGE_3 = "judge-3"
JUDGES = [ADMIN, JUDGE_2, JUDGE_3]
VOTERS = [f"voter-{i}" for i in range(1, 7)]


class FixedClock:
    """Settable clock so lifecycle checks are deterministic."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_candidates(*names: str) -> list[Candidate]:
    """Candidates with ids equal to their names and positions in argument order."""
    return [
        Candidate(candidate_id=name, poll_id="", name=name, position=index)
        for index, name in enumerate(names, start=1)
    ]


def register_poll(service: ScoringService, poll_id: str = "poll-1", *names: str):
    return service.register_poll(
        poll_id=poll_id,
        title=f"Poll {poll_id}",
        start_at=START,
        end_at=END,
        admin_id=ADMIN,
        judge_ids=[JUDGE_2, JUDGE_3],
        candidates=make_candidates(*(names or ("A", "B"))),
    )


@pytest.fixture
def clock():
    return FixedClock(DURING)


@pytest.fixture
def identities():
    directory = IdentityDirectory()
    for contributor_id in JUDGES + VOTERS:
        directory.register(
            Identity(
                contributor_id=contributor_id,
                display_name=contributor_id.title(),
                email=f"{contributor_id}@example.edu",
            )
        )
    return directory


@pytest.fixture
def store(tmp_path):
    return ContributionStore(tmp_path / "scoring.db")


@pytest.fixture
def config():
    return ScoringConfig()


@pytest.fixture
def service(store, identities, config, clock):
    svc = ScoringService(store, identities, config=config, clock=clock)
    yield svc
    svc.close()


@pytest.fixture
def poll(service):
    """Two-candidate poll (A, B) that is active at the fixture clock."""
    return register_poll(service, "poll-1", "A", "B")


class Recorder:
    """Observer that remembers every snapshot it receives."""

    def __init__(self):
        self.snapshots = []

    def __call__(self, snapshot):
        self.snapshots.append(snapshot)

    @property
    def versions(self):
        return [s.version for s in self.snapshots]


@pytest.fixture
def recorder():
    return Recorder()
