"""Tests for the contribution ledger."""

import math
import threading
from datetime import timedelta

import pytest

from scoring.errors import (
    AuthorizationError,
    DuplicateContributionConflict,
    PollStateError,
    ValidationError,
)
from scoring.models import Role, SubmitOutcome
from tests.conftest import ADMIN, END, JUDGE_2, START


class TestValueValidation:
    @pytest.fixture(autouse=True)
    def _setup(self, service, poll):
        self.service = service
        self.ledger = service.ledger

    @pytest.mark.parametrize("value", [0, 0.0, 5, 7.5, 9.9, 10, 10.0])
    def test_values_in_range_are_accepted(self, value):
        outcome = self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, value)
        assert outcome is SubmitOutcome.INSERTED
        assert self.service.get_snapshot("poll-1").get("A").public_avg == float(value)

    @pytest.mark.parametrize("value", [11, -0.01, 10.0001, math.nan, math.inf, "7", None, True])
    def test_values_out_of_range_are_rejected_without_rows(self, value):
        with pytest.raises(ValidationError):
            self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, value)
        assert self.ledger.contributions_for("poll-1") == []

    def test_eleven_leaves_aggregate_unchanged(self):
        """Scenario: value 11 is rejected and nothing moves."""
        self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 4)
        before = self.service.get_snapshot("poll-1")
        with pytest.raises(ValidationError):
            self.ledger.submit("poll-1", "B", "voter-2", Role.PUBLIC, 11)
        assert self.service.get_snapshot("poll-1") == before


class TestIdentifiers:
    @pytest.fixture(autouse=True)
    def _setup(self, service, poll):
        self.ledger = service.ledger

    def test_unknown_poll(self):
        with pytest.raises(ValidationError):
            self.ledger.submit("nope", "A", "voter-1", Role.PUBLIC, 5)

    def test_candidate_from_another_poll(self):
        with pytest.raises(ValidationError):
            self.ledger.submit("poll-1", "Z", "voter-1", Role.PUBLIC, 5)

    @pytest.mark.parametrize("candidate_id", ["", None, 3])
    def test_malformed_candidate_id(self, candidate_id):
        with pytest.raises(ValidationError):
            self.ledger.submit("poll-1", candidate_id, "voter-1", Role.PUBLIC, 5)

    def test_unknown_role(self):
        with pytest.raises(ValidationError):
            self.ledger.submit("poll-1", "A", "voter-1", "moderator", 5)

    def test_role_accepts_strings(self):
        assert self.ledger.submit("poll-1", "A", JUDGE_2, "JUDGE", 5) is SubmitOutcome.INSERTED


class TestAuthorization:
    @pytest.fixture(autouse=True)
    def _setup(self, service, poll):
        self.ledger = service.ledger

    def test_public_cannot_submit_as_judge(self):
        with pytest.raises(AuthorizationError):
            self.ledger.submit("poll-1", "A", "voter-1", Role.JUDGE, 5)
        assert self.ledger.contributions_for("poll-1") == []

    def test_judge_cannot_submit_as_public(self):
        with pytest.raises(AuthorizationError):
            self.ledger.submit("poll-1", "A", ADMIN, Role.PUBLIC, 5)

    def test_unknown_identity(self):
        with pytest.raises(AuthorizationError):
            self.ledger.submit("poll-1", "A", "stranger", Role.PUBLIC, 5)


class TestTemporalGating:
    @pytest.fixture(autouse=True)
    def _setup(self, service, poll):
        self.ledger = service.ledger

    @pytest.mark.parametrize(
        "now",
        [START - timedelta(seconds=1), END, END + timedelta(days=3)],
    )
    def test_writes_outside_window_are_refused(self, now):
        with pytest.raises(PollStateError):
            self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 5, now=now)
        assert self.ledger.contributions_for("poll-1") == []

    @pytest.mark.parametrize("now", [START, END - timedelta(microseconds=1)])
    def test_writes_inside_window_succeed(self, now):
        outcome = self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 5, now=now)
        assert outcome is SubmitOutcome.INSERTED

    def test_closed_poll_is_frozen(self, clock):
        self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 5)
        clock.now = END
        with pytest.raises(PollStateError):
            self.ledger.submit("poll-1", "B", "voter-1", Role.PUBLIC, 6)
        assert len(self.ledger.contributions_for("poll-1")) == 1


class TestIdempotence:
    @pytest.fixture(autouse=True)
    def _setup(self, service, poll):
        self.ledger = service.ledger

    def test_same_value_twice(self):
        first = self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 8)
        rows_after_first = self.ledger.contributions_for("poll-1")
        second = self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 8)
        assert first is SubmitOutcome.INSERTED
        assert second is SubmitOutcome.ALREADY_EXISTS
        assert self.ledger.contributions_for("poll-1") == rows_after_first

    def test_int_and_float_of_same_value_are_the_same(self):
        self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 8)
        assert self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 8.0) is SubmitOutcome.ALREADY_EXISTS

    def test_different_value_conflicts_and_keeps_stored_value(self):
        self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 8)
        with pytest.raises(DuplicateContributionConflict) as excinfo:
            self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 3)
        assert excinfo.value.details["stored_value"] == 8.0
        rows = self.ledger.contributions_for("poll-1")
        assert [r.value for r in rows] == [8.0]

    def test_other_candidates_are_independent(self):
        self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 8)
        with pytest.raises(DuplicateContributionConflict):
            self.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 2)
        assert self.ledger.submit("poll-1", "B", "voter-1", Role.PUBLIC, 2) is SubmitOutcome.INSERTED


class TestConcurrency:
    def test_racing_identical_submissions_create_one_row(self, service, poll):
        barrier = threading.Barrier(8)
        outcomes = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            outcome = service.ledger.submit("poll-1", "A", "voter-1", Role.PUBLIC, 6)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(SubmitOutcome.INSERTED) == 1
        assert outcomes.count(SubmitOutcome.ALREADY_EXISTS) == 7
        assert len(service.ledger.contributions_for("poll-1")) == 1

    def test_different_contributors_never_interfere(self, service, poll):
        voters = [f"voter-{i}" for i in range(1, 7)]
        threads = [
            threading.Thread(
                target=service.submit_public_vote,
                args=("poll-1", "A", voter, 5),
            )
            for voter in voters
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert service.get_snapshot("poll-1").get("A").public_count == 6


class TestListeners:
    def test_listener_fires_only_for_inserts(self, service, poll):
        seen = []
        service.ledger.add_listener(seen.append)
        service.submit_public_vote("poll-1", "A", "voter-1", 5)
        service.submit_public_vote("poll-1", "A", "voter-1", 5)
        assert [c.contributor_id for c in seen] == ["voter-1"]

    def test_failing_listener_does_not_fail_the_write(self, service, poll):
        def boom(_):
            raise RuntimeError("listener down")

        service.ledger.add_listener(boom)
        assert service.submit_public_vote("poll-1", "A", "voter-1", 5) is SubmitOutcome.INSERTED
