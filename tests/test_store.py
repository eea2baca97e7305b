"""Tests for the SQLite contribution store."""

import sqlite3
from dataclasses import replace

import pytest

from scoring.errors import StorageError, ValidationError
from scoring.models import Contribution, Identity, Poll, Role
from shared.storage.contributions import ContributionStore
from tests.conftest import ADMIN, END, JUDGE_2, JUDGE_3, START, make_candidates


def make_poll(poll_id="poll-1"):
    return Poll(
        poll_id=poll_id,
        title="Finals",
        start_at=START,
        end_at=END,
        admin_id=ADMIN,
        judge_ids=(JUDGE_2, JUDGE_3),
        description="Season finals",
    )


def candidates_for(poll_id, *names):
    return [replace(c, poll_id=poll_id) for c in make_candidates(*names)]


class TestPolls:
    def test_poll_round_trip(self, store):
        poll = make_poll()
        store.save_poll(poll, candidates_for("poll-1", "A", "B"))

        assert store.get_poll("poll-1") == poll
        assert [c.candidate_id for c in store.list_candidates("poll-1")] == ["A", "B"]
        assert store.get_candidate("poll-1", "B").position == 2
        assert store.get_candidate("poll-1", "Z") is None
        assert store.list_poll_ids() == ["poll-1"]

    def test_missing_poll(self, store):
        assert store.get_poll("missing") is None

    def test_duplicate_poll_is_rejected(self, store):
        store.save_poll(make_poll(), candidates_for("poll-1", "A", "B"))
        with pytest.raises(ValidationError):
            store.save_poll(make_poll(), candidates_for("poll-1", "C", "D"))

    def test_duplicate_position_rejects_whole_poll(self, store):
        candidates = candidates_for("poll-1", "A", "B")
        candidates[1] = replace(candidates[1], position=1)
        with pytest.raises(ValidationError):
            store.save_poll(make_poll(), candidates)
        assert store.get_poll("poll-1") is None


class TestContributions:
    @pytest.fixture(autouse=True)
    def _setup(self, store):
        self.store = store
        store.save_poll(make_poll(), candidates_for("poll-1", "A", "B"))

    def test_insert_then_duplicate(self):
        row = Contribution("poll-1", "A", "voter-1", Role.PUBLIC, 7.0)
        inserted, stored = self.store.insert_contribution(row)
        assert inserted and stored == row

        inserted, stored = self.store.insert_contribution(replace(row, value=2.0))
        assert not inserted
        assert stored.value == 7.0
        assert self.store.count_contributions("poll-1") == 1

    def test_unknown_candidate_is_rejected_by_storage(self):
        row = Contribution("poll-1", "ghost", "voter-1", Role.PUBLIC, 7.0)
        with pytest.raises(ValidationError):
            self.store.insert_contribution(row)

    def test_contributions_keep_insert_order(self):
        for contributor_id, candidate_id in [("v1", "B"), ("v2", "A"), ("v3", "B")]:
            self.store.insert_contribution(
                Contribution("poll-1", candidate_id, contributor_id, Role.PUBLIC, 5.0)
            )
        rows = self.store.contributions_for("poll-1")
        assert [r.contributor_id for r in rows] == ["v1", "v2", "v3"]
        assert self.store.candidates_scored_by("poll-1", "v3") == {"B"}

    def test_get_contribution(self):
        row = Contribution("poll-1", "A", ADMIN, Role.JUDGE, 9.5)
        self.store.insert_contribution(row)
        assert self.store.get_contribution("poll-1", "A", ADMIN).role is Role.JUDGE
        assert self.store.get_contribution("poll-1", "B", ADMIN) is None

    def test_value_range_is_enforced_by_schema(self):
        with sqlite3.connect(self.store.db_path) as conn:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO contributions (poll_id, candidate_id, contributor_id, role, value, created_at) "
                    "VALUES ('poll-1', 'A', 'x', 'public', 11, '2026-03-01T18:00:00Z')"
                )


class TestContributors:
    def test_ensure_contributor_is_idempotent(self, store):
        identity = Identity("voter-1", "Voter One", "voter-1@example.edu")
        assert store.ensure_contributor(identity) is True
        assert store.ensure_contributor(replace(identity, display_name="Changed")) is False
        assert store.get_contributor("voter-1").display_name == "Voter One"

    def test_display_name_falls_back_to_email(self, store):
        store.ensure_contributor(Identity("voter-2", "", "v2@example.edu"))
        assert store.get_contributor("voter-2").display_name == "v2@example.edu"


class TestStorageFaults:
    def test_unopenable_database_raises_storage_error(self, tmp_path):
        store = ContributionStore(tmp_path / "scoring.db")
        store._db_path = tmp_path / "missing-dir" / "scoring.db"
        with pytest.raises(StorageError):
            store.get_poll("poll-1")
