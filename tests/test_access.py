"""Tests for capability resolution and contributor provisioning."""

import pytest

from scoring.access import AccessController
from scoring.errors import AuthorizationError, ValidationError
from scoring.models import Identity, Role
from tests.conftest import ADMIN, END, JUDGE_2, JUDGE_3, START, make_candidates


class TestResolve:
    @pytest.fixture(autouse=True)
    def _setup(self, service, poll):
        self.access = service.access
        self.store = service.store

    def test_admin_is_implicit_first_judge(self):
        caps = self.access.resolve(ADMIN, "poll-1")
        assert caps.is_judge and not caps.is_public
        assert caps.judge_slot == 1

    def test_assigned_judges_get_slots_two_and_three(self):
        assert self.access.resolve(JUDGE_2, "poll-1").judge_slot == 2
        assert self.access.resolve(JUDGE_3, "poll-1").judge_slot == 3

    def test_other_identity_is_public(self):
        caps = self.access.resolve("voter-1", "poll-1")
        assert caps.is_public and not caps.is_judge
        assert caps.judge_slot is None
        assert caps.allows(Role.PUBLIC)
        assert not caps.allows(Role.JUDGE)

    def test_judge_cannot_act_as_public(self):
        caps = self.access.resolve(JUDGE_2, "poll-1")
        assert not caps.allows(Role.PUBLIC)

    def test_unknown_identity_is_refused(self):
        with pytest.raises(AuthorizationError):
            self.access.resolve("stranger", "poll-1")

    @pytest.mark.parametrize("contributor_id", ["", "   ", None])
    def test_unauthenticated_is_refused(self, contributor_id):
        with pytest.raises(AuthorizationError):
            self.access.resolve(contributor_id, "poll-1")

    def test_unknown_poll_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            self.access.resolve("voter-1", "missing")

    def test_first_contact_provisions_contributor(self):
        assert self.store.get_contributor("voter-2") is None
        self.access.resolve("voter-2", "poll-1")
        record = self.store.get_contributor("voter-2")
        assert record is not None
        assert record.email == "voter-2@example.edu"

    def test_provisioning_is_idempotent(self):
        self.access.resolve("voter-3", "poll-1")
        first = self.store.get_contributor("voter-3")
        self.access.resolve("voter-3", "poll-1")
        assert self.store.get_contributor("voter-3") == first
        assert self.store.ensure_contributor(Identity("voter-3", "Voter")) is False

    def test_roles_differ_per_poll(self, service):
        """A judge in one poll is a public contributor in another."""
        service.register_poll(
            poll_id="poll-2",
            title="Other poll",
            start_at=START,
            end_at=END,
            admin_id="voter-1",
            judge_ids=["voter-4", "voter-5"],
            candidates=make_candidates("X", "Y"),
        )
        assert self.access.resolve(ADMIN, "poll-2").is_public
        assert self.access.resolve("voter-1", "poll-2").judge_slot == 1


class TestEmailDomainGate:
    def test_public_outside_domain_is_refused(self, store, identities, service, poll):
        access = AccessController(store, identities, allowed_email_domain="example.org")
        with pytest.raises(AuthorizationError):
            access.resolve("voter-1", "poll-1")

    def test_public_inside_domain_is_allowed(self, store, identities, service, poll):
        access = AccessController(store, identities, allowed_email_domain="EXAMPLE.edu")
        assert access.resolve("voter-1", "poll-1").is_public

    def test_judges_are_not_domain_gated(self, store, identities, service, poll):
        access = AccessController(store, identities, allowed_email_domain="example.org")
        assert access.resolve(JUDGE_2, "poll-1").is_judge
