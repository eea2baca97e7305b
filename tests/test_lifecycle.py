"""Tests for clock-derived poll state."""

from datetime import datetime, timedelta

import pytest

from scoring.errors import PollStateError
from scoring.lifecycle import PollLifecycleManager
from scoring.models import Poll, PollState
from tests.conftest import END, START, FixedClock


def make_poll():
    return Poll(
        poll_id="p",
        title="Finals",
        start_at=START,
        end_at=END,
        admin_id="admin",
        judge_ids=("j2", "j3"),
    )


class TestCurrentState:
    def setup_method(self):
        self.poll = make_poll()
        self.manager = PollLifecycleManager()

    def test_before_start_is_scheduled(self):
        now = START - timedelta(seconds=1)
        assert self.manager.current_state(self.poll, now) is PollState.SCHEDULED

    def test_start_boundary_is_active(self):
        assert self.manager.current_state(self.poll, START) is PollState.ACTIVE

    def test_just_before_end_is_active(self):
        now = END - timedelta(microseconds=1)
        assert self.manager.current_state(self.poll, now) is PollState.ACTIVE

    def test_end_boundary_is_closed(self):
        assert self.manager.current_state(self.poll, END) is PollState.CLOSED

    def test_naive_datetime_is_treated_as_utc(self):
        naive = datetime(2026, 3, 1, 18, 30)
        assert self.manager.current_state(self.poll, naive) is PollState.ACTIVE

    def test_uses_clock_when_now_omitted(self):
        clock = FixedClock(END + timedelta(days=1))
        manager = PollLifecycleManager(clock)
        assert manager.current_state(self.poll) is PollState.CLOSED

    def test_state_follows_the_clock_without_transitions(self):
        """Nothing is cached: moving the clock moves the state."""
        clock = FixedClock(START - timedelta(minutes=5))
        manager = PollLifecycleManager(clock)
        assert manager.current_state(self.poll) is PollState.SCHEDULED
        clock.now = START + timedelta(minutes=5)
        assert manager.current_state(self.poll) is PollState.ACTIVE
        clock.now = END
        assert manager.current_state(self.poll) is PollState.CLOSED


class TestEnsureWritable:
    def setup_method(self):
        self.poll = make_poll()
        self.manager = PollLifecycleManager()

    def test_active_is_writable(self):
        self.manager.ensure_writable(self.poll, START + timedelta(minutes=1))

    @pytest.mark.parametrize("now", [START - timedelta(hours=1), END, END + timedelta(hours=1)])
    def test_outside_window_raises(self, now):
        with pytest.raises(PollStateError) as excinfo:
            self.manager.ensure_writable(self.poll, now)
        assert excinfo.value.details["poll_id"] == "p"
