"""Poll state derived from the wall clock.

States are never stored:

- SCHEDULED : now < start_at
- ACTIVE    : start_at <= now < end_at
- CLOSED    : now >= end_at

Every decision point re-derives the state, so there is no transition
operation and nothing to keep in sync with the clock.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from scoring.errors import PollStateError
from scoring.models import Poll, PollState, ensure_utc, to_iso

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PollLifecycleManager:
    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def current_state(self, poll: Poll, now: Optional[datetime] = None) -> PollState:
        moment = ensure_utc(now) if now is not None else self.now()
        if moment < ensure_utc(poll.start_at):
            return PollState.SCHEDULED
        if moment < ensure_utc(poll.end_at):
            return PollState.ACTIVE
        return PollState.CLOSED

    def ensure_writable(self, poll: Poll, now: Optional[datetime] = None) -> None:
        state = self.current_state(poll, now)
        if state is not PollState.ACTIVE:
            raise PollStateError(
                f"Poll {poll.poll_id} is {state.value}; writes are only accepted while active",
                details={
                    "poll_id": poll.poll_id,
                    "state": state.value,
                    "start_at": to_iso(poll.start_at),
                    "end_at": to_iso(poll.end_at),
                },
            )


__all__ = ["PollLifecycleManager", "Clock", "utc_now"]
