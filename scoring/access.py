"""
Contributor access resolution.

Every write asks the AccessController once and carries the returned
Capabilities value; callers never re-derive roles on their own.

Resolution rules:
- The poll admin is the implicit first judge (slot 1)
- The two assigned judges hold slots 2 and 3
- Any other authenticated identity is a public contributor
- Unknown identities are refused
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional, Set

from scoring.errors import AuthorizationError, ValidationError
from scoring.models import Capabilities, Identity, Poll
from shared.logging.logger import get_logger
from shared.storage.contributions import ContributionStore

log = get_logger("scoring.access")

IdentityLookup = Callable[[str], Optional[Identity]]


class IdentityDirectory:
    """
    In-process view of identities authenticated by the upstream provider.

    The session layer registers identities as they sign in; the access
    controller only ever looks them up.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._identities: Dict[str, Identity] = {}

    def register(self, identity: Identity) -> None:
        with self._lock:
            self._identities[identity.contributor_id] = identity

    def forget(self, contributor_id: str) -> None:
        with self._lock:
            self._identities.pop(contributor_id, None)

    def lookup(self, contributor_id: str) -> Optional[Identity]:
        with self._lock:
            return self._identities.get(contributor_id)

    def __call__(self, contributor_id: str) -> Optional[Identity]:
        return self.lookup(contributor_id)


class AccessController:
    def __init__(
        self,
        store: ContributionStore,
        identities: IdentityLookup,
        *,
        allowed_email_domain: Optional[str] = None,
    ):
        self._store = store
        self._identities = identities
        self._allowed_email_domain = (allowed_email_domain or "").lower() or None
        self._provisioned: Set[str] = set()
        self._lock = threading.Lock()

    # --------------------------------------------------
    # Provisioning
    # --------------------------------------------------

    def _provision(self, identity: Identity) -> None:
        with self._lock:
            if identity.contributor_id in self._provisioned:
                return

        created = self._store.ensure_contributor(identity)
        if created:
            log.info(f"Provisioned contributor {identity.contributor_id}")

        with self._lock:
            self._provisioned.add(identity.contributor_id)

    # --------------------------------------------------
    # Resolution
    # --------------------------------------------------

    def _authenticate(self, contributor_id: str) -> Identity:
        if not isinstance(contributor_id, str) or not contributor_id.strip():
            raise AuthorizationError("Contributor is not authenticated")

        identity = self._identities(contributor_id)
        if identity is None:
            raise AuthorizationError(
                f"Unknown contributor {contributor_id}",
                details={"contributor_id": contributor_id},
            )
        return identity

    def _public_allowed(self, identity: Identity) -> bool:
        if not self._allowed_email_domain:
            return True
        email = (identity.email or "").lower()
        return email.endswith(f"@{self._allowed_email_domain}")

    def capabilities_for(self, identity: Identity, poll: Poll) -> Capabilities:
        slot = poll.judge_slot(identity.contributor_id)
        if slot is not None:
            return Capabilities(is_judge=True, is_public=False, judge_slot=slot)

        if not self._public_allowed(identity):
            raise AuthorizationError(
                f"Contributor {identity.contributor_id} is outside the allowed email domain",
                details={"contributor_id": identity.contributor_id},
            )
        return Capabilities(is_judge=False, is_public=True)

    def resolve(self, contributor_id: str, poll_id: str) -> Capabilities:
        identity = self._authenticate(contributor_id)

        poll = self._store.get_poll(poll_id)
        if poll is None:
            raise ValidationError(
                f"Unknown poll {poll_id}",
                details={"poll_id": poll_id},
            )

        self._provision(identity)
        capabilities = self.capabilities_for(identity, poll)
        log.debug(
            f"[{poll_id}] {contributor_id} resolved as {capabilities.role.value}"
            + (f" (slot {capabilities.judge_slot})" if capabilities.judge_slot else "")
        )
        return capabilities


__all__ = ["AccessController", "IdentityDirectory", "IdentityLookup"]
