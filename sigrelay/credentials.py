"""Host password checks for the relay."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from .constants import NS_CREDENTIAL
from .util import KeyedLocks, fmt_id

if TYPE_CHECKING:
    from .service import RelayService


class VerifyResult(enum.Enum):
    ANONYMOUS = "anonymous"
    BOOTSTRAPPED = "bootstrapped"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def accepted(self) -> bool:
        return self is not VerifyResult.REJECTED


class CredentialVerifier:
    """
    Validates or initializes host passwords.

    Handles:
    - Anonymous host sessions (no password supplied, nothing checked)
    - First-login bootstrap (the supplied password is stored)
    - Exact-match checks against the stored password on later logins

    A stored password is never changed by this class.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.credentials")
        self._locks = KeyedLocks()

    async def verify(self, host_id: str, supplied: str | None) -> VerifyResult:
        if not supplied:
            self.log.debug("No password supplied host=%s; skipping check", fmt_id(host_id))
            return VerifyResult.ANONYMOUS

        # Concurrent first logins for one host must not both bootstrap.
        async with self._locks.hold(host_id):
            stored = await self.hub.store.get(NS_CREDENTIAL, host_id)
            if not stored:
                await self.hub.store.put(NS_CREDENTIAL, host_id, supplied)
                self.log.info("Stored first credential host=%s", fmt_id(host_id))
                return VerifyResult.BOOTSTRAPPED

        if stored != supplied:
            self.hub.stats_manager.inc("login_failures")
            self.log.warning("Password mismatch host=%s", fmt_id(host_id))
            return VerifyResult.REJECTED

        return VerifyResult.ACCEPTED
