"""
Capability checks for AfriFlow.

One check helper consulted at the top of every mutating operation:

    access.require(actor, Capability.OPERATOR)

Sender/recipient relationships are checked against the record itself by the
caller. This module only knows about granted capabilities.
"""

import threading
from enum import Enum
from typing import Dict, Set

from afriflow.core.exceptions import NotAuthorized, ServicePaused
from afriflow.core.models import normalize_address


class Capability(Enum):
    ADMIN    = "admin"
    OPERATOR = "operator"
    AGENT    = "agent"
    ARBITER  = "arbiter"


class AccessControl:
    """
    Capability table keyed by checksum address.

    Thread-safe. Reads take the lock too so a revoke is never observed
    half-applied.
    """

    def __init__(self, admin: str):
        self._lock = threading.Lock()
        self._grants: Dict[str, Set[Capability]] = {}
        self._grants[normalize_address(admin, field_name="admin")] = {Capability.ADMIN}

    def has_capability(self, actor: str, *required: Capability) -> bool:
        """True if actor holds ANY of the required capabilities."""
        if not required:
            return True
        try:
            actor = normalize_address(actor, error=NotAuthorized, field_name="actor")
        except NotAuthorized:
            return False
        with self._lock:
            held = self._grants.get(actor, set())
            return any(cap in held for cap in required)

    def require(self, actor: str, *required: Capability) -> None:
        if not self.has_capability(actor, *required):
            raise NotAuthorized(
                "Missing capability",
                {
                    "actor":    actor,
                    "required": "|".join(c.value for c in required),
                },
            )

    def grant(self, admin: str, actor: str, capability: Capability) -> None:
        self.require(admin, Capability.ADMIN)
        actor = normalize_address(actor, field_name="actor")
        with self._lock:
            self._grants.setdefault(actor, set()).add(capability)

    def revoke(self, admin: str, actor: str, capability: Capability) -> None:
        self.require(admin, Capability.ADMIN)
        actor = normalize_address(actor, field_name="actor")
        with self._lock:
            self._grants.get(actor, set()).discard(capability)


class PauseSwitch:
    """
    Service-wide circuit breaker. While paused every mutating payment and
    escrow operation raises ServicePaused; queries are unaffected.
    """

    def __init__(self, access: AccessControl) -> None:
        self._access = access
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self, actor: str) -> None:
        self._access.require(actor, Capability.OPERATOR)
        self._paused = True

    def unpause(self, actor: str) -> None:
        self._access.require(actor, Capability.OPERATOR)
        self._paused = False

    def ensure_active(self) -> None:
        if self._paused:
            raise ServicePaused("Service is paused")
