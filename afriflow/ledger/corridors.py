"""
Corridor registry.

Authoritative table of which (origin, destination) pairs may transact.

Rules:
    - Single-pair edits are NOT mirrored. set_corridor("NG", "BR", True)
      leaves ("BR", "NG") untouched.
    - Bulk initialization IS bidirectional across groups: every ordered
      pair inside the regional group (no self-pairs), plus every
      external↔regional pair in both directions. External↔external pairs
      are not enabled.
    - Corridors are never deleted, only disabled.
    - Reads always see the current table; nothing is cached by callers.
"""

import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from afriflow.core.access import AccessControl, Capability
from afriflow.core.exceptions import UnsupportedCorridor
from afriflow.core.models import decode_corridor, encode_corridor


CorridorKey = Tuple[bytes, bytes]


class CorridorRegistry:

    def __init__(
        self,
        access:    AccessControl,
        on_change: Optional[Callable[[str, str, bool, str], None]] = None,
    ):
        self._access    = access
        self._on_change = on_change
        self._lock      = threading.Lock()
        self._updating  = threading.Lock()
        self._table: Dict[CorridorKey, bool] = {}

    # ── Bootstrap ─────────────────────────────────────────────

    def initialize(self, regional: Iterable[str], external: Iterable[str]) -> int:
        """
        Bulk-enable the default corridor table. Returns the number of
        ordered pairs enabled. Bootstrap only; not capability-gated.
        """
        regional = [encode_corridor(c) for c in regional]
        external = [encode_corridor(c) for c in external]

        pairs: List[CorridorKey] = []
        for origin in regional:
            for destination in regional:
                if origin != destination:
                    pairs.append((origin, destination))
        for ext in external:
            for reg in regional:
                pairs.append((ext, reg))
                pairs.append((reg, ext))

        with self._lock:
            for pair in pairs:
                self._table[pair] = True
        return len(pairs)

    # ── Queries ───────────────────────────────────────────────

    @staticmethod
    def _key(origin: str, destination: str) -> CorridorKey:
        try:
            return encode_corridor(origin), encode_corridor(destination)
        except ValueError as exc:
            raise UnsupportedCorridor(str(exc), {"origin": origin, "destination": destination}) from exc

    def is_supported(self, origin: str, destination: str) -> bool:
        try:
            key = self._key(origin, destination)
        except UnsupportedCorridor:
            return False
        with self._lock:
            return self._table.get(key, False)

    def require_supported(self, origin: str, destination: str) -> None:
        if not self.is_supported(origin, destination):
            raise UnsupportedCorridor(
                "Corridor not supported",
                {"origin": origin, "destination": destination},
            )

    def list_enabled(self) -> List[Tuple[str, str]]:
        with self._lock:
            items = [k for k, enabled in self._table.items() if enabled]
        return sorted((decode_corridor(o), decode_corridor(d)) for o, d in items)

    # ── Mutation ──────────────────────────────────────────────

    def set_corridor(self, actor: str, origin: str, destination: str, enabled: bool) -> None:
        """
        Enable or disable exactly one ordered pair. OPERATOR only. The change
        is reported to on_change before it takes effect; if that raises, the
        table is untouched.
        """
        self._access.require(actor, Capability.OPERATOR)
        key = self._key(origin, destination)
        with self._updating:
            if self._on_change is not None:
                self._on_change(origin, destination, bool(enabled), actor)
            with self._lock:
                self._table[key] = bool(enabled)

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for enabled in self._table.values() if enabled)
