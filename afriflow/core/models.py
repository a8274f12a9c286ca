"""
afriflow/core/models.py

Settlement data model.

═══════════════════════════════════════════════════════════════════
RECORD CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1 - Amounts
    int atomic units only. fee + net_amount == amount for every Payment.

CONTRACT 2 - Payment identity
    payment_id = "0x" + SHA-256(JCS({sender, counter, timestamp, entropy}))
    counter    = per-sender monotonic integer
    entropy    = 16 random bytes (hex) from secrets

CONTRACT 3 - Terminal records
    Payment is frozen. A status change produces a new instance and is only
    legal from PENDING. Escrow/Milestone are mutated by the escrow state
    machine alone; callers receive snapshots.

CONTRACT 4 - Corridors
    Codes are str, stored as bytes32 (UTF-8, right zero-padded, ≤ 31 bytes).
    Case and bytes are preserved.

CONTRACT 5 - Metadata
    Opaque str. Stored and returned verbatim, never parsed.
═══════════════════════════════════════════════════════════════════
"""

import base64
import json
import secrets
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from eth_utils import is_address, to_checksum_address

from afriflow.core.canonical import canonical_id
from afriflow.core.exceptions import InvalidRecipient


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

BPS_DENOMINATOR = 10_000

_CORRIDOR_BYTES = 32

# Entropy mixed into every payment id: 16 bytes = 32 hex chars
_ID_ENTROPY_BYTES = 16


# ─────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────

class PaymentStatus(Enum):
    PENDING   = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED    = "FAILED"
    REFUNDED  = "REFUNDED"
    CANCELLED = "CANCELLED"


class PaymentKind(Enum):
    INSTANT         = "INSTANT"
    BATCH           = "BATCH"
    AGENT_TRIGGERED = "AGENT_TRIGGERED"


class EscrowStatus(Enum):
    ACTIVE    = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED  = "DISPUTED"


class MilestoneStatus(Enum):
    PENDING  = "PENDING"
    RELEASED = "RELEASED"
    DISPUTED = "DISPUTED"
    REFUNDED = "REFUNDED"


TERMINAL_MILESTONE_STATES = frozenset({MilestoneStatus.RELEASED, MilestoneStatus.REFUNDED})


# ─────────────────────────────────────────────────────────────
# Addresses and corridors
# ─────────────────────────────────────────────────────────────

def normalize_address(value: Any, error=InvalidRecipient, field_name: str = "address") -> str:
    """
    Return the EIP-55 checksum form of a 20-byte hex address.
    Raises `error` if value is not an address.
    """
    if not isinstance(value, str) or not is_address(value):
        raise error(f"Invalid {field_name}", {field_name: value})
    return to_checksum_address(value)


def encode_corridor(code: str) -> bytes:
    """
    bytes32 form of a corridor code: UTF-8, right zero-padded.
    Raises ValueError for empty codes or codes longer than 31 bytes.
    """
    if not isinstance(code, str) or not code:
        raise ValueError(f"Corridor code must be a non-empty str, got {code!r}")
    raw = code.encode("utf-8")
    if len(raw) > _CORRIDOR_BYTES - 1:
        raise ValueError(
            f"Corridor code too long: {len(raw)} bytes (max {_CORRIDOR_BYTES - 1})"
        )
    return raw.ljust(_CORRIDOR_BYTES, b"\x00")


def decode_corridor(raw: bytes) -> str:
    """Inverse of encode_corridor()."""
    if len(raw) != _CORRIDOR_BYTES:
        raise ValueError(f"Corridor must be {_CORRIDOR_BYTES} bytes, got {len(raw)}")
    return raw.rstrip(b"\x00").decode("utf-8")


# ─────────────────────────────────────────────────────────────
# Payment
# ─────────────────────────────────────────────────────────────

def derive_payment_id(
    sender:    str,
    counter:   int,
    timestamp: int,
    entropy:   Optional[str] = None,
) -> str:
    """
    Payment id per CONTRACT 2. Pass `entropy` only for reproducible fixtures.
    """
    if entropy is None:
        entropy = secrets.token_hex(_ID_ENTROPY_BYTES)
    return canonical_id({
        "counter":   counter,
        "entropy":   entropy,
        "sender":    sender,
        "timestamp": timestamp,
    })


@dataclass(frozen=True)
class Payment:
    payment_id:           str
    sender:               str
    recipient:            str
    token:                str
    amount:               int
    fee:                  int
    origin_corridor:      str
    destination_corridor: str
    kind:                 PaymentKind
    created_at:           int
    status:               PaymentStatus = PaymentStatus.PENDING
    completed_at:         int = 0
    metadata:             str = ""
    settlement_ref:       Optional[str] = None
    used_fallback:        bool = False
    failure_reason:       Optional[str] = None
    valid_before:         int = 0

    @property
    def net_amount(self) -> int:
        return self.amount - self.fee

    def is_terminal(self) -> bool:
        return self.status != PaymentStatus.PENDING

    def completed(
        self,
        completed_at:   int,
        settlement_ref: Optional[str] = None,
        used_fallback:  bool = False,
    ) -> "Payment":
        return replace(
            self,
            status=         PaymentStatus.COMPLETED,
            completed_at=   completed_at,
            settlement_ref= settlement_ref,
            used_fallback=  used_fallback,
        )

    def failed(self, reason: str, at: int) -> "Payment":
        return replace(
            self,
            status=         PaymentStatus.FAILED,
            completed_at=   at,
            failure_reason= reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paymentId":           self.payment_id,
            "sender":              self.sender,
            "recipient":           self.recipient,
            "token":               self.token,
            "amount":              self.amount,
            "fee":                 self.fee,
            "netAmount":           self.net_amount,
            "originCorridor":      self.origin_corridor,
            "destinationCorridor": self.destination_corridor,
            "status":              self.status.value,
            "kind":                self.kind.value,
            "createdAt":           self.created_at,
            "completedAt":         self.completed_at,
            "metadata":            self.metadata,
            "settlementRef":       self.settlement_ref,
            "usedFallback":        self.used_fallback,
            "failureReason":       self.failure_reason,
        }


# ─────────────────────────────────────────────────────────────
# Escrow
# ─────────────────────────────────────────────────────────────

@dataclass
class Milestone:
    description:  str
    amount:       int
    release_time: int = 0
    status:       MilestoneStatus = MilestoneStatus.PENDING
    completed_at: int = 0

    @property
    def auto_release(self) -> bool:
        return self.release_time > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "amount":      self.amount,
            "releaseTime": self.release_time,
            "status":      self.status.value,
            "completedAt": self.completed_at,
        }


@dataclass
class Escrow:
    escrow_id:       int
    sender:          str
    recipient:       str
    token:           str
    total_amount:    int
    created_at:      int
    milestones:      List[Milestone] = field(default_factory=list)
    released_amount: int = 0
    refunded_amount: int = 0
    fee:             int = 0
    status:          EscrowStatus = EscrowStatus.ACTIVE
    completed_at:    int = 0
    metadata:        str = ""

    @property
    def milestone_count(self) -> int:
        return len(self.milestones)

    @property
    def held_amount(self) -> int:
        """Amount still in custody for this escrow."""
        return self.total_amount - self.released_amount - self.refunded_amount

    def is_terminal(self) -> bool:
        return self.status in (EscrowStatus.COMPLETED, EscrowStatus.CANCELLED)

    def all_milestones_settled(self) -> bool:
        return all(m.status in TERMINAL_MILESTONE_STATES for m in self.milestones)

    def snapshot(self) -> "Escrow":
        return replace(self, milestones=[replace(m) for m in self.milestones])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "escrowId":       self.escrow_id,
            "sender":         self.sender,
            "recipient":      self.recipient,
            "token":          self.token,
            "totalAmount":    self.total_amount,
            "releasedAmount": self.released_amount,
            "fee":            self.fee,
            "status":         self.status.value,
            "createdAt":      self.created_at,
            "completedAt":    self.completed_at,
            "milestoneCount": self.milestone_count,
            "metadata":       self.metadata,
        }


# ─────────────────────────────────────────────────────────────
# Authorization (EIP-712 TransferWithAuthorization)
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Authorization:
    """
    Single-use, time-boxed capability to move `value` from `from_address`
    to `to`. Valid while valid_after <= now < valid_before.
    """
    from_address: str
    to:           str
    value:        int
    valid_after:  int
    valid_before: int
    nonce:        str
    signature:    str

    def is_valid_at(self, now: int) -> bool:
        return self.valid_after <= now < self.valid_before

    @property
    def _sig_bytes(self) -> bytes:
        return bytes.fromhex(self.signature.removeprefix("0x"))

    @property
    def r(self) -> str:
        return "0x" + self._sig_bytes[0:32].hex()

    @property
    def s(self) -> str:
        return "0x" + self._sig_bytes[32:64].hex()

    @property
    def v(self) -> int:
        return self._sig_bytes[64]

    def to_wire_dict(self) -> Dict[str, Any]:
        return {
            "from":        self.from_address,
            "to":          self.to,
            "value":       str(self.value),
            "validAfter":  str(self.valid_after),
            "validBefore": str(self.valid_before),
            "nonce":       self.nonce,
            "v":           self.v,
            "r":           self.r,
            "s":           self.s,
        }

    def encode_header(self) -> str:
        """Base64 of the JSON wire dict, as sent in the X-PAYMENT header."""
        raw = json.dumps(self.to_wire_dict(), separators=(",", ":"), sort_keys=True)
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class SettlementResult:
    """What the caller of the agentic path gets back."""
    payment:        Payment
    settlement_ref: str
    used_fallback:  bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment":       self.payment.to_dict(),
            "settlementRef": self.settlement_ref,
            "usedFallback":  self.used_fallback,
        }
