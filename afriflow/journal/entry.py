"""
afriflow/journal/entry.py

Journal entry - v1

═══════════════════════════════════════════════════════════════════
JOURNAL CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1 - Signing
    bytes_signed = canonicalize(entry.to_signing_dict())
    algorithm    = Ed25519, base64url without padding

CONTRACT 2 - Chain
    causal_hash  = SHA-256(canonicalize(prev.to_signing_dict()))
    first entry  = GENESIS_HASH ("0" * 64)

CONTRACT 3 - Timestamp
    YYYY-MM-DDTHH:MM:SS.mmmZ from afriflow.core.time.wire_timestamp()

CONTRACT 4 - Nonce
    32 random hex chars per entry. Uniqueness, not ordering.
    sequence is the ordering.

CONTRACT 5 - Vocabulary
    record_type must be a RecordType constant (ValueError at create()).
═══════════════════════════════════════════════════════════════════
"""

import re
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from afriflow.core.canonical import canonical_hash, canonicalize
from afriflow.core.crypto import Ed25519KeyManager
from afriflow.core.time import wire_timestamp


JOURNAL_VERSION = "1"
GENESIS_HASH    = "0" * 64

_NONCE_HEX_LENGTH      = 32
_PUBLIC_KEY_HEX_LENGTH = 64

_TIMESTAMP_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"
)
_HEX_RE = re.compile(r"^[0-9a-f]+$")


class RecordType:
    PAYMENT_INITIATED   = "payment_initiated"
    PAYMENT_COMPLETED   = "payment_completed"
    PAYMENT_FAILED      = "payment_failed"
    SETTLEMENT_FALLBACK = "settlement_fallback"
    ESCROW_CREATED      = "escrow_created"
    MILESTONE_RELEASED  = "milestone_released"
    MILESTONE_DISPUTED  = "milestone_disputed"
    DISPUTE_RESOLVED    = "dispute_resolved"
    ESCROW_COMPLETED    = "escrow_completed"
    ESCROW_CANCELLED    = "escrow_cancelled"
    CORRIDOR_UPDATED    = "corridor_updated"
    CONFIG_UPDATED      = "config_updated"


VALID_RECORD_TYPES = frozenset(
    value for name, value in vars(RecordType).items() if name.isupper()
)


@dataclass
class SchemaValidationResult:
    valid:  bool
    errors: List[str]

    def __bool__(self) -> bool:
        return self.valid


def _is_hex(value: Any, length: int) -> bool:
    return isinstance(value, str) and len(value) == length and bool(_HEX_RE.match(value))


@dataclass
class JournalEntry:

    journal_version:   str
    record_id:         str
    record_type:       str
    actor:             str
    signer_public_key: str
    sequence:          int
    nonce:             str
    timestamp:         str
    causal_hash:       str
    payload:           Dict[str, Any]
    signature:         Optional[str] = None

    # ── Constructor ───────────────────────────────────────────

    @classmethod
    def create(
        cls,
        record_type:       str,
        actor:             str,
        signer_public_key: str,
        sequence:          int,
        payload:           Dict[str, Any],
        prev:              Optional["JournalEntry"] = None,
    ) -> "JournalEntry":
        """
        Unsigned entry with the correct causal_hash. Follow with .sign():

            entry = JournalEntry.create(...).sign(key_manager)
        """
        if record_type not in VALID_RECORD_TYPES:
            raise ValueError(
                f"Invalid record_type '{record_type}'. "
                f"Valid: {sorted(VALID_RECORD_TYPES)}"
            )
        if not isinstance(payload, dict):
            raise TypeError(f"payload must be dict, got {type(payload).__name__}")
        if not isinstance(sequence, int) or sequence < 0:
            raise ValueError(f"sequence must be non-negative int, got {sequence!r}")
        if not _is_hex(signer_public_key, _PUBLIC_KEY_HEX_LENGTH):
            raise ValueError("signer_public_key must be 64 lowercase hex chars")

        return cls(
            journal_version=   JOURNAL_VERSION,
            record_id=         f"jr-{uuid.uuid4()}",
            record_type=       record_type,
            actor=             actor,
            signer_public_key= signer_public_key,
            sequence=          sequence,
            nonce=             secrets.token_hex(_NONCE_HEX_LENGTH // 2),
            timestamp=         wire_timestamp(),
            causal_hash=       cls.compute_causal_hash(prev),
            payload=           payload,
            signature=         None,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalEntry":
        """
        Deserialize a JSONL line. Trusts persisted data; callers run
        validate_schema() before relying on it. Raises KeyError on
        missing fields.
        """
        return cls(
            journal_version=   data["journal_version"],
            record_id=         data["record_id"],
            record_type=       data["record_type"],
            actor=             data["actor"],
            signer_public_key= data["signer_public_key"],
            sequence=          data["sequence"],
            nonce=             data["nonce"],
            timestamp=         data["timestamp"],
            causal_hash=       data["causal_hash"],
            payload=           data.get("payload", {}),
            signature=         data.get("signature"),
        )

    # ── Schema ────────────────────────────────────────────────

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []

        if self.journal_version != JOURNAL_VERSION:
            errors.append(
                f"journal_version: expected '{JOURNAL_VERSION}', got '{self.journal_version}'"
            )
        if self.record_type not in VALID_RECORD_TYPES:
            errors.append(f"record_type '{self.record_type}' not in valid set")
        if not isinstance(self.record_id, str) or not self.record_id.startswith("jr-"):
            errors.append(f"record_id must start with 'jr-', got {self.record_id!r}")
        if not isinstance(self.actor, str) or not self.actor:
            errors.append("actor must be a non-empty string")
        if not _is_hex(self.signer_public_key, _PUBLIC_KEY_HEX_LENGTH):
            errors.append("signer_public_key must be 64 lowercase hex chars")
        if not isinstance(self.sequence, int) or self.sequence < 0:
            errors.append(f"sequence must be non-negative int, got {self.sequence!r}")
        if not _is_hex(self.nonce, _NONCE_HEX_LENGTH):
            errors.append(f"nonce must be {_NONCE_HEX_LENGTH} lowercase hex chars")
        if not isinstance(self.timestamp, str) or not _TIMESTAMP_RE.match(self.timestamp):
            errors.append(f"timestamp {self.timestamp!r} is not YYYY-MM-DDTHH:MM:SS.mmmZ")
        if not _is_hex(self.causal_hash, 64):
            errors.append("causal_hash must be 64 lowercase hex chars")
        if not isinstance(self.payload, dict):
            errors.append(f"payload must be dict, got {type(self.payload).__name__}")

        return SchemaValidationResult(valid=not errors, errors=errors)

    # ── Canonical forms ───────────────────────────────────────

    def to_signing_dict(self) -> Dict[str, Any]:
        """Every field except signature. Also the chain input."""
        return {
            "actor":             self.actor,
            "causal_hash":       self.causal_hash,
            "journal_version":   self.journal_version,
            "nonce":             self.nonce,
            "payload":           self.payload,
            "record_id":         self.record_id,
            "record_type":       self.record_type,
            "sequence":          self.sequence,
            "signer_public_key": self.signer_public_key,
            "timestamp":         self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSONL persistence form."""
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    def canonical_bytes_for_signing(self) -> bytes:
        return canonicalize(self.to_signing_dict())

    @staticmethod
    def compute_causal_hash(prev: Optional["JournalEntry"]) -> str:
        if prev is None:
            return GENESIS_HASH
        return canonical_hash(prev.to_signing_dict())

    # ── Signing / verification ────────────────────────────────

    def sign(self, key_manager: Ed25519KeyManager) -> "JournalEntry":
        self.signature = key_manager.sign(self.canonical_bytes_for_signing())
        return self

    def verify_signature(self) -> bool:
        if not self.signature:
            return False
        return Ed25519KeyManager.verify_detached(
            self.canonical_bytes_for_signing(), self.signature, self.signer_public_key
        )

    def verify_chain(self, prev: Optional["JournalEntry"]) -> bool:
        return self.causal_hash == self.compute_causal_hash(prev)
