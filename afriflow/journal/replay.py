"""
afriflow/journal/replay.py

Offline verification of a settlement journal.

Per line:
    1. json.loads(line)
    2. JournalEntry.from_dict(data)   - the only deserialization path
    3. entry.validate_schema()        - fail fast

Then, in sequence order:
    - sequence gap check
    - causal_hash against the previous entry
    - nonce uniqueness across the whole journal
    - Ed25519 signature

All hashing and canonicalization is delegated to JournalEntry.
"""

import json
from collections import defaultdict
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from afriflow.journal.entry import JournalEntry


@dataclass
class Violation:
    at_sequence:    int
    record_id:      str
    violation_type: str   # "sequence_gap" | "chain_break" | "duplicate_nonce" | "invalid_signature"
    detail:         str


@dataclass
class ReplaySummary:
    total_entries:      int
    chain_valid:        bool
    violations:         List[Violation]
    valid_signatures:   int
    invalid_signatures: int
    record_type_counts: Dict[str, int]
    actors_seen:        List[str]
    first_timestamp:    Optional[str]
    last_timestamp:     Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JournalReplay:
    """
    Usage:
        replay = JournalReplay()
        replay.load(Path("journal/journal.jsonl"))
        summary = replay.verify()
    """

    def __init__(self) -> None:
        self.entries:    List[JournalEntry] = []
        self.violations: List[Violation]    = []
        self.path:       Optional[Path]     = None

    @classmethod
    def from_entries(cls, entries: List[JournalEntry]) -> "JournalReplay":
        replay = cls()
        replay.entries = sorted(entries, key=lambda e: e.sequence)
        return replay

    # ── Load ──────────────────────────────────────────────────

    def load(self, path: Path) -> "JournalReplay":
        """
        Raises:
            FileNotFoundError - journal file does not exist
            ValueError        - malformed JSON, missing field, or schema violation
        """
        path         = Path(path)
        self.path    = path
        self.entries = []

        if not path.exists():
            raise FileNotFoundError(f"Journal not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Malformed JSON at journal line {line_num}: {e}") from e
                try:
                    entry = JournalEntry.from_dict(data)
                except KeyError as e:
                    raise ValueError(f"Missing journal field at line {line_num}: {e}") from e

                schema = entry.validate_schema()
                if not schema:
                    raise ValueError(
                        f"Schema violation at line {line_num} "
                        f"(record_id={data.get('record_id', '?')}): {schema.errors}"
                    )
                self.entries.append(entry)

        self.entries.sort(key=lambda e: e.sequence)
        return self

    # ── Verify ────────────────────────────────────────────────

    def verify(self) -> ReplaySummary:
        self.violations = []
        seen_nonces: Set[str] = set()
        valid_sigs   = 0
        invalid_sigs = 0

        for i, entry in enumerate(self.entries):
            prev = self.entries[i - 1] if i > 0 else None

            if entry.sequence != i:
                self._violation(entry, "sequence_gap", f"Expected sequence {i}, got {entry.sequence}")

            if not entry.verify_chain(prev):
                expected = JournalEntry.compute_causal_hash(prev)
                self._violation(
                    entry, "chain_break",
                    f"causal_hash mismatch: expected ...{expected[-12:]}, "
                    f"got ...{entry.causal_hash[-12:]}",
                )

            if entry.nonce in seen_nonces:
                self._violation(entry, "duplicate_nonce", f"Nonce '{entry.nonce}' already used")
            seen_nonces.add(entry.nonce)

            if entry.verify_signature():
                valid_sigs += 1
            else:
                invalid_sigs += 1
                self._violation(
                    entry, "invalid_signature",
                    f"Signature invalid (signer: {entry.signer_public_key[:16]}...)",
                )

        counts: Dict[str, int] = defaultdict(int)
        for entry in self.entries:
            counts[entry.record_type] += 1

        return ReplaySummary(
            total_entries=      len(self.entries),
            chain_valid=        not self.violations,
            violations=         list(self.violations),
            valid_signatures=   valid_sigs,
            invalid_signatures= invalid_sigs,
            record_type_counts= dict(counts),
            actors_seen=        sorted({e.actor for e in self.entries}),
            first_timestamp=    self.entries[0].timestamp if self.entries else None,
            last_timestamp=     self.entries[-1].timestamp if self.entries else None,
        )

    def _violation(self, entry: JournalEntry, kind: str, detail: str) -> None:
        self.violations.append(Violation(
            at_sequence=    entry.sequence,
            record_id=      entry.record_id,
            violation_type= kind,
            detail=         detail,
        ))
