"""
afriflow/journal/journal.py

Settlement journal.

append() MUST, in this exact order:
  1. Acquire lock
  2. JournalEntry.create(record_type, actor, signer_public_key,
                         sequence, payload, prev=last_entry)
  3. entry.sign(key_manager)
  4. Assert chain invariants  - causal_hash, sequence
  5. Append to JSONL file     - skipped for in-memory journals
  6. Advance internal state   - only after confirmed write
  7. Return signed entry

A raised exception means the entry does not exist. State never advances
past a failed write. append_many() writes several entries in one write and
advances past all of them or none.
"""

import json
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from afriflow.core.crypto import Ed25519KeyManager
from afriflow.journal.entry import GENESIS_HASH, JournalEntry


JOURNAL_FILENAME = "journal.jsonl"

# (record_type, payload, actor)
Record = Tuple[str, Dict[str, Any], Optional[str]]


class SettlementJournal:
    """
    Signed, hash-chained record of every settlement state change.

    journal_path=None keeps entries in memory only (tests, dry runs).
    With a path, state is restored from the last line of the file.
    """

    def __init__(
        self,
        key_manager:   Ed25519KeyManager,
        journal_path:  Optional[str] = None,
        default_actor: str = "afriflow",
    ) -> None:
        self.key_manager   = key_manager
        self.default_actor = default_actor

        self._lock:       threading.Lock         = threading.Lock()
        self._sequence:   int                    = 0
        self._last_entry: Optional[JournalEntry] = None
        self._memory:     List[JournalEntry]     = []

        self._journal_file: Optional[Path] = None
        if journal_path is not None:
            journal_dir = Path(journal_path)
            journal_dir.mkdir(parents=True, exist_ok=True)
            self._journal_file = journal_dir / JOURNAL_FILENAME
            self._restore_state()

    @property
    def journal_file(self) -> Optional[Path]:
        return self._journal_file

    # ── Public API ────────────────────────────────────────────

    def append(
        self,
        record_type: str,
        payload:     Dict[str, Any],
        actor:       Optional[str] = None,
    ) -> JournalEntry:
        """
        Append one signed entry. Raises RuntimeError on invariant
        violation or write failure.
        """
        (entry,) = self.append_many([(record_type, payload, actor)])
        return entry

    def append_many(self, records: Sequence[Record]) -> List[JournalEntry]:
        """
        Append several entries as one write. Either every entry lands and
        the chain head advances past all of them, or none does.
        """
        with self._lock:
            entries: List[JournalEntry] = []
            prev     = self._last_entry
            sequence = self._sequence
            for record_type, payload, actor in records:
                entry = JournalEntry.create(
                    record_type=       record_type,
                    actor=             actor or self.default_actor,
                    signer_public_key= self.key_manager.public_key_hex,
                    sequence=          sequence,
                    payload=           payload,
                    prev=              prev,
                ).sign(self.key_manager)
                if not entry.verify_chain(prev):
                    raise RuntimeError(f"Journal chain invariant violated at sequence {sequence}")
                entries.append(entry)
                prev      = entry
                sequence += 1

            if not entries:
                return entries
            if self._journal_file is not None:
                self._append_to_file(entries)
            else:
                self._memory.extend(entries)

            self._sequence   = sequence
            self._last_entry = prev
            return entries

    def entries(self) -> List[JournalEntry]:
        """All entries in sequence order."""
        if self._journal_file is None:
            with self._lock:
                return list(self._memory)
        if not self._journal_file.exists():
            return []
        with open(self._journal_file, "r", encoding="utf-8") as f:
            return [
                JournalEntry.from_dict(json.loads(line))
                for line in f
                if line.strip()
            ]

    def entries_of_type(self, record_type: str) -> List[JournalEntry]:
        return [e for e in self.entries() if e.record_type == record_type]

    def verify_chain(self) -> bool:
        """True if every entry is in sequence, chained, and signed."""
        prev = None
        for i, entry in enumerate(self.entries()):
            if entry.sequence != i or not entry.verify_chain(prev) or not entry.verify_signature():
                return False
            prev = entry
        return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "next_sequence":    self._sequence,
                "last_record_id":   self._last_entry.record_id if self._last_entry else None,
                "last_causal_hash": (
                    JournalEntry.compute_causal_hash(self._last_entry)
                    if self._last_entry else GENESIS_HASH
                ),
                "journal_file":     str(self._journal_file) if self._journal_file else None,
            }

    def __len__(self) -> int:
        with self._lock:
            return self._sequence

    # ── Internal ──────────────────────────────────────────────

    def _restore_state(self) -> None:
        """
        Resume sequence and chain head from the last line on disk. A corrupt
        last line leaves state at genesis and issues a RuntimeWarning.
        """
        if not self._journal_file.exists():
            return

        last_line = None
        with open(self._journal_file, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    last_line = line.strip()

        if not last_line:
            return

        try:
            entry  = JournalEntry.from_dict(json.loads(last_line))
            schema = entry.validate_schema()
            if not schema:
                raise ValueError(f"Schema violation in last journal line: {schema.errors}")
        except (ValueError, KeyError) as exc:
            warnings.warn(
                f"SettlementJournal: could not restore state from {self._journal_file}: {exc}. "
                "Run `afriflow verify` before appending.",
                RuntimeWarning,
                stacklevel=3,
            )
            return

        self._sequence   = entry.sequence + 1
        self._last_entry = entry

    def _append_to_file(self, entries: List[JournalEntry]) -> None:
        lines = "".join(json.dumps(entry.to_dict()) + "\n" for entry in entries)
        try:
            with open(self._journal_file, "a", encoding="utf-8") as f:
                f.write(lines)
        except OSError as exc:
            raise RuntimeError(f"SettlementJournal: write failed - {exc}") from exc
