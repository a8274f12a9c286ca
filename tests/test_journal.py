"""
tests/test_journal.py

Settlement journal: signed entries, hash chain, JSONL persistence, offline
replay and tamper detection.
"""

import json

import pytest

from afriflow.core.canonical import canonical_hash, canonical_id, canonicalize
from afriflow.core.crypto import Ed25519KeyManager
from afriflow.core.exceptions import InvalidAmount
from afriflow.escrow.state_machine import MilestoneSpec
from afriflow.journal.entry import (
    GENESIS_HASH,
    JOURNAL_VERSION,
    VALID_RECORD_TYPES,
    JournalEntry,
    RecordType,
)
from afriflow.journal.journal import SettlementJournal
from afriflow.journal.replay import JournalReplay

from conftest import ARBITER, OPERATOR, RECIPIENT, SENDER, TOKEN, make_service


@pytest.fixture
def key():
    return Ed25519KeyManager.from_private_bytes(bytes(range(32)))


@pytest.fixture
def journal(key):
    return SettlementJournal(key)


def _busy(service):
    """Drive one of every kind of state change through the service."""
    service.instant_payment(SENDER, RECIPIENT, TOKEN, 1_000, "NG", "KE")
    service.batch_payment(SENDER, [RECIPIENT], TOKEN, [1_000], "NG", ["KE"])
    service.settle(SENDER, RECIPIENT, TOKEN, 2_000, "NG", "KE")
    service.create_escrow(
        SENDER, RECIPIENT, TOKEN, 2_000,
        [MilestoneSpec("a", 1_000), MilestoneSpec("b", 1_000)],
    )
    service.release_milestone(1, 0, SENDER)
    service.dispute_milestone(1, 1, RECIPIENT)
    service.resolve_dispute(1, 1, False, ARBITER)
    service.set_corridor(OPERATOR, "NG", "BR", True)


# ─────────────────────────────────────────────────────────────
# Entry
# ─────────────────────────────────────────────────────────────

class TestJournalEntry:

    def test_create_fills_envelope(self, key):
        entry = JournalEntry.create(
            record_type=       RecordType.CONFIG_UPDATED,
            actor=             OPERATOR,
            signer_public_key= key.public_key_hex,
            sequence=          0,
            payload=           {"key": "fee_bps", "value": 20},
        ).sign(key)

        assert entry.journal_version == JOURNAL_VERSION
        assert entry.record_id.startswith("jr-")
        assert entry.causal_hash == GENESIS_HASH
        assert len(entry.nonce) == 32
        assert entry.validate_schema()
        assert entry.verify_signature()

    def test_unknown_record_type_rejected(self, key):
        with pytest.raises(ValueError):
            JournalEntry.create("payment_teleported", OPERATOR, key.public_key_hex, 0, {})

    def test_payload_must_be_dict(self, key):
        with pytest.raises(TypeError):
            JournalEntry.create(RecordType.CONFIG_UPDATED, OPERATOR, key.public_key_hex, 0, [])

    def test_negative_sequence_rejected(self, key):
        with pytest.raises(ValueError):
            JournalEntry.create(RecordType.CONFIG_UPDATED, OPERATOR, key.public_key_hex, -1, {})

    def test_signature_excluded_from_signing_dict(self, journal):
        entry = journal.append(RecordType.CONFIG_UPDATED, {"key": "x", "value": 1})
        assert "signature" not in entry.to_signing_dict()
        assert entry.to_dict()["signature"] == entry.signature

    def test_payload_edit_breaks_signature(self, journal):
        entry = journal.append(RecordType.CONFIG_UPDATED, {"key": "fee_bps", "value": 10})
        entry.payload["value"] = 100
        assert not entry.verify_signature()

    def test_schema_reports_every_error(self, journal):
        entry = journal.append(RecordType.CONFIG_UPDATED, {})
        entry.nonce       = "XYZ"
        entry.timestamp   = "yesterday"
        entry.record_type = "bogus"
        result = entry.validate_schema()
        assert not result
        assert len(result.errors) == 3

    def test_vocabulary_is_complete(self):
        assert len(VALID_RECORD_TYPES) == 12


# ─────────────────────────────────────────────────────────────
# Journal
# ─────────────────────────────────────────────────────────────

class TestSettlementJournal:

    def test_chain_links(self, journal):
        first  = journal.append(RecordType.CONFIG_UPDATED, {"n": 1})
        second = journal.append(RecordType.CONFIG_UPDATED, {"n": 2})
        assert first.sequence == 0 and second.sequence == 1
        assert first.causal_hash == GENESIS_HASH
        assert second.causal_hash == JournalEntry.compute_causal_hash(first)
        assert journal.verify_chain()

    def test_default_actor(self, journal):
        assert journal.append(RecordType.CONFIG_UPDATED, {}).actor == "afriflow"

    def test_stats(self, journal):
        entry = journal.append(RecordType.CONFIG_UPDATED, {})
        stats = journal.get_stats()
        assert stats["next_sequence"] == 1
        assert stats["last_record_id"] == entry.record_id
        assert stats["journal_file"] is None

    def test_service_operations_are_journaled(self, clock):
        service = make_service(clock)
        _busy(service)

        counts = {}
        for entry in service.journal.entries():
            counts[entry.record_type] = counts.get(entry.record_type, 0) + 1

        assert counts[RecordType.PAYMENT_INITIATED] == 1
        assert counts[RecordType.PAYMENT_COMPLETED] == 3
        assert counts[RecordType.SETTLEMENT_FALLBACK] == 1
        assert counts[RecordType.ESCROW_CREATED] == 1
        assert counts[RecordType.MILESTONE_RELEASED] == 1
        assert counts[RecordType.MILESTONE_DISPUTED] == 1
        assert counts[RecordType.DISPUTE_RESOLVED] == 1
        assert counts[RecordType.ESCROW_COMPLETED] == 1
        assert counts[RecordType.CORRIDOR_UPDATED] == 1
        assert service.journal.verify_chain()

    def test_rejected_operations_leave_no_entry(self, service):
        before = len(service.journal)
        with pytest.raises(InvalidAmount):
            service.instant_payment(SENDER, RECIPIENT, TOKEN, 1, "NG", "KE")
        assert len(service.journal) == before


class TestPersistence:

    def test_jsonl_written(self, key, tmp_path):
        journal = SettlementJournal(key, journal_path=str(tmp_path))
        journal.append(RecordType.CONFIG_UPDATED, {"n": 1})
        journal.append(RecordType.CONFIG_UPDATED, {"n": 2})

        lines = journal.journal_file.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["sequence"] == 1

    def test_restore_continues_chain(self, key, tmp_path):
        first = SettlementJournal(key, journal_path=str(tmp_path))
        first.append(RecordType.CONFIG_UPDATED, {"n": 1})
        last = first.append(RecordType.CONFIG_UPDATED, {"n": 2})

        second = SettlementJournal(key, journal_path=str(tmp_path))
        assert len(second) == 2
        entry = second.append(RecordType.CONFIG_UPDATED, {"n": 3})
        assert entry.sequence == 2
        assert entry.causal_hash == JournalEntry.compute_causal_hash(last)
        assert second.verify_chain()

    def test_corrupt_last_line_warns(self, key, tmp_path):
        journal = SettlementJournal(key, journal_path=str(tmp_path))
        journal.append(RecordType.CONFIG_UPDATED, {})
        with open(journal.journal_file, "a", encoding="utf-8") as f:
            f.write("{not json\n")

        with pytest.warns(RuntimeWarning):
            SettlementJournal(key, journal_path=str(tmp_path))

    def test_service_journal_on_disk(self, clock, tmp_path):
        service = make_service(clock, journal_path=str(tmp_path))
        _busy(service)
        summary = JournalReplay().load(service.journal.journal_file).verify()
        assert summary.chain_valid
        assert summary.total_entries == len(service.journal)
        assert summary.invalid_signatures == 0


# ─────────────────────────────────────────────────────────────
# Replay
# ─────────────────────────────────────────────────────────────

class TestReplay:

    @pytest.fixture
    def journal_file(self, key, tmp_path):
        journal = SettlementJournal(key, journal_path=str(tmp_path))
        for n in range(5):
            journal.append(RecordType.CONFIG_UPDATED, {"n": n}, actor=OPERATOR)
        return journal.journal_file

    def _rewrite(self, path, mutate):
        lines = [json.loads(line) for line in path.read_text().splitlines()]
        mutate(lines)
        path.write_text("".join(json.dumps(line) + "\n" for line in lines))

    def test_clean_journal(self, journal_file):
        summary = JournalReplay().load(journal_file).verify()
        assert summary.chain_valid
        assert summary.total_entries == 5
        assert summary.valid_signatures == 5
        assert summary.record_type_counts == {RecordType.CONFIG_UPDATED: 5}
        assert summary.actors_seen == [OPERATOR]

    def test_payload_tamper(self, journal_file):
        self._rewrite(journal_file, lambda lines: lines[2]["payload"].update(n=99))
        summary = JournalReplay().load(journal_file).verify()
        assert not summary.chain_valid
        kinds = {(v.at_sequence, v.violation_type) for v in summary.violations}
        assert (2, "invalid_signature") in kinds
        assert (3, "chain_break") in kinds

    def test_deleted_line(self, journal_file):
        self._rewrite(journal_file, lambda lines: lines.pop(1))
        summary = JournalReplay().load(journal_file).verify()
        kinds = {v.violation_type for v in summary.violations}
        assert "sequence_gap" in kinds
        assert "chain_break" in kinds

    def test_duplicate_nonce(self, journal_file):
        def dup(lines):
            lines[3]["nonce"] = lines[0]["nonce"]
        self._rewrite(journal_file, dup)
        summary = JournalReplay().load(journal_file).verify()
        assert any(v.violation_type == "duplicate_nonce" for v in summary.violations)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            JournalReplay().load(tmp_path / "absent.jsonl")

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "journal.jsonl"
        path.write_text("{oops\n")
        with pytest.raises(ValueError):
            JournalReplay().load(path)

    def test_missing_field(self, journal_file):
        self._rewrite(journal_file, lambda lines: lines[0].pop("nonce"))
        with pytest.raises(ValueError):
            JournalReplay().load(journal_file)

    def test_schema_violation(self, journal_file):
        def bad(lines):
            lines[0]["journal_version"] = "0"
        self._rewrite(journal_file, bad)
        with pytest.raises(ValueError):
            JournalReplay().load(journal_file)

    def test_from_entries(self, journal):
        for n in range(3):
            journal.append(RecordType.CONFIG_UPDATED, {"n": n})
        summary = JournalReplay.from_entries(list(reversed(journal.entries()))).verify()
        assert summary.chain_valid
        assert summary.total_entries == 3


# ─────────────────────────────────────────────────────────────
# Keys and canonical bytes
# ─────────────────────────────────────────────────────────────

class TestJournalKey:

    def test_load_or_generate_reuses_key(self, tmp_path):
        path  = tmp_path / "keys" / "journal.key"
        first = Ed25519KeyManager.load_or_generate(path)
        again = Ed25519KeyManager.load_or_generate(path)
        assert first.public_key_hex == again.public_key_hex
        assert path.stat().st_mode & 0o777 == 0o600

    def test_from_hex(self, key):
        assert Ed25519KeyManager.from_hex("0x" + bytes(range(32)).hex()).public_key_hex == key.public_key_hex

    def test_bad_key_file(self, tmp_path):
        path = tmp_path / "journal.key"
        path.write_text("not a pem")
        with pytest.raises(ValueError):
            Ed25519KeyManager.load(path)

    def test_verify_detached_never_raises(self, key):
        sig = key.sign(b"data")
        assert Ed25519KeyManager.verify_detached(b"data", sig, key.public_key_hex)
        assert not Ed25519KeyManager.verify_detached(b"other", sig, key.public_key_hex)
        assert not Ed25519KeyManager.verify_detached(b"data", "!!", key.public_key_hex)
        assert not Ed25519KeyManager.verify_detached(b"data", sig, "zz")
        assert not Ed25519KeyManager.verify_detached(b"data", sig[:-4], key.public_key_hex)

    def test_service_keeps_signer_across_restarts(self, clock, tmp_path):
        first  = make_service(clock, journal_path=str(tmp_path))
        second = make_service(clock, journal_path=str(tmp_path))
        signers = {e.signer_public_key for e in second.journal.entries()}
        assert signers == {first.journal.key_manager.public_key_hex}
        assert second.journal.verify_chain()


class TestCanonicalBytes:

    def test_key_order_irrelevant(self):
        assert canonicalize({"b": 1, "a": 2}) == canonicalize({"a": 2, "b": 1}) == b'{"a":2,"b":1}'

    def test_floats_refused(self):
        with pytest.raises(TypeError):
            canonicalize({"amount": 1.5})
        with pytest.raises(TypeError):
            canonical_hash({"legs": [{"amount": 1.0}]})

    def test_payment_ids_are_canonical_ids(self):
        assert len(canonical_id({"a": 1})) == 66
        assert canonical_id({"a": 1}) == "0x" + canonical_hash({"a": 1})
