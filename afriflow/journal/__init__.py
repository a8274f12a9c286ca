"""
Signed settlement journal.
"""

from afriflow.journal.entry import GENESIS_HASH, JournalEntry, RecordType
from afriflow.journal.journal import SettlementJournal
from afriflow.journal.replay import JournalReplay, ReplaySummary, Violation

__all__ = [
    "JournalEntry",
    "RecordType",
    "SettlementJournal",
    "JournalReplay",
    "ReplaySummary",
    "Violation",
    "GENESIS_HASH",
]
