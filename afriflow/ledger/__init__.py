"""
AfriFlow ledger: corridors, fees, custodial balances and payment records.
"""

from afriflow.ledger.corridors import CorridorRegistry
from afriflow.ledger.fees import FeeCalculator, compute_fee, split_amount
from afriflow.ledger.payments import PaymentLedger
from afriflow.ledger.vault import CUSTODY_ACCOUNT, Leg, TokenVault

__all__ = [
    "CorridorRegistry",
    "FeeCalculator",
    "PaymentLedger",
    "TokenVault",
    "Leg",
    "CUSTODY_ACCOUNT",
    "compute_fee",
    "split_amount",
]
