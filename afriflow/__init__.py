"""
afriflow/__init__.py

AfriFlow: payment settlement and milestone escrow core.

Instant and batch payments across corridor-gated region pairs, agentic
settlement through an x402-style facilitator with a direct fallback, and
multi-milestone escrow with arbitration. Every state change is written to
a signed, hash-chained settlement journal.
"""

__version__ = "0.1.0"

from afriflow.config import SettlementConfig
from afriflow.core.access import Capability
from afriflow.core.exceptions import AfriFlowError
from afriflow.core.models import (
    Escrow,
    EscrowStatus,
    Milestone,
    MilestoneStatus,
    Payment,
    PaymentKind,
    PaymentStatus,
    SettlementResult,
)
from afriflow.escrow.state_machine import MilestoneSpec
from afriflow.runtime.service import SettlementService

__all__ = [
    # Entry point
    "SettlementService",
    "SettlementConfig",
    # Records
    "Payment",
    "PaymentKind",
    "PaymentStatus",
    "Escrow",
    "EscrowStatus",
    "Milestone",
    "MilestoneStatus",
    "MilestoneSpec",
    "SettlementResult",
    # Access
    "Capability",
    # Errors
    "AfriFlowError",
]
