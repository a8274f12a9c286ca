"""
Service wiring and inbound request shapes.
"""

from afriflow.runtime.requests import EscrowRequest, PaymentRequest, parse_release_condition
from afriflow.runtime.service import SettlementService

__all__ = ["SettlementService", "PaymentRequest", "EscrowRequest", "parse_release_condition"]
