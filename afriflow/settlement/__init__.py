"""
Agentic settlement: authorization signing, facilitator submission and the
direct fallback.
"""

from afriflow.settlement.engine import SettlementEngine
from afriflow.settlement.facilitator import FacilitatorClient, FacilitatorResult
from afriflow.settlement.fallback import DirectSettlementFallback
from afriflow.settlement.signer import AuthorizationSigner

__all__ = [
    "AuthorizationSigner",
    "FacilitatorClient",
    "FacilitatorResult",
    "DirectSettlementFallback",
    "SettlementEngine",
]
