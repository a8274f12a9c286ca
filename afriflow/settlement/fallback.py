"""
Direct settlement fallback.

Runs when the facilitator cannot settle. Instead of replaying the off-chain
authorization it executes the pending payment straight against the ledger:
net to recipient, fee to treasury, debited from the original sender.

The corridor and token are re-checked at execution time because the
facilitator round-trip may have outlasted a configuration change.
"""

import logging
import secrets
from typing import Optional

from afriflow.core.canonical import canonical_id
from afriflow.core.exceptions import ValidationError
from afriflow.core.models import Payment
from afriflow.journal.entry import RecordType
from afriflow.journal.journal import SettlementJournal
from afriflow.ledger.payments import PaymentLedger


logger = logging.getLogger(__name__)


def fallback_reference(payment_id: str) -> str:
    """Settlement reference for a direct execution: 0x + sha256(JCS({paymentId, entropy}))."""
    return canonical_id({"entropy": secrets.token_hex(16), "paymentId": payment_id})


class DirectSettlementFallback:

    def __init__(
        self,
        ledger:  PaymentLedger,
        journal: Optional[SettlementJournal] = None,
        agent:   Optional[str] = None,
    ):
        self.ledger  = ledger
        self.journal = journal
        self.agent   = agent

    def execute(self, payment_id: str, reason: str = "") -> Payment:
        """
        Settle a PENDING payment directly. Validation failures mark the
        payment FAILED and propagate.
        """
        payment = self.ledger.get_payment(payment_id)
        try:
            self.ledger.require_token(payment.token)
            self.ledger.corridors.require_supported(
                payment.origin_corridor, payment.destination_corridor
            )
        except ValidationError as exc:
            self.ledger.mark_failed(payment_id, str(exc))
            raise

        reference = fallback_reference(payment_id)
        logger.warning(
            "Settling payment %s via direct fallback (facilitator: %s)",
            payment_id, reason or "not configured",
        )
        if self.journal is not None:
            self.journal.append(
                RecordType.SETTLEMENT_FALLBACK,
                {
                    "paymentId":     payment_id,
                    "settlementRef": reference,
                    "reason":        reason,
                    "payer":         payment.sender,
                },
                actor=self.agent,
            )
        return self.ledger.settle_pending(payment_id, reference, used_fallback=True)
