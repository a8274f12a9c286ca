"""
Agentic settlement: sign → facilitator → or else direct fallback.

    settle()
      1. validate request, pre-check sender balance     (no lock held)
      2. sign TransferWithAuthorization                 (MissingSigningKey is fatal)
      3. record PENDING payment with validBefore
      4. facilitator.submit(...) under a bounded timeout (no lock held)
      5. success → ledger executes legs, COMPLETED
         failure → DirectSettlementFallback executes, COMPLETED + usedFallback
      6. both failed → payment FAILED, SettlementFailed

reconcile() fails PENDING agent payments whose authorization has expired,
so a payment abandoned mid-flight never stays PENDING forever.
"""

import logging
from typing import List, Optional

from afriflow.core.exceptions import (
    DeadlineExceeded,
    InsufficientBalance,
    InvalidStateTransition,
    SettlementFailed,
    StateError,
    TransientError,
)
from afriflow.core.models import Payment, PaymentKind, PaymentStatus, SettlementResult
from afriflow.core.time import Clock, Deadline
from afriflow.ledger.payments import PaymentLedger
from afriflow.settlement.facilitator import FacilitatorClient, FacilitatorResult
from afriflow.settlement.fallback import DirectSettlementFallback
from afriflow.settlement.signer import AuthorizationSigner


logger = logging.getLogger(__name__)


class SettlementEngine:

    def __init__(
        self,
        ledger:      PaymentLedger,
        signer:      AuthorizationSigner,
        fallback:    DirectSettlementFallback,
        facilitator: Optional[FacilitatorClient] = None,
        clock:       Optional[Clock] = None,
    ):
        self.ledger      = ledger
        self.signer      = signer
        self.fallback    = fallback
        self.facilitator = facilitator
        self.clock       = clock or Clock()

    # ── Settle ────────────────────────────────────────────────

    def settle(
        self,
        sender:      str,
        recipient:   str,
        token:       str,
        amount:      int,
        origin:      str,
        destination: str,
        metadata:    str = "",
        deadline:    Optional[Deadline] = None,
    ) -> SettlementResult:
        deadline = deadline or Deadline.never()

        self.ledger.ensure_active()
        sender, recipient, token = self.ledger.validate_transfer(
            sender, recipient, token, amount, origin, destination
        )

        available = self.ledger.vault.balance_of(token, sender)
        if available < amount:
            raise InsufficientBalance(
                "Insufficient balance",
                {"account": sender, "balance": available, "required": amount},
            )
        if deadline.expired():
            raise DeadlineExceeded("Deadline expired before signing")

        authorization = self.signer.sign(sender, recipient, amount)
        payment = self.ledger.open_pending(
            sender, recipient, token, amount, origin, destination,
            metadata=     metadata,
            valid_before= authorization.valid_before,
        )

        outcome = self._try_facilitator(authorization, payment, deadline)
        if outcome.success:
            payment = self.ledger.settle_pending(payment.payment_id, outcome.reference)
            logger.info("Payment %s settled by facilitator (%s)", payment.payment_id, outcome.reference)
        else:
            payment = self._or_else_fallback(payment, outcome)

        return SettlementResult(
            payment=        payment,
            settlement_ref= payment.settlement_ref,
            used_fallback=  payment.used_fallback,
        )

    def _try_facilitator(self, authorization, payment: Payment, deadline: Deadline) -> FacilitatorResult:
        if self.facilitator is None:
            return FacilitatorResult(success=False, error="facilitator not configured")
        if deadline.expired():
            return FacilitatorResult(success=False, error="deadline expired")
        return self.facilitator.submit(
            authorization,
            token=       payment.token,
            origin=      payment.origin_corridor,
            destination= payment.destination_corridor,
            metadata=    payment.metadata,
            timeout=     deadline.bound(self.facilitator.timeout),
        )

    def _or_else_fallback(self, payment: Payment, outcome: FacilitatorResult) -> Payment:
        try:
            return self.fallback.execute(payment.payment_id, outcome.error or "")
        except (TransientError, StateError) as exc:
            current = self.ledger.get_payment(payment.payment_id)
            if current.status == PaymentStatus.PENDING:
                self.ledger.mark_failed(payment.payment_id, f"fallback failed: {exc}")
            logger.error(
                "Payment %s failed on both paths: facilitator=%s fallback=%s",
                payment.payment_id, outcome.error, exc,
            )
            raise SettlementFailed(
                "Facilitator and direct fallback both failed",
                {
                    "payment_id":  payment.payment_id,
                    "facilitator": outcome.error,
                    "fallback":    str(exc),
                },
            ) from exc

    # ── Reconciliation ────────────────────────────────────────

    def reconcile(self, now: Optional[int] = None) -> List[Payment]:
        """
        Mark FAILED every PENDING agent payment whose authorization
        validBefore has passed. Returns the payments it failed.
        """
        now = self.clock.now() if now is None else now
        failed: List[Payment] = []
        for payment in self.ledger.pending_payments():
            if payment.kind != PaymentKind.AGENT_TRIGGERED:
                continue
            if not payment.valid_before or payment.valid_before > now:
                continue
            try:
                failed.append(self.ledger.mark_failed(payment.payment_id, "authorization expired"))
            except InvalidStateTransition:
                # settled between the scan and the transition
                continue
            logger.error("Reconciled stuck payment %s as FAILED", payment.payment_id)
        return failed
