"""
Payment ledger.

Records every attempted and completed payment under a unique id, and runs
the direct settlement paths (instant, batch) as single atomic vault
transfers.

Locking:
    ("sender", address)  serializes balance-moving work per sender
    ("payment", id)      serializes status transitions per payment

A payment lock is always taken before the sender lock, never after.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from afriflow.config import SettlementConfig
from afriflow.core.access import PauseSwitch
from afriflow.core.exceptions import (
    DuplicateId,
    InsufficientBalance,
    InvalidAmount,
    InvalidBatch,
    InvalidRecipient,
    InvalidStateTransition,
    NotFound,
    UnsupportedToken,
)
from afriflow.core.locks import KeyedLocks
from afriflow.core.models import (
    ZERO_ADDRESS,
    Payment,
    PaymentKind,
    PaymentStatus,
    derive_payment_id,
    normalize_address,
)
from afriflow.core.time import Clock
from afriflow.journal.entry import RecordType
from afriflow.journal.journal import SettlementJournal
from afriflow.ledger.corridors import CorridorRegistry
from afriflow.ledger.fees import FeeCalculator
from afriflow.ledger.vault import CUSTODY_ACCOUNT, Leg, TokenVault


logger = logging.getLogger(__name__)


class PaymentLedger:

    def __init__(
        self,
        config:    SettlementConfig,
        vault:     TokenVault,
        corridors: CorridorRegistry,
        fees:      FeeCalculator,
        clock:     Optional[Clock] = None,
        journal:   Optional[SettlementJournal] = None,
        pause:     Optional[PauseSwitch] = None,
    ):
        self.config    = config
        self.vault     = vault
        self.corridors = corridors
        self.fees      = fees
        self.clock     = clock or Clock()
        self.journal   = journal
        self.pause     = pause

        self._locks       = KeyedLocks()
        self._table_lock  = threading.Lock()
        self._payments:   Dict[str, Payment]    = {}
        self._order:      List[str]             = []
        self._by_user:    Dict[str, List[str]]  = defaultdict(list)
        self._counters:   Dict[str, int]        = defaultdict(int)

    # ── Validation ────────────────────────────────────────────

    def ensure_active(self) -> None:
        if self.pause is not None:
            self.pause.ensure_active()

    def validate_transfer(
        self,
        sender:      str,
        recipient:   str,
        token:       str,
        amount:      int,
        origin:      str,
        destination: str,
    ) -> Tuple[str, str, str]:
        """
        Check one transfer against the current configuration and corridor
        table. Returns normalized (sender, recipient, token).
        """
        sender    = normalize_address(sender, field_name="sender")
        recipient = normalize_address(recipient, field_name="recipient")
        if recipient == ZERO_ADDRESS:
            raise InvalidRecipient("Recipient cannot be the zero address")

        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount("Amount must be an integer", {"amount": amount})
        if amount < self.config.min_payment_amount:
            raise InvalidAmount(
                "Amount below minimum",
                {"amount": amount, "minimum": self.config.min_payment_amount},
            )

        token = self.require_token(token)
        self.corridors.require_supported(origin, destination)
        return sender, recipient, token

    def require_token(self, token: str) -> str:
        token = normalize_address(token, error=UnsupportedToken, field_name="token")
        if token not in self.config.supported_tokens:
            raise UnsupportedToken("Token not supported", {"token": token})
        return token

    # ── Ids and records ───────────────────────────────────────

    def next_payment_id(self, sender: str, timestamp: int) -> str:
        with self._table_lock:
            self._counters[sender] += 1
            counter = self._counters[sender]
        return derive_payment_id(sender, counter, timestamp)

    def _commit(self, record_type: str, payments: Sequence[Payment], new: bool = False) -> None:
        """
        Journal the payments, then publish them to the table. A failed
        journal write raises before the table changes.
        """
        if new:
            with self._table_lock:
                for payment in payments:
                    if payment.payment_id in self._payments:
                        raise DuplicateId("Payment id collision", {"payment_id": payment.payment_id})
        if self.journal is not None:
            self.journal.append_many([(record_type, p.to_dict(), p.sender) for p in payments])
        with self._table_lock:
            for payment in payments:
                if new:
                    self._order.append(payment.payment_id)
                    self._by_user[payment.sender].append(payment.payment_id)
                    if payment.recipient != payment.sender:
                        self._by_user[payment.recipient].append(payment.payment_id)
                self._payments[payment.payment_id] = payment

    def record_pending(self, payment: Payment) -> Payment:
        """Store a PENDING payment. DuplicateId is fatal."""
        if payment.status != PaymentStatus.PENDING:
            raise InvalidStateTransition(
                "Only PENDING payments can be recorded",
                {"payment_id": payment.payment_id, "status": payment.status.value},
            )
        self._commit(RecordType.PAYMENT_INITIATED, [payment], new=True)
        return payment

    def mark_completed(
        self,
        payment_id:     str,
        completed_at:   Optional[int] = None,
        settlement_ref: Optional[str] = None,
        used_fallback:  bool = False,
    ) -> Payment:
        with self._locks.hold(("payment", payment_id)):
            payment = self._pending(payment_id).completed(
                completed_at if completed_at is not None else self.clock.now(),
                settlement_ref=settlement_ref,
                used_fallback=used_fallback,
            )
            self._commit(RecordType.PAYMENT_COMPLETED, [payment])
            return payment

    def mark_failed(self, payment_id: str, reason: str) -> Payment:
        with self._locks.hold(("payment", payment_id)):
            return self._fail(payment_id, reason)

    def _pending(self, payment_id: str) -> Payment:
        payment = self.get_payment(payment_id)
        if payment.status != PaymentStatus.PENDING:
            raise InvalidStateTransition(
                "Payment is not pending",
                {"payment_id": payment_id, "status": payment.status.value},
            )
        return payment

    def _fail(self, payment_id: str, reason: str) -> Payment:
        payment = self._pending(payment_id).failed(reason, self.clock.now())
        self._commit(RecordType.PAYMENT_FAILED, [payment])
        logger.info("Payment %s failed: %s", payment_id, reason)
        return payment

    # ── Direct paths ──────────────────────────────────────────

    def instant_payment(
        self,
        sender:      str,
        recipient:   str,
        token:       str,
        amount:      int,
        origin:      str,
        destination: str,
        metadata:    str = "",
    ) -> Payment:
        """
        Move `amount` from sender: net to recipient, fee to treasury, as one
        atomic vault transfer. The payment is journaled and recorded before
        the legs are applied; if either fails, no funds move.
        """
        self.ensure_active()
        sender, recipient, token = self.validate_transfer(
            sender, recipient, token, amount, origin, destination
        )
        fee, net = self.fees.split(amount)

        with self._locks.hold(("sender", sender)):
            now = self.clock.now()
            payment = Payment(
                payment_id=           self.next_payment_id(sender, now),
                sender=               sender,
                recipient=            recipient,
                token=                token,
                amount=               amount,
                fee=                  fee,
                origin_corridor=      origin,
                destination_corridor= destination,
                kind=                 PaymentKind.INSTANT,
                created_at=           now,
                metadata=             metadata,
            ).completed(now)
            self.vault.transfer_legs(
                token,
                [Leg(sender, recipient, net), Leg(sender, self.config.treasury, fee)],
                before_commit=lambda: self._commit(RecordType.PAYMENT_COMPLETED, [payment], new=True),
            )

        logger.info("Instant payment %s completed (%d net, %d fee)", payment.payment_id, net, fee)
        return payment

    def batch_payment(
        self,
        sender:       str,
        recipients:   Sequence[str],
        token:        str,
        amounts:      Sequence[int],
        origin:       str,
        destinations: Sequence[str],
        metadata:     str = "",
    ) -> List[Payment]:
        """
        Validate every item, then pull the total from the sender once and
        fan out net amounts plus the aggregated fee in one atomic transfer.
        Any invalid item rejects the whole batch before funds move.
        """
        self.ensure_active()
        count = len(recipients)
        if count == 0:
            raise InvalidBatch("Batch is empty")
        if count > self.config.max_batch_size:
            raise InvalidBatch(
                "Batch too large",
                {"size": count, "max": self.config.max_batch_size},
            )
        if len(amounts) != count or len(destinations) != count:
            raise InvalidBatch(
                "Batch arrays must have equal length",
                {"recipients": count, "amounts": len(amounts), "destinations": len(destinations)},
            )

        items = []
        for recipient, amount, destination in zip(recipients, amounts, destinations):
            sender, recipient, token = self.validate_transfer(
                sender, recipient, token, amount, origin, destination
            )
            fee, net = self.fees.split(amount)
            items.append((recipient, amount, fee, net, destination))

        total     = sum(item[1] for item in items)
        total_fee = sum(item[2] for item in items)

        legs = [Leg(sender, CUSTODY_ACCOUNT, total)]
        legs.extend(Leg(CUSTODY_ACCOUNT, recipient, net) for recipient, _, _, net, _ in items)
        legs.append(Leg(CUSTODY_ACCOUNT, self.config.treasury, total_fee))

        with self._locks.hold(("sender", sender)):
            now = self.clock.now()
            payments = [
                Payment(
                    payment_id=           self.next_payment_id(sender, now),
                    sender=               sender,
                    recipient=            recipient,
                    token=                token,
                    amount=               amount,
                    fee=                  fee,
                    origin_corridor=      origin,
                    destination_corridor= destination,
                    kind=                 PaymentKind.BATCH,
                    created_at=           now,
                    metadata=             metadata,
                ).completed(now)
                for recipient, amount, fee, _, destination in items
            ]
            self.vault.transfer_legs(
                token, legs,
                before_commit=lambda: self._commit(RecordType.PAYMENT_COMPLETED, payments, new=True),
            )

        logger.info("Batch of %d payments completed (total %d, fee %d)", count, total, total_fee)
        return payments

    # ── Agentic path ──────────────────────────────────────────

    def open_pending(
        self,
        sender:       str,
        recipient:    str,
        token:        str,
        amount:       int,
        origin:       str,
        destination:  str,
        metadata:     str = "",
        valid_before: int = 0,
    ) -> Payment:
        """Validate and record an AGENT_TRIGGERED payment as PENDING."""
        self.ensure_active()
        sender, recipient, token = self.validate_transfer(
            sender, recipient, token, amount, origin, destination
        )
        now = self.clock.now()
        return self.record_pending(Payment(
            payment_id=           self.next_payment_id(sender, now),
            sender=               sender,
            recipient=            recipient,
            token=                token,
            amount=               amount,
            fee=                  self.fees.fee(amount),
            origin_corridor=      origin,
            destination_corridor= destination,
            kind=                 PaymentKind.AGENT_TRIGGERED,
            created_at=           now,
            metadata=             metadata,
            valid_before=         valid_before,
        ))

    def settle_pending(
        self,
        payment_id:     str,
        settlement_ref: str,
        used_fallback:  bool = False,
    ) -> Payment:
        """
        Execute a pending payment's legs and mark it COMPLETED.

        The fee was fixed when the payment was opened. InsufficientBalance
        marks the payment FAILED and is re-raised.
        """
        with self._locks.hold(("payment", payment_id)):
            payment   = self._pending(payment_id)
            completed = payment.completed(
                self.clock.now(), settlement_ref=settlement_ref, used_fallback=used_fallback,
            )
            with self._locks.hold(("sender", payment.sender)):
                try:
                    self.vault.transfer_legs(
                        payment.token,
                        [
                            Leg(payment.sender, payment.recipient, payment.net_amount),
                            Leg(payment.sender, self.config.treasury, payment.fee),
                        ],
                        before_commit=lambda: self._commit(RecordType.PAYMENT_COMPLETED, [completed]),
                    )
                except InsufficientBalance as exc:
                    self._fail(payment_id, str(exc))
                    raise
            return completed

    # ── Queries ───────────────────────────────────────────────

    def get_payment(self, payment_id: str) -> Payment:
        with self._table_lock:
            payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment not found", {"payment_id": payment_id})
        return payment

    def get_user_payments(self, address: str) -> List[str]:
        """Ids of payments the address sent or received, in creation order."""
        address = normalize_address(address)
        with self._table_lock:
            return list(self._by_user.get(address, []))

    def pending_payments(self) -> List[Payment]:
        with self._table_lock:
            return [
                self._payments[pid] for pid in self._order
                if self._payments[pid].status == PaymentStatus.PENDING
            ]

    def calculate_fee(self, amount: int) -> int:
        return self.fees.fee(amount)

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._payments)
