"""
Milestone escrow.

Escrow states:

    ACTIVE ──release all──────────────▶ COMPLETED
    ACTIVE ──cancel (nothing released)─▶ CANCELLED
    ACTIVE ──dispute──▶ DISPUTED ──resolve──▶ ACTIVE | COMPLETED

Milestone states:

    PENDING ──release──▶ RELEASED
    PENDING ──dispute──▶ DISPUTED ──resolve──▶ RELEASED | REFUNDED

The full escrow amount moves to CUSTODY_ACCOUNT at creation. Releases pay
net to the recipient and the fee to treasury out of custody; refunds go
back to the sender without a fee.

Every mutation runs under the escrow's own lock on a working copy. The copy
is journaled and published from the vault's before_commit hook, so a failed
journal write leaves both the stored escrow and custody untouched.
Operations on different escrows do not block each other.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from afriflow.config import SettlementConfig
from afriflow.core.access import AccessControl, Capability, PauseSwitch
from afriflow.core.exceptions import (
    DisputeWindowExpired,
    EscrowNotActive,
    InvalidAmount,
    InvalidMilestoneSet,
    InvalidRecipient,
    MilestoneNotPending,
    NoDisputeActive,
    NotAuthorized,
    NotFound,
    UnsupportedToken,
)
from afriflow.core.locks import KeyedLocks
from afriflow.core.models import (
    ZERO_ADDRESS,
    Escrow,
    EscrowStatus,
    Milestone,
    MilestoneStatus,
    normalize_address,
)
from afriflow.core.time import Clock
from afriflow.journal.entry import RecordType
from afriflow.journal.journal import Record, SettlementJournal
from afriflow.ledger.fees import FeeCalculator
from afriflow.ledger.vault import CUSTODY_ACCOUNT, Leg, TokenVault


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MilestoneSpec:
    description:  str
    amount:       int
    release_time: int = 0


class EscrowStateMachine:

    def __init__(
        self,
        config:  SettlementConfig,
        vault:   TokenVault,
        access:  AccessControl,
        fees:    FeeCalculator,
        clock:   Optional[Clock] = None,
        journal: Optional[SettlementJournal] = None,
        pause:   Optional[PauseSwitch] = None,
    ):
        self.config  = config
        self.vault   = vault
        self.access  = access
        self.fees    = fees
        self.clock   = clock or Clock()
        self.journal = journal
        self.pause   = pause

        self._locks      = KeyedLocks()
        self._table_lock = threading.Lock()
        self._escrows:      Dict[int, Escrow]     = {}
        self._by_sender:    Dict[str, List[int]]  = defaultdict(list)
        self._by_recipient: Dict[str, List[int]]  = defaultdict(list)
        self._next_id = 1

    # ── Helpers ───────────────────────────────────────────────

    def _ensure_active(self) -> None:
        if self.pause is not None:
            self.pause.ensure_active()

    def _escrow(self, escrow_id: int) -> Escrow:
        with self._table_lock:
            escrow = self._escrows.get(escrow_id)
        if escrow is None:
            raise NotFound("Escrow not found", {"escrow_id": escrow_id})
        return escrow

    def _working_copy(self, escrow_id: int) -> Escrow:
        """Copy to mutate under the escrow lock; published only by _commit."""
        return self._escrow(escrow_id).snapshot()

    @staticmethod
    def _actor(actor: str) -> str:
        return normalize_address(actor, error=NotAuthorized, field_name="actor")

    @staticmethod
    def _milestone(escrow: Escrow, index: int) -> Milestone:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < escrow.milestone_count:
            raise NotFound(
                "Milestone not found",
                {"escrow_id": escrow.escrow_id, "index": index},
            )
        return escrow.milestones[index]

    @staticmethod
    def _record(record_type: str, escrow: Escrow, actor: str, **extra) -> Record:
        payload = escrow.to_dict()
        payload.update(extra)
        return record_type, payload, actor

    def _completion(self, escrow: Escrow, actor: str) -> List[Record]:
        """COMPLETED once every milestone is RELEASED or REFUNDED."""
        if not escrow.all_milestones_settled():
            return []
        escrow.status       = EscrowStatus.COMPLETED
        escrow.completed_at = self.clock.now()
        return [self._record(RecordType.ESCROW_COMPLETED, escrow, actor)]

    def _commit(self, updated: Escrow, legs: Sequence[Leg], records: Sequence[Record]) -> Escrow:
        """
        Journal the records and publish `updated`, then apply the legs. The
        vault runs the first two only after its balance checks pass, and
        applies nothing if they raise.
        """
        def publish() -> None:
            if self.journal is not None:
                self.journal.append_many(records)
            with self._table_lock:
                self._escrows[updated.escrow_id] = updated

        self.vault.transfer_legs(updated.token, legs, before_commit=publish)
        if updated.status == EscrowStatus.COMPLETED:
            logger.info("Escrow %d completed", updated.escrow_id)
        return updated.snapshot()

    # ── Create ────────────────────────────────────────────────

    def create_escrow(
        self,
        sender:       str,
        recipient:    str,
        token:        str,
        total_amount: int,
        milestones:   Sequence[MilestoneSpec],
        metadata:     str = "",
    ) -> Escrow:
        """
        Pull total_amount from sender into custody and open an ACTIVE escrow.
        If the pull or the journal write fails nothing is recorded.
        """
        self._ensure_active()
        sender    = normalize_address(sender, field_name="sender")
        recipient = normalize_address(recipient, field_name="recipient")
        if recipient == ZERO_ADDRESS:
            raise InvalidRecipient("Recipient cannot be the zero address")

        token = normalize_address(token, error=UnsupportedToken, field_name="token")
        if token not in self.config.supported_tokens:
            raise UnsupportedToken("Token not supported", {"token": token})

        if isinstance(total_amount, bool) or not isinstance(total_amount, int):
            raise InvalidAmount("Escrow amount must be an integer", {"amount": total_amount})
        if not 1 <= len(milestones) <= self.config.max_milestones:
            raise InvalidMilestoneSet(
                "Milestone count out of range",
                {"count": len(milestones), "max": self.config.max_milestones},
            )
        for i, spec in enumerate(milestones):
            if isinstance(spec.amount, bool) or not isinstance(spec.amount, int) or spec.amount <= 0:
                raise InvalidMilestoneSet("Milestone amount must be positive", {"index": i})
            if isinstance(spec.release_time, bool) or not isinstance(spec.release_time, int):
                raise InvalidMilestoneSet("Milestone release time must be an integer", {"index": i})
            if spec.release_time < 0:
                raise InvalidMilestoneSet("Milestone release time cannot be negative", {"index": i})
        if sum(spec.amount for spec in milestones) != total_amount:
            raise InvalidMilestoneSet(
                "Milestone amounts must sum to total",
                {"sum": sum(spec.amount for spec in milestones), "total": total_amount},
            )
        if total_amount < self.config.min_escrow_amount:
            raise InvalidAmount(
                "Escrow amount below minimum",
                {"amount": total_amount, "minimum": self.config.min_escrow_amount},
            )

        opened: List[Escrow] = []

        def open_escrow() -> None:
            with self._table_lock:
                escrow = Escrow(
                    escrow_id=    self._next_id,
                    sender=       sender,
                    recipient=    recipient,
                    token=        token,
                    total_amount= total_amount,
                    created_at=   self.clock.now(),
                    milestones=   [
                        Milestone(s.description, s.amount, s.release_time) for s in milestones
                    ],
                    metadata=     metadata,
                )
                if self.journal is not None:
                    self.journal.append_many([self._record(RecordType.ESCROW_CREATED, escrow, sender)])
                self._escrows[escrow.escrow_id] = escrow
                self._by_sender[sender].append(escrow.escrow_id)
                self._by_recipient[recipient].append(escrow.escrow_id)
                self._next_id += 1
            opened.append(escrow)

        with self._locks.hold(("sender", sender)):
            self.vault.transfer(token, sender, CUSTODY_ACCOUNT, total_amount, before_commit=open_escrow)

        (escrow,) = opened
        logger.info("Escrow %d created: %d held for %s", escrow.escrow_id, total_amount, recipient)
        return escrow.snapshot()

    # ── Release ───────────────────────────────────────────────

    def _check_release(self, escrow: Escrow, index: int, actor: str, now: int) -> Milestone:
        milestone = self._milestone(escrow, index)
        if milestone.status != MilestoneStatus.PENDING:
            raise MilestoneNotPending(
                "Milestone is not pending",
                {"escrow_id": escrow.escrow_id, "index": index, "status": milestone.status.value},
            )
        if escrow.status != EscrowStatus.ACTIVE:
            raise EscrowNotActive(
                "Escrow is not active",
                {"escrow_id": escrow.escrow_id, "status": escrow.status.value},
            )

        is_sender = actor == escrow.sender
        is_agent  = self.access.has_capability(actor, Capability.AGENT)
        is_due    = milestone.auto_release and now >= milestone.release_time
        if not (is_sender or is_agent or is_due):
            raise NotAuthorized(
                "Not authorized to release milestone",
                {"escrow_id": escrow.escrow_id, "index": index, "actor": actor},
            )
        return milestone

    def _pay_out(self, escrow: Escrow, milestones: Sequence[Milestone], now: int) -> List[Leg]:
        """Mark milestones released on `escrow` and return the payout legs."""
        gross = sum(m.amount for m in milestones)
        fee   = sum(self.fees.fee(m.amount) for m in milestones)
        for m in milestones:
            m.status       = MilestoneStatus.RELEASED
            m.completed_at = now
        escrow.released_amount += gross
        escrow.fee             += fee
        return [
            Leg(CUSTODY_ACCOUNT, escrow.recipient, gross - fee),
            Leg(CUSTODY_ACCOUNT, self.config.treasury, fee),
        ]

    def release_milestone(self, escrow_id: int, index: int, actor: str) -> Escrow:
        """
        Release one milestone. The sender or an AGENT may always release;
        anyone may release a scheduled milestone once its time has come.
        """
        return self.release_milestones(escrow_id, [index], actor)

    def release_milestones(self, escrow_id: int, indices: Sequence[int], actor: str) -> Escrow:
        """Validate every index, then release them all in one transfer."""
        self._ensure_active()
        actor = self._actor(actor)
        if not indices:
            raise InvalidMilestoneSet("No milestones given", {"escrow_id": escrow_id})
        if len(set(indices)) != len(indices):
            raise InvalidMilestoneSet("Duplicate milestone index", {"escrow_id": escrow_id})

        with self._locks.hold(("escrow", escrow_id)):
            escrow = self._working_copy(escrow_id)
            now = self.clock.now()
            milestones = [self._check_release(escrow, i, actor, now) for i in indices]
            legs = self._pay_out(escrow, milestones, now)
            records = [
                self._record(
                    RecordType.MILESTONE_RELEASED, escrow, actor,
                    milestoneIndex=i, milestoneFee=self.fees.fee(escrow.milestones[i].amount),
                )
                for i in indices
            ]
            records += self._completion(escrow, actor)
            result = self._commit(escrow, legs, records)

        logger.info(
            "Escrow %d released milestones %s (fee %d)",
            escrow_id, list(indices), legs[1].amount,
        )
        return result

    # ── Dispute ───────────────────────────────────────────────

    def dispute_milestone(self, escrow_id: int, index: int, actor: str) -> Escrow:
        """
        Recipient only, while the milestone is PENDING. Scheduled milestones
        can be disputed until release_time + dispute window; manual ones
        at any time before release.
        """
        self._ensure_active()
        actor = self._actor(actor)
        with self._locks.hold(("escrow", escrow_id)):
            escrow = self._working_copy(escrow_id)
            if actor != escrow.recipient:
                raise NotAuthorized(
                    "Only the recipient may dispute",
                    {"escrow_id": escrow_id, "actor": actor},
                )
            milestone = self._milestone(escrow, index)
            if milestone.status != MilestoneStatus.PENDING:
                raise MilestoneNotPending(
                    "Milestone is not pending",
                    {"escrow_id": escrow_id, "index": index, "status": milestone.status.value},
                )
            if escrow.status not in (EscrowStatus.ACTIVE, EscrowStatus.DISPUTED):
                raise EscrowNotActive(
                    "Escrow is not active",
                    {"escrow_id": escrow_id, "status": escrow.status.value},
                )
            if milestone.auto_release:
                closes_at = milestone.release_time + self.config.dispute_window_seconds
                if self.clock.now() >= closes_at:
                    raise DisputeWindowExpired(
                        "Dispute window has closed",
                        {"escrow_id": escrow_id, "index": index, "closed_at": closes_at},
                    )

            milestone.status = MilestoneStatus.DISPUTED
            escrow.status    = EscrowStatus.DISPUTED
            result = self._commit(
                escrow, [], [self._record(RecordType.MILESTONE_DISPUTED, escrow, actor, milestoneIndex=index)],
            )

        logger.info("Escrow %d milestone %d disputed", escrow_id, index)
        return result

    def resolve_dispute(
        self,
        escrow_id:            int,
        index:                int,
        release_to_recipient: bool,
        actor:                str,
    ) -> Escrow:
        """
        ARBITER only. In the recipient's favor the milestone is released with
        the usual fee; in the sender's favor the full amount is refunded.
        """
        self._ensure_active()
        actor = self._actor(actor)
        self.access.require(actor, Capability.ARBITER)
        with self._locks.hold(("escrow", escrow_id)):
            escrow    = self._working_copy(escrow_id)
            milestone = self._milestone(escrow, index)
            if milestone.status != MilestoneStatus.DISPUTED:
                raise NoDisputeActive(
                    "Milestone is not disputed",
                    {"escrow_id": escrow_id, "index": index, "status": milestone.status.value},
                )

            now = self.clock.now()
            if release_to_recipient:
                legs = self._pay_out(escrow, [milestone], now)
                fee  = legs[1].amount
            else:
                legs = [Leg(CUSTODY_ACCOUNT, escrow.sender, milestone.amount)]
                fee  = 0
                milestone.status        = MilestoneStatus.REFUNDED
                milestone.completed_at  = now
                escrow.refunded_amount += milestone.amount

            statuses = {m.status for m in escrow.milestones}
            if MilestoneStatus.DISPUTED in statuses:
                escrow.status = EscrowStatus.DISPUTED
            elif MilestoneStatus.PENDING in statuses:
                escrow.status = EscrowStatus.ACTIVE

            records = [self._record(
                RecordType.DISPUTE_RESOLVED, escrow, actor,
                milestoneIndex=index, releasedToRecipient=release_to_recipient, milestoneFee=fee,
            )]
            records += self._completion(escrow, actor)
            result = self._commit(escrow, legs, records)

        logger.info(
            "Escrow %d milestone %d resolved for %s",
            escrow_id, index, "recipient" if release_to_recipient else "sender",
        )
        return result

    # ── Cancel ────────────────────────────────────────────────

    def cancel_escrow(self, escrow_id: int, actor: str) -> Escrow:
        """
        Sender only, while ACTIVE and before anything has been released.
        Refunds everything still held, without a fee.
        """
        self._ensure_active()
        actor = self._actor(actor)
        with self._locks.hold(("escrow", escrow_id)):
            escrow = self._working_copy(escrow_id)
            if actor != escrow.sender:
                raise NotAuthorized(
                    "Only the sender may cancel",
                    {"escrow_id": escrow_id, "actor": actor},
                )
            if escrow.status != EscrowStatus.ACTIVE:
                raise EscrowNotActive(
                    "Escrow is not active",
                    {"escrow_id": escrow_id, "status": escrow.status.value},
                )
            if escrow.released_amount != 0:
                raise NotAuthorized(
                    "Cannot cancel after a release",
                    {"escrow_id": escrow_id, "released": escrow.released_amount},
                )

            refund = escrow.held_amount
            escrow.refunded_amount += refund
            escrow.status           = EscrowStatus.CANCELLED
            escrow.completed_at     = self.clock.now()
            result = self._commit(
                escrow,
                [Leg(CUSTODY_ACCOUNT, escrow.sender, refund)],
                [self._record(RecordType.ESCROW_CANCELLED, escrow, actor, refunded=refund)],
            )

        logger.info("Escrow %d cancelled, %d refunded", escrow_id, refund)
        return result

    # ── Queries ───────────────────────────────────────────────

    def get_escrow(self, escrow_id: int) -> Escrow:
        with self._locks.hold(("escrow", escrow_id)):
            return self._escrow(escrow_id).snapshot()

    def get_milestones(self, escrow_id: int) -> List[Milestone]:
        return self.get_escrow(escrow_id).milestones

    def get_milestone(self, escrow_id: int, index: int) -> Milestone:
        return self._milestone(self.get_escrow(escrow_id), index)

    def get_sender_escrows(self, address: str) -> List[int]:
        address = normalize_address(address)
        with self._table_lock:
            return list(self._by_sender.get(address, []))

    def get_recipient_escrows(self, address: str) -> List[int]:
        address = normalize_address(address)
        with self._table_lock:
            return list(self._by_recipient.get(address, []))

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._escrows)
