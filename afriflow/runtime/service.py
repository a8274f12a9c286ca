"""
afriflow/runtime/service.py

SettlementService - one object wiring every settlement component from a
SettlementConfig, plus the administrative API and the outward query
surface.

    config  = SettlementConfig.from_yaml("afriflow.yaml")
    service = SettlementService(config)
    result  = service.settle(sender, recipient, token, 5_000_000, "NG", "KE")

The configured admin (or the treasury when no admin is set) is granted
ADMIN at construction. Every other capability is granted through
grant().
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from afriflow.config import SettlementConfig, validate_fee_bps
from afriflow.core.access import AccessControl, Capability, PauseSwitch
from afriflow.core.crypto import Ed25519KeyManager
from afriflow.core.exceptions import ConfigError
from afriflow.core.models import Escrow, Milestone, Payment, SettlementResult, normalize_address
from afriflow.core.time import Clock, Deadline
from afriflow.escrow.state_machine import EscrowStateMachine, MilestoneSpec
from afriflow.journal.entry import RecordType
from afriflow.journal.journal import SettlementJournal
from afriflow.ledger.corridors import CorridorRegistry
from afriflow.ledger.fees import FeeCalculator
from afriflow.ledger.payments import PaymentLedger
from afriflow.ledger.vault import CUSTODY_ACCOUNT, TokenVault
from afriflow.runtime.requests import EscrowRequest, PaymentRequest
from afriflow.settlement.engine import SettlementEngine
from afriflow.settlement.facilitator import FacilitatorClient
from afriflow.settlement.fallback import DirectSettlementFallback
from afriflow.settlement.signer import AuthorizationSigner


logger = logging.getLogger(__name__)

JOURNAL_KEY_FILENAME = "journal.key"


class SettlementService:

    def __init__(
        self,
        config:      SettlementConfig,
        clock:       Optional[Clock] = None,
        vault:       Optional[TokenVault] = None,
        journal_key: Optional[Ed25519KeyManager] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config
        self.clock  = clock or Clock()
        self.vault  = vault or TokenVault()

        self.access  = AccessControl(config.admin or config.treasury)
        self.pause_switch = PauseSwitch(self.access)
        if journal_key is None:
            journal_key = (
                Ed25519KeyManager.load_or_generate(Path(config.journal_path) / JOURNAL_KEY_FILENAME)
                if config.journal_path else Ed25519KeyManager.generate()
            )
        self.journal = SettlementJournal(journal_key, journal_path=config.journal_path)

        self.corridors = CorridorRegistry(self.access, on_change=self._corridor_changed)
        self.corridors.initialize(config.regional_corridors, config.external_corridors)

        self.fees        = FeeCalculator(config.fee_bps)
        self.escrow_fees = FeeCalculator(config.escrow_fee_bps)

        self.ledger = PaymentLedger(
            config, self.vault, self.corridors, self.fees,
            clock=   self.clock,
            journal= self.journal,
            pause=   self.pause_switch,
        )
        self.escrows = EscrowStateMachine(
            config, self.vault, self.access, self.escrow_fees,
            clock=   self.clock,
            journal= self.journal,
            pause=   self.pause_switch,
        )

        self.signer = AuthorizationSigner.from_config(config, clock=self.clock)
        self.facilitator: Optional[FacilitatorClient] = None
        if config.facilitator_url:
            self.facilitator = FacilitatorClient(
                config.facilitator_url,
                timeout= config.facilitator_timeout,
                client=  http_client,
            )
        self.fallback = DirectSettlementFallback(self.ledger, self.journal, agent=self.signer.address)
        self.engine   = SettlementEngine(
            self.ledger, self.signer, self.fallback,
            facilitator= self.facilitator,
            clock=       self.clock,
        )

    @classmethod
    def from_yaml(cls, path, **kwargs) -> "SettlementService":
        return cls(SettlementConfig.from_yaml(path), **kwargs)

    def close(self) -> None:
        if self.facilitator is not None:
            self.facilitator.close()

    # ── Funding ───────────────────────────────────────────────

    def deposit(self, token: str, account: str, amount: int) -> int:
        """Credit funds arriving from outside the settlement core."""
        return self.vault.deposit(normalize_address(token), normalize_address(account), amount)

    def withdraw(self, token: str, account: str, amount: int) -> int:
        return self.vault.withdraw(normalize_address(token), normalize_address(account), amount)

    # ── Payments ──────────────────────────────────────────────

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
        return self.ledger.instant_payment(sender, recipient, token, amount, origin, destination, metadata)

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
        return self.ledger.batch_payment(
            sender, recipients, token, amounts, origin, destinations, metadata
        )

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
        """Agent-triggered payment: facilitator first, direct fallback second."""
        return self.engine.settle(
            sender, recipient, token, amount, origin, destination,
            metadata=metadata, deadline=deadline,
        )

    def submit_payment(
        self,
        request:  Union[PaymentRequest, Mapping[str, Any]],
        deadline: Optional[Deadline] = None,
    ) -> SettlementResult:
        if not isinstance(request, PaymentRequest):
            request = PaymentRequest.from_dict(request)
        return self.settle(
            request.sender, request.recipient, request.token, request.amount,
            request.origin, request.destination,
            metadata=request.metadata, deadline=deadline,
        )

    def reconcile(self, now: Optional[int] = None) -> List[Payment]:
        return self.engine.reconcile(now)

    # ── Escrow ────────────────────────────────────────────────

    def create_escrow(
        self,
        sender:       str,
        recipient:    str,
        token:        str,
        total_amount: int,
        milestones:   Sequence[MilestoneSpec],
        metadata:     str = "",
    ) -> Escrow:
        return self.escrows.create_escrow(sender, recipient, token, total_amount, milestones, metadata)

    def submit_escrow(self, request: Union[EscrowRequest, Mapping[str, Any]]) -> Escrow:
        if not isinstance(request, EscrowRequest):
            request = EscrowRequest.from_dict(request)
        return self.create_escrow(
            request.sender, request.recipient, request.token,
            request.total_amount, request.milestones, request.metadata,
        )

    def release_milestone(self, escrow_id: int, index: int, actor: str) -> Escrow:
        return self.escrows.release_milestone(escrow_id, index, actor)

    def release_milestones(self, escrow_id: int, indices: Sequence[int], actor: str) -> Escrow:
        return self.escrows.release_milestones(escrow_id, indices, actor)

    def dispute_milestone(self, escrow_id: int, index: int, actor: str) -> Escrow:
        return self.escrows.dispute_milestone(escrow_id, index, actor)

    def resolve_dispute(self, escrow_id: int, index: int, release_to_recipient: bool, actor: str) -> Escrow:
        return self.escrows.resolve_dispute(escrow_id, index, release_to_recipient, actor)

    def cancel_escrow(self, escrow_id: int, actor: str) -> Escrow:
        return self.escrows.cancel_escrow(escrow_id, actor)

    # ── Administration ────────────────────────────────────────

    def grant(self, admin: str, actor: str, capability: Capability) -> None:
        self.access.grant(admin, actor, capability)

    def revoke(self, admin: str, actor: str, capability: Capability) -> None:
        self.access.revoke(admin, actor, capability)

    def set_fee_bps(self, actor: str, fee_bps: int) -> None:
        self.access.require(actor, Capability.ADMIN)
        fee_bps = validate_fee_bps(fee_bps, "fee_bps")
        self._config_changed(actor, "fee_bps", fee_bps)
        self.config.fee_bps = fee_bps
        self.fees.fee_bps   = fee_bps

    def set_escrow_fee_bps(self, actor: str, fee_bps: int) -> None:
        self.access.require(actor, Capability.ADMIN)
        fee_bps = validate_fee_bps(fee_bps, "escrow_fee_bps")
        self._config_changed(actor, "escrow_fee_bps", fee_bps)
        self.config.escrow_fee_bps = fee_bps
        self.escrow_fees.fee_bps   = fee_bps

    def set_treasury(self, actor: str, treasury: str) -> None:
        self.access.require(actor, Capability.ADMIN)
        treasury = normalize_address(treasury, error=ConfigError, field_name="treasury")
        self._config_changed(actor, "treasury", treasury)
        self.config.treasury = treasury

    def set_token_supported(self, actor: str, token: str, supported: bool) -> None:
        self.access.require(actor, Capability.ADMIN)
        token  = normalize_address(token, error=ConfigError, field_name="token")
        tokens = [t for t in self.config.supported_tokens if t != token]
        if supported:
            tokens.append(token)
        self._config_changed(actor, "supported_tokens", {"token": token, "supported": supported})
        self.config.supported_tokens = tokens

    def set_corridor(self, actor: str, origin: str, destination: str, enabled: bool) -> None:
        self.corridors.set_corridor(actor, origin, destination, enabled)

    def pause(self, actor: str) -> None:
        # engages even when the journal cannot be written
        self.pause_switch.pause(actor)
        self._config_changed(actor, "paused", True)

    def unpause(self, actor: str) -> None:
        self.pause_switch.unpause(actor)
        self._config_changed(actor, "paused", False)

    @property
    def paused(self) -> bool:
        return self.pause_switch.paused

    def _config_changed(self, actor: str, key: str, value: Any) -> None:
        self.journal.append(RecordType.CONFIG_UPDATED, {"key": key, "value": value}, actor=actor)
        logger.info("Configuration %s changed by %s", key, actor)

    def _corridor_changed(self, origin: str, destination: str, enabled: bool, actor: str) -> None:
        logger.info("Corridor %s->%s %s by %s", origin, destination,
                    "enabled" if enabled else "disabled", actor)
        self.journal.append(
            RecordType.CORRIDOR_UPDATED,
            {"origin": origin, "destination": destination, "enabled": enabled},
            actor=actor,
        )

    # ── Queries ───────────────────────────────────────────────

    def get_payment(self, payment_id: str) -> Payment:
        return self.ledger.get_payment(payment_id)

    def get_user_payments(self, address: str) -> List[str]:
        return self.ledger.get_user_payments(address)

    def get_escrow(self, escrow_id: int) -> Escrow:
        return self.escrows.get_escrow(escrow_id)

    def get_milestone(self, escrow_id: int, index: int) -> Milestone:
        return self.escrows.get_milestone(escrow_id, index)

    def get_milestones(self, escrow_id: int) -> List[Milestone]:
        return self.escrows.get_milestones(escrow_id)

    def get_sender_escrows(self, address: str) -> List[int]:
        return self.escrows.get_sender_escrows(address)

    def get_recipient_escrows(self, address: str) -> List[int]:
        return self.escrows.get_recipient_escrows(address)

    def is_corridor_supported(self, origin: str, destination: str) -> bool:
        return self.corridors.is_supported(origin, destination)

    def list_corridors(self) -> List[Tuple[str, str]]:
        return self.corridors.list_enabled()

    def calculate_fee(self, amount: int) -> int:
        return self.ledger.calculate_fee(amount)

    def balance_of(self, token: str, account: str) -> int:
        if account != CUSTODY_ACCOUNT:
            account = normalize_address(account)
        return self.vault.balance_of(normalize_address(token), account)

    def stats(self) -> Dict[str, Any]:
        return {
            "payments":  len(self.ledger),
            "escrows":   len(self.escrows),
            "corridors": len(self.corridors),
            "paused":    self.paused,
            "journal":   self.journal.get_stats(),
        }
