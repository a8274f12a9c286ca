"""
Custodial token balances.

TokenVault is the transactional ledger underneath payments and escrows.
A multi-leg transfer is one atomic unit: every debit is checked against the
pre-transfer balances, then every leg is applied, under one lock. Either all
legs land or none do.

Funds in flight and funds held in escrow sit on CUSTODY_ACCOUNT, an account
owned by the settlement core itself rather than by either party.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from afriflow.core.exceptions import AccountingMismatch, InsufficientBalance, InvalidAmount


logger = logging.getLogger(__name__)

CUSTODY_ACCOUNT = "afriflow:custody"


@dataclass(frozen=True)
class Leg:
    source:      str
    destination: str
    amount:      int


class TokenVault:

    def __init__(self) -> None:
        self._lock     = threading.Lock()
        self._balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._supply:   Dict[str, int]            = defaultdict(int)

    # ── Queries ───────────────────────────────────────────────

    def balance_of(self, token: str, account: str) -> int:
        with self._lock:
            return self._balances[token].get(account, 0)

    def total_supply(self, token: str) -> int:
        with self._lock:
            return self._supply[token]

    # ── Supply changes ────────────────────────────────────────

    def deposit(self, token: str, account: str, amount: int) -> int:
        """Credit funds entering from outside the settlement core."""
        if amount <= 0:
            raise InvalidAmount("Deposit must be positive", {"amount": amount})
        with self._lock:
            self._balances[token][account] += amount
            self._supply[token] += amount
            return self._balances[token][account]

    def withdraw(self, token: str, account: str, amount: int) -> int:
        if amount <= 0:
            raise InvalidAmount("Withdrawal must be positive", {"amount": amount})
        with self._lock:
            balance = self._balances[token].get(account, 0)
            if balance < amount:
                raise InsufficientBalance(
                    "Insufficient balance",
                    {"account": account, "balance": balance, "required": amount},
                )
            self._balances[token][account] = balance - amount
            self._supply[token] -= amount
            return self._balances[token][account]

    # ── Transfers ─────────────────────────────────────────────

    def transfer(
        self,
        token:         str,
        source:        str,
        destination:   str,
        amount:        int,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.transfer_legs(token, [Leg(source, destination, amount)], before_commit)

    def transfer_legs(
        self,
        token:         str,
        legs:          Iterable[Leg],
        before_commit: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Apply every leg or none.

        Zero-amount legs are skipped. Raises InsufficientBalance before any
        balance changes. Raises AccountingMismatch if supply has drifted.

        before_commit runs under the vault lock once every check has passed
        and before any balance moves. If it raises, no leg is applied. Callers
        journal and publish their records there.
        """
        legs: List[Leg] = [leg for leg in legs if leg.amount != 0]
        for leg in legs:
            if isinstance(leg.amount, bool) or not isinstance(leg.amount, int) or leg.amount < 0:
                raise InvalidAmount("Transfer leg must be a positive int", {"amount": leg.amount})

        net: Dict[str, int] = defaultdict(int)
        for leg in legs:
            net[leg.source]      -= leg.amount
            net[leg.destination] += leg.amount

        with self._lock:
            balances = self._balances[token]
            for account, delta in net.items():
                if delta < 0 and balances.get(account, 0) + delta < 0:
                    raise InsufficientBalance(
                        "Insufficient balance",
                        {
                            "account":  account,
                            "balance":  balances.get(account, 0),
                            "required": -delta,
                        },
                    )

            supply = sum(balances.values())
            if supply != self._supply[token]:
                logger.error(
                    "Vault accounting mismatch on %s: balances=%d recorded=%d",
                    token, supply, self._supply[token],
                )
                raise AccountingMismatch(
                    "Token supply drifted from recorded total",
                    {"token": token, "balances": supply, "recorded": self._supply[token]},
                )

            if before_commit is not None:
                before_commit()

            for account, delta in net.items():
                balances[account] = balances.get(account, 0) + delta
