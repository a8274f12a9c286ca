"""
tests/test_batch.py

Batch payments validate every item first, then move funds once.
"""

import pytest

from afriflow.core.exceptions import (
    InsufficientBalance,
    InvalidAmount,
    InvalidBatch,
    InvalidRecipient,
    UnsupportedCorridor,
)
from afriflow.core.models import ZERO_ADDRESS, PaymentKind, PaymentStatus
from afriflow.ledger.vault import CUSTODY_ACCOUNT

from conftest import OTHER, RECIPIENT, SENDER, START_BALANCE, STRANGER, TOKEN, TREASURY


def _snapshot(service):
    return {
        account: service.balance_of(TOKEN, account)
        for account in (SENDER, RECIPIENT, OTHER, STRANGER, TREASURY, CUSTODY_ACCOUNT)
    }


class TestBatchPayment:

    def test_fan_out(self, service):
        payments = service.batch_payment(
            SENDER,
            [RECIPIENT, OTHER, STRANGER],
            TOKEN,
            [1_000_000, 2_000_000, 3_000_000],
            "NG",
            ["KE", "ZA", "US"],
        )
        assert [p.fee for p in payments] == [1_000, 2_000, 3_000]
        assert all(p.kind == PaymentKind.BATCH for p in payments)
        assert all(p.status == PaymentStatus.COMPLETED for p in payments)

        assert service.balance_of(TOKEN, SENDER) == START_BALANCE - 6_000_000
        assert service.balance_of(TOKEN, RECIPIENT) == 999_000
        assert service.balance_of(TOKEN, OTHER) == 1_998_000
        assert service.balance_of(TOKEN, STRANGER) == 2_997_000
        assert service.balance_of(TOKEN, TREASURY) == 6_000
        assert service.balance_of(TOKEN, CUSTODY_ACCOUNT) == 0

    def test_destinations_recorded_per_item(self, service):
        payments = service.batch_payment(
            SENDER, [RECIPIENT, OTHER], TOKEN, [1000, 1000], "NG", ["KE", "US"]
        )
        assert [p.destination_corridor for p in payments] == ["KE", "US"]
        assert len({p.payment_id for p in payments}) == 2

    def test_one_invalid_recipient_rejects_everything(self, service):
        before = _snapshot(service)
        with pytest.raises(InvalidRecipient):
            service.batch_payment(
                SENDER,
                [RECIPIENT, ZERO_ADDRESS, OTHER],
                TOKEN,
                [1000, 1000, 1000],
                "NG",
                ["KE", "KE", "KE"],
            )
        assert _snapshot(service) == before
        assert len(service.ledger) == 0

    def test_one_bad_corridor_rejects_everything(self, service):
        before = _snapshot(service)
        with pytest.raises(UnsupportedCorridor):
            service.batch_payment(
                SENDER, [RECIPIENT, OTHER], TOKEN, [1000, 1000], "US", ["KE", "GB"]
            )
        assert _snapshot(service) == before

    def test_one_small_amount_rejects_everything(self, service):
        with pytest.raises(InvalidAmount):
            service.batch_payment(
                SENDER, [RECIPIENT, OTHER], TOKEN, [1000, 1], "NG", ["KE", "KE"]
            )
        assert len(service.ledger) == 0

    def test_total_over_balance_moves_nothing(self, service):
        before = _snapshot(service)
        half = START_BALANCE // 2 + 1
        with pytest.raises(InsufficientBalance):
            service.batch_payment(
                SENDER, [RECIPIENT, OTHER], TOKEN, [half, half], "NG", ["KE", "KE"]
            )
        assert _snapshot(service) == before

    def test_size_limit(self, service_factory):
        service = service_factory(max_batch_size=3)
        with pytest.raises(InvalidBatch):
            service.batch_payment(SENDER, [RECIPIENT] * 4, TOKEN, [1000] * 4, "NG", ["KE"] * 4)
        service.batch_payment(SENDER, [RECIPIENT] * 3, TOKEN, [1000] * 3, "NG", ["KE"] * 3)

    def test_empty_batch(self, service):
        with pytest.raises(InvalidBatch):
            service.batch_payment(SENDER, [], TOKEN, [], "NG", [])

    def test_mismatched_lengths(self, service):
        with pytest.raises(InvalidBatch):
            service.batch_payment(SENDER, [RECIPIENT, OTHER], TOKEN, [1000], "NG", ["KE", "KE"])
        with pytest.raises(InvalidBatch):
            service.batch_payment(SENDER, [RECIPIENT], TOKEN, [1000], "NG", ["KE", "KE"])
