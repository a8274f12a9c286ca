"""
tests/test_service.py

SettlementService as the agent/UI layer sees it: camelCase requests in,
records and queries out.
"""

import pytest

from afriflow.core.exceptions import (
    InvalidAmount,
    InvalidMilestoneSet,
    NotAuthorized,
    ServicePaused,
    ValidationError,
)
from afriflow.core.models import EscrowStatus, PaymentStatus
from afriflow.ledger.vault import CUSTODY_ACCOUNT
from afriflow.runtime.requests import EscrowRequest, PaymentRequest, parse_release_condition

from conftest import OPERATOR, RECIPIENT, SENDER, START_BALANCE, STRANGER, TOKEN


def _payment_dict(**overrides):
    data = {
        "senderCapability":    SENDER,
        "recipientAddress":    RECIPIENT,
        "token":               TOKEN,
        "amount":              "2500000",
        "originCorridor":      "NG",
        "destinationCorridor": "GH",
        "metadata":            {"invoice": "INV-9", "lines": [1, 2]},
    }
    data.update(overrides)
    return data


def _escrow_dict(**overrides):
    data = {
        "senderCapability": SENDER,
        "recipientAddress": RECIPIENT,
        "token":            TOKEN,
        "totalAmount":      30_000,
        "milestones": [
            {"description": "design", "amount": 10_000, "releaseCondition": "manual"},
            {"description": "build",  "amount": 10_000, "releaseCondition": "2030-01-01T00:00:00Z"},
            {"description": "ship",   "amount": "10000", "releaseCondition": 1_900_000_000},
        ],
    }
    data.update(overrides)
    return data


class TestReleaseCondition:

    @pytest.mark.parametrize("value, expected", [
        (None, 0),
        ("manual", 0),
        ("", 0),
        (True, 0),
        (-5, 0),
        (1_900_000_000, 1_900_000_000),
        ("1900000000", 1_900_000_000),
        ("2030-01-01T00:00:00Z", 1_893_456_000),
        ("2030-01-01T00:00:00", 1_893_456_000),
        ("2030-01-01T01:00:00+01:00", 1_893_456_000),
        ([2030], 0),
    ])
    def test_parse(self, value, expected):
        assert parse_release_condition(value) == expected


class TestRequests:

    def test_payment_request(self):
        request = PaymentRequest.from_dict(_payment_dict())
        assert request.amount == 2_500_000
        assert request.destination == "GH"
        assert request.metadata == '{"invoice":"INV-9","lines":[1,2]}'

    def test_string_metadata_untouched(self):
        request = PaymentRequest.from_dict(_payment_dict(metadata="{ not: json"))
        assert request.metadata == "{ not: json"

    def test_missing_field(self):
        data = _payment_dict()
        del data["token"]
        with pytest.raises(ValidationError):
            PaymentRequest.from_dict(data)

    @pytest.mark.parametrize("amount", ["12.5", "-3", True, 1.5, "ten"])
    def test_bad_amount(self, amount):
        with pytest.raises(InvalidAmount):
            PaymentRequest.from_dict(_payment_dict(amount=amount))

    def test_escrow_request(self):
        request = EscrowRequest.from_dict(_escrow_dict())
        assert request.total_amount == 30_000
        assert [m.release_time for m in request.milestones] == [0, 1_893_456_000, 1_900_000_000]
        assert request.milestones[2].amount == 10_000

    def test_escrow_milestones_must_be_list(self):
        with pytest.raises(InvalidMilestoneSet):
            EscrowRequest.from_dict(_escrow_dict(milestones={"amount": 1}))
        with pytest.raises(InvalidMilestoneSet):
            EscrowRequest.from_dict(_escrow_dict(milestones=["oops"]))


class TestSubmission:

    def test_submit_payment_dict(self, service):
        result = service.submit_payment(_payment_dict())
        assert result.payment.status == PaymentStatus.COMPLETED
        assert result.payment.metadata == '{"invoice":"INV-9","lines":[1,2]}'
        assert service.balance_of(TOKEN, RECIPIENT) == 2_500_000 - 2_500

    def test_submit_payment_request_object(self, service):
        request = PaymentRequest.from_dict(_payment_dict())
        assert service.submit_payment(request).payment.amount == 2_500_000

    def test_submit_escrow(self, service):
        escrow = service.submit_escrow(_escrow_dict())
        assert escrow.status == EscrowStatus.ACTIVE
        assert escrow.milestones[0].auto_release is False
        assert escrow.milestones[1].auto_release is True
        assert service.balance_of(TOKEN, CUSTODY_ACCOUNT) == 30_000

    def test_submit_escrow_sum_mismatch(self, service):
        with pytest.raises(InvalidMilestoneSet):
            service.submit_escrow(_escrow_dict(totalAmount=29_999))


class TestQueriesAndPause:

    def test_queries_work_while_paused(self, service):
        payment = service.instant_payment(SENDER, RECIPIENT, TOKEN, 1_000, "NG", "KE")
        service.pause(OPERATOR)
        assert service.get_payment(payment.payment_id).amount == 1_000
        assert service.is_corridor_supported("NG", "KE")
        assert service.calculate_fee(1_000) == 1
        assert service.stats()["paused"] is True

    def test_every_mutation_blocked_while_paused(self, service):
        service.submit_escrow(_escrow_dict())
        service.pause(OPERATOR)
        calls = [
            lambda: service.instant_payment(SENDER, RECIPIENT, TOKEN, 1_000, "NG", "KE"),
            lambda: service.batch_payment(SENDER, [RECIPIENT], TOKEN, [1_000], "NG", ["KE"]),
            lambda: service.settle(SENDER, RECIPIENT, TOKEN, 1_000, "NG", "KE"),
            lambda: service.submit_escrow(_escrow_dict()),
            lambda: service.release_milestone(1, 0, SENDER),
            lambda: service.dispute_milestone(1, 0, RECIPIENT),
            lambda: service.cancel_escrow(1, SENDER),
        ]
        for call in calls:
            with pytest.raises(ServicePaused):
                call()
        assert service.balance_of(TOKEN, SENDER) == START_BALANCE - 30_000

    def test_pause_requires_operator(self, service):
        with pytest.raises(NotAuthorized):
            service.pause(STRANGER)
        assert not service.paused

    def test_stats(self, service):
        service.instant_payment(SENDER, RECIPIENT, TOKEN, 1_000, "NG", "KE")
        service.submit_escrow(_escrow_dict())
        stats = service.stats()
        assert stats["payments"] == 1
        assert stats["escrows"] == 1
        assert stats["corridors"] == 190
        assert stats["journal"]["next_sequence"] == len(service.journal)

    def test_withdraw(self, service):
        service.withdraw(TOKEN, SENDER, 1_000)
        assert service.balance_of(TOKEN, SENDER) == START_BALANCE - 1_000
        assert service.vault.total_supply(TOKEN) == START_BALANCE - 1_000
