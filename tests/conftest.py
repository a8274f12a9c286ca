"""
Shared fixtures: a frozen clock, a funded service with every role granted,
and a factory for services talking to a mocked facilitator.
"""

from typing import Callable, Optional

import httpx
import pytest
from eth_utils import to_checksum_address

from afriflow import Capability, SettlementConfig, SettlementService
from afriflow.core.time import FrozenClock


def _addr(byte: str) -> str:
    return to_checksum_address("0x" + byte * 20)


ADMIN     = _addr("ad")
TREASURY  = _addr("7e")
OPERATOR  = _addr("0b")
AGENT     = _addr("a9")
ARBITER   = _addr("ab")
SENDER    = _addr("51")
RECIPIENT = _addr("52")
OTHER     = _addr("53")
STRANGER  = _addr("99")
TOKEN     = _addr("c0")
OTHER_TOKEN = _addr("c1")

# Well-known throwaway key (eth-account documentation example)
SIGNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

FACILITATOR_URL = "https://facilitator.test"

START_BALANCE = 1_000_000_000


def make_config(**overrides) -> SettlementConfig:
    values = dict(
        treasury=           TREASURY,
        admin=              ADMIN,
        supported_tokens=   [TOKEN],
        min_payment_amount= 1_000,
        min_escrow_amount=  1_000,
        signer_private_key= SIGNER_KEY,
    )
    values.update(overrides)
    return SettlementConfig(**values)


def make_service(
    clock:       FrozenClock,
    handler:     Optional[Callable[[httpx.Request], httpx.Response]] = None,
    **overrides,
) -> SettlementService:
    http_client = None
    if handler is not None:
        overrides.setdefault("facilitator_url", FACILITATOR_URL)
        http_client = httpx.Client(transport=httpx.MockTransport(handler))

    service = SettlementService(make_config(**overrides), clock=clock, http_client=http_client)
    service.grant(ADMIN, OPERATOR, Capability.OPERATOR)
    service.grant(ADMIN, AGENT, Capability.AGENT)
    service.grant(ADMIN, ARBITER, Capability.ARBITER)
    service.deposit(TOKEN, SENDER, START_BALANCE)
    return service


@pytest.fixture
def clock():
    return FrozenClock(1_700_000_000)


@pytest.fixture
def service(clock):
    return make_service(clock)


@pytest.fixture
def service_factory(clock):
    def _factory(handler=None, **overrides):
        return make_service(clock, handler, **overrides)
    return _factory
