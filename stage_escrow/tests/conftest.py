"""
stage_escrow.tests.conftest
===========================

Pytest fixtures for the escrow controller.

Goals:
- A fresh, deterministic `LocalChain` per test with the controller
  instantiated (escrow_amount=100, denom "X", release_height_delta=10).
- Stable account addresses derived from labels (admin, alice, bob, carol).
- A settable stage oracle registered at the target distribution contract.
- Environment isolation: STAGE_ESCROW_* variables are cleared and the cached
  config is reset around every test.

Usage (inside a test file):
    def test_flow(escrow, accounts):
        escrow.lock(accounts.alice)
        escrow.target_oracle.advance()
        res = escrow.release(accounts.bob, stage=0)
        assert res.attr("path") == "stage_advanced"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Optional

import pytest

from stage_escrow.config import load_config
from stage_escrow.contract import contract as escrow_contract
from stage_escrow.contract.msg import (
    InstantiateMsg,
    LockFunds,
    ReleaseLockedFunds,
)
from stage_escrow.logging import clear_context
from stage_escrow.runtime.context import Coin, coins
from stage_escrow.runtime.events_api import Response
from stage_escrow.runtime.host import LocalChain
from stage_escrow.runtime.querier import FixedStageOracle
from stage_escrow.utils.address import address_from_label

DENOM = "X"
ESCROW_AMOUNT = 100
RELEASE_DELTA = 10
START_HEIGHT = 1
INITIAL_BALANCE = 10_000


# --- environment isolation ----------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("STAGE_ESCROW_"):
            monkeypatch.delenv(name, raising=False)
    load_config.cache_clear()
    clear_context()
    yield
    load_config.cache_clear()
    clear_context()


# --- accounts -----------------------------------------------------------------


@dataclass(frozen=True)
class Accounts:
    admin: str
    alice: str
    bob: str
    carol: str
    target: str
    other_target: str


@pytest.fixture
def accounts() -> Accounts:
    return Accounts(
        admin=address_from_label("admin"),
        alice=address_from_label("alice"),
        bob=address_from_label("bob"),
        carol=address_from_label("carol"),
        target=address_from_label("airdrop-1"),
        other_target=address_from_label("airdrop-2"),
    )


# --- chain harness ------------------------------------------------------------


@dataclass
class EscrowHarness:
    chain: LocalChain
    contract: str
    accounts: Accounts
    target_oracle: FixedStageOracle

    def lock(
        self,
        sender: str,
        *,
        target: Optional[str] = None,
        funds: Optional[Iterable[Coin]] = None,
    ) -> Response:
        return self.chain.execute(
            self.contract,
            sender,
            LockFunds(target_contract=target or self.accounts.target),
            funds=coins(ESCROW_AMOUNT, DENOM) if funds is None else funds,
        )

    def release(self, sender: str, *, stage: int, target: Optional[str] = None) -> Response:
        return self.chain.execute(
            self.contract,
            sender,
            ReleaseLockedFunds(target_contract=target or self.accounts.target, stage=stage),
        )

    def query(self, msg):
        return self.chain.query(self.contract, msg)

    def balance(self, address: str) -> int:
        return self.chain.balance(address, DENOM)


@pytest.fixture
def chain() -> LocalChain:
    return LocalChain(escrow_contract, height=START_HEIGHT)


@pytest.fixture
def escrow(chain: LocalChain, accounts: Accounts) -> EscrowHarness:
    for who in (accounts.admin, accounts.alice, accounts.bob, accounts.carol):
        chain.fund(who, coins(INITIAL_BALANCE, DENOM))
    oracle = chain.register_oracle(accounts.target, FixedStageOracle(0))
    chain.register_oracle(accounts.other_target, FixedStageOracle(0))
    contract, _ = chain.instantiate(
        accounts.admin,
        InstantiateMsg(
            escrow_amount=ESCROW_AMOUNT,
            allowed_native=DENOM,
            release_height_delta=RELEASE_DELTA,
        ),
    )
    return EscrowHarness(chain=chain, contract=contract, accounts=accounts, target_oracle=oracle)
