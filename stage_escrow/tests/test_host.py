"""
LocalChain: the all-or-nothing boundary around each execution, the logical
clock, and persistence of the whole chain to a CBOR state file.
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from stage_escrow import logging as elog
from stage_escrow.config import load_config
from stage_escrow.contract import contract as escrow_contract
from stage_escrow.contract.msg import (
    ConfigQuery,
    EscrowQuery,
    InstantiateMsg,
    ListEscrows,
    LockFunds,
    ReleaseLockedFunds,
)
from stage_escrow.errors import (
    ContextError,
    EscrowAlreadyCreated,
    InsufficientFunds,
    QueryError,
    SerializationError,
)
from stage_escrow.runtime.bank import Bank
from stage_escrow.runtime.context import Coin, coins
from stage_escrow.runtime.events_api import Response
from stage_escrow.runtime.host import LocalChain
from stage_escrow.runtime.querier import FixedStageOracle, Querier

from .conftest import DENOM, ESCROW_AMOUNT, INITIAL_BALANCE


def test_rejected_execution_leaves_no_trace(escrow, accounts):
    escrow.lock(accounts.alice)
    storage_before = escrow.chain._storage(escrow.contract).items()
    balances_before = escrow.chain.bank.snapshot()

    with pytest.raises(EscrowAlreadyCreated):
        escrow.lock(accounts.bob)

    assert escrow.chain._storage(escrow.contract).items() == storage_before
    assert escrow.chain.bank.snapshot() == balances_before


def test_handler_exception_discards_partial_writes(chain, accounts, monkeypatch):
    chain.fund(accounts.alice, coins(INITIAL_BALANCE, DENOM))
    chain.register_oracle(accounts.target)
    contract, _ = chain.instantiate(
        accounts.admin,
        InstantiateMsg(escrow_amount=1, allowed_native=DENOM, release_height_delta=1),
    )
    original = escrow_contract.execute_lock_funds

    def lock_then_fail(*args, **kwargs):
        original(*args, **kwargs)
        raise RuntimeError("host crashed after the write")

    monkeypatch.setattr(escrow_contract, "execute_lock_funds", lock_then_fail)
    with pytest.raises(RuntimeError):
        chain.execute(contract, accounts.alice, LockFunds(accounts.target), coins(1, DENOM))

    assert chain.query(contract, ListEscrows()).escrows == []
    assert chain.balance(accounts.alice, DENOM) == INITIAL_BALANCE


def test_height_never_decreases(chain):
    chain.next_block(4)
    assert chain.height == 5
    with pytest.raises(ContextError):
        chain.set_height(2)
    with pytest.raises(ContextError):
        chain.next_block(-1)


def test_unknown_contract(chain, accounts):
    with pytest.raises(ContextError):
        chain.query(accounts.alice, ConfigQuery())


def test_state_file_round_trip(escrow, accounts, tmp_path):
    escrow.lock(accounts.alice)
    escrow.chain.next_block(3)
    path = tmp_path / "chain.state"
    escrow.chain.save(path)

    restored = LocalChain.load(path, escrow_contract)
    assert restored.height == escrow.chain.height
    assert restored.contracts == escrow.chain.contracts
    assert restored.balance(accounts.alice, DENOM) == INITIAL_BALANCE - ESCROW_AMOUNT
    assert restored.oracle(accounts.target).latest_stage() == 0
    e = restored.query(escrow.contract, EscrowQuery(target_contract=accounts.target, stage=0))
    assert e.source == accounts.alice

    # The restored chain keeps working: the oracle advances and the escrow releases.
    restored.oracle(accounts.target).advance()
    restored.execute(
        escrow.contract, accounts.bob, ReleaseLockedFunds(accounts.target, 0)
    )
    assert restored.balance(accounts.alice, DENOM) == INITIAL_BALANCE


def test_reloaded_chain_keeps_stage_width_of_instantiate(escrow, accounts, tmp_path, monkeypatch):
    escrow.lock(accounts.alice)
    path = tmp_path / "chain.state"
    escrow.chain.save(path)

    monkeypatch.setenv("STAGE_ESCROW_STAGE_BITS", "32")
    load_config.cache_clear()
    restored = LocalChain.load(path, escrow_contract)

    with pytest.raises(EscrowAlreadyCreated):
        restored.execute(
            escrow.contract, accounts.bob, LockFunds(accounts.target), coins(ESCROW_AMOUNT, DENOM)
        )
    listed = restored.query(escrow.contract, ListEscrows()).escrows
    assert [(e.stage, e.source) for e in listed] == [(0, accounts.alice)]


def test_corrupt_state_file(tmp_path):
    path = tmp_path / "chain.state"
    path.write_bytes(b"\xff\xff")
    with pytest.raises(SerializationError):
        LocalChain.load(path, escrow_contract)


def test_executions_log_with_bound_context(escrow, accounts):
    buf = io.StringIO()
    elog.configure(json=True, level="DEBUG", stream=buf)
    try:
        escrow.lock(accounts.alice)
        with pytest.raises(EscrowAlreadyCreated):
            escrow.lock(accounts.bob)
    finally:
        logging.getLogger("stage_escrow").handlers.clear()

    records = [json.loads(line) for line in buf.getvalue().splitlines()]
    locked = next(r for r in records if r["msg"] == "escrow locked")
    assert locked["contract"] == escrow.contract
    assert locked["sender"] == accounts.alice
    assert locked["action"] == "lock_funds"
    rejected = next(r for r in records if r["msg"] == "execution rejected")
    assert rejected["code"] == "ESCROW/ALREADY_CREATED"
    assert "trace_id" in rejected


# ---- collaborators -------------------------------------------------------------


def test_bank_transfer_is_all_or_nothing():
    bank = Bank()
    bank.credit("a", Coin("X", 5))
    with pytest.raises(InsufficientFunds):
        bank.transfer("a", "b", [Coin("X", 3), Coin("Y", 1)])
    assert bank.balance("a", "X") == 5
    assert bank.balance("b", "X") == 0


def test_querier_validation():
    q = Querier()
    with pytest.raises(QueryError):
        q.latest_stage("anim1missing")

    class Broken:
        def latest_stage(self):
            return "7"

    q.register("anim1broken", Broken())
    with pytest.raises(QueryError):
        q.latest_stage("anim1broken")


def test_fixed_oracle_is_monotonic():
    o = FixedStageOracle(2)
    assert o.advance() == 3
    with pytest.raises(ValueError):
        o.set(1)


def test_response_attribute_rules():
    res = Response().add_attribute("released", True).add_attribute("raw", b"\x01")
    assert res.attributes == [("released", "true"), ("raw", "0x01")]
    with pytest.raises(ContextError):
        res.add_attribute("bad key", "v")
