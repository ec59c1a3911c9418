from __future__ import annotations

import pytest

from stage_escrow.contract.contract import PATH_EXPIRED, PATH_STAGE_ADVANCED
from stage_escrow.contract.msg import EscrowQuery, UpdateConfig
from stage_escrow.errors import (
    CannotReleaseFunds,
    ErrorCode,
    EscrowAlreadyReleased,
    InsufficientFunds,
    NotFound,
    Unauthorized,
)
from stage_escrow.runtime.bank import BankSend
from stage_escrow.runtime.context import coins

from .conftest import DENOM, ESCROW_AMOUNT, INITIAL_BALANCE, RELEASE_DELTA, START_HEIGHT

EXPIRATION = START_HEIGHT + RELEASE_DELTA


def _escrow(escrow, stage=0):
    return escrow.query(EscrowQuery(target_contract=escrow.accounts.target, stage=stage))


# ---- the lifecycle walkthrough -------------------------------------------------


def test_scenario_not_yet_releasable(escrow, accounts):
    escrow.lock(accounts.alice)
    assert _escrow(escrow).expiration == 11

    escrow.chain.set_height(5)
    with pytest.raises(CannotReleaseFunds) as ei:
        escrow.release(accounts.bob, stage=0)
    assert ei.value.retryable is True
    assert ei.value.code == ErrorCode.CANNOT_RELEASE
    assert _escrow(escrow).released is False


def test_scenario_admin_releases_after_expiry(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.chain.set_height(150)

    res = escrow.release(accounts.admin, stage=0)

    assert res.messages == [BankSend(to_address=accounts.alice, amount=coins(ESCROW_AMOUNT, DENOM))]
    assert res.attr("path") == PATH_EXPIRED
    assert res.attr("recipient") == accounts.alice
    assert _escrow(escrow).released is True
    assert escrow.balance(accounts.alice) == INITIAL_BALANCE
    assert escrow.balance(escrow.contract) == 0


def test_scenario_third_party_releases_after_stage_advance(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.chain.set_height(5)
    escrow.target_oracle.set(1)

    res = escrow.release(accounts.carol, stage=0)

    assert res.attr("path") == PATH_STAGE_ADVANCED
    assert res.messages[0].to_address == accounts.alice
    assert _escrow(escrow).released is True
    assert escrow.balance(accounts.alice) == INITIAL_BALANCE
    assert escrow.balance(accounts.carol) == INITIAL_BALANCE


def test_release_attributes(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.target_oracle.advance()
    attrs = escrow.release(accounts.bob, stage=0).attributes_dict()
    assert attrs == {
        "action": "release_funds",
        "path": PATH_STAGE_ADVANCED,
        "escrow_amount": str(ESCROW_AMOUNT),
        "recipient": accounts.alice,
        "target": accounts.target,
        "stage": "0",
    }


# ---- Path A: expiry ------------------------------------------------------------


def test_expired_release_requires_admin(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.chain.set_height(EXPIRATION + 1)

    for caller in (accounts.alice, accounts.bob):
        with pytest.raises(Unauthorized):
            escrow.release(caller, stage=0)
    assert _escrow(escrow).released is False

    escrow.release(accounts.admin, stage=0)
    assert _escrow(escrow).released is True


def test_expiry_is_inclusive_of_expiration_height(escrow, accounts):
    escrow.lock(accounts.alice)

    escrow.chain.set_height(EXPIRATION - 1)
    with pytest.raises(CannotReleaseFunds):
        escrow.release(accounts.admin, stage=0)

    escrow.chain.set_height(EXPIRATION)
    res = escrow.release(accounts.admin, stage=0)
    assert res.attr("path") == PATH_EXPIRED


def test_expired_escrow_ignores_stage_advance(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.target_oracle.advance(3)
    escrow.chain.set_height(EXPIRATION)

    # Once expired only Path A applies, even though the stage moved on.
    with pytest.raises(Unauthorized):
        escrow.release(accounts.bob, stage=0)


# ---- Path B: stage advance -----------------------------------------------------


def test_stage_advance_release_open_to_admin_too(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.target_oracle.advance()
    res = escrow.release(accounts.admin, stage=0)
    assert res.attr("path") == PATH_STAGE_ADVANCED


def test_neither_condition_rejects_admin(escrow, accounts):
    escrow.lock(accounts.alice)
    with pytest.raises(CannotReleaseFunds):
        escrow.release(accounts.admin, stage=0)


def test_later_escrow_waits_for_its_own_stage(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.target_oracle.advance()
    escrow.lock(accounts.bob)

    # Stage 0 escrow is releasable, the stage 1 escrow is not.
    escrow.release(accounts.carol, stage=0)
    with pytest.raises(CannotReleaseFunds):
        escrow.release(accounts.carol, stage=1)

    escrow.target_oracle.advance()
    escrow.release(accounts.carol, stage=1)
    assert escrow.balance(accounts.bob) == INITIAL_BALANCE


# ---- idempotency ---------------------------------------------------------------


@pytest.mark.parametrize("path", ["expired", "stage_advanced"])
def test_no_double_release(escrow, accounts, path):
    escrow.lock(accounts.alice)
    if path == "expired":
        escrow.chain.set_height(EXPIRATION)
        caller = accounts.admin
    else:
        escrow.target_oracle.advance()
        caller = accounts.bob

    escrow.release(caller, stage=0)
    contract_balance = escrow.balance(escrow.contract)

    with pytest.raises(EscrowAlreadyReleased):
        escrow.release(caller, stage=0)
    with pytest.raises(EscrowAlreadyReleased):
        escrow.release(accounts.admin, stage=0)
    assert escrow.balance(escrow.contract) == contract_balance
    assert escrow.balance(accounts.alice) == INITIAL_BALANCE


def test_release_unknown_escrow_is_not_found(escrow, accounts):
    with pytest.raises(NotFound) as ei:
        escrow.release(accounts.admin, stage=0)
    assert ei.value.code == ErrorCode.NOT_FOUND


def test_release_pays_amount_captured_at_lock(escrow, accounts):
    escrow.lock(accounts.alice)
    escrow.chain.execute(escrow.contract, accounts.admin, UpdateConfig(escrow_amount=500))
    escrow.target_oracle.advance()

    res = escrow.release(accounts.bob, stage=0)
    assert res.messages[0].amount == coins(ESCROW_AMOUNT, DENOM)
    assert escrow.balance(accounts.alice) == INITIAL_BALANCE


def test_failed_payout_rolls_back_release_flag(escrow, accounts):
    escrow.lock(accounts.alice)
    # Drain the contract so the refund transfer cannot be executed.
    escrow.chain.bank.transfer(escrow.contract, accounts.carol, coins(ESCROW_AMOUNT, DENOM))
    escrow.target_oracle.advance()

    with pytest.raises(InsufficientFunds):
        escrow.release(accounts.bob, stage=0)
    assert _escrow(escrow).released is False
