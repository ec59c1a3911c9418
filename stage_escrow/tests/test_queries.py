from __future__ import annotations

from typing import List, Tuple

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from stage_escrow.config import DEFAULT_LIMIT, MAX_LIMIT
from stage_escrow.contract import contract as escrow_contract
from stage_escrow.contract.msg import (
    InstantiateMsg,
    ListEscrows,
    ListExpiredEscrows,
    LockFunds,
    ReleaseLockedFunds,
)
from stage_escrow.errors import ErrorCode, InvalidMessage
from stage_escrow.runtime.context import coins
from stage_escrow.runtime.host import LocalChain
from stage_escrow.runtime.querier import FixedStageOracle
from stage_escrow.utils.address import address_from_label

from .conftest import DENOM, ESCROW_AMOUNT, RELEASE_DELTA


def _keys(res) -> List[Tuple[str, int]]:
    return [e.cursor for e in res.escrows]


def _populate(escrow, accounts, per_target: int, targets: int = 2) -> List[Tuple[str, int]]:
    """Lock `per_target` escrows on each target (one per stage); return all keys sorted."""
    addrs = [accounts.target, accounts.other_target][:targets]
    keys = []
    for addr in addrs:
        oracle = escrow.chain.oracle(addr)
        for _ in range(per_target):
            escrow.lock(accounts.alice, target=addr)
            keys.append((addr, oracle.latest_stage()))
            oracle.advance()
    return sorted(keys)


def test_list_is_ascending_by_target_then_stage(escrow, accounts):
    keys = _populate(escrow, accounts, per_target=3)
    assert _keys(escrow.query(ListEscrows())) == keys


def test_list_default_and_max_limit(escrow, accounts):
    escrow.chain.fund(accounts.alice, coins(100 * ESCROW_AMOUNT, DENOM))
    keys = _populate(escrow, accounts, per_target=20)

    assert _keys(escrow.query(ListEscrows())) == keys[:DEFAULT_LIMIT]
    assert _keys(escrow.query(ListEscrows(limit=500))) == keys[:MAX_LIMIT]
    assert _keys(escrow.query(ListEscrows(limit=3))) == keys[:3]
    assert escrow.query(ListEscrows(limit=0)).escrows == []


def test_start_after_is_exclusive(escrow, accounts):
    keys = _populate(escrow, accounts, per_target=3)
    page = escrow.query(ListEscrows(start_after=keys[1], limit=2))
    assert _keys(page) == keys[2:4]


def test_start_after_mid_and_past_end(escrow, accounts):
    keys = _populate(escrow, accounts, per_target=3, targets=1)
    page = escrow.query(ListEscrows(start_after=(accounts.target, 0), limit=30))
    assert _keys(page) == keys[1:]

    # A cursor past the last key yields an empty page.
    assert escrow.query(ListEscrows(start_after=(accounts.target, 255))).escrows == []


def test_limit_one_returns_first_key(escrow, accounts):
    keys = _populate(escrow, accounts, per_target=2)
    assert _keys(escrow.query(ListEscrows(limit=1))) == keys[:1]


@pytest.mark.parametrize("msg", [ListEscrows(limit=-1), ListExpiredEscrows(limit=-5), ListEscrows(limit=True)])
def test_bad_limit_is_an_invalid_message(escrow, accounts, msg):
    escrow.lock(accounts.alice)
    with pytest.raises(InvalidMessage) as ei:
        escrow.query(msg)
    assert ei.value.code == ErrorCode.INVALID_MESSAGE
    assert ei.value.data["field"] == "limit"


def test_expired_list_filters_unexpired_and_released(escrow, accounts):
    # stage 0 and 1 on target locked at height 1 (exp 11); stage 2 at height 8 (exp 18)
    oracle = escrow.target_oracle
    escrow.lock(accounts.alice)
    oracle.advance()
    escrow.lock(accounts.bob)
    oracle.advance()
    escrow.chain.set_height(8)
    escrow.lock(accounts.carol)

    escrow.chain.set_height(11)
    assert _keys(escrow.query(ListExpiredEscrows())) == [(accounts.target, 0), (accounts.target, 1)]

    escrow.release(accounts.admin, stage=0)
    expired = escrow.query(ListExpiredEscrows())
    assert _keys(expired) == [(accounts.target, 1)]
    assert all(not e.released for e in expired.escrows)

    # The full listing still holds the released audit record.
    assert escrow.query(ListEscrows()).escrows[0].released is True


def test_expired_list_limit_counts_matching_entries(escrow, accounts):
    oracle = escrow.target_oracle
    for _ in range(6):
        escrow.lock(accounts.alice)
        oracle.advance()
    # Odd stages leave via stage advance, so only even ones end up expired.
    for stage in (1, 3, 5):
        escrow.release(accounts.bob, stage=stage)
    escrow.chain.set_height(1 + RELEASE_DELTA)

    page = escrow.query(ListExpiredEscrows(limit=2))
    assert _keys(page) == [(accounts.target, 0), (accounts.target, 2)]
    nxt = escrow.query(ListExpiredEscrows(start_after=page.escrows[-1].cursor, limit=2))
    assert _keys(nxt) == [(accounts.target, 4)]


def test_query_does_not_write(escrow, accounts):
    escrow.lock(accounts.alice)
    storage = escrow.chain._storage(escrow.contract)
    before = storage.items()
    escrow.query(ListEscrows())
    escrow.query(ListExpiredEscrows())
    assert storage.items() == before


# ---- properties ----------------------------------------------------------------

ADMIN = address_from_label("admin")
DEPOSITOR = address_from_label("depositor")
TARGETS = [address_from_label(f"target-{i}") for i in range(4)]


def _chain_with(stages_per_target: List[int]) -> Tuple[LocalChain, str, List[Tuple[str, int]]]:
    chain = LocalChain(escrow_contract)
    chain.fund(DEPOSITOR, coins(ESCROW_AMOUNT * 64, DENOM))
    contract, _ = chain.instantiate(
        ADMIN,
        InstantiateMsg(escrow_amount=ESCROW_AMOUNT, allowed_native=DENOM, release_height_delta=RELEASE_DELTA),
    )
    keys = []
    for addr, n in zip(TARGETS, stages_per_target):
        oracle = chain.register_oracle(addr, FixedStageOracle())
        for _ in range(n):
            chain.execute(contract, DEPOSITOR, LockFunds(target_contract=addr), coins(ESCROW_AMOUNT, DENOM))
            keys.append((addr, oracle.latest_stage()))
            oracle.advance()
    return chain, contract, sorted(keys)


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    stages=st.lists(st.integers(min_value=0, max_value=8), min_size=1, max_size=4),
    limit=st.one_of(st.none(), st.integers(min_value=1, max_value=40)),
)
def test_cursor_chain_enumerates_every_escrow_once(stages, limit):
    chain, contract, keys = _chain_with(stages)

    seen: List[Tuple[str, int]] = []
    cursor = None
    while True:
        page = chain.query(contract, ListEscrows(start_after=cursor, limit=limit))
        assert len(page.escrows) <= min(limit if limit is not None else DEFAULT_LIMIT, MAX_LIMIT)
        if not page.escrows:
            break
        seen.extend(_keys(page))
        cursor = page.escrows[-1].cursor

    assert seen == keys


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    stages=st.lists(st.integers(min_value=1, max_value=6), min_size=1, max_size=3),
    released=st.sets(st.integers(min_value=0, max_value=17)),
    height=st.integers(min_value=1, max_value=30),
)
def test_expired_view_never_lists_released_or_live(stages, released, height):
    chain, contract, keys = _chain_with(stages)
    chain.set_height(height)
    expired = height >= 1 + RELEASE_DELTA
    if expired:
        for i, (addr, stage) in enumerate(keys):
            if i in released:
                chain.execute(contract, ADMIN, ReleaseLockedFunds(target_contract=addr, stage=stage))

    listed = chain.query(contract, ListExpiredEscrows(limit=MAX_LIMIT)).escrows
    assert all(not e.released and e.expiration <= chain.height for e in listed)
    expected = [k for i, k in enumerate(keys) if i not in released] if expired else []
    assert [e.cursor for e in listed] == expected[:MAX_LIMIT]


@pytest.mark.parametrize("limit", [None, 0, 1, DEFAULT_LIMIT, MAX_LIMIT, MAX_LIMIT + 1])
def test_empty_ledger_lists_nothing(escrow, limit):
    assert escrow.query(ListEscrows(limit=limit)).escrows == []
    assert escrow.query(ListExpiredEscrows(limit=limit)).escrows == []
