from __future__ import annotations

import pytest

from stage_escrow.contract.msg import (
    ConfigQuery,
    ContractVersionQuery,
    EscrowResponse,
    InstantiateMsg,
    ListEscrows,
    LockFunds,
    ReleaseLockedFunds,
    UpdateConfig,
    parse_execute,
    parse_query,
    to_wire,
)
from stage_escrow.errors import ErrorCode, InvalidMessage


def test_parse_execute_variants():
    assert parse_execute({"lock_funds": {"target_contract": "anim1t"}}) == LockFunds("anim1t")
    assert parse_execute(
        {"release_locked_funds": {"target_contract": "anim1t", "stage": 3}}
    ) == ReleaseLockedFunds("anim1t", 3)
    assert parse_execute({"update_config": {"escrow_amount": 5}}) == UpdateConfig(escrow_amount=5)
    assert parse_execute({"update_config": {}}) == UpdateConfig()


def test_parse_query_variants():
    assert parse_query({"config": {}}) == ConfigQuery()
    assert parse_query({"contract_version": None}) == ContractVersionQuery()
    assert parse_query({"list_escrows": {"start_after": ["anim1t", 2], "limit": 4}}) == ListEscrows(
        start_after=("anim1t", 2), limit=4
    )


def test_wire_shape():
    msg = ListEscrows(start_after=("anim1t", 2), limit=4)
    assert to_wire(msg) == {"list_escrows": {"start_after": ["anim1t", 2], "limit": 4}}
    assert parse_query(to_wire(msg)) == msg


@pytest.mark.parametrize(
    "raw",
    [
        {"withdraw": {}},
        {"lock_funds": {}},
        {"lock_funds": {"target_contract": "a", "extra": 1}},
        {"release_locked_funds": {"target_contract": "a", "stage": -1}},
        {"release_locked_funds": {"target_contract": "a", "stage": True}},
        {"lock_funds": {"target_contract": "a"}, "update_config": {}},
        ["lock_funds"],
        {"update_config": {"escrow_amount": "100"}},
    ],
)
def test_parse_execute_rejects(raw):
    with pytest.raises(InvalidMessage) as ei:
        parse_execute(raw)
    assert ei.value.code == ErrorCode.INVALID_MESSAGE


def test_bad_cursor_rejected():
    with pytest.raises(InvalidMessage):
        parse_query({"list_escrows": {"start_after": "anim1t"}})


def test_instantiate_from_dict_requires_fields():
    msg = InstantiateMsg.from_dict({"escrow_amount": 1, "allowed_native": "X", "release_height_delta": 2})
    assert msg.admin is None
    with pytest.raises(InvalidMessage):
        InstantiateMsg.from_dict({"escrow_amount": 1, "allowed_native": "X"})


def test_escrow_response_cursor():
    r = EscrowResponse(
        target="anim1t", stage=4, source="anim1s", expiration=9, escrow_amount=1, latest_stage=4, released=False
    )
    assert r.cursor == ("anim1t", 4)
    assert r.to_dict()["released"] is False
