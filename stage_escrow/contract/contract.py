"""
stage_escrow.contract.contract — the escrow controller entrypoints.

Lifecycle of one escrow, keyed by (target contract, stage):

    lock_funds  ──►  Locked(released=False)  ──►  Released   (terminal)
                                │
             Path A: height >= expiration, caller == admin
             Path B: target's latest_stage > stage seen at lock, any caller

Both paths refund `escrow_amount` of `allowed_native` to the depositor
(`escrow.source`). Everything else is rejected with a specific error and the
host discards every write of the failed call.

The Config record is loaded once per call by `execute` and handed to the
individual handlers, so each handler is a pure function of
(deps, env, info, config, arguments).

The stage width of escrow keys is taken from STAGE_ESCROW_STAGE_BITS once, at
instantiate, and stored as KeyLayout. Every later call keys escrows with the
stored width.
"""

from __future__ import annotations

from itertools import islice
from typing import Iterator, Optional, Tuple

from stage_escrow.config import CONTRACT_NAME, DEFAULT_LIMIT, MAX_LIMIT, load_config
from stage_escrow.contract.msg import (
    ConfigQuery,
    ConfigResponse,
    ContractVersionQuery,
    ContractVersionResponse,
    Cursor,
    EscrowQuery,
    EscrowResponse,
    ExecuteMsg,
    InstantiateMsg,
    ListEscrows,
    ListEscrowsResponse,
    ListExpiredEscrows,
    LockFunds,
    QueryMsg,
    ReleaseLockedFunds,
    UpdateConfig,
)
from stage_escrow.contract.state import (
    CONFIG,
    CONTRACT_INFO,
    KEY_LAYOUT,
    Config,
    ContractVersion,
    Escrow,
    KeyLayout,
    escrows,
)
from stage_escrow.errors import (
    CannotReleaseFunds,
    EscrowAlreadyCreated,
    EscrowAlreadyReleased,
    InsufficientAmount,
    InvalidMessage,
    Unauthorized,
)
from stage_escrow.logging import get_logger
from stage_escrow.runtime.bank import BankSend
from stage_escrow.runtime.context import Coin, Deps, Env, MessageInfo, coins, has_coin
from stage_escrow.runtime.events_api import Response
from stage_escrow.version import __version__

log = get_logger(__name__)

PATH_EXPIRED = "expired"
PATH_STAGE_ADVANCED = "stage_advanced"


# ----------------------------- instantiate ----------------------------- #


def instantiate(deps: Deps, env: Env, info: MessageInfo, msg: InstantiateMsg) -> Response:
    admin = deps.api.addr_validate(msg.admin) if msg.admin is not None else info.sender
    config = Config(
        admin=admin,
        escrow_amount=msg.escrow_amount,
        release_height_delta=msg.release_height_delta,
        allowed_native=msg.allowed_native,
    )
    CONFIG.save(deps.storage, config)
    CONTRACT_INFO.save(deps.storage, ContractVersion(contract=CONTRACT_NAME, version=__version__))
    KEY_LAYOUT.save(deps.storage, KeyLayout(stage_bits=load_config().stage_bits))
    log.info("escrow controller instantiated", extra={"admin": admin, "denom": config.allowed_native})

    return Response().add_attributes(
        [
            ("action", "instantiate"),
            ("admin", config.admin),
            ("escrow_amount", config.escrow_amount),
            ("release_height_delta", config.release_height_delta),
            ("allowed_native", config.allowed_native),
        ]
    )


# ------------------------------- execute ------------------------------- #


def execute(deps: Deps, env: Env, info: MessageInfo, msg: ExecuteMsg) -> Response:
    config = CONFIG.load(deps.storage)
    if isinstance(msg, UpdateConfig):
        return execute_update_config(deps, info, config, msg)
    if isinstance(msg, LockFunds):
        return execute_lock_funds(deps, env, info, config, msg.target_contract)
    if isinstance(msg, ReleaseLockedFunds):
        return execute_release_funds(deps, env, info, config, msg.target_contract, msg.stage)
    raise InvalidMessage("unsupported execute message", type=type(msg).__name__)


def execute_update_config(
    deps: Deps, info: MessageInfo, config: Config, msg: UpdateConfig
) -> Response:
    """Admin-only partial update: every provided field overwrites, omitted ones stay."""
    if info.sender != config.admin:
        raise Unauthorized("only the admin may update the config", sender=info.sender)

    updated = Config(
        admin=deps.api.addr_validate(msg.admin) if msg.admin is not None else config.admin,
        escrow_amount=(
            msg.escrow_amount if msg.escrow_amount is not None else config.escrow_amount
        ),
        release_height_delta=(
            msg.release_height_delta
            if msg.release_height_delta is not None
            else config.release_height_delta
        ),
        allowed_native=(
            msg.allowed_native if msg.allowed_native is not None else config.allowed_native
        ),
    )
    CONFIG.save(deps.storage, updated)
    log.info("config updated", extra={"admin": updated.admin})

    return Response().add_attributes([("action", "update_config"), ("admin", updated.admin)])


def execute_lock_funds(
    deps: Deps, env: Env, info: MessageInfo, config: Config, target_contract: str
) -> Response:
    required = Coin(denom=config.allowed_native, amount=config.escrow_amount)
    if not has_coin(info.funds, required):
        raise InsufficientAmount(required.amount, required.denom)

    target = deps.api.addr_validate(target_contract)
    observed_stage = deps.querier.latest_stage(target)
    key = (target, observed_stage)
    ledger = escrows(deps.storage)
    if ledger.has(deps.storage, key):
        raise EscrowAlreadyCreated(observed_stage)

    escrow = Escrow(
        source=info.sender,
        expiration=env.block.height + config.release_height_delta,
        escrow_amount=config.escrow_amount,
        latest_stage=observed_stage,
        released=False,
    )
    ledger.save(deps.storage, key, escrow)
    log.info(
        "escrow locked",
        extra={"target": target, "stage": observed_stage, "expiration": escrow.expiration},
    )

    return Response().add_attributes(
        [
            ("action", "lock_funds"),
            ("amount", str(required)),
            ("sender", info.sender),
            ("target", target),
            ("stage", observed_stage),
            ("expiration", escrow.expiration),
        ]
    )


def execute_release_funds(
    deps: Deps,
    env: Env,
    info: MessageInfo,
    config: Config,
    target_contract: str,
    stage: int,
) -> Response:
    target = deps.api.addr_validate(target_contract)
    key = (target, stage)
    ledger = escrows(deps.storage)
    escrow = ledger.load(deps.storage, key)
    if escrow.released:
        raise EscrowAlreadyReleased(target=target, stage=stage)

    height = env.block.height
    if escrow.is_expired(height):
        # Path A: once expired only the admin may release; Path B is not consulted.
        if info.sender != config.admin:
            raise Unauthorized(
                "only the admin may release an expired escrow",
                sender=info.sender,
                expiration=escrow.expiration,
            )
        path = PATH_EXPIRED
    else:
        current_stage = deps.querier.latest_stage(target)
        if current_stage <= escrow.latest_stage:
            raise CannotReleaseFunds(
                target=target,
                stage=stage,
                height=height,
                expiration=escrow.expiration,
                latest_stage=current_stage,
            )
        path = PATH_STAGE_ADVANCED

    ledger.save(deps.storage, key, escrow.mark_released())
    payout = coins(escrow.escrow_amount, config.allowed_native)
    log.info(
        "escrow released",
        extra={"target": target, "stage": stage, "path": path, "recipient": escrow.source},
    )

    return (
        Response()
        .add_message(BankSend(to_address=escrow.source, amount=payout))
        .add_attributes(
            [
                ("action", "release_funds"),
                ("path", path),
                ("escrow_amount", escrow.escrow_amount),
                ("recipient", escrow.source),
                ("target", target),
                ("stage", stage),
            ]
        )
    )


# -------------------------------- query -------------------------------- #


def query(deps: Deps, env: Env, msg: QueryMsg):
    if isinstance(msg, ConfigQuery):
        return query_config(deps)
    if isinstance(msg, EscrowQuery):
        return query_escrow(deps, msg.target_contract, msg.stage)
    if isinstance(msg, ListEscrows):
        return query_list_escrows(deps, msg.start_after, msg.limit)
    if isinstance(msg, ListExpiredEscrows):
        return query_list_expired_escrows(deps, env, msg.start_after, msg.limit)
    if isinstance(msg, ContractVersionQuery):
        return query_contract_version(deps)
    raise InvalidMessage("unsupported query message", type=type(msg).__name__)


def query_config(deps: Deps) -> ConfigResponse:
    cfg = CONFIG.load(deps.storage)
    return ConfigResponse(
        admin=cfg.admin,
        escrow_amount=cfg.escrow_amount,
        release_height_delta=cfg.release_height_delta,
        allowed_native=cfg.allowed_native,
    )


def _escrow_response(key: Tuple[str, int], e: Escrow) -> EscrowResponse:
    return EscrowResponse(
        target=key[0],
        stage=key[1],
        source=e.source,
        expiration=e.expiration,
        escrow_amount=e.escrow_amount,
        latest_stage=e.latest_stage,
        released=e.released,
    )


def query_escrow(deps: Deps, target_contract: str, stage: int) -> EscrowResponse:
    target = deps.api.addr_validate(target_contract)
    key = (target, stage)
    return _escrow_response(key, escrows(deps.storage).load(deps.storage, key))


def _clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise InvalidMessage("limit must be a non-negative integer", field="limit", value=repr(limit))
    return min(limit, MAX_LIMIT)


def _entries(deps: Deps, start_after: Optional[Cursor]) -> Iterator[Tuple[Cursor, Escrow]]:
    if start_after is not None:
        start_after = (deps.api.addr_validate(start_after[0]), start_after[1])
    return escrows(deps.storage).range(deps.storage, start_after=start_after)


def query_list_escrows(
    deps: Deps, start_after: Optional[Cursor] = None, limit: Optional[int] = None
) -> ListEscrowsResponse:
    page = islice(_entries(deps, start_after), _clamp_limit(limit))
    return ListEscrowsResponse(escrows=[_escrow_response(k, e) for k, e in page])


def query_list_expired_escrows(
    deps: Deps,
    env: Env,
    start_after: Optional[Cursor] = None,
    limit: Optional[int] = None,
) -> ListEscrowsResponse:
    """Unreleased escrows whose expiration has been reached: the admin's Path A worklist."""
    height = env.block.height
    due = (
        (k, e)
        for k, e in _entries(deps, start_after)
        if not e.released and e.is_expired(height)
    )
    page = islice(due, _clamp_limit(limit))
    return ListEscrowsResponse(escrows=[_escrow_response(k, e) for k, e in page])


def query_contract_version(deps: Deps) -> ContractVersionResponse:
    info = CONTRACT_INFO.load(deps.storage)
    return ContractVersionResponse(contract=info.contract, version=info.version)


__all__ = [
    "PATH_EXPIRED",
    "PATH_STAGE_ADVANCED",
    "instantiate",
    "execute",
    "execute_update_config",
    "execute_lock_funds",
    "execute_release_funds",
    "query",
    "query_config",
    "query_escrow",
    "query_list_escrows",
    "query_list_expired_escrows",
    "query_contract_version",
]
