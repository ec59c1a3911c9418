"""
stage_escrow.runtime.host — an in-process chain that runs one contract code.

`LocalChain` plays the part of the ledger runtime for local runs, the CLI and
tests. It owns:

- a MemoryStorage per contract instance,
- the native-currency Bank,
- a Querier with the StageOracles of the target contracts,
- the block height (logical clock).

Atomicity
---------
Every instantiate/execute runs inside one bank journal and one StorageBatch:

    attached funds sender -> contract
    handler(deps, env, info, msg)
    BankSend messages contract -> recipient

If any step raises, storage writes and balance movements are discarded and
the original exception propagates unchanged. Queries see committed state only
and never write.

Persistence
-----------
`save(path)` / `LocalChain.load(path, code)` round-trip the whole chain as a
canonical CBOR document (cbor2). Only FixedStageOracle targets are persisted.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import cbor2

from stage_escrow.errors import ContextError, EscrowError, SerializationError
from stage_escrow.logging import get_logger, trace_scope
from stage_escrow.runtime.bank import Bank
from stage_escrow.runtime.context import (
    Api,
    BlockEnv,
    Coin,
    ContractEnv,
    Deps,
    Env,
    MessageInfo,
)
from stage_escrow.runtime.events_api import Response
from stage_escrow.runtime.querier import FixedStageOracle, Querier, StageOracle
from stage_escrow.runtime.storage_api import MemoryStorage, StorageBatch
from stage_escrow.utils.address import contract_address

log = get_logger(__name__)

STATE_FORMAT_VERSION = 1
CODE_ID = 1

Handler = Callable[[Deps, Env, MessageInfo], Response]


class LocalChain:
    def __init__(
        self,
        code: ModuleType,
        *,
        height: int = 1,
        chain_id: str = "local-devnet",
    ) -> None:
        self.code = code
        self.block = BlockEnv(height=height, chain_id=chain_id)
        self.bank = Bank()
        self.querier = Querier()
        self.api = Api()
        self._contracts: Dict[str, MemoryStorage] = {}
        self._instances = 0

    # ------------------------------ clock ------------------------------ #

    @property
    def height(self) -> int:
        return self.block.height

    def next_block(self, n: int = 1) -> int:
        if n < 0:
            raise ContextError("block height never decreases", by=n)
        return self.set_height(self.block.height + n)

    def set_height(self, height: int) -> int:
        if height < self.block.height:
            raise ContextError("block height never decreases", height=height, current=self.block.height)
        self.block = BlockEnv(height=height, time=self.block.time, chain_id=self.block.chain_id)
        return height

    def env(self, contract: str) -> Env:
        return Env(block=self.block, contract=ContractEnv(address=contract))

    # ----------------------------- accounts ---------------------------- #

    def fund(self, address: str, amount: Iterable[Coin]) -> None:
        """Mint coins to `address` (genesis/faucet helper)."""
        addr = self.api.addr_validate(address)
        for coin in amount:
            self.bank.credit(addr, coin)

    def balance(self, address: str, denom: str) -> int:
        return self.bank.balance(self.api.addr_validate(address), denom)

    # ------------------------------ oracles ---------------------------- #

    def register_oracle(self, address: str, oracle: Optional[StageOracle] = None) -> StageOracle:
        """Attach a StageOracle at `address`; a FixedStageOracle(0) by default."""
        addr = self.api.addr_validate(address)
        oracle = oracle if oracle is not None else FixedStageOracle()
        self.querier.register(addr, oracle)
        return oracle

    def oracle(self, address: str) -> StageOracle:
        return self.querier.oracle(self.api.addr_validate(address))

    # ----------------------------- contracts --------------------------- #

    @property
    def contracts(self) -> Tuple[str, ...]:
        return tuple(sorted(self._contracts))

    def _storage(self, contract: str) -> MemoryStorage:
        try:
            return self._contracts[contract]
        except KeyError:
            raise ContextError("no contract at address", contract=contract) from None

    def instantiate(self, sender: str, msg: Any, funds: Iterable[Coin] = ()) -> Tuple[str, Response]:
        self._instances += 1
        addr = contract_address(CODE_ID, self._instances)
        self._contracts[addr] = MemoryStorage()
        try:
            res = self._run(
                addr, sender, funds, "instantiate",
                lambda deps, env, info: self.code.instantiate(deps, env, info, msg),
            )
        except Exception:
            del self._contracts[addr]
            self._instances -= 1
            raise
        return addr, res

    def execute(self, contract: str, sender: str, msg: Any, funds: Iterable[Coin] = ()) -> Response:
        action = getattr(msg, "TAG", type(msg).__name__)
        return self._run(
            contract, sender, funds, action,
            lambda deps, env, info: self.code.execute(deps, env, info, msg),
        )

    def query(self, contract: str, msg: Any) -> Any:
        storage = StorageBatch(self._storage(contract))
        try:
            deps = Deps(storage=storage, api=self.api, querier=self.querier)
            return self.code.query(deps, self.env(contract), msg)
        finally:
            storage.rollback()

    def _run(
        self,
        contract: str,
        sender: str,
        funds: Iterable[Coin],
        action: str,
        handler: Handler,
    ) -> Response:
        parent = self._storage(contract)
        info = MessageInfo(sender=self.api.addr_validate(sender), funds=tuple(funds))
        with trace_scope(contract=contract, height=self.height, sender=info.sender, action=action):
            try:
                with self.bank.journal(), StorageBatch(parent) as batch:
                    self.bank.transfer(info.sender, contract, info.funds)
                    deps = Deps(storage=batch, api=self.api, querier=self.querier)
                    res = handler(deps, self.env(contract), info)
                    for send in res.messages:
                        self.bank.transfer(contract, send.to_address, send.amount)
            except EscrowError as e:
                log.info("execution rejected", extra={"code": e.to_dict()["code"], "error": e.message})
                raise
            log.debug("execution committed", extra={"attributes": res.attributes_dict()})
            return res

    # ---------------------------- persistence -------------------------- #

    def to_state(self) -> Dict[str, Any]:
        oracles = {
            addr: o.latest_stage()
            for addr, o in self.querier.items()
            if isinstance(o, FixedStageOracle)
        }
        return {
            "format": STATE_FORMAT_VERSION,
            "height": self.block.height,
            "chain_id": self.block.chain_id,
            "instances": self._instances,
            "contracts": {addr: dict(s.items()) for addr, s in self._contracts.items()},
            "balances": [[a, d, amt] for (a, d), amt in sorted(self.bank.snapshot().items())],
            "oracles": oracles,
        }

    @classmethod
    def from_state(cls, code: ModuleType, state: Dict[str, Any]) -> "LocalChain":
        if state.get("format") != STATE_FORMAT_VERSION:
            raise SerializationError("unsupported chain state format", format=state.get("format"))
        chain = cls(code, height=state["height"], chain_id=state["chain_id"])
        chain._instances = state["instances"]
        chain._contracts = {addr: MemoryStorage(kv) for addr, kv in state["contracts"].items()}
        chain.bank.load({(a, d): amt for a, d, amt in state["balances"]})
        for addr, stage in state["oracles"].items():
            chain.querier.register(addr, FixedStageOracle(stage))
        return chain

    def save(self, path: Path) -> None:
        """Atomically write the chain state (temp file + rename)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=path.name, dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as fh:
                cbor2.dump(self.to_state(), fh, canonical=True)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @classmethod
    def load(cls, path: Path, code: ModuleType) -> "LocalChain":
        try:
            with open(path, "rb") as fh:
                state = cbor2.load(fh)
        except cbor2.CBORDecodeError as e:
            raise SerializationError("corrupt chain state file", path=str(path)) from e
        if not isinstance(state, dict):
            raise SerializationError("chain state is not a map", path=str(path))
        return cls.from_state(code, state)


__all__ = ["LocalChain", "STATE_FORMAT_VERSION", "CODE_ID"]
