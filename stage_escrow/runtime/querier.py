"""
stage_escrow.runtime.querier — read-only queries against other contracts.

The escrow contract needs exactly one cross-contract read: the target
distribution contract's current "latest stage". It is modelled as an
injected capability (`StageOracle`) so the release state machine can run
against a deterministic stub instead of a live contract.

- StageOracle (protocol): latest_stage() -> int
- FixedStageOracle: settable stub used by the local chain, CLI and tests
- Querier: address -> StageOracle registry handed to the contract as deps.querier
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterator, Protocol, Tuple, runtime_checkable

from stage_escrow.errors import QueryError


@runtime_checkable
class StageOracle(Protocol):
    """Minimal read-only view of a distribution contract."""

    def latest_stage(self) -> int: ...


@dataclass
class FixedStageOracle:
    """A distribution contract stub whose stage only moves when told to."""

    stage: int = 0

    def latest_stage(self) -> int:
        return self.stage

    def advance(self, by: int = 1) -> int:
        if by < 0:
            raise ValueError("stages never move backwards")
        self.stage += by
        return self.stage

    def set(self, stage: int) -> None:
        if stage < self.stage:
            raise ValueError("stages never move backwards")
        self.stage = stage


class Querier:
    """Routes `latest_stage` queries to the oracle registered for an address."""

    def __init__(self) -> None:
        self._oracles: Dict[str, StageOracle] = {}
        self._lock = threading.RLock()

    def register(self, address: str, oracle: StageOracle) -> None:
        with self._lock:
            self._oracles[address] = oracle

    def oracle(self, address: str) -> StageOracle:
        with self._lock:
            try:
                return self._oracles[address]
            except KeyError:
                raise QueryError("no contract at address", address=address) from None

    def latest_stage(self, address: str) -> int:
        stage = self.oracle(address).latest_stage()
        if isinstance(stage, bool) or not isinstance(stage, int) or stage < 0:
            raise QueryError("malformed latest_stage response", address=address, stage=repr(stage))
        return stage

    def items(self) -> Iterator[Tuple[str, StageOracle]]:
        with self._lock:
            return iter(sorted(self._oracles.items()))


__all__ = ["StageOracle", "FixedStageOracle", "Querier"]
