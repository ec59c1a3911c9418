"""
stage_escrow runtime package

The host-facing pieces the contract runs against: ordered storage with atomic
batches, typed records, the native-currency bank, the stage querier and the
in-process `LocalChain` that ties them together.

Convenience re-exports:

    from stage_escrow.runtime import LocalChain, BlockEnv, MessageInfo, coins
    from stage_escrow.runtime import storage, state  # module namespaces
"""

from __future__ import annotations

from . import state as state
from . import storage_api as storage
from .bank import Bank, BankSend
from .context import Api, BlockEnv, Coin, ContractEnv, Deps, Env, MessageInfo, coins, has_coin
from .events_api import Response
from .host import LocalChain
from .querier import FixedStageOracle, Querier, StageOracle
from .storage_api import MemoryStorage, Order, StorageBatch

__all__ = [
    # Core classes
    "LocalChain",
    "Bank",
    "BankSend",
    "Querier",
    "StageOracle",
    "FixedStageOracle",
    "MemoryStorage",
    "StorageBatch",
    "Order",
    "Response",
    # Environment
    "Api",
    "BlockEnv",
    "Coin",
    "ContractEnv",
    "Deps",
    "Env",
    "MessageInfo",
    "coins",
    "has_coin",
    # Namespaces (modules)
    "state",
    "storage",
]
