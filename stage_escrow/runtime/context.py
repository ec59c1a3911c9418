"""
stage_escrow.runtime.context — BlockEnv/MessageInfo passed to the contract

These lightweight environments are injected by the host so the contract can
read chain/caller metadata in a *deterministic* way. They contain only pure
data and perform strict validation.

Design notes
------------
- Addresses are bech32m strings, already validated by the host.
- `height` is the logical clock; escrows expire at absolute heights.
- `funds` are the native coins the caller attached to the message; the host
  has already moved them into the contract balance when the handler runs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Tuple

from stage_escrow.errors import ContextError
from stage_escrow.utils.address import validate_address

if TYPE_CHECKING:
    from stage_escrow.runtime.querier import Querier
    from stage_escrow.runtime.storage_api import Storage


def _require_non_negative_int(name: str, v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise ContextError(f"{name} must be int, got {type(v).__name__}")
    if v < 0:
        raise ContextError(f"{name} must be non-negative, got {v}")
    return v


# ----------------------------- models ------------------------------ #


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: int

    def __post_init__(self) -> None:
        if not isinstance(self.denom, str) or not self.denom:
            raise ContextError("coin denom must be a non-empty string")
        object.__setattr__(self, "amount", _require_non_negative_int("amount", self.amount))

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"

    def to_dict(self) -> Dict[str, Any]:
        return {"denom": self.denom, "amount": self.amount}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Coin":
        return cls(denom=d.get("denom", ""), amount=d.get("amount", 0))


def coins(amount: int, denom: str) -> Tuple[Coin, ...]:
    """Single-denom convenience constructor, e.g. `coins(100, "uanim")`."""
    return (Coin(denom=denom, amount=amount),)


def has_coin(funds: Iterable[Coin], required: Coin) -> bool:
    """
    True if `funds` hold at least `required.amount` of `required.denom`.
    Other denominations are ignored.
    """
    total = sum(c.amount for c in funds if c.denom == required.denom)
    return total >= required.amount


def normalize_funds(funds: Iterable[Coin]) -> Tuple[Coin, ...]:
    """Merge duplicate denoms, drop zero amounts, sort by denom."""
    merged: Dict[str, int] = {}
    for c in funds:
        merged[c.denom] = merged.get(c.denom, 0) + c.amount
    return tuple(Coin(d, a) for d, a in sorted(merged.items()) if a > 0)


@dataclass(frozen=True)
class BlockEnv:
    """
    Deterministic per-block environment.

    Fields
    ------
    height:   Block height (logical clock used for expirations).
    time:     Consensus timestamp in seconds; informational only.
    chain_id: Chain identifier string.
    """

    height: int
    time: int = 0
    chain_id: str = "local-devnet"

    def __post_init__(self) -> None:
        object.__setattr__(self, "height", _require_non_negative_int("height", self.height))
        object.__setattr__(self, "time", _require_non_negative_int("time", self.time))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ContractEnv:
    address: str


@dataclass(frozen=True)
class Env:
    block: BlockEnv
    contract: ContractEnv


@dataclass(frozen=True)
class MessageInfo:
    """Caller identity and the coins attached to the message."""

    sender: str
    funds: Tuple[Coin, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.sender, str) or not self.sender:
            raise ContextError("sender must be a non-empty address string")
        object.__setattr__(self, "funds", normalize_funds(self.funds))

    def funds_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.funds]


class Api:
    """Host helpers the contract may call (address validation only)."""

    def addr_validate(self, address: str) -> str:
        return validate_address(address)


@dataclass(frozen=True)
class Deps:
    """Capabilities injected into every handler: storage, api, querier."""

    storage: "Storage"
    api: Api
    querier: "Querier"


__all__ = [
    "Coin",
    "coins",
    "has_coin",
    "normalize_funds",
    "BlockEnv",
    "ContractEnv",
    "Env",
    "MessageInfo",
    "Api",
    "Deps",
]
