"""
Persistent records of the escrow controller.

    CONFIG         Item("config")         -> Config
    CONTRACT_INFO  Item("contract_info")  -> ContractVersion
    KEY_LAYOUT     Item("key_layout")     -> KeyLayout (stage width of escrow keys)
    escrows(s)     Map("escrows")         -> Escrow, keyed by (target, stage)

Escrows are never deleted; `released` is the only field that changes after
creation and it only ever flips from False to True.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict

from stage_escrow.errors import SerializationError
from stage_escrow.runtime.state import AddrStageKey, Item, Map
from stage_escrow.runtime.storage_api import Storage


def _uint(name: str, v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
        raise SerializationError(f"{name} must be a non-negative int", value=repr(v))
    return v


@dataclass(frozen=True)
class Config:
    admin: str
    escrow_amount: int
    release_height_delta: int
    allowed_native: str

    def __post_init__(self) -> None:
        _uint("escrow_amount", self.escrow_amount)
        _uint("release_height_delta", self.release_height_delta)
        if not isinstance(self.allowed_native, str) or not self.allowed_native:
            raise SerializationError("allowed_native must be a non-empty denom")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        return cls(
            admin=d["admin"],
            escrow_amount=d["escrow_amount"],
            release_height_delta=d["release_height_delta"],
            allowed_native=d["allowed_native"],
        )


@dataclass(frozen=True)
class Escrow:
    """One deposit, tied to the stage the target reported when it was locked."""

    source: str
    expiration: int
    escrow_amount: int
    latest_stage: int
    released: bool = False

    def __post_init__(self) -> None:
        _uint("expiration", self.expiration)
        _uint("escrow_amount", self.escrow_amount)
        _uint("latest_stage", self.latest_stage)
        if not isinstance(self.released, bool):
            raise SerializationError("released must be a bool")

    def is_expired(self, height: int) -> bool:
        return height >= self.expiration

    def mark_released(self) -> "Escrow":
        return replace(self, released=True)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Escrow":
        return cls(
            source=d["source"],
            expiration=d["expiration"],
            escrow_amount=d["escrow_amount"],
            latest_stage=d["latest_stage"],
            released=d["released"],
        )


@dataclass(frozen=True)
class ContractVersion:
    contract: str
    version: str


@dataclass(frozen=True)
class KeyLayout:
    """Stage width of the escrow keys, fixed when the contract is instantiated."""

    stage_bits: int

    def __post_init__(self) -> None:
        if isinstance(self.stage_bits, bool) or not isinstance(self.stage_bits, int):
            raise SerializationError("stage_bits must be an int", value=repr(self.stage_bits))
        if not 1 <= self.stage_bits <= 64:
            raise SerializationError("stage_bits must be within 1..64", value=self.stage_bits)


ESCROWS_NAMESPACE = "escrows"

CONFIG: Item[Config] = Item("config", Config)
CONTRACT_INFO: Item[ContractVersion] = Item("contract_info", ContractVersion)
KEY_LAYOUT: Item[KeyLayout] = Item("key_layout", KeyLayout)


def escrows(storage: Storage) -> Map:
    """The escrow map, keyed with the stage width this contract was created with."""
    layout = KEY_LAYOUT.load(storage)
    return Map(ESCROWS_NAMESPACE, Escrow, AddrStageKey(layout.stage_bits))


__all__ = [
    "Config",
    "Escrow",
    "ContractVersion",
    "KeyLayout",
    "CONFIG",
    "CONTRACT_INFO",
    "KEY_LAYOUT",
    "ESCROWS_NAMESPACE",
    "escrows",
]
