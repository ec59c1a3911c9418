"""
stage_escrow.runtime.state — typed records on top of ordered storage.

Two storage shapes cover everything the contract persists:

    Item("config")                  -> one record
    Map("escrows", AddrStageKey(8)) -> record per (address, stage)

Records are dataclasses serialized with canonical CBOR (cbor2, canonical=True)
so equal records always produce equal bytes. Keys are built so that their
byte order is the logical order used by paginated queries:

    key(ns)             = u16 len(ns) | ns
    key(ns, addr, st)   = u16 len(ns) | ns | u16 len(addr) | addr | st (fixed-width BE)

With same-length addresses this sorts by (address, stage) ascending.
"""

from __future__ import annotations

from dataclasses import asdict, fields, is_dataclass
from typing import Any, Callable, Generic, Iterator, Optional, Tuple, Type, TypeVar

import cbor2

from stage_escrow.errors import InvalidStage, NotFound, SerializationError, StorageError
from stage_escrow.runtime.storage_api import Order, Storage, exclusive_start, prefix_end


T = TypeVar("T")
K = TypeVar("K")


# ------------------------------ codec ------------------------------ #


def to_bytes(record: Any) -> bytes:
    """Canonical CBOR encoding of a dataclass record (or plain mapping)."""
    obj = asdict(record) if is_dataclass(record) else record
    try:
        return cbor2.dumps(obj, canonical=True)
    except (cbor2.CBOREncodeError, TypeError, ValueError) as e:
        raise SerializationError("cannot encode record", type=type(record).__name__) from e


def from_bytes(raw: bytes, cls: Type[T]) -> T:
    """Decode canonical CBOR into `cls`, accepting only its declared fields."""
    try:
        obj = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise SerializationError("cannot decode record", type=cls.__name__) from e
    if not isinstance(obj, dict):
        raise SerializationError("record is not a map", type=cls.__name__)
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    missing = names - set(obj)
    if missing:
        raise SerializationError("record missing fields", type=cls.__name__, missing=sorted(missing))
    from_dict: Optional[Callable[[dict], T]] = getattr(cls, "from_dict", None)
    if from_dict is not None:
        return from_dict({k: obj[k] for k in names})
    return cls(**{k: obj[k] for k in names})  # type: ignore[call-arg]


def _length_prefixed(part: bytes) -> bytes:
    if len(part) > 0xFFFF:
        raise StorageError("key part too long", length=len(part))
    return len(part).to_bytes(2, "big") + part


# ------------------------------ keys ------------------------------- #


class AddrStageKey:
    """
    Composite key codec for (address string, stage int).

    The width is part of the stored layout: keys written with one width are
    unreadable with another, so callers pass the width the map was created
    with rather than whatever the environment says today.
    """

    def __init__(self, stage_bits: int) -> None:
        if isinstance(stage_bits, bool) or not isinstance(stage_bits, int) or not 1 <= stage_bits <= 64:
            raise StorageError("stage width must be 1..64 bits", stage_bits=repr(stage_bits))
        self.stage_bits = stage_bits
        self.width = (stage_bits + 7) // 8

    def check_stage(self, stage: Any) -> int:
        if isinstance(stage, bool) or not isinstance(stage, int):
            raise InvalidStage(stage, self.stage_bits)
        if stage < 0 or stage >= (1 << self.stage_bits):
            raise InvalidStage(stage, self.stage_bits)
        return stage

    def encode(self, key: Tuple[str, int]) -> bytes:
        addr, stage = key
        return _length_prefixed(addr.encode("utf-8")) + self.check_stage(stage).to_bytes(
            self.width, "big"
        )

    def decode(self, raw: bytes) -> Tuple[str, int]:
        n = int.from_bytes(raw[:2], "big")
        addr = raw[2 : 2 + n]
        stage = raw[2 + n :]
        if len(addr) != n or len(stage) != self.width:
            raise StorageError("corrupt composite key", key=raw.hex())
        return addr.decode("utf-8"), int.from_bytes(stage, "big")


# ------------------------------ shapes ----------------------------- #


class Item(Generic[T]):
    """A single typed record stored under one key."""

    def __init__(self, namespace: str, cls: Type[T]) -> None:
        self.namespace = namespace
        self.cls = cls
        self._key = _length_prefixed(namespace.encode("ascii"))

    def save(self, storage: Storage, record: T) -> None:
        storage.set(self._key, to_bytes(record))

    def may_load(self, storage: Storage) -> Optional[T]:
        raw = storage.get(self._key)
        return None if raw is None else from_bytes(raw, self.cls)

    def load(self, storage: Storage) -> T:
        rec = self.may_load(storage)
        if rec is None:
            raise NotFound(self.cls.__name__, self.namespace)
        return rec

    def exists(self, storage: Storage) -> bool:
        return storage.get(self._key) is not None


class Map(Generic[K, T]):
    """Typed records keyed by a composite key, iterable in key order."""

    def __init__(self, namespace: str, cls: Type[T], key_codec: Any) -> None:
        self.namespace = namespace
        self.cls = cls
        self.codec = key_codec
        self._prefix = _length_prefixed(namespace.encode("ascii"))

    def _full_key(self, key: K) -> bytes:
        return self._prefix + self.codec.encode(key)

    def save(self, storage: Storage, key: K, record: T) -> None:
        storage.set(self._full_key(key), to_bytes(record))

    def may_load(self, storage: Storage, key: K) -> Optional[T]:
        raw = storage.get(self._full_key(key))
        return None if raw is None else from_bytes(raw, self.cls)

    def load(self, storage: Storage, key: K) -> T:
        rec = self.may_load(storage, key)
        if rec is None:
            raise NotFound(self.cls.__name__, repr(key))
        return rec

    def has(self, storage: Storage, key: K) -> bool:
        return storage.get(self._full_key(key)) is not None

    def range(
        self,
        storage: Storage,
        *,
        start_after: Optional[K] = None,
        order: Order = Order.ASCENDING,
    ) -> Iterator[Tuple[K, T]]:
        """
        Yield (key, record) in key order. `start_after` is an exclusive cursor
        (ascending order only; descending scans start from the top).
        """
        start = self._prefix
        if start_after is not None:
            start = exclusive_start(self._full_key(start_after))
        end = prefix_end(self._prefix)
        plen = len(self._prefix)
        for raw_key, raw_val in storage.range(start, end, order):
            yield self.codec.decode(raw_key[plen:]), from_bytes(raw_val, self.cls)


__all__ = [
    "to_bytes",
    "from_bytes",
    "AddrStageKey",
    "Item",
    "Map",
]
