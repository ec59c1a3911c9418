"""
stage_escrow.runtime.storage_api — ordered key/value storage with atomic batches.

This module provides the storage primitives the host hands to the contract
(`deps.storage`).

Design goals
------------
- Deterministic: pure functions over (key, value) with no wall-clock or I/O.
- Ordered: `range()` yields pairs in lexicographic byte order of keys, which
  is what the paginated queries rely on.
- Atomic: `StorageBatch` is a copy-on-write overlay; the host wraps every
  execution in one and commits only if the whole call succeeded.
- Safe: strict byte-length caps read from `stage_escrow.config`.

Public API
----------
- Storage (protocol): get / set / remove / range
- MemoryStorage: default in-process backend
- StorageBatch: overlay with commit() / rollback(), usable as a context manager

Range bounds follow the usual convention: `start` inclusive, `end` exclusive.
Use `exclusive_start(key)` to turn a cursor into an inclusive lower bound.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from stage_escrow.config import load_config
from stage_escrow.errors import StorageError


class Order(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


# ---------------------------- Backend API ---------------------------- #


@runtime_checkable
class Storage(Protocol):
    """Minimal ordered storage interface handed to contracts."""

    def get(self, key: bytes) -> Optional[bytes]: ...
    def set(self, key: bytes, value: bytes) -> None: ...
    def remove(self, key: bytes) -> None: ...
    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        order: Order = Order.ASCENDING,
    ) -> Iterator[Tuple[bytes, bytes]]: ...


# --------------------------- Validation helpers --------------------------- #


def _check_key(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray)):
        raise StorageError("storage key must be bytes")
    if len(key) == 0:
        raise StorageError("storage key must be non-empty")
    cap = load_config().max_storage_key_bytes
    if len(key) > cap:
        raise StorageError(f"storage key too long (>{cap} bytes)", length=len(key))
    return bytes(key)


def _check_value(value: bytes) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise StorageError("storage value must be bytes")
    cap = load_config().max_storage_value_bytes
    if len(value) > cap:
        raise StorageError(f"storage value too large (>{cap} bytes)", length=len(value))
    return bytes(value)


def _in_bounds(key: bytes, start: Optional[bytes], end: Optional[bytes]) -> bool:
    if start is not None and key < start:
        return False
    if end is not None and key >= end:
        return False
    return True


def exclusive_start(key: bytes) -> bytes:
    """Smallest key strictly greater than `key` (inclusive bound for an exclusive cursor)."""
    return bytes(key) + b"\x00"


def prefix_end(prefix: bytes) -> Optional[bytes]:
    """Exclusive upper bound covering every key that starts with `prefix`."""
    b = bytearray(prefix)
    while b:
        if b[-1] < 0xFF:
            b[-1] += 1
            return bytes(b)
        b.pop()
    return None


# ------------------------------ Backends ------------------------------ #


class MemoryStorage:
    """Thread-safe in-memory backend for local runs and tests."""

    def __init__(self, items: Optional[Dict[bytes, bytes]] = None) -> None:
        self._store: Dict[bytes, bytes] = dict(items or {})
        self._lock = threading.RLock()

    def get(self, key: bytes) -> Optional[bytes]:
        k = _check_key(key)
        with self._lock:
            return self._store.get(k)

    def set(self, key: bytes, value: bytes) -> None:
        k, v = _check_key(key), _check_value(value)
        with self._lock:
            self._store[k] = v

    def remove(self, key: bytes) -> None:
        k = _check_key(key)
        with self._lock:
            self._store.pop(k, None)

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        order: Order = Order.ASCENDING,
    ) -> Iterator[Tuple[bytes, bytes]]:
        with self._lock:
            # Snapshot so callers may write while iterating.
            items = sorted(
                (k, v) for k, v in self._store.items() if _in_bounds(k, start, end)
            )
        if order == Order.DESCENDING:
            items.reverse()
        return iter(items)

    def items(self) -> List[Tuple[bytes, bytes]]:
        """Full snapshot in key order (persistence and tests)."""
        with self._lock:
            return sorted(self._store.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class StorageBatch:
    """
    Copy-on-write overlay over a parent Storage.

    Reads see pending writes; `commit()` applies every pending write to the
    parent in one step, `rollback()` discards them. As a context manager it
    commits on clean exit and rolls back when an exception escapes.
    """

    def __init__(self, parent: Storage) -> None:
        self._parent = parent
        self._pending: Dict[bytes, Optional[bytes]] = {}
        self._closed = False

    def _require_open(self) -> None:
        if self._closed:
            raise StorageError("batch already committed or rolled back")

    def get(self, key: bytes) -> Optional[bytes]:
        self._require_open()
        k = _check_key(key)
        if k in self._pending:
            return self._pending[k]
        return self._parent.get(k)

    def set(self, key: bytes, value: bytes) -> None:
        self._require_open()
        self._pending[_check_key(key)] = _check_value(value)

    def remove(self, key: bytes) -> None:
        self._require_open()
        self._pending[_check_key(key)] = None

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        order: Order = Order.ASCENDING,
    ) -> Iterator[Tuple[bytes, bytes]]:
        self._require_open()
        merged: Dict[bytes, bytes] = dict(self._parent.range(start, end))
        for k, v in self._pending.items():
            if not _in_bounds(k, start, end):
                continue
            if v is None:
                merged.pop(k, None)
            else:
                merged[k] = v
        items = sorted(merged.items())
        if order == Order.DESCENDING:
            items.reverse()
        return iter(items)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def commit(self) -> None:
        self._require_open()
        for k, v in self._pending.items():
            if v is None:
                self._parent.remove(k)
            else:
                self._parent.set(k, v)
        self._pending.clear()
        self._closed = True

    def rollback(self) -> None:
        self._pending.clear()
        self._closed = True

    def __enter__(self) -> "StorageBatch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._closed:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


__all__ = [
    "Order",
    "Storage",
    "MemoryStorage",
    "StorageBatch",
    "exclusive_start",
    "prefix_end",
]
