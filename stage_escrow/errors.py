"""
stage_escrow.errors
-------------------

A small, consistent error system for the escrow controller and its host.

Design goals
------------
- One root `EscrowError` with a machine-friendly `code` and optional `data`.
- Concrete subclasses for each rejection the contract can produce, plus the
  host-side storage/codec/query failures that pass through unchanged.
- Safe JSON representation (`to_dict`) suitable for logs and the CLI.
- Clear separation of *retryable* vs *permanent* failures: only
  `CannotReleaseFunds` may succeed later without changing inputs.

This module uses only stdlib to avoid import cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ErrorCode(str, Enum):
    # Contract rejections
    UNAUTHORIZED = "ESCROW/UNAUTHORIZED"
    INSUFFICIENT_AMOUNT = "ESCROW/INSUFFICIENT_AMOUNT"
    ALREADY_CREATED = "ESCROW/ALREADY_CREATED"
    ALREADY_RELEASED = "ESCROW/ALREADY_RELEASED"
    CANNOT_RELEASE = "ESCROW/CANNOT_RELEASE_FUNDS"
    INVALID_STAGE = "ESCROW/INVALID_STAGE"

    # Host / std passthrough
    NOT_FOUND = "STD/NOT_FOUND"
    INVALID_ADDRESS = "STD/INVALID_ADDRESS"
    INVALID_MESSAGE = "STD/INVALID_MESSAGE"
    SERIALIZATION = "STD/SERIALIZATION"
    STORAGE = "STD/STORAGE"
    QUERY = "STD/QUERY"
    INSUFFICIENT_FUNDS = "STD/INSUFFICIENT_FUNDS"
    CONTEXT = "STD/CONTEXT"


@dataclass(eq=False)
class EscrowError(Exception):
    """
    Root error for stage_escrow.

    Attributes
    ----------
    code: str
        Machine-stable error code (see ErrorCode).
    message: str
        Human hint suitable for logs.
    data: dict
        Optional machine data (stage, key, address). JSON-serializable.
    retryable: bool
        Whether the same call may succeed later without changing inputs.
    """

    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        super().__init__(f"{_code_str(self.code)}: {self.message}")

    def with_cause(self, exc: BaseException) -> "EscrowError":
        self.cause = exc
        return self

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe shape suitable for logs and CLI output."""
        return {
            "code": _code_str(self.code),
            "message": self.message,
            "data": _jsonmap(self.data),
            "retryable": self.retryable,
        }

    def __str__(self) -> str:
        parts = [f"{_code_str(self.code)}: {self.message}"]
        if self.data:
            parts.append("[" + ", ".join(f"{k}={v}" for k, v in self.data.items()) + "]")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Contract rejections
# ---------------------------------------------------------------------------


class Unauthorized(EscrowError):
    def __init__(self, message: str = "unauthorized", **data: Any) -> None:
        super().__init__(code=ErrorCode.UNAUTHORIZED, message=message, data=_jsonmap(data))


class InsufficientAmount(EscrowError):
    def __init__(self, required: int, denom: str) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_AMOUNT,
            message="insufficient amount sent",
            data={"required": required, "denom": denom},
        )


class EscrowAlreadyCreated(EscrowError):
    def __init__(self, stage: int) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_CREATED,
            message=f"escrow already created for stage {stage}",
            data={"stage": stage},
        )

    @property
    def stage(self) -> int:
        return int(self.data["stage"])


class EscrowAlreadyReleased(EscrowError):
    def __init__(self, **data: Any) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_RELEASED,
            message="escrow already released",
            data=_jsonmap(data),
        )


class CannotReleaseFunds(EscrowError):
    """Neither release condition holds yet; retry after more blocks or a new stage."""

    def __init__(self, **data: Any) -> None:
        super().__init__(
            code=ErrorCode.CANNOT_RELEASE,
            message="cannot release funds",
            data=_jsonmap(data),
            retryable=True,
        )


class InvalidStage(EscrowError):
    def __init__(self, stage: Any, bits: int) -> None:
        super().__init__(
            code=ErrorCode.INVALID_STAGE,
            message=f"stage out of range for {bits}-bit counter",
            data={"stage": _coerce_json(stage), "bits": bits},
        )


# ---------------------------------------------------------------------------
# Host / std passthrough
# ---------------------------------------------------------------------------


class NotFound(EscrowError):
    def __init__(self, kind: str, key: str = "") -> None:
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{kind} not found",
            data={"kind": kind, "key": key},
        )


class InvalidAddress(EscrowError):
    def __init__(self, address: Any, reason: str = "") -> None:
        super().__init__(
            code=ErrorCode.INVALID_ADDRESS,
            message="invalid address",
            data={"address": _coerce_json(address), "reason": reason},
        )


class InvalidMessage(EscrowError):
    def __init__(self, message: str = "invalid message", **data: Any) -> None:
        super().__init__(code=ErrorCode.INVALID_MESSAGE, message=message, data=_jsonmap(data))


class SerializationError(EscrowError):
    def __init__(self, message: str = "serialization failed", **data: Any) -> None:
        super().__init__(code=ErrorCode.SERIALIZATION, message=message, data=_jsonmap(data))


class StorageError(EscrowError):
    def __init__(self, message: str = "storage error", **data: Any) -> None:
        super().__init__(code=ErrorCode.STORAGE, message=message, data=_jsonmap(data))


class QueryError(EscrowError):
    def __init__(self, message: str = "query failed", **data: Any) -> None:
        super().__init__(code=ErrorCode.QUERY, message=message, data=_jsonmap(data))


class InsufficientFunds(EscrowError):
    def __init__(self, address: str, denom: str, needed: int, balance: int) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_FUNDS,
            message="insufficient balance",
            data={"address": address, "denom": denom, "needed": needed, "balance": balance},
        )


class ContextError(EscrowError):
    """Validation or coercion failure for block/message environments."""

    def __init__(self, message: str = "invalid context", **data: Any) -> None:
        super().__init__(code=ErrorCode.CONTEXT, message=message, data=_jsonmap(data))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _code_str(code: Any) -> str:
    return code.value if isinstance(code, Enum) else str(code)


def _jsonmap(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _coerce_json(v) for k, v in data.items()}


def _coerce_json(v: Any) -> Any:
    # Keep JSON primitives; stringify the rest; hex-encode bytes.
    if v is None or isinstance(v, (bool, int, float, str, list, dict)):
        return v
    if isinstance(v, (bytes, bytearray)):
        return v.hex()
    return str(v)


__all__ = [
    "ErrorCode",
    "EscrowError",
    "Unauthorized",
    "InsufficientAmount",
    "EscrowAlreadyCreated",
    "EscrowAlreadyReleased",
    "CannotReleaseFunds",
    "InvalidStage",
    "NotFound",
    "InvalidAddress",
    "InvalidMessage",
    "SerializationError",
    "StorageError",
    "QueryError",
    "InsufficientFunds",
    "ContextError",
]
