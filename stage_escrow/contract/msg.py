"""
stage_escrow.contract.msg — message and response schema.

Messages are frozen dataclasses. On the wire (CLI, JSON fixtures) they use
snake_case externally-tagged objects:

    {"lock_funds": {"target_contract": "anim1..."}}
    {"release_locked_funds": {"target_contract": "anim1...", "stage": 3}}
    {"list_escrows": {"start_after": ["anim1...", 2], "limit": 5}}

`parse_execute` / `parse_query` map such objects onto the variant classes and
raise InvalidMessage for unknown tags, unknown fields or bad field types.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from stage_escrow.errors import InvalidMessage

Cursor = Tuple[str, int]


# ------------------------------ helpers ------------------------------ #


def _opt_uint(name: str, v: Any) -> Optional[int]:
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
        raise InvalidMessage(f"{name} must be a non-negative integer", field=name)
    return v


def _uint(name: str, v: Any) -> int:
    out = _opt_uint(name, v)
    if out is None:
        raise InvalidMessage(f"{name} is required", field=name)
    return out


def _opt_str(name: str, v: Any) -> Optional[str]:
    if v is None:
        return None
    if not isinstance(v, str) or not v:
        raise InvalidMessage(f"{name} must be a non-empty string", field=name)
    return v


def _str(name: str, v: Any) -> str:
    out = _opt_str(name, v)
    if out is None:
        raise InvalidMessage(f"{name} is required", field=name)
    return out


def _cursor(v: Any) -> Optional[Cursor]:
    if v is None:
        return None
    if not isinstance(v, (list, tuple)) or len(v) != 2:
        raise InvalidMessage("start_after must be a [target, stage] pair", field="start_after")
    return (_str("start_after.target", v[0]), _uint("start_after.stage", v[1]))


def _body(cls: Type[Any], raw: Any) -> Dict[str, Any]:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidMessage("message body must be an object", variant=cls.TAG)
    known = {f.name for f in fields(cls)}
    extra = sorted(set(raw) - known)
    if extra:
        raise InvalidMessage("unknown fields", variant=cls.TAG, fields=extra)
    return raw


def _tagged(obj: Any) -> Dict[str, Any]:
    return {obj.TAG: {k: (list(v) if isinstance(v, tuple) else v) for k, v in asdict(obj).items()}}


# ---------------------------- instantiate ---------------------------- #


@dataclass(frozen=True)
class InstantiateMsg:
    escrow_amount: int
    allowed_native: str
    release_height_delta: int
    admin: Optional[str] = None

    TAG = "instantiate"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InstantiateMsg":
        d = _body(cls, d)
        return cls(
            escrow_amount=_uint("escrow_amount", d.get("escrow_amount")),
            allowed_native=_str("allowed_native", d.get("allowed_native")),
            release_height_delta=_uint("release_height_delta", d.get("release_height_delta")),
            admin=_opt_str("admin", d.get("admin")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ------------------------------ execute ------------------------------ #


@dataclass(frozen=True)
class UpdateConfig:
    admin: Optional[str] = None
    escrow_amount: Optional[int] = None
    release_height_delta: Optional[int] = None
    allowed_native: Optional[str] = None

    TAG = "update_config"

    @classmethod
    def from_dict(cls, d: Any) -> "UpdateConfig":
        d = _body(cls, d)
        return cls(
            admin=_opt_str("admin", d.get("admin")),
            escrow_amount=_opt_uint("escrow_amount", d.get("escrow_amount")),
            release_height_delta=_opt_uint("release_height_delta", d.get("release_height_delta")),
            allowed_native=_opt_str("allowed_native", d.get("allowed_native")),
        )


@dataclass(frozen=True)
class LockFunds:
    target_contract: str

    TAG = "lock_funds"

    @classmethod
    def from_dict(cls, d: Any) -> "LockFunds":
        d = _body(cls, d)
        return cls(target_contract=_str("target_contract", d.get("target_contract")))


@dataclass(frozen=True)
class ReleaseLockedFunds:
    target_contract: str
    stage: int

    TAG = "release_locked_funds"

    @classmethod
    def from_dict(cls, d: Any) -> "ReleaseLockedFunds":
        d = _body(cls, d)
        return cls(
            target_contract=_str("target_contract", d.get("target_contract")),
            stage=_uint("stage", d.get("stage")),
        )


ExecuteMsg = Union[UpdateConfig, LockFunds, ReleaseLockedFunds]


# ------------------------------- query ------------------------------- #


@dataclass(frozen=True)
class ConfigQuery:
    TAG = "config"

    @classmethod
    def from_dict(cls, d: Any) -> "ConfigQuery":
        _body(cls, d)
        return cls()


@dataclass(frozen=True)
class EscrowQuery:
    target_contract: str
    stage: int

    TAG = "escrow"

    @classmethod
    def from_dict(cls, d: Any) -> "EscrowQuery":
        d = _body(cls, d)
        return cls(
            target_contract=_str("target_contract", d.get("target_contract")),
            stage=_uint("stage", d.get("stage")),
        )


@dataclass(frozen=True)
class ListEscrows:
    start_after: Optional[Cursor] = None
    limit: Optional[int] = None

    TAG = "list_escrows"

    @classmethod
    def from_dict(cls, d: Any) -> "ListEscrows":
        d = _body(cls, d)
        return cls(start_after=_cursor(d.get("start_after")), limit=_opt_uint("limit", d.get("limit")))


@dataclass(frozen=True)
class ListExpiredEscrows:
    start_after: Optional[Cursor] = None
    limit: Optional[int] = None

    TAG = "list_expired_escrows"

    @classmethod
    def from_dict(cls, d: Any) -> "ListExpiredEscrows":
        d = _body(cls, d)
        return cls(start_after=_cursor(d.get("start_after")), limit=_opt_uint("limit", d.get("limit")))


@dataclass(frozen=True)
class ContractVersionQuery:
    TAG = "contract_version"

    @classmethod
    def from_dict(cls, d: Any) -> "ContractVersionQuery":
        _body(cls, d)
        return cls()


QueryMsg = Union[ConfigQuery, EscrowQuery, ListEscrows, ListExpiredEscrows, ContractVersionQuery]


# ----------------------------- responses ----------------------------- #


@dataclass(frozen=True)
class ConfigResponse:
    admin: str
    escrow_amount: int
    release_height_delta: int
    allowed_native: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EscrowResponse:
    target: str
    stage: int
    source: str
    expiration: int
    escrow_amount: int
    latest_stage: int
    released: bool

    @property
    def cursor(self) -> Cursor:
        """Pass as `start_after` to continue listing after this entry."""
        return (self.target, self.stage)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ListEscrowsResponse:
    escrows: List[EscrowResponse]

    def to_dict(self) -> Dict[str, Any]:
        return {"escrows": [e.to_dict() for e in self.escrows]}


@dataclass(frozen=True)
class ContractVersionResponse:
    contract: str
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ------------------------------ parsing ------------------------------ #

_EXECUTE = {cls.TAG: cls for cls in (UpdateConfig, LockFunds, ReleaseLockedFunds)}
_QUERY = {
    cls.TAG: cls
    for cls in (ConfigQuery, EscrowQuery, ListEscrows, ListExpiredEscrows, ContractVersionQuery)
}


def _parse(table: Dict[str, Any], raw: Any, kind: str) -> Any:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise InvalidMessage(f"{kind} message must be an object with exactly one variant")
    (tag, body), = raw.items()
    cls = table.get(tag)
    if cls is None:
        raise InvalidMessage(f"unknown {kind} variant", variant=tag, expected=sorted(table))
    return cls.from_dict(body)


def parse_execute(raw: Any) -> ExecuteMsg:
    return _parse(_EXECUTE, raw, "execute")


def parse_query(raw: Any) -> QueryMsg:
    return _parse(_QUERY, raw, "query")


def to_wire(msg: Union[ExecuteMsg, QueryMsg]) -> Dict[str, Any]:
    """Inverse of parse_execute / parse_query."""
    return _tagged(msg)


__all__ = [
    "Cursor",
    "InstantiateMsg",
    "UpdateConfig",
    "LockFunds",
    "ReleaseLockedFunds",
    "ExecuteMsg",
    "ConfigQuery",
    "EscrowQuery",
    "ListEscrows",
    "ListExpiredEscrows",
    "ContractVersionQuery",
    "QueryMsg",
    "ConfigResponse",
    "EscrowResponse",
    "ListEscrowsResponse",
    "ContractVersionResponse",
    "parse_execute",
    "parse_query",
    "to_wire",
]
