"""
Shared plumbing for the stage-escrow CLI: global options, chain state file,
address/coin parsing and output.
"""

from __future__ import annotations

import json
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, TypeVar

import typer

from stage_escrow.config import load_config
from stage_escrow.contract import contract as escrow_contract
from stage_escrow.errors import EscrowError, InvalidMessage
from stage_escrow.runtime.context import Coin
from stage_escrow.runtime.host import LocalChain
from stage_escrow.utils.address import address_from_label

_COIN_RE = re.compile(r"^(\d+)([A-Za-z][A-Za-z0-9/:._-]*)$")

T = TypeVar("T")


@dataclass
class GlobalContext:
    state_file: Optional[Path] = None
    json_output: bool = False
    verbose: bool = False

    @property
    def path(self) -> Path:
        return self.state_file or load_config().state_file


_ctx = GlobalContext()


# ------------------------------ parsing ------------------------------ #


def resolve_address(value: str) -> str:
    """`@alice` derives a deterministic account address from a label; anything else is used as is."""
    if value.startswith("@") and len(value) > 1:
        return address_from_label(value[1:])
    return value


def parse_coins(values: Optional[List[str]]) -> List[Coin]:
    out: List[Coin] = []
    for raw in values or []:
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            m = _COIN_RE.match(part)
            if m is None:
                raise InvalidMessage("coins must look like 100uanim", value=part)
            out.append(Coin(denom=m.group(2), amount=int(m.group(1))))
    return out


def parse_json_msg(text: str, parser: Callable[[Any], T]) -> T:
    """Decode a JSON wire message and map it onto a message class with `parser`."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidMessage("message is not valid JSON", error=str(e)) from e
    return parser(raw)


# ------------------------------- chain ------------------------------- #


def load_chain() -> LocalChain:
    path = _ctx.path
    if not path.exists():
        typer.echo(f"Error: no chain state at {path}; run `stage-escrow init` first", err=True)
        raise typer.Exit(1)
    return LocalChain.load(path, escrow_contract)


def save_chain(chain: LocalChain) -> None:
    chain.save(_ctx.path)


def contract_of(chain: LocalChain, contract: Optional[str]) -> str:
    if contract:
        return resolve_address(contract)
    if not chain.contracts:
        typer.echo("Error: no contract instantiated", err=True)
        raise typer.Exit(1)
    return chain.contracts[0]


# ------------------------------- output ------------------------------ #


def _pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


def emit(obj: Any, *, title: Optional[str] = None) -> None:
    """Print a dict as JSON (--json) or as aligned `key: value` lines."""
    if _ctx.json_output:
        typer.echo(_pretty(obj))
        return
    if title:
        typer.echo(title)
        typer.echo("-" * 60)
    if isinstance(obj, dict):
        width = max((len(str(k)) for k in obj), default=0)
        for k, v in obj.items():
            shown = _pretty(v) if isinstance(v, (dict, list)) else v
            typer.echo(f"{str(k) + ':':<{width + 1}} {shown}")
    else:
        typer.echo(str(obj))


def emit_response(res: Any, **extra: Any) -> None:
    body = dict(extra)
    body.update(res.to_dict())
    if _ctx.json_output:
        typer.echo(_pretty(body))
        return
    for k, v in extra.items():
        typer.echo(f"{k}: {v}")
    for k, v in res.attributes:
        typer.echo(f"{k}: {v}")
    for m in res.messages:
        typer.echo(f"send: {','.join(str(c) for c in m.amount)} -> {m.to_address}")


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn contract/runtime errors into a non-zero exit with a readable message."""
    try:
        yield
    except EscrowError as e:
        if _ctx.json_output:
            typer.echo(_pretty({"error": e.to_dict()}), err=True)
        else:
            typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
