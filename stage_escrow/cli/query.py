"""
stage-escrow query — read-only views of the escrow controller.

Implements:
  - stage-escrow query config
  - stage-escrow query escrow   --target T --stage S
  - stage-escrow query list     [--after-target T --after-stage S] [--limit N]
  - stage-escrow query expired  [--after-target T --after-stage S] [--limit N]
  - stage-escrow query version
  - stage-escrow query raw      '{"escrow": {"target_contract": "anim1...", "stage": 0}}'
"""

from __future__ import annotations

from typing import Optional

import typer

from stage_escrow.cli._common import (
    _ctx,
    _pretty,
    contract_of,
    emit,
    handle_errors,
    load_chain,
    parse_json_msg,
    resolve_address,
)
from stage_escrow.contract.msg import (
    ConfigQuery,
    ContractVersionQuery,
    Cursor,
    EscrowQuery,
    ListEscrows,
    ListEscrowsResponse,
    ListExpiredEscrows,
    parse_query,
)

app = typer.Typer(help="Queries (config, escrows, paginated lists)")


def _run(msg, contract: Optional[str]):
    with handle_errors():
        chain = load_chain()
        return chain.query(contract_of(chain, contract), msg)


def _cursor(after_target: Optional[str], after_stage: Optional[int]) -> Optional[Cursor]:
    if after_target is None and after_stage is None:
        return None
    if after_target is None or after_stage is None:
        typer.echo("Error: --after-target and --after-stage go together", err=True)
        raise typer.Exit(2)
    return (resolve_address(after_target), after_stage)


def _emit_list(res: ListEscrowsResponse, title: str) -> None:
    if _ctx.json_output:
        body = res.to_dict()
        body["next"] = list(res.escrows[-1].cursor) if res.escrows else None
        typer.echo(_pretty(body))
        return
    typer.echo(title)
    typer.echo("-" * 60)
    if not res.escrows:
        typer.echo("(none)")
        return
    for e in res.escrows:
        state = "released" if e.released else "locked"
        typer.echo(
            f"{e.target} stage={e.stage} source={e.source} "
            f"amount={e.escrow_amount} expiration={e.expiration} {state}"
        )
    last = res.escrows[-1]
    typer.echo(f"next: --after-target {last.target} --after-stage {last.stage}")


_CONTRACT = typer.Option(None, "--contract", help="Escrow contract address")


@app.command("config")
def config_cmd(contract: Optional[str] = _CONTRACT) -> None:
    """Show the controller config."""
    emit(_run(ConfigQuery(), contract).to_dict(), title="Config")


@app.command("escrow")
def escrow_cmd(
    target: str = typer.Option(..., "--target", help="Target distribution contract"),
    stage: int = typer.Option(..., "--stage", min=0, help="Stage the escrow was locked at"),
    contract: Optional[str] = _CONTRACT,
) -> None:
    """Show one escrow by (target, stage)."""
    res = _run(EscrowQuery(target_contract=resolve_address(target), stage=stage), contract)
    emit(res.to_dict(), title="Escrow")


@app.command("list")
def list_cmd(
    after_target: Optional[str] = typer.Option(None, "--after-target", help="Cursor target"),
    after_stage: Optional[int] = typer.Option(None, "--after-stage", min=0, help="Cursor stage"),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Page size (max 30)"),
    contract: Optional[str] = _CONTRACT,
) -> None:
    """List escrows in (target, stage) order."""
    msg = ListEscrows(start_after=_cursor(after_target, after_stage), limit=limit)
    _emit_list(_run(msg, contract), "Escrows")


@app.command("expired")
def expired_cmd(
    after_target: Optional[str] = typer.Option(None, "--after-target", help="Cursor target"),
    after_stage: Optional[int] = typer.Option(None, "--after-stage", min=0, help="Cursor stage"),
    limit: Optional[int] = typer.Option(None, "--limit", min=0, help="Page size (max 30)"),
    contract: Optional[str] = _CONTRACT,
) -> None:
    """List expired, unreleased escrows (the admin's worklist)."""
    msg = ListExpiredEscrows(start_after=_cursor(after_target, after_stage), limit=limit)
    _emit_list(_run(msg, contract), "Expired escrows")


@app.command("version")
def version_cmd(contract: Optional[str] = _CONTRACT) -> None:
    """Show the contract name and version recorded at instantiation."""
    emit(_run(ContractVersionQuery(), contract).to_dict(), title="Contract")


@app.command("raw")
def raw_cmd(
    msg: str = typer.Argument(..., help="Query message as JSON in its tagged wire form"),
    contract: Optional[str] = _CONTRACT,
) -> None:
    """Run any query given as JSON, e.g. '{"list_escrows": {"limit": 5}}'."""
    with handle_errors():
        parsed = parse_json_msg(msg, parse_query)
    res = _run(parsed, contract)
    if isinstance(res, ListEscrowsResponse):
        _emit_list(res, "Escrows")
    else:
        emit(res.to_dict(), title=parsed.TAG)
