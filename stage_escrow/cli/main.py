"""
stage-escrow - operate the escrow controller on a local chain.

The chain (height, balances, target stages, contract storage) lives in a
CBOR state file so successive invocations build on each other.

Global options:
  --state PATH    Chain state file (env STAGE_ESCROW_STATE_FILE)
  --json          Output JSON instead of human-readable text
  --verbose / -v  Log contract activity to stderr

Accounts may be given as bech32m addresses or as `@label`, which derives a
deterministic address from the label.

Examples:
  stage-escrow init --admin @admin --amount 100 --denom uanim --delta 10
  stage-escrow fund @alice 1000uanim
  stage-escrow oracle set @airdrop 0
  stage-escrow lock --sender @alice --target @airdrop --funds 100uanim
  stage-escrow advance 5
  stage-escrow release --sender @bob --target @airdrop --stage 0
  stage-escrow query list --limit 5
  stage-escrow execute --sender @admin '{"update_config": {"escrow_amount": 50}}'
  stage-escrow query raw '{"list_expired_escrows": {"limit": 5}}'
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from stage_escrow import logging as elog
from stage_escrow.cli import query as query_cmds
from stage_escrow.cli._common import (
    _ctx,
    contract_of,
    emit,
    emit_response,
    handle_errors,
    load_chain,
    parse_coins,
    parse_json_msg,
    resolve_address,
    save_chain,
)
from stage_escrow.config import load_config
from stage_escrow.contract import contract as escrow_contract
from stage_escrow.contract.msg import (
    InstantiateMsg,
    LockFunds,
    ReleaseLockedFunds,
    UpdateConfig,
    parse_execute,
)
from stage_escrow.errors import QueryError
from stage_escrow.runtime.host import LocalChain
from stage_escrow.runtime.querier import FixedStageOracle

app = typer.Typer(
    name="stage-escrow",
    help="Stage-gated escrow controller on a local chain",
    no_args_is_help=True,
    add_completion=False,
)
oracle_app = typer.Typer(help="Stage oracles of target distribution contracts")


@app.callback()
def main_callback(
    state: Optional[Path] = typer.Option(
        None,
        "--state",
        help="Chain state file",
        envvar="STAGE_ESCROW_STATE_FILE",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output JSON instead of human-readable text",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log contract activity to stderr",
    ),
) -> None:
    """
    Stage-gated escrow controller.

    Deposits are locked against the stage a target distribution contract
    reports and refunded to the depositor either after expiry (admin) or
    once the target has advanced past that stage (anyone).
    """
    _ctx.state_file = state
    _ctx.json_output = json_output
    _ctx.verbose = verbose
    elog.configure(json=json_output, level="DEBUG" if verbose else load_config().log_level)


# ------------------------------- chain ------------------------------- #


@app.command()
def init(
    amount: int = typer.Option(..., "--amount", min=0, help="Escrow amount per lock"),
    denom: str = typer.Option(..., "--denom", help="Accepted native denomination"),
    delta: int = typer.Option(..., "--delta", min=0, help="Blocks until an escrow expires"),
    admin: Optional[str] = typer.Option(None, "--admin", help="Admin (defaults to --sender)"),
    sender: str = typer.Option("@admin", "--sender", help="Instantiating account"),
    height: int = typer.Option(1, "--height", min=0, help="Starting block height"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing state file"),
) -> None:
    """Create a fresh chain and instantiate the escrow controller on it."""
    path = _ctx.path
    if path.exists() and not force:
        typer.echo(f"Error: {path} already exists (use --force to overwrite)", err=True)
        raise typer.Exit(1)

    with handle_errors():
        chain = LocalChain(escrow_contract, height=height)
        msg = InstantiateMsg(
            escrow_amount=amount,
            allowed_native=denom,
            release_height_delta=delta,
            admin=resolve_address(admin) if admin else None,
        )
        contract, res = chain.instantiate(resolve_address(sender), msg)
        save_chain(chain)
    emit_response(res, contract=contract, state=str(path))


@app.command()
def fund(
    address: str = typer.Argument(..., help="Account to credit"),
    coins: List[str] = typer.Argument(..., help="Coins, e.g. 1000uanim"),
) -> None:
    """Mint coins to an account."""
    with handle_errors():
        chain = load_chain()
        addr = resolve_address(address)
        minted = parse_coins(coins)
        chain.fund(addr, minted)
        save_chain(chain)
        balances = {c.denom: chain.balance(addr, c.denom) for c in minted}
    emit({"address": addr, "balances": balances}, title="Funded")


@app.command()
def balance(
    address: str = typer.Argument(..., help="Account or contract"),
) -> None:
    """Show all balances of an account."""
    with handle_errors():
        chain = load_chain()
        addr = resolve_address(address)
        coins = {c.denom: c.amount for c in chain.bank.all_balances(chain.api.addr_validate(addr))}
    emit({"address": addr, "balances": coins}, title="Balance")


@app.command()
def advance(
    blocks: int = typer.Argument(1, min=0, help="Number of blocks to advance"),
) -> None:
    """Move the block height forward."""
    with handle_errors():
        chain = load_chain()
        chain.next_block(blocks)
        save_chain(chain)
    emit({"height": chain.height}, title="Block")


@app.command()
def status() -> None:
    """Show height, contracts and known targets."""
    with handle_errors():
        chain = load_chain()
        oracles = {addr: o.latest_stage() for addr, o in chain.querier.items()}
    emit(
        {
            "height": chain.height,
            "chain_id": chain.block.chain_id,
            "contracts": list(chain.contracts),
            "targets": oracles,
        },
        title="Chain",
    )


# ------------------------------ oracles ------------------------------ #


@oracle_app.command("set")
def oracle_set(
    target: str = typer.Argument(..., help="Target distribution contract"),
    stage: int = typer.Argument(..., min=0, help="Latest stage it reports"),
) -> None:
    """Register a target (if new) and set its latest stage; stages never go back."""
    with handle_errors():
        chain = load_chain()
        addr = resolve_address(target)
        try:
            oracle = chain.oracle(addr)
        except QueryError:
            oracle = chain.register_oracle(addr, FixedStageOracle())
        if not isinstance(oracle, FixedStageOracle):
            typer.echo("Error: target stage is not settable", err=True)
            raise typer.Exit(1)
        try:
            oracle.set(stage)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        save_chain(chain)
    emit({"target": addr, "latest_stage": stage}, title="Oracle")


@oracle_app.command("show")
def oracle_show(
    target: str = typer.Argument(..., help="Target distribution contract"),
) -> None:
    """Show the latest stage a target reports."""
    with handle_errors():
        chain = load_chain()
        addr = resolve_address(target)
        stage = chain.querier.latest_stage(chain.api.addr_validate(addr))
    emit({"target": addr, "latest_stage": stage}, title="Oracle")


# ------------------------------ execute ------------------------------ #


@app.command()
def lock(
    sender: str = typer.Option(..., "--sender", help="Depositor"),
    target: str = typer.Option(..., "--target", help="Target distribution contract"),
    funds: List[str] = typer.Option(..., "--funds", help="Attached coins, e.g. 100uanim"),
    contract: Optional[str] = typer.Option(None, "--contract", help="Escrow contract address"),
) -> None:
    """Lock the escrow amount against the target's current stage."""
    with handle_errors():
        chain = load_chain()
        addr = contract_of(chain, contract)
        res = chain.execute(
            addr,
            resolve_address(sender),
            LockFunds(target_contract=resolve_address(target)),
            funds=parse_coins(funds),
        )
        save_chain(chain)
    emit_response(res, height=chain.height)


@app.command()
def release(
    sender: str = typer.Option(..., "--sender", help="Caller (admin for expired escrows)"),
    target: str = typer.Option(..., "--target", help="Target distribution contract"),
    stage: int = typer.Option(..., "--stage", min=0, help="Stage the escrow was locked at"),
    contract: Optional[str] = typer.Option(None, "--contract", help="Escrow contract address"),
) -> None:
    """Release an escrow back to its depositor."""
    with handle_errors():
        chain = load_chain()
        addr = contract_of(chain, contract)
        res = chain.execute(
            addr,
            resolve_address(sender),
            ReleaseLockedFunds(target_contract=resolve_address(target), stage=stage),
        )
        save_chain(chain)
    emit_response(res, height=chain.height)


@app.command("update-config")
def update_config(
    sender: str = typer.Option(..., "--sender", help="Current admin"),
    admin: Optional[str] = typer.Option(None, "--admin", help="New admin"),
    amount: Optional[int] = typer.Option(None, "--amount", min=0, help="New escrow amount"),
    delta: Optional[int] = typer.Option(None, "--delta", min=0, help="New release height delta"),
    denom: Optional[str] = typer.Option(None, "--denom", help="New accepted denomination"),
    contract: Optional[str] = typer.Option(None, "--contract", help="Escrow contract address"),
) -> None:
    """Change any subset of the config (admin only)."""
    with handle_errors():
        chain = load_chain()
        addr = contract_of(chain, contract)
        msg = UpdateConfig(
            admin=resolve_address(admin) if admin else None,
            escrow_amount=amount,
            release_height_delta=delta,
            allowed_native=denom,
        )
        res = chain.execute(addr, resolve_address(sender), msg)
        save_chain(chain)
    emit_response(res)


@app.command("execute")
def execute_cmd(
    msg: str = typer.Argument(..., help="Execute message as JSON in its tagged wire form"),
    sender: str = typer.Option(..., "--sender", help="Caller"),
    funds: Optional[List[str]] = typer.Option(None, "--funds", help="Attached coins, e.g. 100uanim"),
    contract: Optional[str] = typer.Option(None, "--contract", help="Escrow contract address"),
) -> None:
    """
    Send any execute message as JSON, e.g.

        '{"release_locked_funds": {"target_contract": "anim1...", "stage": 0}}'

    Addresses inside the JSON are used verbatim (no @label expansion).
    """
    with handle_errors():
        parsed = parse_json_msg(msg, parse_execute)
        chain = load_chain()
        addr = contract_of(chain, contract)
        res = chain.execute(addr, resolve_address(sender), parsed, funds=parse_coins(funds))
        save_chain(chain)
    emit_response(res, height=chain.height)


app.add_typer(oracle_app, name="oracle")
app.add_typer(query_cmds.app, name="query")


def main() -> None:
    """Entry point for the stage-escrow CLI."""
    app()


if __name__ == "__main__":
    main()
