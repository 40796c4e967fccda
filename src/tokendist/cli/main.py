#!/usr/bin/env python3
"""
tokendist CLI - Operator Interface for a Token Distribution

Drives a checkpointed deployment from the command line:
- genesis from an allocation file
- budget-bounded drivers (distribution, bonus, recovery)
- shareholder binding, redemption and vesting release
- offline signing of redemption destinations

Every mutating command runs through the atomic executor: a failed call
leaves the checkpoint untouched.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tokendist.core.address_link import (
    ChainKind,
    SignatureParts,
    address_from_private_key,
    sign_link_message,
)
from tokendist.core.allocation_source import load_allocation_file
from tokendist.core.config import ConfigurationError, load_config
from tokendist.core.constants import DEFAULT_CALL_GAS_LIMIT, DELEGATION_TOKEN, ESCROW_UNIT_GAS
from tokendist.core.deployment import Deployment
from tokendist.core.exceptions import DistributionError
from tokendist.core.logging_config import setup_logging
from tokendist.core.runtime import AtomicExecutor, BatchResult
from tokendist.core.state_store import StateStore

logger = logging.getLogger(__name__)
console = Console()

CHAIN_CHOICES = {"bitcoin": ChainKind.BITCOIN, "ethereum": ChainKind.ETHEREUM}


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _emit(ctx: click.Context, payload: dict[str, Any], title: str) -> None:
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(payload, indent=2, sort_keys=True))
        return
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key, value in payload.items():
        if isinstance(value, dict):
            value = json.dumps(value, sort_keys=True)
        table.add_row(str(key), str(value))
    console.print(Panel(table, title=f"[bold green]{title}", border_style="green"))


def _open_deployment(ctx: click.Context) -> tuple[Deployment, AtomicExecutor]:
    store: StateStore = ctx.obj["store"]
    if not store.exists():
        raise click.ClickException(f"No deployment checkpoint at {store.path}; run 'tokendist init' first")
    deployment = Deployment.from_state(store.load())
    return deployment, AtomicExecutor(deployment, store=store)


def _run(
    ctx: click.Context,
    title: str,
    resolve_operation: Callable[[Deployment], Callable[..., Any]],
    *args: Any,
    caller: str | None = None,
    at: int | None = None,
    gas: int | None = None,
) -> Any:
    try:
        deployment, executor = _open_deployment(ctx)
        operation = resolve_operation(deployment)
        result = executor.call(
            operation,
            *args,
            caller=caller or deployment.owner.owner,
            timestamp=at,
            gas_limit=gas,
        )
    except (DistributionError, ValueError) as exc:
        _handle_cli_error(exc)
        return None
    payload = result.to_dict() if isinstance(result, BatchResult) else {"result": result}
    _emit(ctx, payload, title)
    return result


def driver_options(func):
    func = click.option("--at", type=int, help="Block timestamp (defaults to now)")(func)
    func = click.option(
        "--gas",
        type=click.IntRange(min=0),
        default=DEFAULT_CALL_GAS_LIMIT,
        show_default=True,
        help="Gas limit of the call",
    )(func)
    func = click.option(
        "--min-budget",
        type=click.IntRange(min=1),
        default=ESCROW_UNIT_GAS,
        show_default=True,
        help="Minimum remaining gas required to attempt another unit",
    )(func)
    func = click.option("--caller", help="Calling address (defaults to the administrator)")(func)
    return func


# ============================================================================
# CLI Group
# ============================================================================


@click.group()
@click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Checkpoint file (defaults to the configured state_path)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file",
)
@click.option(
    "--allocations",
    "allocations_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Allocation file used by 'init'",
)
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    state_path: Path | None,
    config_path: Path | None,
    allocations_path: Path | None,
    json_output: bool,
    verbose: bool,
):
    """
    tokendist - resumable token distribution with vesting, bonuses and redemption.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    setup_logging(
        name="tokendist",
        log_file=config.log_file,
        level=config.log_level,
        enable_console=verbose,
    )
    ctx.obj["config"] = config
    ctx.obj["store"] = StateStore(state_path or config.state_path)
    ctx.obj["allocations_path"] = allocations_path
    ctx.obj["json_output"] = json_output


@cli.command("init")
@click.option("--admin", required=True, help="Administrator (owner) address")
@click.option("--force", is_flag=True, help="Overwrite an existing checkpoint")
@click.pass_context
def init(ctx: click.Context, admin: str, force: bool):
    """
    Create a deployment from the allocation file.

    Example:
        tokendist --allocations allocations.yaml init --admin 0xADMIN
    """
    store: StateStore = ctx.obj["store"]
    allocations_path = ctx.obj["allocations_path"]
    if allocations_path is None:
        raise click.UsageError("--allocations is required for init")
    if store.exists() and not force:
        raise click.ClickException(f"Checkpoint {store.path} already exists; use --force to replace it")
    try:
        source = load_allocation_file(allocations_path)
        deployment = Deployment.genesis(ctx.obj["config"], source, admin)
    except (ConfigurationError, DistributionError, ValueError) as exc:
        _handle_cli_error(exc)
        return
    store.save(deployment.state_dict())
    _emit(
        ctx,
        {
            "token": deployment.token.address,
            "engine": deployment.engine.address,
            "ledger": deployment.ledger.address,
            "total_supply": deployment.token.total_supply,
            "state": str(store.path),
        },
        "Deployment Created",
    )


# ============================================================================
# Budget-bounded drivers
# ============================================================================


@cli.command("advance")
@driver_options
@click.pass_context
def advance(ctx: click.Context, caller: str | None, min_budget: int, gas: int, at: int | None):
    """Allocate to the next beneficiaries within one call's budget."""
    _run(ctx, "Distribution Advanced", lambda d: d.engine.advance_distribution, min_budget,
         caller=caller, at=at, gas=gas)


@cli.command("bonus")
@driver_options
@click.pass_context
def bonus(ctx: click.Context, caller: str | None, min_budget: int, gas: int, at: int | None):
    """Pay the current bonus stage."""
    _run(ctx, "Bonus Stage", lambda d: d.engine.pay_bonus_stage, min_budget,
         caller=caller, at=at, gas=gas)


@cli.command("recover-shareholders")
@driver_options
@click.pass_context
def recover_shareholders(ctx: click.Context, caller: str | None, min_budget: int, gas: int, at: int | None):
    """Recover shareholder escrows left unassigned past their deadline."""
    _run(ctx, "Shareholder Recovery", lambda d: d.engine.recover_unassigned_shareholders, min_budget,
         caller=caller, at=at, gas=gas)


@cli.command("recover-funds")
@driver_options
@click.pass_context
def recover_funds(ctx: click.Context, caller: str | None, min_budget: int, gas: int, at: int | None):
    """Redirect never-redeemed contributors to the reserve entity and sweep."""
    _run(ctx, "Unused Fund Recovery", lambda d: d.engine.recover_unused_funds, min_budget,
         caller=caller, at=at, gas=gas)


# ============================================================================
# Administrative and holder commands
# ============================================================================


@cli.command("bind-shareholder")
@click.option("--amount", type=int, required=True, help="Allocation amount to match")
@click.option("--address", required=True, help="Beneficiary address")
@click.option("--at", type=int, help="Block timestamp (defaults to now)")
@click.pass_context
def bind_shareholder(ctx: click.Context, amount: int, address: str, at: int | None):
    """Bind the first unassigned shareholder escrow of AMOUNT."""
    _run(ctx, "Shareholder Bound", lambda d: d.engine.bind_shareholder_beneficiary, amount, address, at=at)


@cli.command("redeem")
@click.argument("source")
@click.argument("destination")
@click.option("--signature", required=True, help="65-byte r||s||v signature (hex)")
@click.option("--chain", type=click.Choice(sorted(CHAIN_CHOICES)), default="ethereum", show_default=True)
@click.option("--caller", help="Submitting address (defaults to SOURCE)")
@click.option("--at", type=int, help="Block timestamp (defaults to now)")
@click.pass_context
def redeem(
    ctx: click.Context,
    source: str,
    destination: str,
    signature: str,
    chain: str,
    caller: str | None,
    at: int | None,
):
    """Redeem SOURCE to DESTINATION with a signature by SOURCE over DESTINATION."""
    try:
        parts = SignatureParts.from_hex(signature)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--signature") from exc
    _run(ctx, "Redeemed", lambda d: d.ledger.redeem_signed, source, CHAIN_CHOICES[chain], destination, parts,
         caller=caller or source, at=at)


@cli.command("redeem-contingent")
@click.argument("source")
@click.argument("destination")
@click.option("--signature", required=True, help="Signature by SOURCE over DELEGATION (hex)")
@click.option("--chain", type=click.Choice(sorted(CHAIN_CHOICES)), default="ethereum", show_default=True)
@click.option("--at", type=int, help="Block timestamp (defaults to now)")
@click.pass_context
def redeem_contingent(ctx: click.Context, source: str, destination: str, signature: str, chain: str, at: int | None):
    """Redeem SOURCE to an administrator-chosen DESTINATION."""
    try:
        parts = SignatureParts.from_hex(signature)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--signature") from exc
    _run(ctx, "Redeemed", lambda d: d.ledger.redeem_contingent, source, CHAIN_CHOICES[chain], destination, parts,
         at=at)


@cli.command("redeem-self")
@click.option("--caller", required=True, help="Contributor address confirming itself")
@click.option("--at", type=int, help="Block timestamp (defaults to now)")
@click.pass_context
def redeem_self(ctx: click.Context, caller: str, at: int | None):
    """Confirm a contributor address without redirecting it."""
    _run(ctx, "Self Redeemed", lambda d: d.ledger.redeem_self, caller=caller, at=at)


@cli.command("release")
@click.argument("escrow")
@click.option("--caller", help="Calling address (defaults to the administrator)")
@click.option("--at", type=int, help="Block timestamp (defaults to now)")
@click.pass_context
def release(ctx: click.Context, escrow: str, caller: str | None, at: int | None):
    """Release vested tokens of ESCROW to its beneficiary."""
    _run(ctx, "Vesting Released", lambda d: d.vesting.get(escrow).release, caller=caller, at=at)


@cli.command("status")
@click.pass_context
def status(ctx: click.Context):
    """Show distribution progress."""
    try:
        deployment, _ = _open_deployment(ctx)
    except DistributionError as exc:
        _handle_cli_error(exc)
        return
    _emit(ctx, deployment.engine.status(), "Distribution Status")


@cli.command("sign")
@click.option("--key", "private_key", required=True, help="Contributor private key (hex)")
@click.option("--chain", type=click.Choice(sorted(CHAIN_CHOICES)), default="ethereum", show_default=True)
@click.option("--destination", help="Destination address to link")
@click.option("--delegation", is_flag=True, help="Sign the DELEGATION token instead")
@click.pass_context
def sign(ctx: click.Context, private_key: str, chain: str, destination: str | None, delegation: bool):
    """Sign a redemption destination offline."""
    if delegation == bool(destination):
        raise click.UsageError("Pass exactly one of --destination or --delegation")
    message = DELEGATION_TOKEN if delegation else destination
    try:
        parts = sign_link_message(private_key, CHAIN_CHOICES[chain], message)
        signer = address_from_private_key(private_key)
    except ValueError as exc:
        _handle_cli_error(exc)
        return
    _emit(
        ctx,
        {"signer": signer, "chain": chain, "signature": parts.to_hex(), "v": parts.v},
        "Signature",
    )


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
