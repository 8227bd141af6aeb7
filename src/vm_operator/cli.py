"""vmctl - apply, inspect and destroy Proxmox VMs from YAML specs.

Usage:
    vmctl apply specs/              Create or update every VM in a directory
    vmctl apply specs/web-01.yaml   Create or update a single VM
    vmctl show web-01               Print the observed state of a VM
    vmctl destroy web-01            Stop and delete a VM
    vmctl check-permissions         Verify the API token's privileges

Provider settings come from PM_* environment variables.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
import yaml

from .config import ConfigurationError, ProviderConfig
from .errors import InsufficientPermissions
from .main import apply_specs, build_orchestrator, destroy_vm, setup_logging, show_vm
from .orchestrator import OperationResult, VmOrchestrator
from .spec_loader import SpecLoadError, load_vm_spec, load_vm_specs
from .state import StateError, StateStore

DEFAULT_STATE_FILE = "vmctl-state.yaml"


def _load_config() -> ProviderConfig:
    try:
        return ProviderConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _load_store(path: Path) -> StateStore:
    try:
        return StateStore(path)
    except StateError as e:
        raise click.ClickException(str(e)) from e


def _print_result(name: str, result: OperationResult) -> None:
    line = f"{name}: {result.operation} {result.resource_id or '-'}"
    if result.strategy is not None:
        line += f" ({result.strategy.value})"
    if result.connection is not None:
        line += f" ssh {result.connection.host}:{result.connection.port}"
    click.secho(f"✓ {line}", fg="green")
    for advisory in result.advisories:
        click.secho(f"  ! {advisory.summary}", fg="yellow")
        if advisory.detail:
            click.echo(f"    {advisory.detail}")


@click.group()
@click.version_option(version="0.1.0", prog_name="vmctl")
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_FILE,
    envvar="VMCTL_STATE_FILE",
    show_default=True,
    help="YAML file recording managed VMs",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def cli(ctx: click.Context, state_file: Path, verbose: bool) -> None:
    """Proxmox VM lifecycle tool."""
    ctx.ensure_object(dict)
    ctx.obj["state_file"] = state_file
    ctx.obj["log_level"] = logging.DEBUG if verbose else logging.INFO


def _orchestrator(ctx: click.Context) -> VmOrchestrator:
    config = _load_config()
    setup_logging(config, ctx.obj["log_level"])
    return build_orchestrator(config)


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.pass_context
def apply(ctx: click.Context, path: Path) -> None:
    """Create or update the VM(s) described at PATH."""
    try:
        specs = load_vm_specs(path) if path.is_dir() else [load_vm_spec(path)]
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    if not specs:
        click.echo(f"No VM specs found in {path}")
        return

    store = _load_store(ctx.obj["state_file"])
    orchestrator = _orchestrator(ctx)
    outcomes = asyncio.run(apply_specs(orchestrator, store, specs))

    failures = 0
    for spec, outcome in zip(specs, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            failures += 1
            click.secho(f"✗ {spec.name}: {outcome}", fg="red", err=True)
        else:
            _print_result(spec.name, outcome)

    if failures:
        raise click.ClickException(f"{failures} of {len(specs)} VM(s) failed")


@cli.command()
@click.argument("name")
@click.pass_context
def destroy(ctx: click.Context, name: str) -> None:
    """Stop and delete the VM recorded as NAME."""
    store = _load_store(ctx.obj["state_file"])
    orchestrator = _orchestrator(ctx)
    if not asyncio.run(destroy_vm(orchestrator, store, name)):
        raise click.ClickException(f"No VM named '{name}' in {store.path}")
    click.secho(f"✓ Destroyed {name}", fg="green")


@cli.command()
@click.argument("name")
@click.pass_context
def show(ctx: click.Context, name: str) -> None:
    """Print the observed state of the VM recorded as NAME."""
    store = _load_store(ctx.obj["state_file"])
    orchestrator = _orchestrator(ctx)
    result = asyncio.run(show_vm(orchestrator, store, name))
    if result is None:
        raise click.ClickException(f"No VM named '{name}' in {store.path}")
    if result.state is None:
        click.secho(f"{name} no longer exists", fg="yellow")
        return
    click.echo(yaml.safe_dump(result.state.to_dict(), sort_keys=False))


@cli.command("check-permissions")
@click.pass_context
def check_permissions(ctx: click.Context) -> None:
    """Verify the API token holds every required privilege."""
    orchestrator = _orchestrator(ctx)
    try:
        asyncio.run(orchestrator.session.verify_permissions())
    except InsufficientPermissions as e:
        raise click.ClickException(str(e)) from e
    click.secho("✓ Token permissions are sufficient", fg="green")


if __name__ == "__main__":
    cli()
