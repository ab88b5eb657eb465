"""CloudSQL Operator CLI (cloudsql-operator).

Usage:
    cloudsql-operator run                      # Run the controller until SIGTERM
    cloudsql-operator apply instance.yaml      # Create or update a record
    cloudsql-operator reconcile default/db1    # Run one pass for a record
    cloudsql-operator sync                     # Run one pass for every record
    cloudsql-operator delete default/db1       # Request deletion of a record
    cloudsql-operator status default/db1       # Show the status sub-record
"""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path

import click
import yaml

from .config import Config, ConfigurationError
from .controller import Controller
from .errors import RecordLoadError, StoreError
from .main import run as run_operator
from .main import setup_logging
from .models import ResourceKey
from .reconciler import ReconcileResult, Reconciler
from .store import YamlFileStore, load_record_file

OPERATOR_VERSION = "0.1.0"


def parse_key(value: str) -> ResourceKey:
    """Parse a namespace/name argument."""
    try:
        return ResourceKey.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def load_config(store_dir: Path | None) -> Config:
    """Load configuration from the environment, with CLI overrides."""
    try:
        config = Config.from_env()
        if store_dir is not None:
            config = dataclasses.replace(config, store_dir=store_dir)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


def echo_result(result: ReconcileResult) -> None:
    """Print a pass result in a compact, human-readable form."""
    phase = result.phase.value if result.phase else "-"
    requeue = f"{result.requeue_after:g}s" if result.requeue_after is not None else "none"
    click.echo(f"{result.key}: phase={phase} action={result.action.value} requeue={requeue}")
    if result.error is not None:
        click.secho(f"  error: {result.error}", fg="red", err=True)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=OPERATOR_VERSION, prog_name="cloudsql-operator")
@click.option(
    "--store-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding desired-state records (overrides STORE_DIR).",
)
@click.pass_context
def cli(ctx: click.Context, store_dir: Path | None) -> None:
    """CloudSQL instance operator.

    Reconciles CloudSQLInstance records against the sledge provisioning CLI.
    """
    ctx.ensure_object(dict)
    ctx.obj["store_dir"] = store_dir


def _config(ctx: click.Context) -> Config:
    return load_config(ctx.obj.get("store_dir"))


# =============================================================================
# Commands
# =============================================================================


@cli.command()
def run() -> None:
    """Run the controller until interrupted."""
    run_operator()


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def apply(ctx: click.Context, file: Path) -> None:
    """Create a record or replace its spec from a YAML file."""
    store = YamlFileStore(_config(ctx).store_dir)
    try:
        record = load_record_file(file)
        stored = store.apply(record)
    except (RecordLoadError, StoreError) as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{stored.key} applied (generation {stored.metadata.generation})")


@cli.command()
@click.argument("key")
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON logs to stdout.")
@click.pass_context
def reconcile(ctx: click.Context, key: str, verbose: bool) -> None:
    """Run one reconciliation pass for NAMESPACE/NAME."""
    config = _config(ctx)
    if verbose:
        setup_logging(config.log_level)
    reconciler = Reconciler(config, YamlFileStore(config.store_dir))
    result = asyncio.run(reconciler.reconcile(parse_key(key)))
    echo_result(result)
    if result.error is not None:
        ctx.exit(1)


@cli.command()
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON logs to stdout.")
@click.pass_context
def sync(ctx: click.Context, verbose: bool) -> None:
    """Run one reconciliation pass for every record."""
    config = _config(ctx)
    if verbose:
        setup_logging(config.log_level)

    async def sweep() -> list[ReconcileResult]:
        controller = Controller(config, Reconciler(config, YamlFileStore(config.store_dir)))
        return await controller.reconcile_all()

    results = asyncio.run(sweep())
    for result in results:
        echo_result(result)
    if any(r.error is not None for r in results):
        ctx.exit(1)


@cli.command()
@click.argument("key")
@click.pass_context
def delete(ctx: click.Context, key: str) -> None:
    """Request deletion of NAMESPACE/NAME."""
    store = YamlFileStore(_config(ctx).store_dir)
    resource_key = parse_key(key)
    try:
        found = store.request_deletion(resource_key)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    if not found:
        raise click.ClickException(f"Record not found: {resource_key}")
    click.echo(f"{resource_key} deletion requested")


@cli.command()
@click.argument("key")
@click.pass_context
def status(ctx: click.Context, key: str) -> None:
    """Show the status sub-record of NAMESPACE/NAME."""
    store = YamlFileStore(_config(ctx).store_dir)
    resource_key = parse_key(key)
    try:
        record = store.get(resource_key)
    except StoreError as e:
        raise click.ClickException(str(e)) from e
    if record is None:
        raise click.ClickException(f"Record not found: {resource_key}")

    document = {
        "metadata": {
            "finalizers": record.metadata.finalizers,
            "deletionTimestamp": record.metadata.deletion_timestamp,
            "generation": record.metadata.generation,
        },
        "status": record.status.model_dump(by_alias=True, mode="json"),
    }
    click.echo(yaml.safe_dump(document, sort_keys=False).rstrip())


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
