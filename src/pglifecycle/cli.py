"""
pglifecycle command line interface.

Exit codes:
    0    every step passed
    1    assertion failure, timeout or control-plane error
    2    missing or invalid configuration (and click usage errors)
    130  interrupted; created resources were still torn down
"""

import asyncio
import logging
import os
import sys

import click

from . import __version__
from .adapters.ubi_cli import UbiCliClient
from .core.config import ControlPlaneConfig, LifecycleConfig, VmSmokeConfig
from .core.errors import ConfigurationError, LifecycleError
from .utils.logging_utils import logging_context
from .workflow.lifecycle import run_lifecycle
from .workflow.runner import run_cancellable
from .workflow.vm_smoke import run_vm_smoke

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _client(control_plane: ControlPlaneConfig) -> UbiCliClient:
    return UbiCliClient(
        token=control_plane.token,
        url=control_plane.url,
        binary=control_plane.binary,
        command_timeout=control_plane.command_timeout,
    )


def _execute(ctx: click.Context, make_workflow) -> None:
    """Run a workflow under logging and signal handling, then exit."""
    level_name = ctx.obj.get("log_level") if ctx.obj else None
    level = getattr(logging, level_name.upper()) if level_name else None

    with logging_context(level=level):
        try:
            asyncio.run(run_cancellable(make_workflow()))
        except (asyncio.CancelledError, KeyboardInterrupt):
            click.echo("Interrupted.", err=True)
            sys.exit(EXIT_INTERRUPTED)
        except LifecycleError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_FAILURE)


@click.group()
@click.version_option(version=__version__, prog_name="pglifecycle")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override PGLIFECYCLE_LOG_LEVEL.",
)
@click.pass_context
def main(ctx, log_level):
    """pglifecycle - lifecycle verification for managed PostgreSQL."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@main.command()
@click.option("--name", default=None, help="Primary database name (PG_NAME).")
@click.option("--location", default=None, help="Location slug (PG_LOCATION).")
@click.pass_context
def run(ctx, name, location):
    """Run the full PostgreSQL lifecycle test."""
    env = dict(os.environ)
    if name:
        env["PG_NAME"] = name
    if location:
        env["PG_LOCATION"] = location
    try:
        config = LifecycleConfig.from_env(env)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG)

    client = _client(config.control_plane)
    _execute(ctx, lambda: run_lifecycle(config, client))


@main.command("vm-smoke")
@click.pass_context
def vm_smoke(ctx):
    """Create a subnet and VM, check SSH, then destroy both."""
    try:
        config = VmSmokeConfig.from_env()
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG)

    client = _client(config.control_plane)
    _execute(ctx, lambda: run_vm_smoke(config, client))


@main.command()
def version():
    """Show version information."""
    click.echo(f"pglifecycle version {__version__}")


if __name__ == "__main__":
    main()
