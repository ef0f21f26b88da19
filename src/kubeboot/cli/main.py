#!/usr/bin/env python3
"""kubeboot CLI - Main entry point"""

from pathlib import Path

import click
import yaml
from rich.console import Console

from kubeboot.cli.context import get_config, raw_config
from kubeboot.logging_config import configure_logging

console = Console()


def build_overrides(driver, cpu, memory, system) -> dict:
    """Map command-line flags onto the config layout"""
    overrides = {}
    cluster = {}
    if driver is not None:
        cluster["driver"] = driver
    if cpu is not None:
        cluster["cpu"] = cpu
    if memory is not None:
        cluster["memory"] = memory
    if cluster:
        overrides["cluster"] = cluster
    if system:
        overrides["tools"] = {"system": True}
    return overrides


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("-d", "--driver", metavar="ARG", help="Driver for minikube (docker, podman, kvm2, ...). Default: docker")
@click.option("-c", "--cpu", type=click.IntRange(min=1), metavar="ARG", help="Number of CPU cores for minikube. Default: 2")
@click.option("-m", "--memory", type=click.IntRange(min=1), metavar="ARG", help="Memory for minikube in MB. Default: 4096")
@click.option("-s", "--system", is_flag=True, help="Install binaries system-wide instead of ./bin")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="KUBEBOOT_CONFIG",
    help="Config file path",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx, driver, cpu, memory, system, config_path, verbose):
    """Bootstrap a local Kubernetes environment with ArgoCD and monitoring.

    Without a command, runs the full bootstrap.
    """
    ctx.ensure_object(dict)

    configure_logging("debug" if verbose else "info")

    ctx.obj["config_path"] = config_path
    ctx.obj["overrides"] = build_overrides(driver, cpu, memory, system)
    ctx.obj["verbose"] = verbose

    if ctx.invoked_subcommand is None:
        ctx.invoke(up.up)


@cli.command()
def version():
    """Show version information"""
    from kubeboot import __version__

    console.print(f"kubeboot version {__version__}")


@cli.command("config")
@click.pass_context
def show_config(ctx):
    """Print the effective configuration as YAML"""
    get_config(ctx)
    click.echo(yaml.safe_dump(raw_config(ctx), default_flow_style=False, sort_keys=True))


# Import subcommands
from kubeboot.cli import forwards, status, up

cli.add_command(up.up)
cli.add_command(status.status)
cli.add_command(forwards.forwards)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
