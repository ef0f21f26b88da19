"""Port-forward management commands"""

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kubeboot.cli.context import state_dir
from kubeboot.installer.portforward import ForwardRegistry, stop_forward

console = Console()


@click.group()
def forwards():
    """Manage port-forwards started by kubeboot"""
    pass


@forwards.command("list")
@click.pass_context
def list_forwards(ctx):
    """List running port-forwards"""
    registry = ForwardRegistry(state_dir(ctx))
    records = registry.load()

    if not records:
        console.print("No port-forwards running")
        return

    table = Table(title="Port forwards")
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("URL", style="green")
    table.add_column("PID")
    table.add_column("Started")

    for key, record in sorted(records.items()):
        table.add_row(
            escape(key), escape(record.name), escape(record.url), str(record.pid), record.started_at
        )

    console.print(table)


@forwards.command("stop")
@click.argument("keys", nargs=-1)
@click.option("--all", "stop_all", is_flag=True, help="Stop every recorded port-forward")
@click.pass_context
def stop_forwards(ctx, keys, stop_all):
    """Stop port-forwards by key"""
    registry = ForwardRegistry(state_dir(ctx))

    if stop_all:
        keys = tuple(registry.load())
    elif not keys:
        raise click.UsageError("Give at least one KEY or --all")

    missing = False
    for key in keys:
        if stop_forward(registry, key):
            console.print(f"[green]✓[/green] Stopped {escape(key)}")
        else:
            console.print(f"[yellow]⚠ No running port-forward {escape(key)}[/yellow]")
            missing = True

    if missing and not stop_all:
        ctx.exit(1)
