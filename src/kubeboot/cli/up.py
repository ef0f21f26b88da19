"""Bootstrap command"""

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kubeboot.cli.context import get_config
from kubeboot.errors import StepError
from kubeboot.installer.bootstrap import Bootstrapper, BootstrapReport

console = Console()
err_console = Console(stderr=True)


@click.command()
@click.pass_context
def up(ctx):
    """Provision the cluster, ArgoCD, monitoring and port-forwards"""
    config = get_config(ctx)

    console.print("[bold green]kubeboot[/bold green]")
    console.print(
        f"driver={config.cluster.driver} cpus={config.cluster.cpu} "
        f"memory={config.cluster.memory}MB bin_dir={config.tools.install_dir}"
    )

    try:
        report = Bootstrapper(config).run()
    except StepError as e:
        err_console.print(f"\n[red]✗ Failed at {e.step}: {escape(str(e.cause))}[/red]")
        if e.command:
            err_console.print(f"[dim]command: {escape(e.command)}[/dim]")
        stderr = getattr(e.cause, "stderr", "")
        if stderr:
            err_console.print(f"[dim]{escape(stderr.strip())}[/dim]")
        ctx.exit(1)

    print_report(report)


def print_report(report: BootstrapReport) -> None:
    """Print credentials and forwarded URLs"""
    if report.credentials:
        table = Table(title="Credentials")
        table.add_column("Service", style="cyan")
        table.add_column("Username", style="green")
        table.add_column("Password")

        for credential in report.credentials:
            table.add_row(
                escape(credential.name), escape(credential.username), escape(credential.password)
            )

        console.print(table)

    if report.forwards:
        table = Table(title="Port forwards")
        table.add_column("Service", style="cyan")
        table.add_column("URL", style="green")
        table.add_column("PID")
        table.add_column("Status")

        for forward in report.forwards:
            table.add_row(
                escape(forward.spec.name),
                escape(forward.url),
                str(forward.pid),
                "started" if forward.started else "already running",
            )

        console.print(table)

    console.print("\n[bold green]✓ Bootstrap complete![/bold green]")
