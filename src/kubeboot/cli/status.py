"""Read-only environment status"""

import os

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kubeboot.cli.context import get_config
from kubeboot.errors import CommandError
from kubeboot.installer.binaries import REQUIRED_BINARIES
from kubeboot.installer.cluster import Minikube
from kubeboot.installer.helm import Helm
from kubeboot.installer.portforward import ForwardRegistry
from kubeboot.installer.runner import find_executable, run_command

console = Console()


def status_icon(value):
    return "✓" if value else "✗"


@click.command()
@click.pass_context
def status(ctx):
    """Show what is already provisioned"""
    config = get_config(ctx)

    # Search the local bin directory too, without touching PATH
    search_path = os.pathsep.join(
        [os.environ.get("PATH", ""), str(config.tools.install_dir.resolve())]
    )
    found = {name: find_executable(name, path=search_path) for name in REQUIRED_BINARIES}
    found[config.cluster.driver] = find_executable(config.cluster.driver_binary)

    table = Table(title="kubeboot status")
    table.add_column("Check", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    for name, path in found.items():
        table.add_row(escape(name), status_icon(path), escape(path or "not found"))

    if found["minikube"]:
        state = Minikube(config.cluster.profile, run=_on_path(search_path)).status()
        host = state.get("Host", "Nonexistent")
        table.add_row("Cluster", status_icon(host == "Running"), escape(f"{config.cluster.profile}: {host}"))

    if found["helm"]:
        argocd = config.argocd
        try:
            installed = Helm(run=_on_path(search_path)).has_release(argocd.release, argocd.namespace)
            table.add_row("ArgoCD release", status_icon(installed), f"{argocd.namespace}/{argocd.release}")
        except CommandError as e:
            table.add_row("ArgoCD release", "?", escape(str(e)))

    records = ForwardRegistry(config.state_dir).load()
    for spec in config.forwards:
        record = records.get(spec.key)
        details = f"{spec.url} (pid {record.pid})" if record else spec.url
        table.add_row(escape(f"Forward {spec.name}"), status_icon(record), escape(details))

    console.print(table)


def _on_path(search_path):
    """Runner that resolves the tool through ``search_path``"""

    def run(cmd, **kwargs):
        resolved = find_executable(cmd[0], path=search_path) or cmd[0]
        return run_command([resolved, *cmd[1:]], **kwargs)

    return run
