"""Helm repositories and releases."""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from rich.console import Console

from kubeboot.config.settings import ReleaseSettings
from kubeboot.errors import CommandError, KubebootError
from kubeboot.installer.runner import DEFAULT_TIMEOUT, Runner, run_command

console = Console()
logger = logging.getLogger(__name__)


def render_set_args(values: Mapping[str, str]) -> List[str]:
    """Turn an override mapping into ``--set key=value`` arguments.

    Install and upgrade both go through here so a release always receives
    the same settings on either path. Keys are sorted for a stable order.
    """
    args: List[str] = []
    for key in sorted(values):
        args += ["--set", f"{key}={values[key]}"]
    return args


class Helm:
    """helm CLI wrapper"""

    def __init__(self, run: Runner = run_command, timeout: float = DEFAULT_TIMEOUT):
        self.run = run
        self.timeout = timeout

    def _list_json(self, cmd: List[str]) -> List[Dict[str, Any]]:
        result = self.run(cmd, check=False)
        if result.returncode != 0:
            # helm exits 1 with "no repositories to show" on an empty repo list
            if "no repositories" in result.stderr:
                return []
            raise CommandError(cmd, returncode=result.returncode, stderr=result.stderr)
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise CommandError(cmd, returncode=0, stderr=result.stdout, message=f"Invalid JSON from {' '.join(cmd)}") from e
        return data or []

    def repos(self) -> List[Dict[str, Any]]:
        return self._list_json(["helm", "repo", "list", "--output", "json"])

    def has_repo(self, name: str) -> bool:
        return any(repo.get("name") == name for repo in self.repos())

    def add_repo(self, name: str, url: str) -> None:
        self.run(["helm", "repo", "add", name, url])

    def update_repo(self, name: str) -> None:
        self.run(["helm", "repo", "update", name], timeout=self.timeout)

    def releases(self, namespace: str) -> List[Dict[str, Any]]:
        """Every release in ``namespace``, including pending and failed ones"""
        return self._list_json(["helm", "list", "--all", "--namespace", namespace, "--output", "json"])

    def release_status(self, name: str, namespace: str) -> Optional[str]:
        """Status of release ``name`` such as deployed or pending-install, None if absent"""
        for release in self.releases(namespace):
            if release.get("name") == name:
                return release.get("status", "unknown")
        return None

    def has_release(self, name: str, namespace: str) -> bool:
        return self.release_status(name, namespace) is not None

    def release_command(self, action: str, release: ReleaseSettings) -> List[str]:
        """Build the install or upgrade command for ``release``"""
        return [
            "helm",
            action,
            release.release,
            release.chart,
            "--namespace",
            release.namespace,
            "--version",
            release.version,
            *render_set_args(release.values),
        ]

    def install(self, release: ReleaseSettings) -> None:
        self.run(self.release_command("install", release), timeout=self.timeout)

    def upgrade(self, release: ReleaseSettings) -> None:
        self.run(self.release_command("upgrade", release), timeout=self.timeout)


def ensure_repo(helm: Helm, name: str, url: str) -> bool:
    """Register the repo if missing and refresh its index; True when added"""
    added = False
    if helm.has_repo(name):
        console.print(f"  ✓ Helm repo {name} already added")
    else:
        helm.add_repo(name, url)
        console.print(f"  [green]✓[/green] Helm repo {name} added ({url})")
        added = True

    helm.update_repo(name)
    return added


def ensure_release(helm: Helm, release: ReleaseSettings) -> str:
    """Install the release, or upgrade it in place; return the action taken"""
    status = helm.release_status(release.release, release.namespace)
    if status is not None and status.startswith("pending-"):
        # An interrupted install or upgrade holds the release lock
        raise KubebootError(
            f"Release {release.release} in {release.namespace} is stuck in {status}. "
            f"Remove it with \"helm uninstall {release.release} --namespace {release.namespace}\" "
            f"or roll it back, then re-run"
        )

    if status is not None:
        console.print(f"  Release {release.release} found, upgrading to {release.version}...")
        helm.upgrade(release)
        console.print(f"  [green]✓[/green] {release.release} upgraded")
        return "upgrade"

    console.print(f"  Installing {release.chart} {release.version} as {release.release}...")
    helm.install(release)
    console.print(f"  [green]✓[/green] {release.release} installed")
    return "install"
