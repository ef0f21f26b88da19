"""Local minikube cluster: driver check, start, addons."""

import json
import logging
from typing import Any, Dict

from rich.console import Console

from kubeboot.config.settings import ClusterSettings
from kubeboot.errors import PrerequisiteError
from kubeboot.installer.runner import DEFAULT_TIMEOUT, Runner, find_executable, run_command

console = Console()
logger = logging.getLogger(__name__)

DRIVER_HINTS = {
    "docker": "curl -fsSL https://get.docker.com | sh",
    "podman": "https://podman.io/docs/installation",
    "kvm2": "sudo apt install qemu-kvm libvirt-daemon-system",
    "virtualbox": "https://www.virtualbox.org/wiki/Downloads",
}


def ensure_driver(settings: ClusterSettings) -> None:
    """Fail unless the configured driver is installed"""
    binary = settings.driver_binary
    if not find_executable(binary):
        message = (
            f"{settings.driver} is not installed ({binary} not found on PATH). "
            f"Please install {settings.driver} before running kubeboot"
        )
        if settings.driver in ("docker", "podman"):
            message += " and check that it is running"
        if hint := DRIVER_HINTS.get(settings.driver):
            message += f". Install: {hint}"
        raise PrerequisiteError(message)
    console.print(f"  ✓ {settings.driver} is installed")


class Minikube:
    """Thin wrapper over the minikube CLI for one profile"""

    def __init__(self, profile: str = "minikube", run: Runner = run_command):
        self.profile = profile
        self.run = run

    def _cmd(self, *args: str) -> list[str]:
        return ["minikube", *args, "--profile", self.profile]

    def status(self) -> Dict[str, Any]:
        """Host/kubelet/apiserver state; empty when no cluster exists"""
        # minikube status exits non-zero whenever anything is stopped
        result = self.run(self._cmd("status", "--output", "json"), check=False)
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.debug("Unparseable minikube status output: %r", result.stdout)
            return {}
        # Multi-node clusters report a list, one entry per node
        if isinstance(data, list):
            data = data[0] if data else {}
        return data if isinstance(data, dict) else {}

    def is_running(self) -> bool:
        return self.status().get("Host") == "Running"

    def start(self, settings: ClusterSettings, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.run(
            self._cmd(
                "start",
                f"--driver={settings.driver}",
                f"--memory={settings.memory}",
                f"--cpus={settings.cpu}",
            ),
            timeout=timeout,
        )

    def addons(self) -> Dict[str, Any]:
        result = self.run(self._cmd("addons", "list", "--output", "json"))
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return {}

    def enable_addon(self, name: str) -> None:
        self.run(self._cmd("addons", "enable", name))


def ensure_cluster(
    minikube: Minikube, settings: ClusterSettings, timeout: float = DEFAULT_TIMEOUT
) -> bool:
    """Start the cluster unless its host is already running.

    Returns True when a cluster was started.
    """
    if minikube.is_running():
        console.print("  ✓ Minikube cluster is already running")
        return False

    console.print(
        f"  Minikube is not running. Starting with driver={settings.driver} "
        f"cpus={settings.cpu} memory={settings.memory}MB..."
    )
    minikube.start(settings, timeout=timeout)
    console.print("  [green]✓[/green] Minikube cluster started")
    return True


def ensure_addons(minikube: Minikube, addons) -> list[str]:
    """Enable each addon that is not enabled yet; return the ones enabled now"""
    if not addons:
        return []

    current = minikube.addons()
    enabled = []
    for name in addons:
        if current.get(name, {}).get("Status") == "enabled":
            console.print(f"  ✓ addon {name} already enabled")
            continue
        minikube.enable_addon(name)
        console.print(f"  [green]✓[/green] addon {name} enabled")
        enabled.append(name)
    return enabled
