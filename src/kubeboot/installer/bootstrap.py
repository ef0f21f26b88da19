"""Bootstrap orchestrator: runs every provisioning step in order."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from rich.console import Console

from kubeboot.api.client import Client
from kubeboot.config.settings import BootstrapConfig, CredentialSpec
from kubeboot.errors import StepError
from kubeboot.installer.binaries import REQUIRED_BINARIES, ensure_binary, prepare_bin_dir
from kubeboot.installer.cluster import Minikube, ensure_addons, ensure_cluster, ensure_driver
from kubeboot.installer.helm import Helm, ensure_release, ensure_repo
from kubeboot.installer.kubectl import Kubectl, WaitCondition, ensure_namespace
from kubeboot.installer.portforward import (
    ForwardManager,
    ForwardRegistry,
    ForwardResult,
    port_in_use,
)
from kubeboot.installer.runner import Runner, run_command, spawn_detached

console = Console()
logger = logging.getLogger(__name__)

HEALTHY_JSONPATH = "{.status.health.status}"


@dataclass
class Credential:
    name: str
    username: str
    password: str


@dataclass
class BootstrapReport:
    """What a run ended with, and what it had to change to get there"""

    credentials: List[Credential] = field(default_factory=list)
    forwards: List[ForwardResult] = field(default_factory=list)
    changes: List[str] = field(default_factory=list)


class Bootstrapper:
    """Run the provisioning steps for one BootstrapConfig.

    External tools are reached through ``run`` and ``spawn`` so the whole
    sequence can be driven against fakes.
    """

    def __init__(
        self,
        config: BootstrapConfig,
        run: Runner = run_command,
        spawn: Callable[[List[str]], int] = spawn_detached,
        client: Optional[Client] = None,
        installers: Optional[Dict[str, Callable]] = None,
        registry: Optional[ForwardRegistry] = None,
        port_check: Callable[[int], bool] = port_in_use,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.client = client or Client(timeout=config.timeouts.download)
        self.installers = installers
        timeouts = config.timeouts

        def bounded(cmd, **kwargs):
            kwargs.setdefault("timeout", timeouts.command)
            return run(cmd, **kwargs)

        self.minikube = Minikube(config.cluster.profile, run=bounded)
        self.kubectl = Kubectl(run=bounded, clock=clock, sleep=sleep)
        self.helm = Helm(run=bounded, timeout=timeouts.command)
        self.forwards = ForwardManager(
            self.kubectl,
            registry or ForwardRegistry(config.state_dir),
            spawn=spawn,
            port_check=port_check,
            service_timeout=timeouts.service_poll,
            poll_interval=timeouts.poll_interval,
        )
        self.report = BootstrapReport()

    def steps(self) -> List[Tuple[str, Callable[[], None]]]:
        return [
            ("Binaries", self.install_binaries),
            ("Driver", self.check_driver),
            ("Cluster", self.start_cluster),
            ("Addons", self.enable_addons),
            ("ArgoCD namespace", self.create_namespace),
            ("Helm repository", self.add_repo),
            ("ArgoCD release", self.install_argocd),
            ("ArgoCD readiness", self.wait_for_argocd),
            ("Manifests", self.apply_manifests),
            ("Applications", self.wait_for_applications),
            ("Credentials", self.read_credentials),
            ("Port forwards", self.start_forwards),
        ]

    def run(self) -> BootstrapReport:
        """Execute every step in order, stopping at the first failure"""
        for name, func in self.steps():
            console.print(f"\n[bold cyan]{name}[/bold cyan]")
            start = time.monotonic()
            try:
                func()
            except Exception as e:
                logger.debug("Step %s failed", name, exc_info=True)
                raise StepError(name, e) from e
            logger.debug("Step %s finished in %.1fs", name, time.monotonic() - start)

        return self.report

    def install_binaries(self) -> None:
        tools = self.config.tools
        bin_dir = prepare_bin_dir(tools.install_dir, tools.system)
        for name in REQUIRED_BINARIES:
            if ensure_binary(name, bin_dir, client=self.client, installers=self.installers):
                self.report.changes.append(f"download:{name}")

    def check_driver(self) -> None:
        ensure_driver(self.config.cluster)

    def start_cluster(self) -> None:
        if ensure_cluster(self.minikube, self.config.cluster, timeout=self.config.timeouts.cluster_start):
            self.report.changes.append("cluster:start")

    def enable_addons(self) -> None:
        for name in ensure_addons(self.minikube, self.config.cluster.addons):
            self.report.changes.append(f"addon:{name}")

    def create_namespace(self) -> None:
        if ensure_namespace(self.kubectl, self.config.argocd.namespace):
            self.report.changes.append(f"namespace:{self.config.argocd.namespace}")

    def add_repo(self) -> None:
        argocd = self.config.argocd
        if ensure_repo(self.helm, argocd.repo_name, argocd.repo_url):
            self.report.changes.append(f"repo:{argocd.repo_name}")

    def install_argocd(self) -> None:
        action = ensure_release(self.helm, self.config.argocd)
        if action == "install":
            self.report.changes.append(f"release:{self.config.argocd.release}")

    def wait_for_argocd(self) -> None:
        argocd = self.config.argocd
        condition = WaitCondition(
            namespace=argocd.namespace,
            resource=f"deployment/{argocd.release}-server",
            condition="available",
            timeout=self.config.timeouts.argocd_ready,
        )
        console.print(f"  Waiting for {condition.describe()}...")
        self.kubectl.wait_for(condition)
        console.print("  [green]✓[/green] ArgoCD server is available")

    def apply_manifests(self) -> None:
        for path in self.config.manifests:
            self.kubectl.apply_directory(path)
            console.print(f"  [green]✓[/green] Applied {path}")

    def wait_for_applications(self) -> None:
        for app in self.config.applications:
            condition = WaitCondition(
                namespace=self.config.argocd.namespace,
                resource=f"application/{app}",
                jsonpath=HEALTHY_JSONPATH,
                value="Healthy",
                timeout=self.config.timeouts.application_ready,
            )
            console.print(f"  Waiting for application {app} to be Healthy...")
            self.kubectl.wait_for(condition)
            console.print(f"  [green]✓[/green] {app} is Healthy")

    def read_credentials(self) -> None:
        for spec in self.config.credentials:
            self.report.credentials.append(self._read_credential(spec))

    def _read_credential(self, spec: CredentialSpec) -> Credential:
        self.kubectl.wait_for_resource(
            "secret",
            spec.secret,
            spec.namespace,
            timeout=self.config.timeouts.secret,
            interval=self.config.timeouts.poll_interval,
            fatal=True,
        )
        username = spec.username
        if spec.username_key:
            username = self.kubectl.get_secret_value(spec.secret, spec.namespace, spec.username_key)
        password = self.kubectl.get_secret_value(spec.secret, spec.namespace, spec.password_key)
        console.print(f"  ✓ {spec.name} credentials read from {spec.namespace}/{spec.secret}")
        return Credential(name=spec.name, username=username, password=password)

    def start_forwards(self) -> None:
        for spec in self.config.forwards:
            result = self.forwards.ensure(spec)
            self.report.forwards.append(result)
            if result.started:
                self.report.changes.append(f"forward:{spec.key}")
