"""kubectl operations used by the bootstrap: namespaces, secrets, apply, waits."""

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from rich.console import Console

from kubeboot.errors import CommandError, KubebootError, PrerequisiteError, WaitTimeoutError
from kubeboot.installer.runner import Runner, run_command

console = Console()
logger = logging.getLogger(__name__)

# Extra seconds the subprocess gets beyond kubectl's own --timeout
WAIT_GRACE_SECONDS = 30


@dataclass(frozen=True)
class WaitCondition:
    """A condition ``kubectl wait`` blocks on.

    Target either ``resource`` (``kind/name``) or ``selector`` (``kind`` plus
    a label selector). Exactly one of ``jsonpath`` or ``condition`` is set.
    """

    namespace: str
    resource: Optional[str] = None
    selector: Optional[str] = None
    kind: Optional[str] = None
    jsonpath: Optional[str] = None
    value: Optional[str] = None
    condition: Optional[str] = None
    timeout: int = 300

    def for_arg(self) -> str:
        if self.condition:
            return f"--for=condition={self.condition}"
        return f"--for=jsonpath={self.jsonpath}={self.value}"

    def describe(self) -> str:
        target = self.resource or f"{self.kind} -l {self.selector}"
        return f"{target} in {self.namespace} ({self.for_arg()[6:]})"


def _not_found(result) -> bool:
    return "NotFound" in result.stderr or "not found" in result.stderr


class Kubectl:
    """kubectl CLI wrapper"""

    def __init__(
        self,
        run: Runner = run_command,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.run = run
        self.clock = clock
        self.sleep = sleep

    def resource_exists(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        """Point lookup; a NotFound answer is False, any other failure raises"""
        cmd = ["kubectl", "get", kind, name, "-o", "name"]
        if namespace:
            cmd += ["-n", namespace]
        result = self.run(cmd, check=False)
        if result.returncode == 0:
            return True
        if _not_found(result):
            return False
        raise CommandError(cmd, returncode=result.returncode, stderr=result.stderr)

    def namespace_exists(self, name: str) -> bool:
        return self.resource_exists("namespace", name)

    def create_namespace(self, name: str) -> None:
        self.run(["kubectl", "create", "namespace", name])

    def get_secret_value(self, name: str, namespace: str, key: str) -> str:
        """Read one key of a Secret and base64-decode it"""
        jsonpath = "{.data." + key.replace(".", "\\.") + "}"
        result = self.run(
            ["kubectl", "get", "secret", name, "-n", namespace, "-o", f"jsonpath={jsonpath}"]
        )
        encoded = result.stdout.strip()
        if not encoded:
            raise KubebootError(f"Secret {namespace}/{name} has no key {key!r}")
        try:
            return base64.b64decode(encoded).decode()
        except (binascii.Error, UnicodeDecodeError) as e:
            raise KubebootError(f"Secret {namespace}/{name} key {key!r} is not valid base64") from e

    def apply_directory(self, path: Path) -> None:
        """kubectl apply every manifest under ``path``, recursively"""
        if not path.is_dir():
            raise PrerequisiteError(f"Manifest directory not found: {path}")
        self.run(["kubectl", "apply", "-R", "-f", str(path)])

    def wait_for(self, condition: WaitCondition) -> None:
        """Block on ``kubectl wait`` until the condition holds or its timeout passes"""
        cmd = ["kubectl", "wait", condition.for_arg(), "-n", condition.namespace]
        if condition.resource:
            cmd.append(condition.resource)
        else:
            cmd += [condition.kind, "-l", condition.selector]
        cmd.append(f"--timeout={condition.timeout}s")

        try:
            result = self.run(cmd, check=False, timeout=condition.timeout + WAIT_GRACE_SECONDS)
        except CommandError as e:
            if e.returncode is None:
                raise WaitTimeoutError(condition.describe(), cmd, stderr=e.stderr) from e
            raise

        if result.returncode == 0:
            return
        if "timed out" in result.stderr:
            raise WaitTimeoutError(condition.describe(), cmd, stderr=result.stderr)
        raise CommandError(cmd, returncode=result.returncode, stderr=result.stderr)

    def wait_for_resource(
        self,
        kind: str,
        name: str,
        namespace: str,
        timeout: float,
        interval: float = 5,
        fatal: bool = False,
    ) -> bool:
        """Poll until the object exists.

        Returns False on timeout, or raises WaitTimeoutError when ``fatal``.
        """
        deadline = self.clock() + timeout
        while True:
            if self.resource_exists(kind, name, namespace):
                return True
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            self.sleep(min(interval, remaining))

        description = f"{kind}/{name} in {namespace} to exist"
        if fatal:
            raise WaitTimeoutError(description, ["kubectl", "get", kind, name, "-n", namespace])
        logger.warning("Timed out after %ss waiting for %s", timeout, description)
        return False

    @staticmethod
    def port_forward_command(service: str, namespace: str, local_port: int, remote_port: int) -> List[str]:
        return [
            "kubectl",
            "port-forward",
            f"svc/{service}",
            "-n",
            namespace,
            f"{local_port}:{remote_port}",
        ]


def ensure_namespace(kubectl: Kubectl, name: str) -> bool:
    """Create the namespace if it does not exist; return True when created"""
    if kubectl.namespace_exists(name):
        console.print(f"  ✓ Namespace {name} already exists")
        return False

    kubectl.create_namespace(name)
    console.print(f"  [green]✓[/green] Namespace {name} created")
    return True
