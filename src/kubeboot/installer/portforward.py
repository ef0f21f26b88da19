"""Background kubectl port-forwards, de-duplicated across runs.

Relays started here are recorded in a small JSON registry in the state
directory, keyed by namespace, service and port pair. A later run that
finds a record whose process is still alive, and whose command line is
still that port-forward, treats the forward as already in place instead of
starting a second relay. A pid reused by an unrelated process after a
reboot does not count.
"""

import errno
import json
import logging
import os
import signal
import socket
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from rich.console import Console

from kubeboot.config.settings import ForwardSpec
from kubeboot.errors import CommandError
from kubeboot.installer.kubectl import Kubectl
from kubeboot.installer.runner import run_command, spawn_detached

console = Console()
logger = logging.getLogger(__name__)

REGISTRY_FILE = "forwards.json"


@dataclass
class ForwardRecord:
    key: str
    name: str
    service: str
    namespace: str
    local_port: int
    remote_port: int
    pid: int
    url: str
    started_at: str = ""


@dataclass
class ForwardResult:
    spec: ForwardSpec
    pid: int
    started: bool

    @property
    def url(self) -> str:
        return self.spec.url


def pid_alive(pid: int) -> bool:
    """True when a process with ``pid`` exists"""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError as e:
        # EPERM: the process exists but belongs to someone else
        return e.errno == errno.EPERM
    return True


PROC_ROOT = Path("/proc")


def process_command(pid: int) -> Optional[List[str]]:
    """Command line of process ``pid``, or None when it cannot be read"""
    cmdline = PROC_ROOT / str(pid) / "cmdline"
    if PROC_ROOT.is_dir():
        try:
            raw = cmdline.read_bytes()
        except OSError:
            return None
        return [arg.decode(errors="replace") for arg in raw.split(b"\0") if arg] or None

    # No procfs (macOS): ask ps
    try:
        result = run_command(["ps", "-o", "args=", "-p", str(pid)], check=False, timeout=10)
    except CommandError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout.split() or None


def is_relay_command(argv: Sequence[str], record: "ForwardRecord") -> bool:
    """True when ``argv`` is the kubectl port-forward described by ``record``"""
    return (
        "port-forward" in argv
        and f"svc/{record.service}" in argv
        and record.namespace in argv
        and f"{record.local_port}:{record.remote_port}" in argv
    )


def relay_running(record: "ForwardRecord") -> bool:
    """True when the recorded pid is alive and still runs this port-forward"""
    if not pid_alive(record.pid):
        return False
    argv = process_command(record.pid)
    return argv is not None and is_relay_command(argv, record)


def port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.5)
        return sock.connect_ex((host, port)) == 0


class ForwardRegistry:
    """Forwards started by kubeboot, persisted between runs"""

    def __init__(
        self, state_dir: Path, is_running: Callable[[ForwardRecord], bool] = relay_running
    ):
        self.path = state_dir / REGISTRY_FILE
        self.is_running = is_running

    def load(self) -> Dict[str, ForwardRecord]:
        """Read the registry, dropping records whose relay is no longer running"""
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            raw = None
        if not isinstance(raw, dict):
            logger.warning("Forward registry %s is corrupted, starting fresh", self.path)
            return {}

        records = {}
        for key, item in raw.items():
            try:
                record = ForwardRecord(**item)
            except TypeError:  # also non-object entries
                logger.debug("Skipping malformed registry entry %s", key)
                continue
            if self.is_running(record):
                records[key] = record
            else:
                logger.debug("Pruning stale forward %s (pid %s)", key, record.pid)
        return records

    def save(self, records: Dict[str, ForwardRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".forwards.")
        with os.fdopen(fd, "w") as f:
            json.dump({key: asdict(r) for key, r in records.items()}, f, indent=2)
        os.replace(tmp_name, self.path)

    def get(self, key: str) -> Optional[ForwardRecord]:
        return self.load().get(key)

    def add(self, record: ForwardRecord) -> None:
        records = self.load()
        records[record.key] = record
        self.save(records)

    def remove(self, key: str) -> Optional[ForwardRecord]:
        records = self.load()
        record = records.pop(key, None)
        self.save(records)
        return record


class ForwardManager:
    """Expose cluster services on local ports without duplicating relays"""

    def __init__(
        self,
        kubectl: Kubectl,
        registry: ForwardRegistry,
        spawn: Callable[[List[str]], int] = spawn_detached,
        port_check: Callable[[int], bool] = port_in_use,
        service_timeout: float = 120,
        poll_interval: float = 5,
    ):
        self.kubectl = kubectl
        self.registry = registry
        self.spawn = spawn
        self.port_check = port_check
        self.service_timeout = service_timeout
        self.poll_interval = poll_interval

    def ensure(self, spec: ForwardSpec) -> ForwardResult:
        """Start a relay for ``spec`` unless one recorded earlier is still running"""
        found = self.kubectl.wait_for_resource(
            "service",
            spec.service,
            spec.namespace,
            timeout=self.service_timeout,
            interval=self.poll_interval,
        )
        if not found:
            console.print(
                f"  [yellow]⚠ Service {spec.service} not found in {spec.namespace}, "
                f"forwarding anyway[/yellow]"
            )

        existing = self.registry.get(spec.key)
        if existing is not None:
            console.print(f"  ✓ {spec.name} already forwarded at {spec.url} (pid {existing.pid})")
            return ForwardResult(spec=spec, pid=existing.pid, started=False)

        if self.port_check(spec.local_port):
            logger.warning(
                "Local port %s is already in use by a process kubeboot did not start",
                spec.local_port,
            )

        cmd = Kubectl.port_forward_command(
            spec.service, spec.namespace, spec.local_port, spec.remote_port
        )
        pid = self.spawn(cmd)
        self.registry.add(
            ForwardRecord(
                key=spec.key,
                name=spec.name,
                service=spec.service,
                namespace=spec.namespace,
                local_port=spec.local_port,
                remote_port=spec.remote_port,
                pid=pid,
                url=spec.url,
                started_at=datetime.now(timezone.utc).isoformat(),
            )
        )
        console.print(f"  [green]✓[/green] {spec.name} forwarded at {spec.url} (pid {pid})")
        return ForwardResult(spec=spec, pid=pid, started=True)


def stop_forward(registry: ForwardRegistry, key: str, kill: Callable[[int, int], None] = os.kill) -> bool:
    """Terminate a recorded relay and drop it from the registry.

    Records whose pid no longer runs the recorded port-forward are pruned by
    the registry, so such a pid is never signalled.
    """
    record = registry.remove(key)
    if record is None:
        return False
    try:
        kill(record.pid, signal.SIGTERM)
    except ProcessLookupError:
        logger.debug("Forward %s (pid %s) already exited", key, record.pid)
    return True
