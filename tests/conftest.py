"""Shared fixtures: a fake minikube/kubectl/helm toolchain"""

import base64
import json
import subprocess
from pathlib import Path

import pytest

from kubeboot.config import BootstrapConfig, ConfigManager
from kubeboot.errors import CommandError
from kubeboot.installer import binaries, cluster
from kubeboot.installer.bootstrap import Bootstrapper
from kubeboot.installer.portforward import ForwardRegistry


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


class FakeClock:
    """Monotonic clock whose sleep just advances time"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTools:
    """In-memory stand-in for the external CLIs the bootstrap drives"""

    def __init__(self):
        self.calls = []
        self.spawned = []
        self.alive = set()
        self.next_pid = 4000

        self.installed = {"docker"}
        self.downloads = []

        self.running = False
        self.addons = {"ingress": {"Status": "disabled"}, "dashboard": {"Status": "disabled"}}
        self.namespaces = {"default", "kube-system"}
        self.repos = []
        self.releases = {}
        self.release_status = {}
        self.services = set()
        self.secrets = {}
        self.applied = []
        self.wait_timeouts = set()

    # -- process execution ------------------------------------------------

    def run(self, cmd, check=True, timeout=None, cwd=None):
        self.calls.append(list(cmd))
        tool = cmd[0].rsplit("/", 1)[-1]
        handler = getattr(self, f"_{tool}", None)
        if handler is None:
            raise CommandError(cmd, returncode=127, stderr=f"{tool}: not found")
        returncode, stdout, stderr = handler(list(cmd[1:]))
        if check and returncode != 0:
            raise CommandError(cmd, returncode=returncode, stderr=stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def spawn(self, cmd):
        self.next_pid += 1
        self.spawned.append(list(cmd))
        self.alive.add(self.next_pid)
        return self.next_pid

    def is_alive(self, pid):
        return pid in self.alive

    def is_relay(self, record):
        return self.is_alive(record.pid)

    def which(self, name, path=None):
        return f"/usr/bin/{name}" if name in self.installed else None

    def installer(self, name):
        def install(client, bin_dir):
            self.downloads.append(name)
            self.installed.add(name)
            return Path(bin_dir) / name

        return install

    @property
    def installers(self):
        return {name: self.installer(name) for name in binaries.REQUIRED_BINARIES}

    def commands(self, *prefix):
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]

    # -- minikube -----------------------------------------------------------

    def _minikube(self, args):
        args = [a for a in args if a not in ("--profile", "minikube")]
        if args[0] == "status":
            if self.running:
                return 0, json.dumps({"Name": "minikube", "Host": "Running", "Kubelet": "Running"}), ""
            return 85, json.dumps({"Name": "minikube", "Host": "Nonexistent"}), ""
        if args[0] == "start":
            self.running = True
            return 0, "Done!", ""
        if args[:2] == ["addons", "list"]:
            return 0, json.dumps(self.addons), ""
        if args[:2] == ["addons", "enable"]:
            self.addons[args[2]] = {"Status": "enabled"}
            return 0, "", ""
        return 1, "", f"unknown minikube command {args}"

    # -- kubectl ------------------------------------------------------------

    def _kubectl(self, args):
        namespace = args[args.index("-n") + 1] if "-n" in args else None
        if args[0] == "get" and args[args.index("-o") + 1] == "name":
            kind, name = args[1], args[2]
            if self._exists(kind, name, namespace):
                return 0, f"{kind}/{name}", ""
            return 1, "", f'Error from server (NotFound): {kind}s "{name}" not found'
        if args[0] == "get" and args[1] == "secret":
            name = args[2]
            jsonpath = args[args.index("-o") + 1]
            key = jsonpath[len("jsonpath={.data."):-1].replace("\\.", ".")
            data = self.secrets.get((namespace, name))
            if data is None:
                return 1, "", f'Error from server (NotFound): secrets "{name}" not found'
            return 0, data.get(key, ""), ""
        if args[:2] == ["create", "namespace"]:
            self.namespaces.add(args[2])
            return 0, f"namespace/{args[2]} created", ""
        if args[0] == "apply":
            path = args[args.index("-f") + 1]
            self.applied.append(path)
            self._sync_applications()
            return 0, "", ""
        if args[0] == "wait":
            target = args[4] if len(args) > 4 else ""
            if target in self.wait_timeouts:
                return 1, "", f"error: timed out waiting for the condition on {target}"
            return 0, f"{target} condition met", ""
        return 1, "", f"unknown kubectl command {args}"

    def _exists(self, kind, name, namespace):
        if kind == "namespace":
            return name in self.namespaces
        if kind == "service":
            return (namespace, name) in self.services
        if kind == "secret":
            return (namespace, name) in self.secrets
        return False

    def _sync_applications(self):
        """What ArgoCD would create once the Application manifests are applied"""
        self.namespaces.update({"monitoring", "spam2000"})
        self.services.update(
            {
                ("monitoring", "grafana"),
                ("monitoring", "victoria-metrics-victoria-metrics-single-server"),
                ("spam2000", "spam2000"),
            }
        )
        self.secrets[("monitoring", "grafana")] = {
            "admin-user": _b64("admin"),
            "admin-password": _b64("grafana-pass"),
        }

    # -- helm ---------------------------------------------------------------

    def _helm(self, args):
        if args[:2] == ["repo", "list"]:
            if not self.repos:
                return 1, "", "Error: no repositories to show"
            return 0, json.dumps(self.repos), ""
        if args[:2] == ["repo", "add"]:
            self.repos.append({"name": args[2], "url": args[3]})
            return 0, f'"{args[2]}" has been added to your repositories', ""
        if args[:2] == ["repo", "update"]:
            return 0, "Update Complete.", ""
        if args[0] == "list":
            namespace = args[args.index("--namespace") + 1]
            listed = []
            for name in self.releases.get(namespace, []):
                status = self.release_status.get((namespace, name), "deployed")
                # without --all helm hides pending and failed releases
                if "--all" in args or status == "deployed":
                    listed.append({"name": name, "status": status})
            return 0, json.dumps(listed), ""
        if args[0] in ("install", "upgrade"):
            release, namespace = args[1], args[args.index("--namespace") + 1]
            if args[0] == "install":
                if release in self.releases.get(namespace, []):
                    return 1, "", "Error: INSTALLATION FAILED: cannot re-use a name that is still in use"
                self.releases.setdefault(namespace, []).append(release)
                self.services.add((namespace, f"{release}-server"))
                self.secrets[(namespace, f"{release}-initial-admin-secret")] = {"password": _b64("argo-pass")}
            return 0, "", ""
        return 1, "", f"unknown helm command {args}"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "KUBEBOOT_DRIVER",
        "KUBEBOOT_CPU",
        "KUBEBOOT_MEMORY",
        "KUBEBOOT_SYSTEM",
        "KUBEBOOT_STATE_DIR",
        "KUBEBOOT_LOG_LEVEL",
        "KUBEBOOT_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tools(monkeypatch):
    fake = FakeTools()
    monkeypatch.setattr(binaries, "find_executable", fake.which)
    monkeypatch.setattr(cluster, "find_executable", fake.which)
    return fake


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def raw_config(tmp_path):
    for name in ("argocd", "monitoring"):
        (tmp_path / "manifests" / name).mkdir(parents=True)
    return ConfigManager(tmp_path / "missing.yaml").load(
        {
            "tools": {"bin_dir": str(tmp_path / "bin")},
            "state_dir": str(tmp_path / "state"),
            "manifests": [
                str(tmp_path / "manifests" / "argocd"),
                str(tmp_path / "manifests" / "monitoring"),
            ],
        }
    )


@pytest.fixture
def config(raw_config):
    return BootstrapConfig.from_mapping(raw_config)


@pytest.fixture
def make_bootstrapper(tools, clock, monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin")

    def make(config):
        return Bootstrapper(
            config,
            run=tools.run,
            spawn=tools.spawn,
            installers=tools.installers,
            registry=ForwardRegistry(config.state_dir, is_running=tools.is_relay),
            port_check=lambda port: False,
            clock=clock,
            sleep=clock.sleep,
        )

    return make
