"""Immutable run configuration built from the merged config mapping"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from kubeboot.errors import ConfigError

# Binary whose presence on PATH proves a driver is installed
DRIVER_BINARIES = {
    "docker": "docker",
    "podman": "podman",
    "kvm2": "virsh",
    "qemu": "qemu-system-x86_64",
    "virtualbox": "VBoxManage",
    "hyperkit": "hyperkit",
    "hyperv": "powershell",
}


@dataclass(frozen=True)
class ClusterSettings:
    driver: str = "docker"
    cpu: int = 2
    memory: int = 4096
    profile: str = "minikube"
    addons: Tuple[str, ...] = ()

    @property
    def driver_binary(self) -> str:
        return DRIVER_BINARIES.get(self.driver, self.driver)


@dataclass(frozen=True)
class ToolSettings:
    system: bool = False
    bin_dir: Path = Path("./bin")
    system_bin_dir: Path = Path("/usr/local/bin")

    @property
    def install_dir(self) -> Path:
        """Directory fetched binaries are written to"""
        return self.system_bin_dir if self.system else self.bin_dir


@dataclass(frozen=True)
class ReleaseSettings:
    """A Helm release plus the repository its chart comes from"""

    namespace: str
    release: str
    chart: str
    version: str
    repo_name: str
    repo_url: str
    values: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ForwardSpec:
    """A service exposed on a local port through kubectl port-forward"""

    name: str
    service: str
    namespace: str
    local_port: int
    remote_port: int
    scheme: str = "http"

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.service}:{self.local_port}:{self.remote_port}"

    @property
    def url(self) -> str:
        return f"{self.scheme}://localhost:{self.local_port}"


@dataclass(frozen=True)
class CredentialSpec:
    """Where to read a UI login from.

    The username is either a literal (``username``) or read from the same
    Secret as the password (``username_key``).
    """

    name: str
    secret: str
    namespace: str
    password_key: str = "password"
    username: str = "admin"
    username_key: Optional[str] = None


@dataclass(frozen=True)
class Timeouts:
    command: int = 600
    cluster_start: int = 900
    download: int = 300
    argocd_ready: int = 300
    application_ready: int = 600
    secret: int = 120
    service_poll: int = 120
    poll_interval: int = 5


@dataclass(frozen=True)
class BootstrapConfig:
    """Everything a bootstrap run needs, populated once from parsed flags"""

    cluster: ClusterSettings
    tools: ToolSettings
    argocd: ReleaseSettings
    manifests: Tuple[Path, ...] = ()
    applications: Tuple[str, ...] = ()
    forwards: Tuple[ForwardSpec, ...] = ()
    credentials: Tuple[CredentialSpec, ...] = ()
    timeouts: Timeouts = field(default_factory=Timeouts)
    state_dir: Path = Path.home() / ".kubeboot"
    log_level: str = "info"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "BootstrapConfig":
        """Build and validate a config from a ConfigManager mapping"""
        cluster = config.get("cluster", {})
        tools = config.get("tools", {})
        argocd = config.get("argocd", {})
        repo = argocd.get("repo", {})

        cluster_settings = ClusterSettings(
            driver=str(cluster.get("driver", "docker")),
            cpu=_positive_int(cluster.get("cpu", 2), "cluster.cpu"),
            memory=_positive_int(cluster.get("memory", 4096), "cluster.memory"),
            profile=str(cluster.get("profile", "minikube")),
            addons=tuple(cluster.get("addons") or ()),
        )
        if not cluster_settings.driver:
            raise ConfigError("cluster.driver must not be empty")

        try:
            argocd_settings = ReleaseSettings(
                namespace=argocd["namespace"],
                release=argocd["release"],
                chart=argocd["chart"],
                version=str(argocd["version"]),
                repo_name=repo["name"],
                repo_url=repo["url"],
                values={str(k): str(v) for k, v in (argocd.get("values") or {}).items()},
            )
            forwards = tuple(
                ForwardSpec(
                    name=item.get("name", item["service"]),
                    service=item["service"],
                    namespace=item["namespace"],
                    local_port=_port(item["local_port"]),
                    remote_port=_port(item["remote_port"]),
                    scheme=item.get("scheme", "http"),
                )
                for item in config.get("forwards") or ()
            )
            credentials = tuple(
                CredentialSpec(
                    name=item["name"],
                    secret=item["secret"],
                    namespace=item["namespace"],
                    password_key=item.get("password_key", "password"),
                    username=item.get("username", "admin"),
                    username_key=item.get("username_key"),
                )
                for item in config.get("credentials") or ()
            )
        except KeyError as e:
            raise ConfigError(f"Missing required configuration key: {e.args[0]}") from e

        timeouts = Timeouts(
            **{
                name: _positive_int(value, f"timeouts.{name}")
                for name, value in (config.get("timeouts") or {}).items()
                if name in Timeouts.__dataclass_fields__
            }
        )

        return cls(
            cluster=cluster_settings,
            tools=ToolSettings(
                system=bool(tools.get("system", False)),
                bin_dir=Path(tools.get("bin_dir", "./bin")),
                system_bin_dir=Path(tools.get("system_bin_dir", "/usr/local/bin")),
            ),
            argocd=argocd_settings,
            manifests=tuple(Path(p) for p in config.get("manifests") or ()),
            applications=tuple(config.get("applications") or ()),
            forwards=forwards,
            credentials=credentials,
            timeouts=timeouts,
            state_dir=Path(config.get("state_dir", Path.home() / ".kubeboot")).expanduser(),
            log_level=str(config.get("logging", {}).get("level", "info")),
        )


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def _port(value: Any) -> int:
    port = _positive_int(value, "port")
    if port > 65535:
        raise ConfigError(f"port out of range: {port}")
    return port
