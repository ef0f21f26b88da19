"""Install the minikube, kubectl and helm CLIs when they are missing."""

import logging
import os
import platform
import stat
import tarfile
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from rich.console import Console

from kubeboot.api.client import Client
from kubeboot.errors import DownloadError
from kubeboot.installer.runner import find_executable

console = Console()
logger = logging.getLogger(__name__)

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
}

REQUIRED_BINARIES = ("minikube", "kubectl", "helm")


def platform_pair() -> Tuple[str, str]:
    """Return the (os, arch) pair used in release artifact names"""
    machine = platform.machine().lower()
    return platform.system().lower(), ARCH_ALIASES.get(machine, machine)


def prepare_bin_dir(bin_dir: Path, system: bool) -> Path:
    """Make sure the install directory exists and is searched for binaries.

    The local directory is appended to PATH so binaries installed on the
    system keep taking precedence.
    """
    if system:
        console.print(f"System-wide {bin_dir} directory is used")
        return bin_dir

    bin_dir = bin_dir.resolve()
    bin_dir.mkdir(parents=True, exist_ok=True)
    path_entries = os.environ.get("PATH", "").split(os.pathsep)
    if str(bin_dir) not in path_entries:
        os.environ["PATH"] = os.pathsep.join(path_entries + [str(bin_dir)])
        logger.debug("Appended %s to PATH", bin_dir)
    return bin_dir


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def install_minikube(client: Client, bin_dir: Path) -> Path:
    os_name, arch = platform_pair()
    dest = client.download(client.minikube.binary_url(os_name, arch), bin_dir / "minikube")
    _make_executable(dest)
    return dest


def install_kubectl(client: Client, bin_dir: Path) -> Path:
    os_name, arch = platform_pair()
    version = client.kubectl.stable_version()
    dest = client.download(client.kubectl.binary_url(version, os_name, arch), bin_dir / "kubectl")
    _make_executable(dest)
    return dest


def install_helm(client: Client, bin_dir: Path) -> Path:
    os_name, arch = platform_pair()
    version = client.helm.latest_version()
    member_name = f"{os_name}-{arch}/helm"
    dest = bin_dir / "helm"

    with tempfile.TemporaryDirectory() as tmp:
        archive = client.download(
            client.helm.archive_url(version, os_name, arch), Path(tmp) / "helm.tar.gz"
        )
        try:
            with tarfile.open(archive, "r:gz") as tar:
                member = tar.getmember(member_name)
                source = tar.extractfile(member)
                if source is None:
                    raise DownloadError(f"{member_name} in helm archive is not a file")
                bin_dir.mkdir(parents=True, exist_ok=True)
                with source, open(dest, "wb") as out:
                    out.write(source.read())
        except (tarfile.TarError, KeyError) as e:
            raise DownloadError(f"Could not extract {member_name} from helm archive: {e}") from e

    _make_executable(dest)
    return dest


INSTALLERS: Dict[str, Callable[[Client, Path], Path]] = {
    "minikube": install_minikube,
    "kubectl": install_kubectl,
    "helm": install_helm,
}


def ensure_binary(
    name: str,
    bin_dir: Path,
    client: Optional[Client] = None,
    installers: Optional[Dict[str, Callable[[Client, Path], Path]]] = None,
) -> bool:
    """Install ``name`` into ``bin_dir`` unless it is already on PATH.

    Returns True when a download happened.
    """
    if find_executable(name):
        console.print(f"  ✓ {name} already installed, skipping")
        return False

    installer = (installers or INSTALLERS)[name]
    console.print(f"  {name} not found. Downloading...")
    path = installer(client or Client(), bin_dir)
    console.print(f"  [green]✓[/green] {name} installed to {path}")
    return True
