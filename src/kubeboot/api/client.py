"""HTTP client for release metadata and binary downloads"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import httpx

from kubeboot.errors import DownloadError

logger = logging.getLogger(__name__)


class MinikubeReleases:
    """minikube release artifacts"""

    def __init__(self, client: "Client"):
        self.client = client

    def binary_url(self, os_name: str, arch: str) -> str:
        """URL of the latest minikube binary"""
        return (
            "https://github.com/kubernetes/minikube/releases/latest/download/"
            f"minikube-{os_name}-{arch}"
        )


class KubectlReleases:
    """kubectl release artifacts"""

    def __init__(self, client: "Client"):
        self.client = client

    def stable_version(self) -> str:
        """Current stable Kubernetes version, e.g. v1.31.2"""
        return self.client._get_text("https://dl.k8s.io/release/stable.txt").strip()

    def binary_url(self, version: str, os_name: str, arch: str) -> str:
        return f"https://dl.k8s.io/release/{version}/bin/{os_name}/{arch}/kubectl"


class HelmReleases:
    """helm release artifacts"""

    def __init__(self, client: "Client"):
        self.client = client

    def latest_version(self) -> str:
        """Tag of the latest helm release on GitHub"""
        data = self.client._get_json("https://api.github.com/repos/helm/helm/releases/latest")
        tag = data.get("tag_name") if isinstance(data, dict) else None
        if not tag:
            raise DownloadError("GitHub response for helm/helm has no tag_name")
        return tag

    def archive_url(self, version: str, os_name: str, arch: str) -> str:
        return f"https://get.helm.sh/helm-{version}-{os_name}-{arch}.tar.gz"


class Client:
    """Release download client"""

    def __init__(
        self,
        timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport

        self.minikube = MinikubeReleases(self)
        self.kubectl = KubectlReleases(self)
        self.helm = HelmReleases(self)

    def download(self, url: str, dest: Path) -> Path:
        """Stream ``url`` into ``dest``, replacing it atomically"""
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s", url)

        fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
        try:
            with os.fdopen(fd, "wb") as f, self._http() as client:
                with client.stream("GET", url) as response:
                    self._raise_for_status(response, url)
                    for chunk in response.iter_bytes():
                        f.write(chunk)
            os.replace(tmp_name, dest)
        except httpx.HTTPError as e:
            os.unlink(tmp_name)
            raise DownloadError(f"Download failed: {url}: {e}") from e
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        return dest

    def _get_text(self, url: str) -> str:
        return self._request(url).text

    def _get_json(self, url: str) -> Any:
        try:
            return self._request(url).json()
        except ValueError as e:
            raise DownloadError(f"Invalid JSON from {url}") from e

    def _request(self, url: str) -> httpx.Response:
        """Execute GET request"""
        try:
            with self._http() as client:
                response = client.get(url)
                self._raise_for_status(response, url)
                return response
        except httpx.HTTPError as e:
            raise DownloadError(f"Request failed: {url}: {e}") from e

    def _http(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response, url: str) -> None:
        if response.status_code == 404:
            raise DownloadError(f"Resource not found: {url}")
        elif response.status_code >= 400:
            raise DownloadError(f"HTTP error {response.status_code}: {url}")
