"""Configuration management for kubeboot"""

import os
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_CONFIG_PATH = Path.home() / ".kubeboot" / "config.yaml"


class ConfigManager:
    """Manage kubeboot configuration"""

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        self.config_path = config_path

    def load(self, overrides: Dict[str, Any] = None) -> Dict[str, Any]:
        """Load configuration from defaults, file, environment and overrides"""
        config = self._load_defaults()

        if self.config_path.exists():
            with open(self.config_path) as f:
                file_config = yaml.safe_load(f) or {}
                config = self._merge(config, file_config)

        config = self._apply_env_overrides(config)

        # Command-line flags win over everything else
        if overrides:
            config = self._merge(config, overrides)

        return config

    def save(self, config: Dict[str, Any]) -> None:
        """Save configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def _load_defaults(self) -> Dict[str, Any]:
        """Load default configuration"""
        return {
            "cluster": {
                "driver": "docker",
                "cpu": 2,
                "memory": 4096,
                "profile": "minikube",
                "addons": ["ingress"],
            },
            "tools": {
                "system": False,
                "bin_dir": "./bin",
                "system_bin_dir": "/usr/local/bin",
            },
            "argocd": {
                "namespace": "argocd",
                "release": "argocd",
                "chart": "argo/argo-cd",
                "version": "7.7.11",
                "repo": {
                    "name": "argo",
                    "url": "https://argoproj.github.io/argo-helm",
                },
                "values": {
                    "configs.params.server\\.insecure": "true",
                    "dex.enabled": "false",
                },
            },
            "manifests": ["argocd", "monitoring"],
            "applications": [
                "grafana",
                "victoria-metrics",
                "node-exporter",
                "kube-state-metrics",
                "spam2000",
            ],
            "forwards": [
                {
                    "name": "ArgoCD",
                    "service": "argocd-server",
                    "namespace": "argocd",
                    "local_port": 8080,
                    "remote_port": 80,
                },
                {
                    "name": "Grafana",
                    "service": "grafana",
                    "namespace": "monitoring",
                    "local_port": 3000,
                    "remote_port": 80,
                },
                {
                    "name": "VictoriaMetrics",
                    "service": "victoria-metrics-victoria-metrics-single-server",
                    "namespace": "monitoring",
                    "local_port": 8428,
                    "remote_port": 8428,
                },
                {
                    "name": "spam2000",
                    "service": "spam2000",
                    "namespace": "spam2000",
                    "local_port": 3001,
                    "remote_port": 3000,
                },
            ],
            "credentials": [
                {
                    "name": "ArgoCD",
                    "secret": "argocd-initial-admin-secret",
                    "namespace": "argocd",
                    "username": "admin",
                    "password_key": "password",
                },
                {
                    "name": "Grafana",
                    "secret": "grafana",
                    "namespace": "monitoring",
                    "username_key": "admin-user",
                    "password_key": "admin-password",
                },
            ],
            "timeouts": {
                "command": 600,
                "cluster_start": 900,
                "download": 300,
                "argocd_ready": 300,
                "application_ready": 600,
                "secret": 120,
                "service_poll": 120,
                "poll_interval": 5,
            },
            "state_dir": str(Path.home() / ".kubeboot"),
            "logging": {
                "level": "info",
            },
        }

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge two configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides"""
        if driver := os.getenv("KUBEBOOT_DRIVER"):
            config["cluster"]["driver"] = driver

        if cpu := os.getenv("KUBEBOOT_CPU"):
            config["cluster"]["cpu"] = cpu

        if memory := os.getenv("KUBEBOOT_MEMORY"):
            config["cluster"]["memory"] = memory

        if system := os.getenv("KUBEBOOT_SYSTEM"):
            config["tools"]["system"] = system.lower() in ("1", "true", "yes")

        if state_dir := os.getenv("KUBEBOOT_STATE_DIR"):
            config["state_dir"] = state_dir

        if level := os.getenv("KUBEBOOT_LOG_LEVEL"):
            config["logging"]["level"] = level

        return config
