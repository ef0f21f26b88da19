"""Configuration loading for kubeboot."""

from .manager import DEFAULT_CONFIG_PATH, ConfigManager
from .settings import (
    BootstrapConfig,
    ClusterSettings,
    CredentialSpec,
    ForwardSpec,
    ReleaseSettings,
    Timeouts,
    ToolSettings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ConfigManager",
    "BootstrapConfig",
    "ClusterSettings",
    "CredentialSpec",
    "ForwardSpec",
    "ReleaseSettings",
    "Timeouts",
    "ToolSettings",
]
