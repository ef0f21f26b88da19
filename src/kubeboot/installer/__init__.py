"""Provisioning steps for the local environment."""

from .bootstrap import Bootstrapper, BootstrapReport, Credential

__all__ = [
    "Bootstrapper",
    "BootstrapReport",
    "Credential",
]
