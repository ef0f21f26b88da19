"""Release metadata and download client."""

from .client import Client

__all__ = ["Client"]
