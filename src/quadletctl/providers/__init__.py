"""Provider interfaces for quadletctl."""
from __future__ import annotations

from .fetch import FetchError, UrlFetcher, is_remote
from .systemd import SystemdError, SystemdProvider, service_name

__all__ = [
    "FetchError",
    "SystemdError",
    "SystemdProvider",
    "UrlFetcher",
    "is_remote",
    "service_name",
]
