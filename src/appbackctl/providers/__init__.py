"""Provider interfaces for appbackctl."""
from __future__ import annotations

from .archives import ArchiveCatalog, ArchiveCatalogError, CommandArchiveCatalog
from .nginx import NginxError, NginxProvider, NginxRenderResult
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "ArchiveCatalog",
    "ArchiveCatalogError",
    "CommandArchiveCatalog",
    "NginxError",
    "NginxProvider",
    "NginxRenderResult",
    "SystemdError",
    "SystemdProvider",
]
