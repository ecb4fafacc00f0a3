# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/host/probes.py
"""
Capability interfaces for everything the preflight engine asks the OS.

Checks only talk to these protocols; host.windows provides the real
implementations and the test suite provides fakes. Any method may raise
ProbeError when the underlying query fails. A `timeout_s` argument caps the
underlying command; None means the provider default.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple


@dataclass(frozen=True)
class FilterEntry:
    name: str
    instances: int = 0
    altitude: Optional[str] = None
    frame: Optional[str] = None


@dataclass(frozen=True)
class ServiceState:
    name: str
    exists: bool
    status: str = "Unknown"          # Running | Stopped | StartPending | ... | Unknown
    start_type: Optional[str] = None  # Boot | System | Automatic | Manual | Disabled
    method: str = ""                  # which query answered

    @property
    def running(self) -> bool:
        return self.exists and self.status.lower() == "running"

    @property
    def disabled(self) -> bool:
        return (self.start_type or "").lower() == "disabled"


@dataclass(frozen=True)
class DriverFileInfo:
    path: str
    exists: bool
    size_bytes: Optional[int] = None
    sha256: Optional[str] = None


class FilterListProvider(Protocol):
    def list_filters(self, timeout_s: Optional[float] = None) -> List[FilterEntry]: ...


class ServiceStateProvider(Protocol):
    def query_service(self, name: str, timeout_s: Optional[float] = None) -> ServiceState: ...

    def query_service_fallback(self, name: str, timeout_s: Optional[float] = None) -> ServiceState: ...

    def list_services(self, timeout_s: Optional[float] = None) -> List[str]: ...


class FileIntegrityProvider(Protocol):
    def inspect(self, path: Path) -> DriverFileInfo: ...


class RegistryProvider(Protocol):
    def read_value(self, key: str, value_name: str, timeout_s: Optional[float] = None) -> Optional[str]: ...


class SystemProvider(Protocol):
    def is_admin(self) -> bool: ...

    def powershell_version(self) -> str: ...

    def python_version(self) -> Tuple[int, int, int]: ...

    def optional_feature_state(self, feature: str) -> str: ...

    def os_build(self) -> str: ...

    def windows_dir(self) -> Path: ...

    def program_files_x86(self) -> Path: ...

    def path_exists(self, path: Path) -> bool: ...

    def powershell_module_available(self, module: str) -> bool: ...

    def free_bytes(self, path: Path) -> int: ...

    def tcp_probe(self, host: str, port: int, timeout_s: float) -> None: ...

    def defender_exclusions(self) -> List[str]: ...


class RemediationActions(Protocol):
    """Mutating operations; only the remediation engine calls these."""

    def set_registry_value(self, key: str, value_name: str, value: str, timeout_s: Optional[float] = None) -> None: ...

    def set_service_start(self, name: str, start_type: str, timeout_s: Optional[float] = None) -> None: ...

    def register_filter_driver(self, timeout_s: Optional[float] = None) -> None: ...

    def load_filter(self, name: str, timeout_s: Optional[float] = None) -> None: ...

    def start_service(self, name: str, timeout_s: Optional[float] = None) -> None: ...
