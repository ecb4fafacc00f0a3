# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/host/windows.py
"""
Real host providers. Every query shells out through U.run_cmd with a
timeout and converts failures into ProbeError; nothing here decides
whether a result is good or bad.
"""
from __future__ import annotations

import ctypes
import logging
import os
import platform
import shutil
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..core.exceptions import ProbeError, wrap_probe
from ..core.logger import TRACE
from ..core.utils import U
from .parsers import (
    parse_cim_system_driver,
    parse_fltmc_filters,
    parse_powershell_json,
    parse_reg_query_value,
    parse_sc_query,
    parse_sc_service_names,
)
from .probes import DriverFileInfo, FilterEntry, ServiceState

POWERSHELL = "powershell.exe"


class _Runner:
    """Shared command plumbing: run, capture, convert errors."""

    def __init__(self, logger: logging.Logger, timeout_s: float):
        self.logger = logger
        self.timeout_s = float(timeout_s)

    def run(self, cmd: Sequence[str], *, what: str, timeout_s: Optional[float] = None, ok_codes: Sequence[int] = (0,)) -> str:
        try:
            cp = U.run_cmd(
                self.logger,
                list(cmd),
                check=False,
                capture=True,
                timeout=timeout_s if timeout_s is not None else self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise wrap_probe(f"{what} timed out", e, command=cmd[0])
        except OSError as e:
            raise wrap_probe(f"{what} could not be started: {e}", e, command=cmd[0])

        out = U.to_text(cp.stdout)
        self.logger.log(TRACE, "%s -> rc=%s\n%s", what, cp.returncode, out)
        if cp.returncode not in ok_codes:
            detail = (U.to_text(cp.stderr).strip() or out.strip())[:300]
            raise ProbeError(code=1, msg=f"{what} failed (rc={cp.returncode}): {detail}", context={"command": cmd[0]})
        return out

    def powershell(self, script: str, *, what: str, timeout_s: Optional[float] = None) -> str:
        cmd = [POWERSHELL, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]
        return self.run(cmd, what=what, timeout_s=timeout_s)


class WindowsFilterList:
    def __init__(self, runner: _Runner):
        self._r = runner

    def list_filters(self, timeout_s: Optional[float] = None) -> List[FilterEntry]:
        return parse_fltmc_filters(self._r.run(["fltmc.exe", "filters"], what="fltmc filters", timeout_s=timeout_s))


class WindowsServices:
    def __init__(self, runner: _Runner):
        self._r = runner

    def query_service(self, name: str, timeout_s: Optional[float] = None) -> ServiceState:
        script = (
            f"Get-CimInstance -ClassName Win32_SystemDriver -Filter \"Name='{name}'\" -ErrorAction Stop"
            " | Select-Object Name,State,StartMode | ConvertTo-Json -Compress"
        )
        out = self._r.powershell(script, what=f"Win32_SystemDriver query for {name}", timeout_s=timeout_s)
        return parse_cim_system_driver(name, parse_powershell_json(out))

    def query_service_fallback(self, name: str, timeout_s: Optional[float] = None) -> ServiceState:
        # both sc.exe calls share one timeout
        ends = None if timeout_s is None else time.monotonic() + timeout_s
        # sc.exe exits 1060 for a missing service; that is an answer, not a failure
        query = self._r.run(["sc.exe", "query", name], what=f"sc query {name}", timeout_s=timeout_s, ok_codes=(0, 1060))
        state = parse_sc_query(name, query)
        if not state.exists:
            return state
        left = None if ends is None else ends - time.monotonic()
        if left is not None and left <= 0:
            return state
        qc = self._r.run(["sc.exe", "qc", name], what=f"sc qc {name}", timeout_s=left)
        return parse_sc_query(name, query, qc)

    def list_services(self, timeout_s: Optional[float] = None) -> List[str]:
        out = self._r.run(["sc.exe", "query", "type=", "all", "state=", "all"], what="sc query (all services)", timeout_s=timeout_s)
        return parse_sc_service_names(out)


class WindowsFiles:
    def inspect(self, path: Path) -> DriverFileInfo:
        p = Path(path)
        try:
            if not p.is_file():
                return DriverFileInfo(path=str(p), exists=False)
            return DriverFileInfo(path=str(p), exists=True, size_bytes=p.stat().st_size, sha256=U.checksum(p))
        except OSError as e:
            raise wrap_probe(f"Cannot read {p}: {e}", e)


class WindowsRegistry:
    def __init__(self, runner: _Runner):
        self._r = runner

    def read_value(self, key: str, value_name: str, timeout_s: Optional[float] = None) -> Optional[str]:
        # reg.exe exits 1 when the key or value does not exist
        out = self._r.run(
            ["reg.exe", "query", key, "/v", value_name],
            what=f"reg query {value_name}",
            timeout_s=timeout_s,
            ok_codes=(0, 1),
        )
        return parse_reg_query_value(out, value_name)


class WindowsSystem:
    def __init__(self, runner: _Runner):
        self._r = runner

    def is_admin(self) -> bool:
        if os.name == "nt":
            try:
                return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
            except (AttributeError, OSError) as e:
                raise wrap_probe(f"IsUserAnAdmin failed: {e}", e)
        return os.geteuid() == 0

    def powershell_version(self) -> str:
        return self._r.powershell("$PSVersionTable.PSVersion.ToString()", what="PowerShell version").strip()

    def python_version(self) -> Tuple[int, int, int]:
        return tuple(sys.version_info[:3])  # type: ignore[return-value]

    def optional_feature_state(self, feature: str) -> str:
        script = f"(Get-WindowsOptionalFeature -Online -FeatureName '{feature}' -ErrorAction Stop).State.ToString()"
        # DISM feature enumeration is slow on a cold cache
        return self._r.powershell(script, what=f"optional feature {feature}", timeout_s=max(self._r.timeout_s, 30.0)).strip()

    def os_build(self) -> str:
        return platform.version()

    def windows_dir(self) -> Path:
        return Path(os.environ.get("SystemRoot") or os.environ.get("windir") or r"C:\Windows")

    def program_files_x86(self) -> Path:
        return Path(os.environ.get("ProgramFiles(x86)") or r"C:\Program Files (x86)")

    def path_exists(self, path: Path) -> bool:
        return Path(path).exists()

    def powershell_module_available(self, module: str) -> bool:
        script = f"[bool](Get-Module -ListAvailable -Name '{module}')"
        return self._r.powershell(script, what=f"module {module}", timeout_s=max(self._r.timeout_s, 10.0)).strip().lower() == "true"

    def free_bytes(self, path: Path) -> int:
        try:
            return int(shutil.disk_usage(str(path)).free)
        except OSError as e:
            raise wrap_probe(f"Cannot read free space for {path}: {e}", e)

    def tcp_probe(self, host: str, port: int, timeout_s: float) -> None:
        with socket.create_connection((host, port), timeout=timeout_s):
            pass

    def defender_exclusions(self) -> List[str]:
        script = "Get-MpPreference -ErrorAction Stop | Select-Object -ExpandProperty ExclusionPath | ConvertTo-Json -Compress"
        obj = parse_powershell_json(self._r.powershell(script, what="Defender exclusions", timeout_s=max(self._r.timeout_s, 10.0)))
        if obj is None:
            return []
        items = obj if isinstance(obj, list) else [obj]
        paths = [str(x) for x in items if x]
        if any(p.startswith("N/A") for p in paths):
            raise ProbeError(code=1, msg="Defender exclusions are only visible to administrators")
        return paths


# fltmc reports HRESULTs as the unsigned process exit code;
# 0x800700B7 is ERROR_ALREADY_EXISTS (filter already loaded)
FLTMC_ALREADY_LOADED = 0x800700B7
# sc.exe start: ERROR_SERVICE_ALREADY_RUNNING
SC_ALREADY_RUNNING = 1056


class WindowsRemediation:
    def __init__(self, runner: _Runner):
        self._r = runner

    def set_registry_value(self, key: str, value_name: str, value: str, timeout_s: Optional[float] = None) -> None:
        self._r.run(
            ["reg.exe", "add", key, "/v", value_name, "/t", "REG_SZ", "/d", value, "/f"],
            what=f"reg add {value_name}",
            timeout_s=timeout_s,
        )

    def set_service_start(self, name: str, start_type: str, timeout_s: Optional[float] = None) -> None:
        sc_start = {"manual": "demand", "automatic": "auto"}.get(start_type.lower(), start_type.lower())
        self._r.run(["sc.exe", "config", name, "start=", sc_start], what=f"sc config {name}", timeout_s=timeout_s)

    def register_filter_driver(self, timeout_s: Optional[float] = None) -> None:
        self._r.run(["rundll32.exe", "wimgapi.dll,WIMRegisterFilterDriver"], what="WIMRegisterFilterDriver", timeout_s=timeout_s)

    def load_filter(self, name: str, timeout_s: Optional[float] = None) -> None:
        self._r.run(["fltmc.exe", "load", name], what=f"fltmc load {name}", timeout_s=timeout_s, ok_codes=(0, FLTMC_ALREADY_LOADED))

    def start_service(self, name: str, timeout_s: Optional[float] = None) -> None:
        self._r.run(["sc.exe", "start", name], what=f"sc start {name}", timeout_s=timeout_s, ok_codes=(0, SC_ALREADY_RUNNING))


def windows_providers(logger: logging.Logger, command_timeout_s: float):
    runner = _Runner(logger, command_timeout_s)
    return (
        WindowsFilterList(runner),
        WindowsServices(runner),
        WindowsFiles(),
        WindowsRegistry(runner),
        WindowsSystem(runner),
        WindowsRemediation(runner),
    )
