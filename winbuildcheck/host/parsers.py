# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/host/parsers.py
"""Parsers for fltmc / sc.exe / reg.exe / PowerShell output (pure functions)."""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from ..core.exceptions import ProbeError
from .probes import FilterEntry, ServiceState

_FLTMC_ROW_RE = re.compile(r"^(?P<name>\S+)\s+(?P<instances>\d+)\s+(?P<altitude>\S+)\s+(?P<frame>\S+)\s*$")
_FLTMC_LEGACY_RE = re.compile(r"^(?P<name>\S+)\s+(?P<rest><Legacy>.*)$", re.I)
_SC_STATE_RE = re.compile(r"^\s*STATE\s*:\s*\d+\s+(?P<state>[A-Z_]+)", re.M)
_SC_START_RE = re.compile(r"^\s*START_TYPE\s*:\s*\d+\s+(?P<start>[A-Z_]+)", re.M)
_SC_NAME_RE = re.compile(r"^SERVICE_NAME:\s*(?P<name>\S+)\s*$", re.M)
_SC_MISSING_RE = re.compile(r"\b1060\b")

_SC_STATE_MAP = {
    "RUNNING": "Running",
    "STOPPED": "Stopped",
    "START_PENDING": "StartPending",
    "STOP_PENDING": "StopPending",
    "PAUSED": "Paused",
    "PAUSE_PENDING": "PausePending",
    "CONTINUE_PENDING": "ContinuePending",
}
_SC_START_MAP = {
    "BOOT_START": "Boot",
    "SYSTEM_START": "System",
    "AUTO_START": "Automatic",
    "DEMAND_START": "Manual",
    "DISABLED": "Disabled",
}
# Win32_SystemDriver.StartMode uses "Auto"; normalize to the sc.exe vocabulary
_CIM_START_MAP = {
    "auto": "Automatic",
    "automatic": "Automatic",
    "manual": "Manual",
    "disabled": "Disabled",
    "boot": "Boot",
    "system": "System",
}


def parse_fltmc_filters(text: str) -> List[FilterEntry]:
    """
    Parse `fltmc filters`:

        Filter Name                     Num Instances    Altitude    Frame
        ------------------------------  -------------  ------------  -----
        WdFilter                               10       328010         0
    """
    out: List[FilterEntry] = []
    saw_header = False
    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.lower().startswith("filter name"):
            saw_header = True
            continue
        if set(line) <= {"-", " "}:
            continue
        m = _FLTMC_ROW_RE.match(line)
        if m:
            out.append(FilterEntry(
                name=m.group("name"),
                instances=int(m.group("instances")),
                altitude=m.group("altitude"),
                frame=m.group("frame"),
            ))
            continue
        m = _FLTMC_LEGACY_RE.match(line)
        if m:
            out.append(FilterEntry(name=m.group("name"), frame="<Legacy>"))
            continue
        # single-token rows show up when a filter has no instances column
        if len(line.split()) == 1:
            out.append(FilterEntry(name=line))

    if not saw_header and not out:
        raise ProbeError(code=1, msg="Unrecognized fltmc output", context={"output": (text or "")[:200]})
    return out


def parse_sc_query(name: str, query_text: str, qc_text: str = "") -> ServiceState:
    if _SC_MISSING_RE.search(query_text or "") and "FAILED" in (query_text or "").upper():
        return ServiceState(name=name, exists=False, status="Missing", method="sc.exe")

    m = _SC_STATE_RE.search(query_text or "")
    if not m:
        raise ProbeError(code=1, msg=f"Unrecognized sc.exe query output for {name}")
    status = _SC_STATE_MAP.get(m.group("state"), m.group("state").title())

    start_type: Optional[str] = None
    m2 = _SC_START_RE.search(qc_text or "")
    if m2:
        start_type = _SC_START_MAP.get(m2.group("start"), m2.group("start").title())

    return ServiceState(name=name, exists=True, status=status, start_type=start_type, method="sc.exe")


def parse_sc_service_names(text: str) -> List[str]:
    return [m.group("name") for m in _SC_NAME_RE.finditer(text or "")]


def parse_reg_query_value(text: str, value_name: str) -> Optional[str]:
    """
    Parse `reg query <key> /v <name>`:

        HKEY_LOCAL_MACHINE\\SYSTEM\\...\\WIMMount Instance
            Altitude    REG_SZ    180700
    """
    wanted = value_name.lower()
    for raw in (text or "").splitlines():
        parts = raw.strip().split(None, 2)
        if len(parts) >= 2 and parts[0].lower() == wanted and parts[1].upper().startswith("REG_"):
            return parts[2].strip() if len(parts) == 3 else ""
    return None


def parse_powershell_json(text: str) -> Any:
    """ConvertTo-Json output; empty output means "no object" and returns None."""
    s = (text or "").strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError as e:
        raise ProbeError(code=1, msg=f"PowerShell returned non-JSON output: {s[:120]}", cause=e)


def parse_cim_system_driver(name: str, obj: Any) -> ServiceState:
    """Win32_SystemDriver object (Name, State, StartMode) from ConvertTo-Json."""
    if obj is None:
        return ServiceState(name=name, exists=False, status="Missing", method="Win32_SystemDriver")
    if isinstance(obj, list):
        obj = obj[0] if obj else None
        if obj is None:
            return ServiceState(name=name, exists=False, status="Missing", method="Win32_SystemDriver")
    if not isinstance(obj, dict):
        raise ProbeError(code=1, msg=f"Unexpected Win32_SystemDriver payload for {name}")
    d: Dict[str, Any] = {str(k).lower(): v for k, v in obj.items()}
    state = str(d.get("state") or "Unknown")
    start = d.get("startmode")
    return ServiceState(
        name=str(d.get("name") or name),
        exists=True,
        status=state,
        start_type=_CIM_START_MAP.get(str(start).lower(), str(start)) if start else None,
        method="Win32_SystemDriver",
    )


def parse_version(text: str) -> tuple:
    """'5.1.22621.2506' -> (5, 1, 22621, 2506); non-numeric parts stop the parse."""
    nums = []
    for part in (text or "").strip().split("."):
        m = re.match(r"\d+", part)
        if not m:
            break
        nums.append(int(m.group(0)))
    if not nums:
        raise ProbeError(code=1, msg=f"Cannot parse version from {text!r}")
    return tuple(nums)
