# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/filter_evidence.py
"""
Evidence gathering for the WimMount minifilter.

Five independent sources are queried; each one may fail on its own and a
failure is recorded in WimMountEvidence.probe_errors instead of raised:

  FilterList        fltmc filters (primary: is WimMount loaded right now?)
  Service           Win32_SystemDriver, falling back to sc.exe
  DriverFile        wimmount.sys existence / size / SHA-256
  Altitude          other filters at 180700 + the registry Altitude value
  SecuritySoftware  known endpoint-protection services and minifilters
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.exceptions import one_line
from ..host.probes import DriverFileInfo, FilterEntry, ServiceState
from .base import Deadline
from .signatures import SecurityProductMatch, third_party, vendors

if TYPE_CHECKING:  # pragma: no cover
    from .context import PreflightContext

FILTER_NAME = "WimMount"
SERVICE_NAME = "WIMMount"
EXPECTED_ALTITUDE = "180700"
INSTANCE_KEY = r"HKLM\SYSTEM\CurrentControlSet\Services\WIMMount\Instances\WIMMount Instance"
ALTITUDE_VALUE = "Altitude"
DRIVER_RELATIVE_PATH = Path("System32") / "drivers" / "wimmount.sys"
MIN_DRIVER_SIZE_BYTES = 20 * 1024

DRIVER_VERIFIED = "verified"
DRIVER_UNVERIFIED = "present-unverified"
DRIVER_SUSPICIOUS = "suspicious-size"
DRIVER_MISSING = "missing"
DRIVER_UNKNOWN = "unknown"

CAUSE_FILTER_LIST = "filter-list-unavailable"
CAUSE_ALTITUDE = "altitude-conflict"
CAUSE_SERVICE_MISSING = "service-missing"
CAUSE_SERVICE_DISABLED = "service-disabled"
CAUSE_DRIVER_MISSING = "driver-missing"
CAUSE_DRIVER_CORRUPT = "driver-corrupt"
CAUSE_SECURITY = "security-software"
CAUSE_UNKNOWN = "unknown"

SKIPPED_NO_TIME = "skipped: diagnostic time budget exhausted"


@dataclass
class WimMountEvidence:
    filter_list_ok: bool = False
    filter_loaded: bool = False
    loaded_altitude: Optional[str] = None
    loaded_filters: List[FilterEntry] = field(default_factory=list)
    service: Optional[ServiceState] = None
    driver: Optional[DriverFileInfo] = None
    driver_status: str = DRIVER_UNKNOWN
    os_build: Optional[str] = None
    registry_altitude: Optional[str] = None
    registry_altitude_read: bool = False
    altitude_conflicts: List[FilterEntry] = field(default_factory=list)
    security_products: List[SecurityProductMatch] = field(default_factory=list)
    probe_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def altitude_misconfigured(self) -> bool:
        return (
            self.registry_altitude_read
            and self.registry_altitude is not None
            and self.registry_altitude.strip() != EXPECTED_ALTITUDE
        )

    @property
    def suspicious_security_products(self) -> List[SecurityProductMatch]:
        return third_party(self.security_products)

    def causes(self) -> List[str]:
        """Likely reasons the filter is not loaded; empty when it is loaded."""
        if self.filter_loaded:
            return []
        out: List[str] = []
        if not self.filter_list_ok:
            out.append(CAUSE_FILTER_LIST)
        if self.altitude_conflicts or self.altitude_misconfigured:
            out.append(CAUSE_ALTITUDE)
        if self.service is not None and not self.service.exists:
            out.append(CAUSE_SERVICE_MISSING)
        if self.service is not None and self.service.disabled:
            out.append(CAUSE_SERVICE_DISABLED)
        if self.driver_status == DRIVER_MISSING:
            out.append(CAUSE_DRIVER_MISSING)
        elif self.driver_status == DRIVER_SUSPICIOUS:
            out.append(CAUSE_DRIVER_CORRUPT)
        if self.suspicious_security_products:
            out.append(CAUSE_SECURITY)
        return out or [CAUSE_UNKNOWN]

    def to_details(self) -> Dict[str, Any]:
        svc = self.service
        drv = self.driver
        return {
            "FilterName": FILTER_NAME,
            "FilterLoaded": self.filter_loaded,
            "FilterListAvailable": self.filter_list_ok,
            "LoadedAltitude": self.loaded_altitude,
            "ServiceExists": svc.exists if svc else None,
            "ServiceStatus": svc.status if svc else None,
            "ServiceStartType": svc.start_type if svc else None,
            "ServiceQueryMethod": svc.method if svc else None,
            "DriverPath": drv.path if drv else None,
            "DriverExists": drv.exists if drv else None,
            "DriverSizeBytes": drv.size_bytes if drv else None,
            "DriverSha256": drv.sha256 if drv else None,
            "DriverIntegrity": self.driver_status,
            "OsBuild": self.os_build,
            "ExpectedAltitude": EXPECTED_ALTITUDE,
            "RegistryAltitude": self.registry_altitude,
            "AltitudeMisconfigured": self.altitude_misconfigured,
            "AltitudeConflicts": [f.name for f in self.altitude_conflicts],
            "SecurityProducts": [m.to_dict() for m in self.security_products],
            "SuspectedInterference": vendors(self.suspicious_security_products),
            "ProbeErrors": dict(self.probe_errors),
        }


def _record(ev: WimMountEvidence, source: str, exc: BaseException) -> None:
    ev.probe_errors[source] = one_line(str(exc), limit=300) or type(exc).__name__


def _timeout(ctx: "PreflightContext", ev: WimMountEvidence, deadline: Deadline, source: str) -> float:
    """Per-command timeout for `source`; records the skip when no time is left."""
    t = deadline.timeout_for(ctx.settings.command_timeout_s)
    if not t:
        ev.probe_errors[source] = SKIPPED_NO_TIME
    return t


def _gather_filters(ctx: "PreflightContext", ev: WimMountEvidence, deadline: Deadline) -> None:
    t = _timeout(ctx, ev, deadline, "FilterList")
    if not t:
        return
    try:
        filters = list(ctx.filters.list_filters(timeout_s=t))
    except Exception as e:
        _record(ev, "FilterList", e)
        return
    ev.filter_list_ok = True
    ev.loaded_filters = filters
    for f in filters:
        if f.name.lower() == FILTER_NAME.lower():
            ev.filter_loaded = True
            ev.loaded_altitude = f.altitude
        elif f.altitude == EXPECTED_ALTITUDE:
            ev.altitude_conflicts.append(f)


def _gather_service(ctx: "PreflightContext", ev: WimMountEvidence, deadline: Deadline) -> None:
    t = _timeout(ctx, ev, deadline, "ServiceStructured")
    if not t:
        return
    try:
        ev.service = ctx.services.query_service(SERVICE_NAME, timeout_s=t)
        return
    except Exception as e:
        # CIM/WMI is commonly locked down by endpoint tooling; sc.exe usually still answers
        _record(ev, "ServiceStructured", e)
    t = _timeout(ctx, ev, deadline, "ServiceFallback")
    if not t:
        return
    try:
        ev.service = ctx.services.query_service_fallback(SERVICE_NAME, timeout_s=t)
    except Exception as e:
        _record(ev, "ServiceFallback", e)


def _gather_driver(ctx: "PreflightContext", ev: WimMountEvidence, deadline: Deadline) -> None:
    # local file read, no command to time out; only skipped once the deadline has passed
    if deadline.expired():
        ev.probe_errors["DriverFile"] = SKIPPED_NO_TIME
        return
    try:
        ev.os_build = ctx.system.os_build()
    except Exception as e:
        _record(ev, "OsBuild", e)

    try:
        path = ctx.system.windows_dir() / DRIVER_RELATIVE_PATH
        info = ctx.files.inspect(path)
    except Exception as e:
        _record(ev, "DriverFile", e)
        return

    ev.driver = info
    if not info.exists:
        ev.driver_status = DRIVER_MISSING
    elif info.size_bytes is not None and info.size_bytes < MIN_DRIVER_SIZE_BYTES:
        ev.driver_status = DRIVER_SUSPICIOUS
    elif ev.os_build and ctx.known_hashes is not None and ctx.known_hashes.is_known_good(ev.os_build, info.sha256):
        ev.driver_status = DRIVER_VERIFIED
    else:
        ev.driver_status = DRIVER_UNVERIFIED


def _gather_registry(ctx: "PreflightContext", ev: WimMountEvidence, deadline: Deadline) -> None:
    t = _timeout(ctx, ev, deadline, "RegistryAltitude")
    if not t:
        return
    try:
        ev.registry_altitude = ctx.registry.read_value(INSTANCE_KEY, ALTITUDE_VALUE, timeout_s=t)
        ev.registry_altitude_read = True
    except Exception as e:
        _record(ev, "RegistryAltitude", e)


def _gather_security(ctx: "PreflightContext", ev: WimMountEvidence, deadline: Deadline) -> None:
    services: List[str] = []
    t = _timeout(ctx, ev, deadline, "SecuritySoftware")
    if t:
        try:
            services = ctx.services.list_services(timeout_s=t)
        except Exception as e:
            _record(ev, "SecuritySoftware", e)
    # loaded minifilters are matched even when the service list is unavailable
    ev.security_products = ctx.security_signatures.match(services, [f.name for f in ev.loaded_filters])


def gather_evidence(ctx: "PreflightContext", deadline: Optional[Deadline] = None) -> WimMountEvidence:
    """
    Query every source once, most important first. Never raises for a
    failing source. Sources that no longer fit before `deadline`
    (default: settings.detection_budget_s from now) are skipped and
    recorded in probe_errors.
    """
    if deadline is None:
        deadline = Deadline(ctx.clock, ctx.settings.detection_budget_s)
    ev = WimMountEvidence()
    _gather_filters(ctx, ev, deadline)
    _gather_service(ctx, ev, deadline)
    _gather_driver(ctx, ev, deadline)
    _gather_registry(ctx, ev, deadline)
    _gather_security(ctx, ev, deadline)
    ctx.logger.debug(
        "WimMount evidence: loaded=%s service=%s driver=%s altitude=%s errors=%s",
        ev.filter_loaded,
        ev.service.status if ev.service else None,
        ev.driver_status,
        ev.registry_altitude,
        sorted(ev.probe_errors),
    )
    return ev
