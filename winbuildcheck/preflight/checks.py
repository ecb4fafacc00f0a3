# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/checks.py
"""
Environment probes for Tiers 1 and 2.

Every check takes the PreflightContext first, returns exactly one
CheckResult and changes nothing on the host.
"""
from __future__ import annotations

from pathlib import Path, PureWindowsPath
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..config.config_loader import load_config_file, validate_build_config
from ..core.exceptions import ConfigError, one_line
from ..host.parsers import parse_version
from .base import timed_check
from .models import CheckResult, CheckStatus, FeatureFlags, TargetArch, make_result, numbered_steps, skipped_result
from .requirements import HYPERV_FEATURE, calculate_requirements

if TYPE_CHECKING:  # pragma: no cover
    from .context import PreflightContext

MIN_POWERSHELL = (5, 1)
MIN_PYTHON = (3, 8)

ADK_ROOT = Path("Windows Kits") / "10" / "Assessment and Deployment Kit"
_ADK_ARCH_DIR = {TargetArch.X64: "amd64", TargetArch.ARM64: "arm64"}

GB = 1024 ** 3


def _fmt_version(v) -> str:
    return ".".join(str(x) for x in v)


# ---------------------------------------------------------------------------
# Tier 1
# ---------------------------------------------------------------------------

@timed_check("Administrator")
def check_admin_privileges(ctx: "PreflightContext") -> CheckResult:
    if ctx.system.is_admin():
        return make_result("Administrator", CheckStatus.PASSED, "Running with administrative privileges", {"IsAdmin": True})
    return make_result(
        "Administrator",
        CheckStatus.FAILED,
        "Administrative privileges are required",
        {"IsAdmin": False},
        remediation=numbered_steps([
            "Close this session.",
            "Open PowerShell with 'Run as administrator'.",
            "Re-run the build from the elevated session.",
        ]),
    )


@timed_check("RuntimeVersion")
def check_runtime_version(ctx: "PreflightContext") -> CheckResult:
    raw_ps = ctx.system.powershell_version()
    ps = parse_version(raw_ps)
    py = tuple(ctx.system.python_version())

    details: Dict[str, Any] = {
        "PowerShellVersion": raw_ps,
        "MinimumPowerShellVersion": _fmt_version(MIN_POWERSHELL),
        "PythonVersion": _fmt_version(py),
        "MinimumPythonVersion": _fmt_version(MIN_PYTHON),
    }

    problems: List[str] = []
    steps: List[str] = []
    if ps[:2] < MIN_POWERSHELL:
        problems.append(f"PowerShell {raw_ps} < {_fmt_version(MIN_POWERSHELL)}")
        steps.append("Install Windows Management Framework 5.1 (or PowerShell 7) and open a new session.")
    if py[:2] < MIN_PYTHON:
        problems.append(f"Python {_fmt_version(py)} < {_fmt_version(MIN_PYTHON)}")
        steps.append(f"Install Python {_fmt_version(MIN_PYTHON)} or newer and re-run with that interpreter.")

    if problems:
        steps.append("Re-run preflight.")
        return make_result("RuntimeVersion", CheckStatus.FAILED, "Runtime too old: " + "; ".join(problems), details, numbered_steps(steps))
    return make_result("RuntimeVersion", CheckStatus.PASSED, f"PowerShell {raw_ps}, Python {_fmt_version(py)}", details)


@timed_check("Hypervisor")
def check_hypervisor(ctx: "PreflightContext") -> CheckResult:
    state = ctx.system.optional_feature_state(HYPERV_FEATURE)
    details = {"FeatureName": HYPERV_FEATURE, "State": state}
    norm = state.strip().lower()

    if norm == "enabled":
        return make_result("Hypervisor", CheckStatus.PASSED, "Hyper-V is enabled", details)
    if norm == "enablepending":
        return make_result(
            "Hypervisor",
            CheckStatus.WARNING,
            "Hyper-V is enabled but a restart is pending",
            details,
            numbered_steps(["Restart the computer to finish enabling Hyper-V.", "Re-run preflight."]),
        )
    return make_result(
        "Hypervisor",
        CheckStatus.FAILED,
        f"Hyper-V is not enabled (state: {state or 'unknown'})",
        details,
        numbered_steps([
            f"Run from an elevated prompt: Enable-WindowsOptionalFeature -Online -FeatureName {HYPERV_FEATURE} -All",
            "Restart the computer.",
            "Re-run preflight.",
        ]),
    )


# ---------------------------------------------------------------------------
# Tier 2
# ---------------------------------------------------------------------------

@timed_check("ImageTooling")
def check_image_tooling(ctx: "PreflightContext", features: FeatureFlags, target_arch: Union[str, TargetArch] = TargetArch.X64) -> CheckResult:
    if not features.needs_image_tooling:
        return skipped_result("ImageTooling", "no enabled feature services an offline image")

    arch = TargetArch.parse(target_arch)
    system = ctx.system
    tools: Dict[str, str] = {}
    missing: List[str] = []

    dism = system.windows_dir() / "System32" / "Dism.exe"
    tools["Dism"] = str(dism)
    if not system.path_exists(dism):
        missing.append("Dism.exe")

    if not system.powershell_module_available("Dism"):
        missing.append("DISM PowerShell module")

    if features.needs_media_tooling:
        adk = system.program_files_x86() / ADK_ROOT
        arch_dir = _ADK_ARCH_DIR[arch]
        oscdimg = adk / "Deployment Tools" / arch_dir / "Oscdimg" / "oscdimg.exe"
        winpe = adk / "Windows Preinstallation Environment" / arch_dir
        tools["Oscdimg"] = str(oscdimg)
        tools["WinPE"] = str(winpe)
        if not system.path_exists(oscdimg):
            missing.append(f"oscdimg.exe ({arch_dir})")
        if not system.path_exists(winpe):
            missing.append(f"Windows PE add-on ({arch_dir})")

    details: Dict[str, Any] = {"TargetArch": arch.value, "Tools": tools, "Missing": missing}
    if missing:
        return make_result(
            "ImageTooling",
            CheckStatus.FAILED,
            "Image tooling missing: " + ", ".join(missing),
            details,
            numbered_steps([
                "Install the Windows ADK with the 'Deployment Tools' feature.",
                "Install the matching Windows PE add-on for the ADK.",
                "Open a new elevated session and re-run preflight.",
            ]),
        )
    return make_result("ImageTooling", CheckStatus.PASSED, f"Image tooling present for {arch.value}", details)


def _nearest_existing(ctx: "PreflightContext", path: Path) -> Path:
    for candidate in (path, *path.parents):
        if ctx.system.path_exists(candidate):
            return candidate
    return Path(path.anchor or ".")


@timed_check("DiskSpace")
def check_disk_space(ctx: "PreflightContext", features: FeatureFlags, build_path: Union[str, Path], vhd_size_gb: float) -> CheckResult:
    req = calculate_requirements(features, vhd_size_gb, scratch_overhead_gb=ctx.settings.scratch_overhead_gb)
    target = Path(build_path)
    probed = _nearest_existing(ctx, target)
    free_gb = round(ctx.system.free_bytes(probed) / GB, 2)
    required = req.required_disk_space_gb
    margin = round(required * (1.0 + ctx.settings.disk_headroom_ratio), 2)

    details: Dict[str, Any] = {
        "BuildPath": str(target),
        "ProbedPath": str(probed),
        "FreeSpaceGB": free_gb,
        "RequiredDiskSpaceGB": required,
        "RecommendedDiskSpaceGB": margin,
        "Breakdown": dict(req.breakdown),
        "RequiredFeatures": req.sorted_features(),
    }

    drive = PureWindowsPath(str(probed)).drive or str(probed)
    if free_gb < required:
        short = round(required - free_gb, 2)
        return make_result(
            "DiskSpace",
            CheckStatus.FAILED,
            f"Insufficient disk space on {drive}: {free_gb} GB free, {required} GB required",
            details,
            numbered_steps([
                f"Free at least {short} GB on {drive} (delete old build output, empty the recycle bin, run Disk Cleanup).",
                "Or point the build path at a volume with more free space.",
                "Or reduce the VHD size or disable optional build features.",
                "Re-run preflight.",
            ]),
        )
    if free_gb < margin:
        return make_result(
            "DiskSpace",
            CheckStatus.WARNING,
            f"Low disk headroom on {drive}: {free_gb} GB free, {required} GB required",
            details,
            numbered_steps([
                f"Free space on {drive} so that at least {margin} GB is available.",
                "Re-run preflight.",
            ]),
        )
    return make_result("DiskSpace", CheckStatus.PASSED, f"{free_gb} GB free on {drive} ({required} GB required)", details)


@timed_check("Network")
def check_network(ctx: "PreflightContext", features: FeatureFlags) -> CheckResult:
    if not features.needs_network:
        return skipped_result("Network", "no enabled feature downloads content")

    settings = ctx.settings
    endpoints: List[Dict[str, Any]] = []
    for host, port in settings.network_endpoints:
        entry: Dict[str, Any] = {"Host": host, "Port": port, "Reachable": False, "Error": None}
        try:
            ctx.system.tcp_probe(host, port, settings.network_timeout_s)
            entry["Reachable"] = True
        except Exception as e:
            entry["Error"] = one_line(str(e), limit=200) or type(e).__name__
        endpoints.append(entry)

    reachable = [e for e in endpoints if e["Reachable"]]
    unreachable = [f"{e['Host']}:{e['Port']}" for e in endpoints if not e["Reachable"]]
    details: Dict[str, Any] = {"Endpoints": endpoints, "TimeoutSeconds": settings.network_timeout_s}

    if not endpoints:
        return make_result("Network", CheckStatus.WARNING, "No network endpoints configured", details,
                           numbered_steps(["Add endpoints under preflight.network_endpoints in the build config."]))
    if not reachable:
        return make_result(
            "Network",
            CheckStatus.FAILED,
            "No download endpoint is reachable: " + ", ".join(unreachable),
            details,
            numbered_steps([
                "Check the network connection and DNS resolution.",
                "Allow outbound HTTPS (443) to the listed endpoints, or configure the proxy for this session.",
                "Re-run preflight.",
            ]),
        )
    if unreachable:
        return make_result(
            "Network",
            CheckStatus.WARNING,
            "Some endpoints are unreachable: " + ", ".join(unreachable),
            details,
            numbered_steps([
                "Allow outbound HTTPS (443) to the unreachable endpoints.",
                "Downloads from those hosts will fail until then.",
            ]),
        )
    return make_result("Network", CheckStatus.PASSED, f"{len(reachable)} endpoint(s) reachable", details)


@timed_check("ConfigFile")
def check_config_file(ctx: "PreflightContext", config_path: Optional[Union[str, Path]] = None) -> CheckResult:
    if not config_path:
        return skipped_result("ConfigFile", "no configuration file was supplied")

    path = Path(config_path)
    details: Dict[str, Any] = {"ConfigPath": str(path)}
    try:
        doc = load_config_file(path)
    except ConfigError as e:
        details["Errors"] = [e.msg]
        return make_result(
            "ConfigFile",
            CheckStatus.FAILED,
            e.msg,
            details,
            numbered_steps([
                f"Open {path} and fix the reported problem (it must be a YAML or JSON mapping).",
                "Re-run preflight.",
            ]),
        )

    errors, warnings = validate_build_config(doc)
    details["Keys"] = sorted(str(k) for k in doc)
    details["Errors"] = errors
    details["Warnings"] = warnings

    if errors:
        return make_result(
            "ConfigFile",
            CheckStatus.FAILED,
            f"Invalid configuration: {'; '.join(errors)}",
            details,
            numbered_steps([f"Correct in {path}: {err}" for err in errors] + ["Re-run preflight."]),
        )
    if warnings:
        return make_result(
            "ConfigFile",
            CheckStatus.WARNING,
            f"Configuration has {'; '.join(warnings)}",
            details,
            numbered_steps([f"Remove or rename in {path}: {w}" for w in warnings]),
        )
    return make_result("ConfigFile", CheckStatus.PASSED, f"Configuration {path.name} is valid", details)
