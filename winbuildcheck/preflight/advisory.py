# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/advisory.py
"""
Tier 3 (advisory) and Tier 4 (maintenance) checks.

Neither can block a build: antivirus results are Passed/Warning/Skipped,
cleanup results are Passed/Warning.
"""
from __future__ import annotations

import fnmatch
import shutil
from pathlib import Path, PureWindowsPath
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..core.exceptions import one_line
from ..core.utils import U
from .base import timed_check
from .models import CheckResult, CheckStatus, make_result, numbered_steps, skipped_result
from .signatures import third_party, vendors

if TYPE_CHECKING:  # pragma: no cover
    from .context import PreflightContext

DEFENDER = "Microsoft Defender Antivirus"


def _norm(p: Union[str, Path]) -> str:
    return str(PureWindowsPath(str(p))).rstrip("\\").lower()


def path_is_covered(path: Union[str, Path], exclusions: List[str]) -> bool:
    """True if `path` equals or sits below one of the excluded folders."""
    target = _norm(path)
    for ex in exclusions:
        base = _norm(ex)
        if not base:
            continue
        if target == base or target.startswith(base + "\\"):
            return True
    return False


@timed_check("AntivirusExclusions", on_error=CheckStatus.WARNING)
def check_antivirus_exclusions(ctx: "PreflightContext", build_path: Union[str, Path]) -> CheckResult:
    errors: Dict[str, str] = {}

    try:
        services = ctx.services.list_services()
    except Exception as e:
        services = []
        errors["Services"] = one_line(str(e), limit=200)
    try:
        filter_names = [f.name for f in ctx.filters.list_filters()]
    except Exception as e:
        filter_names = []
        errors["Filters"] = one_line(str(e), limit=200)

    products = ctx.security_signatures.match(services, filter_names)
    others = third_party(products)
    defender_active = DEFENDER in vendors(products)

    exclusions: Optional[List[str]] = None
    try:
        exclusions = list(ctx.system.defender_exclusions())
    except Exception as e:
        errors["DefenderExclusions"] = one_line(str(e), limit=200)

    covered = exclusions is not None and path_is_covered(build_path, exclusions)
    details: Dict[str, Any] = {
        "BuildPath": str(build_path),
        "DetectedProducts": vendors(products),
        "ThirdPartyProducts": vendors(others),
        "DefenderActive": defender_active,
        "DefenderExclusionsReadable": exclusions is not None,
        "BuildPathExcluded": covered,
        "ProbeErrors": errors,
    }

    if others:
        names = ", ".join(vendors(others))
        return make_result(
            "AntivirusExclusions",
            CheckStatus.WARNING,
            f"Third-party endpoint protection detected ({names}); build path exclusions cannot be verified",
            details,
            numbered_steps([
                f"Ask your security team to exclude {build_path} from real-time scanning in {names}.",
                "Also exclude the DISM scratch and mount folders used by the build.",
                "Expect slower image servicing until the exclusions are in place.",
            ]),
        )

    if exclusions is None:
        if not defender_active:
            return skipped_result("AntivirusExclusions", "no supported antivirus product could be queried")
        return make_result(
            "AntivirusExclusions",
            CheckStatus.WARNING,
            "Microsoft Defender exclusions could not be read",
            details,
            numbered_steps([
                "Re-run preflight from an elevated session so Defender exclusions are visible.",
                f"Or confirm manually: (Get-MpPreference).ExclusionPath contains {build_path}",
            ]),
        )

    if covered:
        return make_result("AntivirusExclusions", CheckStatus.PASSED, f"{build_path} is excluded from Defender scanning", details)

    return make_result(
        "AntivirusExclusions",
        CheckStatus.WARNING,
        f"{build_path} is not excluded from Defender real-time scanning",
        details,
        numbered_steps([
            f"Run from an elevated prompt: Add-MpPreference -ExclusionPath '{build_path}'",
            "Re-run preflight to confirm the exclusion.",
        ]),
    )


def _entry_size(p: Path) -> int:
    if p.is_file():
        return p.stat().st_size
    return sum(f.stat().st_size for f in p.rglob("*") if f.is_file())


@timed_check("Cleanup", on_error=CheckStatus.WARNING)
def check_cleanup(ctx: "PreflightContext", build_path: Union[str, Path], skip_cleanup: bool = False) -> CheckResult:
    settings = ctx.settings
    root = Path(build_path)
    details: Dict[str, Any] = {
        "BuildPath": str(root),
        "Patterns": list(settings.cleanup_patterns),
        "MaxAgeHours": settings.cleanup_max_age_hours,
        "Removed": [],
        "FailedToRemove": [],
        "ReclaimedBytes": 0,
    }

    if skip_cleanup:
        details["SkippedByRequest"] = True
        return make_result("Cleanup", CheckStatus.PASSED, "Cleanup skipped by request", details)

    if not root.is_dir():
        return make_result("Cleanup", CheckStatus.PASSED, "Build path does not exist yet; nothing to clean", details)

    cutoff = ctx.wall_clock() - settings.cleanup_max_age_hours * 3600.0
    patterns = [p.lower() for p in settings.cleanup_patterns]
    removed: List[str] = []
    failed: List[Dict[str, str]] = []
    reclaimed = 0

    for entry in sorted(root.iterdir()):
        name = entry.name.lower()
        if not any(fnmatch.fnmatchcase(name, pat) for pat in patterns):
            continue
        try:
            if entry.stat().st_mtime > cutoff:
                continue
            size = _entry_size(entry)
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed.append(entry.name)
            reclaimed += size
        except OSError as e:
            failed.append({"Path": str(entry), "Error": one_line(str(e), limit=200)})

    details.update({"Removed": removed, "FailedToRemove": failed, "ReclaimedBytes": reclaimed})

    if failed:
        return make_result(
            "Cleanup",
            CheckStatus.WARNING,
            f"Removed {len(removed)} stale item(s); {len(failed)} could not be removed",
            details,
            numbered_steps([
                "Close programs (Explorer windows, editors, mounted images) holding files in the build path.",
                "Run 'dism /Cleanup-Mountpoints' if a previous build left an image mounted.",
                "Delete the listed items manually.",
            ]),
        )
    if removed:
        ctx.logger.info("Cleanup: removed %d stale item(s), reclaimed %s", len(removed), U.human_bytes(reclaimed))
        return make_result("Cleanup", CheckStatus.PASSED, f"Removed {len(removed)} stale item(s) ({U.human_bytes(reclaimed)})", details)
    return make_result("Cleanup", CheckStatus.PASSED, "No stale artifacts found", details)
