# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/orchestrator.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from ..core.logger import Log
from ..core.utils import is_tty
from .advisory import check_antivirus_exclusions, check_cleanup
from .base import fault_result
from .checks import (
    check_admin_privileges,
    check_config_file,
    check_disk_space,
    check_hypervisor,
    check_image_tooling,
    check_network,
    check_runtime_version,
)
from .context import PreflightContext
from .models import (
    BLOCKING_TIERS,
    TIER_KEYS,
    CheckResult,
    CheckStatus,
    FeatureFlags,
    PreflightReport,
    TargetArch,
    make_result,
    skipped_result,
)
from .wimmount import CHECK_NAME as WIMMOUNT_CHECK
from .wimmount import diagnose_wimmount

Planned = Tuple[str, Callable[[], CheckResult]]

# statuses a tier may legally report; anything else is demoted to WARNING
_TIER_ALLOWED = {
    "Tier3": {CheckStatus.PASSED, CheckStatus.WARNING, CheckStatus.SKIPPED},
    "Tier4": {CheckStatus.PASSED, CheckStatus.WARNING},
}


class PreflightOrchestrator:
    """
    Runs the four tiers strictly in order, one check at a time:

      Tier1  critical, always run, no early exit
      Tier2  feature-gated (gated-off checks are Skipped, 0 ms)
      Tier3  advisory (Passed/Warning/Skipped only)
      Tier4  best-effort cleanup, omitted when skip_cleanup is set
    """

    def __init__(self, ctx: PreflightContext, *, show_progress: Optional[bool] = None):
        self.ctx = ctx
        self.logger = ctx.logger
        self.show_progress = is_tty() if show_progress is None else bool(show_progress)

    # -------------------------------------------------------------------------
    # planning
    # -------------------------------------------------------------------------

    def plan(
        self,
        features: FeatureFlags,
        build_path: Union[str, Path],
        vhd_size_gb: float,
        target_arch: Union[str, TargetArch],
        skip_cleanup: bool,
        config_path: Optional[Union[str, Path]],
        attempt_remediation: bool,
    ) -> Dict[str, List[Planned]]:
        ctx = self.ctx

        if features.needs_offline_mount:
            wimmount: Callable[[], CheckResult] = lambda: diagnose_wimmount(ctx, attempt_remediation=attempt_remediation)
        else:
            wimmount = lambda: skipped_result(WIMMOUNT_CHECK, "no enabled feature mounts offline images")

        tiers: Dict[str, List[Planned]] = {
            "Tier1": [
                ("Administrator", lambda: check_admin_privileges(ctx)),
                ("RuntimeVersion", lambda: check_runtime_version(ctx)),
                ("Hypervisor", lambda: check_hypervisor(ctx)),
            ],
            "Tier2": [
                ("ImageTooling", lambda: check_image_tooling(ctx, features, target_arch)),
                ("DiskSpace", lambda: check_disk_space(ctx, features, build_path, vhd_size_gb)),
                ("Network", lambda: check_network(ctx, features)),
                ("ConfigFile", lambda: check_config_file(ctx, config_path)),
                (WIMMOUNT_CHECK, wimmount),
            ],
            "Tier3": [
                ("AntivirusExclusions", lambda: check_antivirus_exclusions(ctx, build_path)),
            ],
            "Tier4": [],
        }
        if not skip_cleanup:
            tiers["Tier4"].append(("Cleanup", lambda: check_cleanup(ctx, build_path)))
        return tiers

    # -------------------------------------------------------------------------
    # execution
    # -------------------------------------------------------------------------

    def _guard(self, tier: str, name: str, fn: Callable[[], CheckResult]) -> CheckResult:
        t0 = self.ctx.clock()
        try:
            result = fn()
        except Exception as e:
            self.logger.debug("Preflight check %s raised", name, exc_info=True)
            status = CheckStatus.FAILED if tier in BLOCKING_TIERS else CheckStatus.WARNING
            result = fault_result(name, e, status).with_duration(int(round((self.ctx.clock() - t0) * 1000)))

        allowed = _TIER_ALLOWED.get(tier)
        if allowed is not None and result.status not in allowed:
            self.logger.debug("Demoting %s result %s to Warning (%s)", name, result.status.value, tier)
            result = make_result(
                result.check_name,
                CheckStatus.WARNING,
                result.message,
                details=result.details,
                remediation=result.remediation,
                duration_ms=result.duration_ms,
            )
        return result

    def _run_tier(self, tier: str, planned: List[Planned], progress: Optional[Progress], task: Any) -> Dict[str, CheckResult]:
        out: Dict[str, CheckResult] = {}
        for name, fn in planned:
            if progress is not None:
                progress.update(task, description=f"Preflight {tier}: {name}")
            else:
                self.logger.info("Preflight %s: %s...", tier, name)
            out[name] = self._guard(tier, name, fn)
            if progress is not None:
                progress.update(task, advance=1)
        return out

    def _run_all(self, tiers: Dict[str, List[Planned]]) -> Dict[str, Dict[str, CheckResult]]:
        results: Dict[str, Dict[str, CheckResult]] = {}
        total = sum(len(v) for v in tiers.values())

        if self.show_progress:
            with Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                TimeElapsedColumn(),
                transient=True,
            ) as progress:
                task = progress.add_task("Running preflight checks", total=total)
                for tier in TIER_KEYS:
                    results[tier] = self._run_tier(tier, tiers.get(tier, []), progress, task)
        else:
            for tier in TIER_KEYS:
                results[tier] = self._run_tier(tier, tiers.get(tier, []), None, None)
        return results

    def _log_summary(self, report: PreflightReport) -> None:
        if report.is_valid:
            Log.ok(self.logger, f"Preflight: OK ({report.validation_duration_ms} ms)")
        else:
            Log.fail(self.logger, f"Preflight: FAILED ({len(report.errors)} blocking problem(s))")
        for e in report.errors:
            self.logger.error("Preflight error: %s", e)
        for w in report.warnings:
            self.logger.warning("Preflight warn: %s", w)
        for r in report.all_results():
            self.logger.debug("Preflight %s: %s (%d ms) %s", r.check_name, r.status.value, r.duration_ms, r.details)

    def run(
        self,
        features: FeatureFlags,
        build_path: Union[str, Path],
        vhd_size_gb: float,
        target_arch: Union[str, TargetArch] = TargetArch.X64,
        skip_cleanup: bool = False,
        *,
        config_path: Optional[Union[str, Path]] = None,
        attempt_remediation: bool = True,
    ) -> PreflightReport:
        t0 = self.ctx.clock()
        Log.banner(self.logger, "Preflight")
        tiers = self.plan(features, build_path, vhd_size_gb, target_arch, skip_cleanup, config_path, attempt_remediation)
        results = self._run_all(tiers)
        report = PreflightReport.build(results, int(round((self.ctx.clock() - t0) * 1000)))
        self._log_summary(report)
        return report


def run_preflight(
    features: Union[FeatureFlags, Mapping[str, Any], None],
    build_path: Union[str, Path],
    vhd_size_gb: float,
    target_arch: Union[str, TargetArch] = TargetArch.X64,
    skip_cleanup: bool = False,
    *,
    ctx: Optional[PreflightContext] = None,
    config_path: Optional[Union[str, Path]] = None,
    attempt_remediation: bool = True,
    show_progress: Optional[bool] = None,
) -> PreflightReport:
    """
    Primary entry point. Returns a fresh, fully aggregated PreflightReport;
    check failures are reported in it, never raised. Only an unknown
    feature name in a `features` mapping raises (ConfigError).
    """
    flags = features if isinstance(features, FeatureFlags) else FeatureFlags.from_mapping(features)
    ctx = ctx or PreflightContext.for_host()
    return PreflightOrchestrator(ctx, show_progress=show_progress).run(
        flags,
        build_path,
        vhd_size_gb,
        target_arch,
        skip_cleanup,
        config_path=config_path,
        attempt_remediation=attempt_remediation,
    )
