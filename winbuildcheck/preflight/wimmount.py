# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/wimmount.py
"""
WimMount filter-driver diagnostic.

Only the active filter list decides the verdict:

  loaded      -> Passed,  UsingNativeDISM = False
  not loaded  -> Warning, UsingNativeDISM = True

The other evidence sources explain *why* and shape the remediation text.
The diagnostic never returns Failed: the build has a driver-independent
mounting path (native DISM), so a missing filter only degrades it.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.exceptions import one_line
from ..core.logger import Log
from .base import Deadline
from .filter_evidence import (
    ALTITUDE_VALUE,
    CAUSE_ALTITUDE,
    CAUSE_DRIVER_CORRUPT,
    CAUSE_DRIVER_MISSING,
    CAUSE_FILTER_LIST,
    CAUSE_SECURITY,
    CAUSE_SERVICE_DISABLED,
    CAUSE_SERVICE_MISSING,
    EXPECTED_ALTITUDE,
    FILTER_NAME,
    INSTANCE_KEY,
    SERVICE_NAME,
    WimMountEvidence,
    gather_evidence,
)
from .models import CheckResult, CheckStatus, make_result, numbered_steps
from .remediation import RemediationEngine, RemediationOutcome
from .signatures import vendors

if TYPE_CHECKING:  # pragma: no cover
    from .context import PreflightContext

CHECK_NAME = "WimMount"

_CAUSE_TEXT = {
    CAUSE_FILTER_LIST: "the loaded filter list could not be read",
    CAUSE_ALTITUDE: "altitude conflict",
    CAUSE_SERVICE_MISSING: f"the {SERVICE_NAME} service is not registered",
    CAUSE_SERVICE_DISABLED: f"the {SERVICE_NAME} service is disabled",
    CAUSE_DRIVER_MISSING: "wimmount.sys is missing",
    CAUSE_DRIVER_CORRUPT: "wimmount.sys looks truncated or corrupt",
    CAUSE_SECURITY: "endpoint protection may be blocking it",
}


def _remediation_steps(ev: WimMountEvidence) -> List[str]:
    causes = ev.causes()
    steps = [
        "No action is required to continue: the build will mount images with native DISM instead of the WimMount filter.",
    ]

    if CAUSE_ALTITUDE in causes:
        if ev.altitude_misconfigured:
            steps.append(
                f'Reset the filter altitude from an elevated prompt: reg add "{INSTANCE_KEY}" '
                f"/v {ALTITUDE_VALUE} /t REG_SZ /d {EXPECTED_ALTITUDE} /f"
            )
        if ev.altitude_conflicts:
            names = ", ".join(f.name for f in ev.altitude_conflicts)
            steps.append(
                f"Uninstall or reconfigure the software that owns filter(s) {names}, "
                f"which claim altitude {EXPECTED_ALTITUDE}."
            )

    if CAUSE_SERVICE_DISABLED in causes:
        steps.append(f"Re-enable the service: sc.exe config {SERVICE_NAME} start= demand")

    if CAUSE_DRIVER_MISSING in causes or CAUSE_DRIVER_CORRUPT in causes or CAUSE_SERVICE_MISSING in causes:
        steps.append("Repair system files: run 'sfc /scannow', then 'DISM /Online /Cleanup-Image /RestoreHealth'.")

    if CAUSE_SECURITY in causes:
        products = ", ".join(vendors(ev.suspicious_security_products))
        steps.append(f"Ask your security team to allow wimmount.sys and wimgapi.dll in {products}.")

    steps.extend([
        "Re-register the filter from an elevated prompt: rundll32.exe wimgapi.dll,WIMRegisterFilterDriver",
        f"Load the filter: fltmc load {FILTER_NAME}",
        f"Reboot and re-run preflight if '{FILTER_NAME}' is still missing from 'fltmc filters'.",
    ])
    return steps


def _classify(
    ev: WimMountEvidence,
    outcome: RemediationOutcome,
    initial: Optional[WimMountEvidence] = None,
) -> CheckResult:
    details: Dict[str, Any] = ev.to_details()

    if ev.filter_loaded:
        details["UsingNativeDISM"] = False
        details.update(outcome.to_details())
        if outcome.attempted and initial is not None:
            details["ResolvedCauses"] = initial.causes()
            msg = f"{FILTER_NAME} filter loaded after automatic remediation"
        else:
            msg = f"{FILTER_NAME} filter is loaded (altitude {ev.loaded_altitude or 'unknown'})"
        return make_result(CHECK_NAME, CheckStatus.PASSED, msg, details=details)

    causes = ev.causes()
    details["UsingNativeDISM"] = True
    details["Causes"] = causes
    details.update(outcome.to_details())

    reasons = [_CAUSE_TEXT[c] for c in causes if c in _CAUSE_TEXT]
    msg = f"{FILTER_NAME} filter is not loaded; falling back to native DISM"
    if reasons:
        msg += f" ({'; '.join(reasons)})"
    if outcome.attempted:
        msg += "; automatic remediation did not restore it"

    return make_result(
        CHECK_NAME,
        CheckStatus.WARNING,
        msg,
        details=details,
        remediation=numbered_steps(_remediation_steps(ev)),
    )


def diagnose_wimmount(ctx: "PreflightContext", attempt_remediation: bool = True) -> CheckResult:
    """
    Gather evidence, optionally run one remediation pass, classify.
    Always returns Passed or Warning; never raises.

    One deadline covers the whole call: settings.detection_budget_s for
    detection only, settings.remediation_budget_s with remediation. The
    first evidence pass never takes more than the detection budget.
    """
    settings = ctx.settings
    t0 = ctx.clock()
    budget_s = settings.remediation_budget_s if attempt_remediation else settings.detection_budget_s
    deadline = Deadline(ctx.clock, budget_s)
    try:
        initial = gather_evidence(ctx, deadline.within(settings.detection_budget_s))
        final = initial
        outcome = RemediationOutcome()

        if not initial.filter_loaded:
            if attempt_remediation:
                engine = RemediationEngine(ctx, lambda: gather_evidence(ctx, deadline), deadline)
                outcome = engine.run(initial)
                if outcome.evidence_after is not None:
                    final = outcome.evidence_after
            else:
                ctx.logger.debug("WimMount remediation disabled; detection only")

        result = _classify(final, outcome, initial)
    except Exception as e:
        msg = one_line(str(e), limit=300) or type(e).__name__
        Log.warn(ctx.logger, f"WimMount diagnostic error: {msg}")
        result = make_result(
            CHECK_NAME,
            CheckStatus.WARNING,
            f"{FILTER_NAME} diagnostic could not complete; falling back to native DISM ({msg})",
            details={
                "FilterName": FILTER_NAME,
                "FilterLoaded": False,
                "UsingNativeDISM": True,
                "RemediationAttempted": False,
                "RemediationActions": [],
                "RemediationSucceeded": False,
                "ProbeErrors": {"Diagnostic": msg},
            },
            remediation=numbered_steps([
                "No action is required to continue: the build will mount images with native DISM.",
                f"Run 'fltmc filters' from an elevated prompt and confirm '{FILTER_NAME}' is listed.",
            ]),
        )

    elapsed_ms = int(round((ctx.clock() - t0) * 1000))
    return result.with_duration(elapsed_ms)
