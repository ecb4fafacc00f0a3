# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/remediation.py
"""
One-pass WimMount repair.

The plan is derived from the evidence, executed in order with a fixed
settle delay after every mutating step, and followed by exactly one
re-gather of evidence. There is no retry loop: the whole pass, including
the re-gather, ends before the deadline handed in by the diagnostic
(settings.remediation_budget_s when run on its own).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from ..core.exceptions import one_line
from ..core.logger import Log
from .base import Deadline
from .filter_evidence import (
    ALTITUDE_VALUE,
    EXPECTED_ALTITUDE,
    FILTER_NAME,
    INSTANCE_KEY,
    SERVICE_NAME,
    WimMountEvidence,
)

if TYPE_CHECKING:  # pragma: no cover
    from .context import PreflightContext


@dataclass(frozen=True)
class RemediationAction:
    name: str
    description: str
    run: Callable[[float], None]  # called with the command timeout
    mutating: bool = True


@dataclass
class ActionRecord:
    action: str
    succeeded: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"Action": self.action, "Succeeded": self.succeeded, "Error": self.error}


@dataclass
class RemediationOutcome:
    attempted: bool = False
    actions: List[ActionRecord] = field(default_factory=list)
    succeeded: bool = False
    budget_exhausted: bool = False
    evidence_after: Optional[WimMountEvidence] = None

    def to_details(self) -> Dict[str, Any]:
        return {
            "RemediationAttempted": self.attempted,
            "RemediationActions": [a.to_dict() for a in self.actions],
            "RemediationSucceeded": self.succeeded,
            "RemediationBudgetExhausted": self.budget_exhausted,
        }


class RemediationEngine:
    def __init__(
        self,
        ctx: "PreflightContext",
        regather: Callable[[], WimMountEvidence],
        deadline: Optional[Deadline] = None,
    ):
        self.ctx = ctx
        self.regather = regather
        self.deadline = deadline

    def plan(self, ev: WimMountEvidence) -> List[RemediationAction]:
        actions = self.ctx.actions
        steps: List[RemediationAction] = []

        if ev.altitude_misconfigured:
            steps.append(RemediationAction(
                "set-altitude",
                f"Reset {ALTITUDE_VALUE} from {ev.registry_altitude} to {EXPECTED_ALTITUDE}",
                lambda t: actions.set_registry_value(INSTANCE_KEY, ALTITUDE_VALUE, EXPECTED_ALTITUDE, timeout_s=t),
            ))

        if ev.service is not None and ev.service.disabled:
            steps.append(RemediationAction(
                "enable-service",
                f"Set {SERVICE_NAME} start type to Manual",
                lambda t: actions.set_service_start(SERVICE_NAME, "Manual", timeout_s=t),
            ))

        steps.append(RemediationAction(
            "register-filter-driver",
            "Re-register the filter driver via wimgapi.dll",
            lambda t: actions.register_filter_driver(timeout_s=t),
        ))
        steps.append(RemediationAction(
            "load-filter",
            f"Load the {FILTER_NAME} minifilter",
            lambda t: actions.load_filter(FILTER_NAME, timeout_s=t),
        ))

        if ev.service is None or not ev.service.running:
            steps.append(RemediationAction(
                "start-service",
                f"Start the {SERVICE_NAME} service",
                lambda t: actions.start_service(SERVICE_NAME, timeout_s=t),
            ))
        return steps

    def run(self, ev: WimMountEvidence) -> RemediationOutcome:
        """
        Execute the plan once. A step only starts when its command timeout,
        its settle delay and a full evidence re-gather still fit before the
        deadline; the command is then capped to the time that is left.
        """
        settings = self.ctx.settings
        logger = self.ctx.logger
        deadline = self.deadline or Deadline(self.ctx.clock, settings.remediation_budget_s)
        outcome = RemediationOutcome(attempted=True)

        for step in self.plan(ev):
            reserve = settings.detection_budget_s + (settings.settle_delay_s if step.mutating else 0.0)
            timeout_s = deadline.timeout_for(settings.command_timeout_s, reserve=reserve)
            if not timeout_s:
                outcome.budget_exhausted = True
                Log.warn(logger, "WimMount remediation budget exhausted", skipped=step.name, remaining_s=round(deadline.remaining(), 2))
                break

            Log.step(logger, f"WimMount remediation: {step.description}")
            try:
                step.run(timeout_s)
                outcome.actions.append(ActionRecord(step.name, True))
            except Exception as e:
                msg = one_line(str(e), limit=300) or type(e).__name__
                outcome.actions.append(ActionRecord(step.name, False, msg))
                logger.warning("WimMount remediation step %s failed: %s", step.name, msg)

            if step.mutating and settings.settle_delay_s > 0:
                self.ctx.sleep(settings.settle_delay_s)

        outcome.evidence_after = self.regather()
        outcome.succeeded = outcome.evidence_after.filter_loaded
        if outcome.succeeded:
            Log.ok(logger, "WimMount filter loaded after remediation")
        else:
            Log.warn(logger, "WimMount filter still not loaded after remediation")
        return outcome
