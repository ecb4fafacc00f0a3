# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/models.py
"""
Result model shared by every preflight check.

CheckResult values are only created through make_result()/skipped_result(),
which enforce: remediation text is empty iff the status is PASSED, and
details is always a (possibly empty) ordered dict.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.exceptions import ConfigError


class CheckStatus(str, Enum):
    PASSED = "Passed"
    FAILED = "Failed"
    WARNING = "Warning"
    SKIPPED = "Skipped"

    @property
    def blocking(self) -> bool:
        return self is CheckStatus.FAILED


class TargetArch(str, Enum):
    X64 = "x64"
    ARM64 = "arm64"

    @classmethod
    def parse(cls, value: Any) -> "TargetArch":
        if isinstance(value, TargetArch):
            return value
        s = str(value or "").strip().lower()
        if s in ("amd64", "x86_64"):
            s = "x64"
        try:
            return cls(s)
        except ValueError:
            raise ConfigError(code=2, msg=f"Unsupported target architecture: {value!r} (expected x64 or arm64)")


@dataclass(frozen=True)
class CheckResult:
    check_name: str
    status: CheckStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    remediation: str = ""
    duration_ms: int = 0

    def with_duration(self, duration_ms: int) -> "CheckResult":
        return dataclasses.replace(self, duration_ms=max(0, int(duration_ms)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "CheckName": self.check_name,
            "Status": self.status.value,
            "Message": self.message,
            "Details": dict(self.details),
            "Remediation": self.remediation,
            "DurationMs": self.duration_ms,
        }


def numbered_steps(steps: Iterable[str]) -> str:
    """Render imperative steps as "1. ...\\n2. ..." text."""
    return "\n".join(f"{i}. {s}" for i, s in enumerate((s for s in steps if s), start=1))


def make_result(
    check_name: str,
    status: CheckStatus,
    message: str,
    details: Optional[Mapping[str, Any]] = None,
    remediation: str = "",
    duration_ms: int = 0,
) -> CheckResult:
    status = CheckStatus(status)
    remediation = (remediation or "").strip()

    if status is CheckStatus.PASSED:
        remediation = ""
    elif not remediation:
        remediation = numbered_steps([
            f"Review the details reported by the {check_name} check.",
            "Correct the reported condition and re-run preflight.",
        ])

    return CheckResult(
        check_name=check_name,
        status=status,
        message=message,
        details=dict(details or {}),
        remediation=remediation,
        duration_ms=max(0, int(duration_ms or 0)),
    )


def skipped_result(check_name: str, reason: str) -> CheckResult:
    return make_result(
        check_name,
        CheckStatus.SKIPPED,
        f"Skipped: {reason}",
        details={"SkipReason": reason},
        remediation=f"No action needed. {reason[0].upper() + reason[1:] if reason else ''}".strip(),
        duration_ms=0,
    )


# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------

_FEATURE_ALIASES: Dict[str, str] = {
    "captureMediaEnabled": "capture_media_enabled",
    "deploymentMediaEnabled": "deployment_media_enabled",
    "vmCreationEnabled": "vm_creation_enabled",
    "appInstallEnabled": "app_install_enabled",
    "driverInjectionEnabled": "driver_injection_enabled",
    "updateInjectionEnabled": "update_injection_enabled",
}


@dataclass(frozen=True)
class FeatureFlags:
    capture_media_enabled: bool = False
    deployment_media_enabled: bool = False
    vm_creation_enabled: bool = False
    app_install_enabled: bool = False
    driver_injection_enabled: bool = False
    update_injection_enabled: bool = False

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in dataclasses.fields(cls))

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "FeatureFlags":
        if not raw:
            return cls()
        names = set(cls.field_names())
        kw: Dict[str, bool] = {}
        for key, value in raw.items():
            name = _FEATURE_ALIASES.get(str(key), str(key))
            if name not in names and f"{name}_enabled" in names:
                name = f"{name}_enabled"
            if name not in names:
                raise ConfigError(code=2, msg=f"Unknown build feature: {key!r}")
            kw[name] = bool(value)
        return cls(**kw)

    def enabled_names(self) -> List[str]:
        return [n for n in self.field_names() if getattr(self, n)]

    @property
    def needs_network(self) -> bool:
        return self.app_install_enabled or self.driver_injection_enabled or self.update_injection_enabled

    @property
    def needs_offline_mount(self) -> bool:
        return (
            self.capture_media_enabled
            or self.deployment_media_enabled
            or self.driver_injection_enabled
            or self.update_injection_enabled
        )

    @property
    def needs_image_tooling(self) -> bool:
        return self.needs_offline_mount

    @property
    def needs_media_tooling(self) -> bool:
        return self.capture_media_enabled or self.deployment_media_enabled


# ---------------------------------------------------------------------------
# Aggregate report
# ---------------------------------------------------------------------------

TIER_KEYS = ("Tier1", "Tier2", "Tier3", "Tier4")
BLOCKING_TIERS = ("Tier1", "Tier2")


@dataclass(frozen=True)
class PreflightReport:
    tier1_results: Dict[str, CheckResult]
    tier2_results: Dict[str, CheckResult]
    tier3_results: Dict[str, CheckResult]
    tier4_results: Dict[str, CheckResult]
    is_valid: bool
    has_warnings: bool
    errors: List[str]
    warnings: List[str]
    remediation_steps: List[str]
    validation_duration_ms: int

    @classmethod
    def build(cls, tiers: Mapping[str, Mapping[str, CheckResult]], duration_ms: int) -> "PreflightReport":
        by_tier = {k: dict(tiers.get(k) or {}) for k in TIER_KEYS}

        errors: List[str] = []
        warnings: List[str] = []
        steps: List[str] = []
        is_valid = True
        has_warnings = False

        for tier in TIER_KEYS:
            for r in by_tier[tier].values():
                if r.status.blocking:
                    errors.append(f"{r.check_name}: {r.message}")
                    if tier in BLOCKING_TIERS:
                        is_valid = False
                elif r.status is CheckStatus.WARNING:
                    warnings.append(f"{r.check_name}: {r.message}")
                    has_warnings = True
                else:
                    continue
                if r.remediation and r.remediation not in steps:
                    steps.append(r.remediation)

        return cls(
            tier1_results=by_tier["Tier1"],
            tier2_results=by_tier["Tier2"],
            tier3_results=by_tier["Tier3"],
            tier4_results=by_tier["Tier4"],
            is_valid=is_valid,
            has_warnings=has_warnings,
            errors=errors,
            warnings=warnings,
            remediation_steps=steps,
            validation_duration_ms=max(1, int(duration_ms)),
        )

    def tiers(self) -> Dict[str, Dict[str, CheckResult]]:
        return {
            "Tier1": self.tier1_results,
            "Tier2": self.tier2_results,
            "Tier3": self.tier3_results,
            "Tier4": self.tier4_results,
        }

    def all_results(self) -> List[CheckResult]:
        return [r for tier in self.tiers().values() for r in tier.values()]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for tier, results in self.tiers().items():
            out[f"{tier}Results"] = {name: r.to_dict() for name, r in results.items()}
        out.update({
            "IsValid": self.is_valid,
            "HasWarnings": self.has_warnings,
            "Errors": list(self.errors),
            "Warnings": list(self.warnings),
            "RemediationSteps": list(self.remediation_steps),
            "ValidationDurationMs": self.validation_duration_ms,
        })
        return out
