# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for CheckResult, FeatureFlags and PreflightReport aggregation."""
from __future__ import annotations

import pytest

from winbuildcheck.core.exceptions import ConfigError
from winbuildcheck.preflight.models import (
    CheckStatus,
    FeatureFlags,
    PreflightReport,
    TargetArch,
    make_result,
    numbered_steps,
    skipped_result,
)


def _r(name, status, msg="m", remediation=""):
    return make_result(name, status, msg, remediation=remediation)


@pytest.mark.unit
class TestCheckResult:
    @pytest.mark.parametrize("status", list(CheckStatus))
    def test_remediation_empty_iff_passed(self, status):
        r = make_result("X", status, "msg", remediation="1. do it")
        assert (r.remediation == "") == (status is CheckStatus.PASSED)

    def test_non_passed_gets_generic_steps(self):
        r = make_result("DiskSpace", CheckStatus.FAILED, "low")
        assert r.remediation.startswith("1. ")
        assert "DiskSpace" in r.remediation

    def test_details_is_copied_dict(self):
        src = {"a": 1}
        r = make_result("X", CheckStatus.PASSED, "ok", details=src)
        src["a"] = 2
        assert r.details == {"a": 1}
        assert make_result("X", CheckStatus.PASSED, "ok").details == {}

    def test_skipped_result(self):
        r = skipped_result("Network", "no enabled feature downloads content")
        assert r.status is CheckStatus.SKIPPED
        assert r.duration_ms == 0
        assert r.details == {"SkipReason": "no enabled feature downloads content"}
        assert r.remediation.startswith("No action needed.")

    def test_with_duration_never_negative(self):
        r = make_result("X", CheckStatus.PASSED, "ok").with_duration(-4)
        assert r.duration_ms == 0

    def test_to_dict_keys(self):
        d = make_result("X", CheckStatus.WARNING, "careful").to_dict()
        assert list(d) == ["CheckName", "Status", "Message", "Details", "Remediation", "DurationMs"]
        assert d["Status"] == "Warning"

    def test_numbered_steps_skips_empty(self):
        assert numbered_steps(["a", "", "b"]) == "1. a\n2. b"

    def test_only_failed_blocks(self):
        assert CheckStatus.FAILED.blocking
        assert not any(s.blocking for s in CheckStatus if s is not CheckStatus.FAILED)


@pytest.mark.unit
class TestTargetArch:
    @pytest.mark.parametrize("raw,expected", [("x64", TargetArch.X64), ("AMD64", TargetArch.X64), ("arm64", TargetArch.ARM64)])
    def test_parse(self, raw, expected):
        assert TargetArch.parse(raw) is expected

    def test_parse_rejects(self):
        with pytest.raises(ConfigError):
            TargetArch.parse("x86")


@pytest.mark.unit
class TestFeatureFlags:
    def test_aliases(self):
        flags = FeatureFlags.from_mapping({"captureMediaEnabled": True, "driver_injection": True})
        assert flags.capture_media_enabled
        assert flags.driver_injection_enabled
        assert flags.enabled_names() == ["capture_media_enabled", "driver_injection_enabled"]

    def test_unknown_feature(self):
        with pytest.raises(ConfigError, match="Unknown build feature"):
            FeatureFlags.from_mapping({"teleport": True})

    def test_gating_properties(self):
        none = FeatureFlags()
        assert not (none.needs_network or none.needs_offline_mount or none.needs_media_tooling)

        vm_only = FeatureFlags(vm_creation_enabled=True)
        assert not vm_only.needs_offline_mount
        assert not vm_only.needs_network

        apps = FeatureFlags(app_install_enabled=True)
        assert apps.needs_network
        assert not apps.needs_offline_mount

        capture = FeatureFlags(capture_media_enabled=True)
        assert capture.needs_offline_mount and capture.needs_media_tooling
        assert not capture.needs_network

        drivers = FeatureFlags(driver_injection_enabled=True)
        assert drivers.needs_offline_mount and drivers.needs_network
        assert not drivers.needs_media_tooling


@pytest.mark.unit
class TestPreflightReport:
    def test_tier3_and_tier4_never_invalidate(self):
        report = PreflightReport.build(
            {
                "Tier1": {"A": _r("A", CheckStatus.PASSED)},
                "Tier3": {"C": _r("C", CheckStatus.FAILED)},
                "Tier4": {"D": _r("D", CheckStatus.WARNING)},
            },
            duration_ms=0,
        )
        assert report.is_valid
        assert report.has_warnings
        assert report.validation_duration_ms >= 1

    @pytest.mark.parametrize("tier", ["Tier1", "Tier2"])
    def test_failed_in_blocking_tier(self, tier):
        report = PreflightReport.build({tier: {"A": _r("A", CheckStatus.FAILED, "broken")}}, 12)
        assert not report.is_valid
        assert report.errors == ["A: broken"]

    def test_warnings_only_still_valid(self):
        report = PreflightReport.build({"Tier2": {"W": _r("W", CheckStatus.WARNING, "meh")}}, 5)
        assert report.is_valid
        assert report.warnings == ["W: meh"]
        assert report.errors == []

    def test_remediation_steps_from_failed_and_warning_only(self):
        report = PreflightReport.build(
            {
                "Tier1": {
                    "F": _r("F", CheckStatus.FAILED, remediation="1. fix F"),
                    "S": skipped_result("S", "not needed"),
                    "P": _r("P", CheckStatus.PASSED),
                },
                "Tier2": {"W": _r("W", CheckStatus.WARNING, remediation="1. fix W")},
            },
            5,
        )
        assert report.remediation_steps == ["1. fix F", "1. fix W"]

    def test_to_dict_shape(self):
        d = PreflightReport.build({"Tier1": {"A": _r("A", CheckStatus.PASSED)}}, 7).to_dict()
        assert d["Tier1Results"]["A"]["Status"] == "Passed"
        assert d["Tier4Results"] == {}
        assert d["IsValid"] is True
        assert d["ValidationDurationMs"] == 7
