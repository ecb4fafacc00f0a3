# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tier 1 / Tier 2 environment checks against a fake host."""
from __future__ import annotations

from pathlib import Path

import pytest

from tests.fakes.fake_host import GB, FakeClock, make_ctx, probe_error
from winbuildcheck.config.config_loader import PreflightSettings
from winbuildcheck.preflight.checks import (
    check_admin_privileges,
    check_config_file,
    check_disk_space,
    check_hypervisor,
    check_image_tooling,
    check_network,
    check_runtime_version,
)
from winbuildcheck.preflight.models import CheckStatus, FeatureFlags

CAPTURE = FeatureFlags(capture_media_enabled=True)
DRIVERS = FeatureFlags(driver_injection_enabled=True)


@pytest.mark.unit
class TestAdmin:
    def test_admin(self, host):
        r = check_admin_privileges(make_ctx(host))
        assert r.status is CheckStatus.PASSED
        assert r.remediation == ""

    def test_not_admin(self, host):
        host.admin = False
        r = check_admin_privileges(make_ctx(host))
        assert r.status is CheckStatus.FAILED
        assert "administrator" in r.remediation.lower()

    def test_probe_error_becomes_failed(self, host, monkeypatch):
        def boom():
            raise probe_error("IsUserAnAdmin failed")

        monkeypatch.setattr(host, "is_admin", boom)
        r = check_admin_privileges(make_ctx(host))
        assert r.status is CheckStatus.FAILED
        assert r.details["ErrorType"] == "ProbeError"

    def test_duration_measured_with_ctx_clock(self, host):
        clock = FakeClock(tick=0.004)
        r = check_admin_privileges(make_ctx(host, clock=clock))
        assert r.duration_ms == 4


@pytest.mark.unit
class TestRuntimeVersion:
    def test_current(self, host):
        r = check_runtime_version(make_ctx(host))
        assert r.status is CheckStatus.PASSED
        assert r.details["PowerShellVersion"] == "5.1.22621.2506"

    def test_old_powershell(self, host):
        host.ps_version = "4.0"
        r = check_runtime_version(make_ctx(host))
        assert r.status is CheckStatus.FAILED
        assert "PowerShell 4.0" in r.message

    def test_old_python(self, host):
        host.py_version = (3, 7, 9)
        r = check_runtime_version(make_ctx(host))
        assert r.status is CheckStatus.FAILED
        assert "Python 3.7.9" in r.message


@pytest.mark.unit
class TestHypervisor:
    @pytest.mark.parametrize(
        "state,expected",
        [("Enabled", CheckStatus.PASSED), ("EnablePending", CheckStatus.WARNING), ("Disabled", CheckStatus.FAILED)],
    )
    def test_states(self, host, state, expected):
        host.feature_states["Microsoft-Hyper-V-All"] = state
        assert check_hypervisor(make_ctx(host)).status is expected


@pytest.mark.unit
class TestImageTooling:
    def test_skipped_without_offline_features(self, host):
        r = check_image_tooling(make_ctx(host), FeatureFlags(app_install_enabled=True))
        assert r.status is CheckStatus.SKIPPED
        assert r.duration_ms == 0

    def test_all_present(self, host):
        r = check_image_tooling(make_ctx(host), CAPTURE, "x64")
        assert r.status is CheckStatus.PASSED
        assert set(r.details["Tools"]) == {"Dism", "Oscdimg", "WinPE"}

    def test_driver_injection_does_not_need_adk_media_tools(self, host):
        r = check_image_tooling(make_ctx(host), DRIVERS)
        assert r.status is CheckStatus.PASSED
        assert set(r.details["Tools"]) == {"Dism"}

    def test_missing_oscdimg_for_arm64(self, host):
        oscdimg = (
            host.pf86 / "Windows Kits" / "10" / "Assessment and Deployment Kit"
            / "Deployment Tools" / "arm64" / "Oscdimg" / "oscdimg.exe"
        )
        host.missing_paths.add(str(oscdimg))
        r = check_image_tooling(make_ctx(host), CAPTURE, "arm64")
        assert r.status is CheckStatus.FAILED
        assert r.details["Missing"] == ["oscdimg.exe (arm64)"]

    def test_missing_dism_module(self, host):
        host.modules = set()
        r = check_image_tooling(make_ctx(host), DRIVERS)
        assert r.status is CheckStatus.FAILED
        assert "DISM PowerShell module" in r.message

    def test_bad_arch_is_failed_not_raised(self, host):
        r = check_image_tooling(make_ctx(host), CAPTURE, "sparc")
        assert r.status is CheckStatus.FAILED


@pytest.mark.unit
class TestDiskSpace:
    def test_enough(self, host):
        host.free = 500 * GB
        r = check_disk_space(make_ctx(host), CAPTURE, r"D:\Builds", 127)
        assert r.status is CheckStatus.PASSED
        assert r.details["RequiredDiskSpaceGB"] == 145.0
        assert r.details["FreeSpaceGB"] == 500.0

    def test_scenario_50gb_free_with_capture(self, host):
        host.free = 50 * GB
        r = check_disk_space(make_ctx(host), CAPTURE, r"D:\Builds", 127)
        assert r.status is CheckStatus.FAILED
        assert r.details["FreeSpaceGB"] == 50.0
        assert r.details["RequiredDiskSpaceGB"] > 50.0
        assert "Free at least" in r.remediation

    def test_inside_headroom_is_warning(self, host):
        host.free = 150 * GB  # required 145, margin 159.5
        r = check_disk_space(make_ctx(host), CAPTURE, r"D:\Builds", 127)
        assert r.status is CheckStatus.WARNING

    def test_nearest_existing_ancestor_is_probed(self, host):
        target = Path("/builds/new/run1")
        host.missing_paths.update({str(target), str(target.parent)})
        r = check_disk_space(make_ctx(host), FeatureFlags(), target, 10)
        assert r.details["ProbedPath"] == str(Path("/builds"))

    def test_scratch_overhead_from_settings(self, host):
        ctx = make_ctx(host, settings=PreflightSettings(scratch_overhead_gb=0))
        r = check_disk_space(ctx, FeatureFlags(), r"D:\Builds", 20)
        assert r.details["RequiredDiskSpaceGB"] == 20.0

    def test_invalid_vhd_size_is_failed(self, host):
        r = check_disk_space(make_ctx(host), FeatureFlags(), r"D:\Builds", -5)
        assert r.status is CheckStatus.FAILED


@pytest.mark.unit
class TestNetwork:
    def test_skipped_when_nothing_downloads(self, host):
        r = check_network(make_ctx(host), CAPTURE)
        assert r.status is CheckStatus.SKIPPED

    def test_all_reachable(self, host):
        r = check_network(make_ctx(host), DRIVERS)
        assert r.status is CheckStatus.PASSED
        assert all(e["Reachable"] for e in r.details["Endpoints"])

    def test_partial(self, host):
        host.unreachable = {("www.powershellgallery.com", 443)}
        r = check_network(make_ctx(host), DRIVERS)
        assert r.status is CheckStatus.WARNING
        assert "www.powershellgallery.com:443" in r.message

    def test_none_reachable(self, host):
        host.unreachable = {("go.microsoft.com", 443), ("download.microsoft.com", 443), ("www.powershellgallery.com", 443)}
        r = check_network(make_ctx(host), DRIVERS)
        assert r.status is CheckStatus.FAILED


@pytest.mark.unit
class TestConfigFile:
    def test_no_path_skipped(self, host):
        assert check_config_file(make_ctx(host)).status is CheckStatus.SKIPPED

    def test_valid(self, host, tmp_path):
        p = tmp_path / "build.yaml"
        p.write_text("build_path: D:/Builds\nvhd_size_gb: 127\n", encoding="utf-8")
        r = check_config_file(make_ctx(host), p)
        assert r.status is CheckStatus.PASSED
        assert r.details["Keys"] == ["build_path", "vhd_size_gb"]

    def test_unknown_key_warning(self, host, tmp_path):
        p = tmp_path / "build.yaml"
        p.write_text("build_path: D:/Builds\nflavour: vanilla\n", encoding="utf-8")
        r = check_config_file(make_ctx(host), p)
        assert r.status is CheckStatus.WARNING

    def test_invalid_values_failed(self, host, tmp_path):
        p = tmp_path / "build.yaml"
        p.write_text("target_arch: mips\n", encoding="utf-8")
        r = check_config_file(make_ctx(host), p)
        assert r.status is CheckStatus.FAILED
        assert r.details["Errors"]

    def test_unreadable_failed(self, host, tmp_path):
        r = check_config_file(make_ctx(host), tmp_path / "missing.yaml")
        assert r.status is CheckStatus.FAILED
        assert "Cannot read config file" in r.message
