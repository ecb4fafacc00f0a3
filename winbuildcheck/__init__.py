# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/__init__.py
"""
winbuildcheck - preflight validation for Windows image builds

Checks that a Windows host can run an image build (administrator rights,
runtimes, Hyper-V, ADK tooling, disk, network, config, WimMount filter,
antivirus exclusions) before any long-running step starts, and repairs
the WimMount filter driver where it safely can.

Usage as a library:

    from winbuildcheck import FeatureFlags, run_preflight

    report = run_preflight(
        FeatureFlags(capture_media_enabled=True),
        build_path=r"D:\\Builds\\win11",
        vhd_size_gb=127,
        target_arch="x64",
    )
    if not report.is_valid:
        print("\\n\\n".join(report.remediation_steps))
"""

__version__ = "0.1.0"

from .preflight import (
    CheckResult,
    CheckStatus,
    FeatureFlags,
    PreflightContext,
    PreflightReport,
    TargetArch,
    calculate_requirements,
    run_preflight,
)

__all__ = [
    "__version__",
    "CheckResult",
    "CheckStatus",
    "FeatureFlags",
    "PreflightContext",
    "PreflightReport",
    "TargetArch",
    "calculate_requirements",
    "run_preflight",
]
