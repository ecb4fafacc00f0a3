# SPDX-License-Identifier: LGPL-3.0-or-later
# winbuildcheck/preflight/requirements.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Tuple

from ..core.exceptions import ConfigError
from .models import FeatureFlags

DEFAULT_SCRATCH_OVERHEAD_GB = 10.0

# feature -> extra staging space (GB); all bands are additive and non-negative
FEATURE_DISK_COST_GB: Dict[str, float] = {
    "capture_media_enabled": 8.0,
    "deployment_media_enabled": 8.0,
    "app_install_enabled": 5.0,
    "driver_injection_enabled": 2.0,
    "update_injection_enabled": 10.0,
    "vm_creation_enabled": 0.0,
}

HYPERV_FEATURE = "Microsoft-Hyper-V-All"
ADK_DEPLOYMENT_TOOLS = "Windows ADK Deployment Tools"
ADK_WINPE_ADDON = "Windows PE add-on for the ADK"
DISM_MODULE = "DISM PowerShell module"

FEATURE_OS_REQUIREMENTS: Dict[str, Tuple[str, ...]] = {
    "vm_creation_enabled": (HYPERV_FEATURE,),
    "capture_media_enabled": (ADK_DEPLOYMENT_TOOLS, ADK_WINPE_ADDON, DISM_MODULE),
    "deployment_media_enabled": (ADK_DEPLOYMENT_TOOLS, ADK_WINPE_ADDON, DISM_MODULE),
    "driver_injection_enabled": (DISM_MODULE,),
    "update_injection_enabled": (DISM_MODULE,),
    "app_install_enabled": (),
}


@dataclass(frozen=True)
class BuildRequirements:
    required_disk_space_gb: float
    required_features: FrozenSet[str]
    breakdown: Dict[str, float] = field(default_factory=dict)

    def sorted_features(self) -> List[str]:
        return sorted(self.required_features)


def _validate_vhd_size(vhd_size_gb: Any) -> float:
    if isinstance(vhd_size_gb, bool):
        raise ConfigError(code=2, msg="VHD size must be a number of GB")
    try:
        size = float(vhd_size_gb)
    except (TypeError, ValueError):
        raise ConfigError(code=2, msg=f"VHD size must be a number of GB, got {vhd_size_gb!r}")
    if math.isnan(size) or math.isinf(size) or size < 0:
        raise ConfigError(code=2, msg=f"VHD size must be a finite non-negative number, got {vhd_size_gb!r}")
    return size


def calculate_requirements(
    features: FeatureFlags,
    vhd_size_gb: Any,
    *,
    scratch_overhead_gb: float = DEFAULT_SCRATCH_OVERHEAD_GB,
) -> BuildRequirements:
    """
    Disk space and OS components needed for a build.

    base = VHD size + scratch overhead, then one additive band per enabled
    feature, so enabling a feature can never lower the total.
    """
    size = _validate_vhd_size(vhd_size_gb)
    scratch = max(0.0, float(scratch_overhead_gb))

    breakdown: Dict[str, float] = {"vhd": size, "scratch": scratch}
    needed: set = set()

    for name in features.enabled_names():
        cost = max(0.0, FEATURE_DISK_COST_GB.get(name, 0.0))
        if cost:
            breakdown[name] = cost
        needed.update(FEATURE_OS_REQUIREMENTS.get(name, ()))

    total = round(sum(breakdown.values()), 2)
    return BuildRequirements(required_disk_space_gb=total, required_features=frozenset(needed), breakdown=breakdown)
