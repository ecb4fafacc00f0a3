# winbuildcheck/preflight/__init__.py
from .advisory import check_antivirus_exclusions, check_cleanup
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
from .models import CheckResult, CheckStatus, FeatureFlags, PreflightReport, TargetArch
from .orchestrator import PreflightOrchestrator, run_preflight
from .requirements import BuildRequirements, calculate_requirements
from .wimmount import diagnose_wimmount

__all__ = [
    "BuildRequirements",
    "CheckResult",
    "CheckStatus",
    "FeatureFlags",
    "PreflightContext",
    "PreflightOrchestrator",
    "PreflightReport",
    "TargetArch",
    "calculate_requirements",
    "check_admin_privileges",
    "check_antivirus_exclusions",
    "check_cleanup",
    "check_config_file",
    "check_disk_space",
    "check_hypervisor",
    "check_image_tooling",
    "check_network",
    "check_runtime_version",
    "diagnose_wimmount",
    "run_preflight",
]
