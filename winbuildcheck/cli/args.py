# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/cli/args.py
from __future__ import annotations

import argparse
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..config.config_loader import PreflightSettings, load_config_file
from ..core.exceptions import ConfigError
from ..core.logger import c
from ..preflight.models import FeatureFlags, TargetArch

DEFAULT_VHD_SIZE_GB = 127.0

_EPILOG = """\
Config example (YAML):

  build_path: D:\\Builds\\win11
  vhd_size_gb: 127
  target_arch: x64
  features:
    capture_media_enabled: true
    driver_injection_enabled: true
  preflight:
    settle_delay_s: 1.5
    network_endpoints: ["go.microsoft.com:443"]

Exit codes: 0 ready to build, 1 blocking failures, 2 bad arguments/config, 99 internal error.
"""


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Combines raw description formatting with default value display in help."""


def _require(v: Any) -> bool:
    """True if v is meaningfully present (treats empty/whitespace-only strings as missing)."""
    if v is None:
        return False
    if isinstance(v, str):
        return v.strip() != ""
    return True


def _merged_get(args: argparse.Namespace, conf: Dict[str, Any], key: str) -> Any:
    """Prefer CLI override if present (non-empty), else config."""
    v = getattr(args, key, None)
    if _require(v):
        return v
    return conf.get(key)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="winbuildcheck",
        description=c("winbuildcheck: Windows image-build preflight checks", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=c(_EPILOG, "cyan"),
    )

    g = p.add_argument_group("Config / logging")
    g.add_argument("--config", default=None, help="YAML or JSON build configuration file.")
    g.add_argument("-v", "--verbose", action="count", default=0, help="More output (-vv debug, -vvv trace).")
    g.add_argument("-q", "--quiet", action="count", default=0, help="Less output (-qq errors only).")
    g.add_argument("--log-file", default=None, help="Also write logs to this file.")
    g.add_argument("--json-logs", action="store_true", help="Emit logs as NDJSON.")

    b = p.add_argument_group("Build")
    b.add_argument("--build-path", dest="build_path", default=None, help="Folder the build writes to.")
    b.add_argument("--vhd-size-gb", dest="vhd_size_gb", type=float, default=None,
                   help=f"Target VHD size in GB (config or {DEFAULT_VHD_SIZE_GB:g} when unset).")
    b.add_argument("--arch", dest="target_arch", default=None, help="Target architecture: x64 or arm64.")
    b.add_argument("--feature", dest="features", action="append", default=[], metavar="NAME",
                   help="Enable a build feature (repeatable), e.g. capture_media, driver_injection.")
    b.add_argument("--skip-cleanup", dest="skip_cleanup", action="store_true", default=None,
                   help="Do not remove stale build artifacts.")
    b.add_argument("--no-remediation", dest="no_remediation", action="store_true",
                   help="Detect WimMount problems only; do not try to repair them.")

    o = p.add_argument_group("Output")
    o.add_argument("--json", dest="json_output", action="store_true", help="Print the report as JSON on stdout.")
    return p


@dataclass(frozen=True)
class RunOptions:
    build_path: str
    vhd_size_gb: float
    target_arch: TargetArch
    features: FeatureFlags
    skip_cleanup: bool
    attempt_remediation: bool
    config_path: Optional[str]
    settings: PreflightSettings


def load_conf(args: argparse.Namespace) -> Dict[str, Any]:
    path = getattr(args, "config", None)
    if not _require(path):
        return {}
    return load_config_file(Path(path))


def _vhd_size(value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(code=2, msg="VHD size must be a number of GB")
    try:
        size = float(value)
    except (TypeError, ValueError):
        raise ConfigError(code=2, msg=f"VHD size must be a number of GB, got {value!r}")
    if math.isnan(size) or size <= 0:
        raise ConfigError(code=2, msg=f"VHD size must be positive, got {value!r}")
    return size


def resolve_options(args: argparse.Namespace, conf: Dict[str, Any]) -> RunOptions:
    """Merge CLI and config into run options. Raises ConfigError (exit 2)."""
    build_path = _merged_get(args, conf, "build_path")
    if not _require(build_path):
        raise ConfigError(code=2, msg="Missing build path (--build-path or build_path in config)")

    vhd = _merged_get(args, conf, "vhd_size_gb")
    vhd_size = _vhd_size(DEFAULT_VHD_SIZE_GB if vhd is None else vhd)

    arch = TargetArch.parse(_merged_get(args, conf, "target_arch") or TargetArch.X64)

    conf_features = conf.get("features") or {}
    if not isinstance(conf_features, dict):
        raise ConfigError(code=2, msg="'features' must be a mapping of feature name -> true/false")
    wanted: Dict[str, Any] = dict(conf_features)
    for name in getattr(args, "features", None) or []:
        wanted[name] = True
    features = FeatureFlags.from_mapping(wanted)

    raw_settings = conf.get("preflight")
    if raw_settings is not None and not isinstance(raw_settings, dict):
        raise ConfigError(code=2, msg="'preflight' must be a mapping")
    settings = PreflightSettings.from_mapping(raw_settings)

    if getattr(args, "no_remediation", False):
        attempt = False
    else:
        attempt = bool(conf.get("attempt_remediation", True))

    return RunOptions(
        build_path=str(build_path),
        vhd_size_gb=vhd_size,
        target_arch=arch,
        features=features,
        skip_cleanup=bool(_merged_get(args, conf, "skip_cleanup")),
        attempt_remediation=attempt,
        config_path=getattr(args, "config", None) or None,
        settings=settings,
    )
