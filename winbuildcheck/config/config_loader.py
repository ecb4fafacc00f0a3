# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/config/config_loader.py
"""
Build configuration loading.

A build config is a YAML (or JSON) mapping. The keys the preflight engine
understands are listed in BUILD_CONFIG_SCHEMA; the optional `preflight:`
section tunes the engine itself (see PreflightSettings).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import yaml

from ..core.exceptions import ConfigError

# key -> accepted python types (bool is deliberately not accepted as a number)
BUILD_CONFIG_SCHEMA: Dict[str, Tuple[type, ...]] = {
    "build_path": (str,),
    "vhd_size_gb": (int, float),
    "target_arch": (str,),
    "features": (dict,),
    "skip_cleanup": (bool,),
    "attempt_remediation": (bool,),
    "iso_path": (str,),
    "image_name": (str,),
    "preflight": (dict,),
}

VALID_ARCHES = ("x64", "arm64")

DEFAULT_NETWORK_ENDPOINTS: Tuple[Tuple[str, int], ...] = (
    ("go.microsoft.com", 443),
    ("download.microsoft.com", 443),
    ("www.powershellgallery.com", 443),
)

DEFAULT_CLEANUP_PATTERNS: Tuple[str, ...] = ("*.tmp", "*.vhdx.partial", "scratch-*", "mount-*")


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Read a YAML/JSON config. Raises ConfigError for unreadable files,
    parse errors and non-mapping documents.
    """
    p = Path(path).expanduser()
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(code=2, msg=f"Cannot read config file {p}: {e}", cause=e)

    try:
        if p.suffix.lower() == ".json":
            doc = json.loads(raw)
        else:
            doc = yaml.safe_load(raw)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(code=2, msg=f"Config file {p} is not valid {p.suffix.lstrip('.') or 'YAML'}: {e}", cause=e)

    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ConfigError(code=2, msg=f"Config file {p}: top-level document must be a mapping, got {type(doc).__name__}")
    return doc


def _type_ok(value: Any, accepted: Tuple[type, ...]) -> bool:
    if isinstance(value, bool) and bool not in accepted:
        return False
    return isinstance(value, accepted)


def validate_build_config(doc: Mapping[str, Any]) -> Tuple[List[str], List[str]]:
    """
    Return (errors, warnings) for a parsed build config.
    Errors are type/value problems; warnings are unknown keys.
    """
    errors: List[str] = []
    warnings: List[str] = []

    for key in doc:
        if key not in BUILD_CONFIG_SCHEMA:
            warnings.append(f"unknown key '{key}'")

    for key, accepted in BUILD_CONFIG_SCHEMA.items():
        if key not in doc or doc[key] is None:
            continue
        value = doc[key]
        if not _type_ok(value, accepted):
            names = "/".join(t.__name__ for t in accepted)
            errors.append(f"'{key}' must be {names}, got {type(value).__name__}")

    arch = doc.get("target_arch")
    if isinstance(arch, str) and arch.lower() not in VALID_ARCHES:
        errors.append(f"'target_arch' must be one of {', '.join(VALID_ARCHES)}, got '{arch}'")

    vhd = doc.get("vhd_size_gb")
    if _type_ok(vhd, (int, float)) and vhd <= 0:
        errors.append(f"'vhd_size_gb' must be positive, got {vhd}")

    features = doc.get("features")
    if isinstance(features, dict):
        for name, flag in features.items():
            if not isinstance(flag, bool):
                errors.append(f"feature '{name}' must be true/false, got {type(flag).__name__}")

    settings = doc.get("preflight")
    if isinstance(settings, dict):
        try:
            PreflightSettings.from_mapping(settings)
        except ConfigError as e:
            errors.append(e.msg)

    return errors, warnings


@dataclass(frozen=True)
class PreflightSettings:
    """Engine tunables; every field has a safe default."""

    network_endpoints: Tuple[Tuple[str, int], ...] = DEFAULT_NETWORK_ENDPOINTS
    network_timeout_s: float = 3.0
    scratch_overhead_gb: float = 10.0
    disk_headroom_ratio: float = 0.10
    command_timeout_s: float = 2.0
    settle_delay_s: float = 1.5
    remediation_budget_s: float = 10.0
    detection_budget_s: float = 2.0
    cleanup_patterns: Tuple[str, ...] = DEFAULT_CLEANUP_PATTERNS
    cleanup_max_age_hours: float = 24.0
    extra_known_good_hashes: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "PreflightSettings":
        if not raw:
            return cls()

        known = {
            "network_endpoints",
            "network_timeout_s",
            "scratch_overhead_gb",
            "disk_headroom_ratio",
            "command_timeout_s",
            "settle_delay_s",
            "remediation_budget_s",
            "detection_budget_s",
            "cleanup_patterns",
            "cleanup_max_age_hours",
            "known_good_hashes",
        }
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(code=2, msg=f"preflight: unknown setting(s): {', '.join(unknown)}")

        kw: Dict[str, Any] = {}
        for name in (
            "network_timeout_s",
            "scratch_overhead_gb",
            "disk_headroom_ratio",
            "command_timeout_s",
            "settle_delay_s",
            "remediation_budget_s",
            "detection_budget_s",
            "cleanup_max_age_hours",
        ):
            if name in raw:
                kw[name] = _non_negative_float(name, raw[name])

        if "network_endpoints" in raw:
            kw["network_endpoints"] = tuple(_parse_endpoint(e) for e in _as_list("network_endpoints", raw["network_endpoints"]))

        if "cleanup_patterns" in raw:
            kw["cleanup_patterns"] = tuple(str(p) for p in _as_list("cleanup_patterns", raw["cleanup_patterns"]))

        if "known_good_hashes" in raw:
            table = raw["known_good_hashes"]
            if not isinstance(table, dict):
                raise ConfigError(code=2, msg="preflight: 'known_good_hashes' must map OS build -> list of sha256")
            kw["extra_known_good_hashes"] = {
                str(build): frozenset(str(h).lower() for h in _as_list(f"known_good_hashes.{build}", hashes))
                for build, hashes in table.items()
            }

        return cls(**kw)


def _non_negative_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(code=2, msg=f"preflight: '{name}' must be a number")
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise ConfigError(code=2, msg=f"preflight: '{name}' must be a number, got {value!r}")
    if f < 0:
        raise ConfigError(code=2, msg=f"preflight: '{name}' must be >= 0, got {f}")
    return f


def _as_list(name: str, value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ConfigError(code=2, msg=f"preflight: '{name}' must be a list")


def _parse_endpoint(value: Any) -> Tuple[str, int]:
    """Accept "host:port", "host" (port 443) or {"host": ..., "port": ...}."""
    if isinstance(value, dict):
        host, port = value.get("host"), value.get("port", 443)
    else:
        s = str(value).strip()
        host, _, port_s = s.rpartition(":") if ":" in s else (s, "", "443")
        port = port_s
    try:
        port_i = int(port)
    except (TypeError, ValueError):
        raise ConfigError(code=2, msg=f"preflight: bad endpoint port in {value!r}")
    if not host or not (0 < port_i < 65536):
        raise ConfigError(code=2, msg=f"preflight: bad network endpoint {value!r}")
    return str(host), port_i
