# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/preflight/signatures.py
"""
Static lookup tables used by the WimMount diagnostic and the antivirus
advisory check. Both are built once and never mutated afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

# OS build ("10.0.<build>") -> SHA-256 of %SystemRoot%\System32\drivers\wimmount.sys.
# Ships empty: wimmount.sys is serviced by cumulative updates, so hashes are
# only trustworthy when taken from the operator's own reference images and
# supplied through preflight.known_good_hashes. With no entry for the host's
# build the driver is reported as present but unverified.
_BUILTIN_WIMMOUNT_HASHES: Dict[str, FrozenSet[str]] = {}


class KnownGoodHashes:
    def __init__(self, table: Mapping[str, Iterable[str]]):
        self._table: Dict[str, FrozenSet[str]] = {
            str(k): frozenset(h.lower() for h in v) for k, v in table.items()
        }

    @classmethod
    def default(cls, extra: Optional[Mapping[str, Iterable[str]]] = None) -> "KnownGoodHashes":
        merged: Dict[str, set] = {k: set(v) for k, v in _BUILTIN_WIMMOUNT_HASHES.items()}
        for build, hashes in (extra or {}).items():
            merged.setdefault(str(build), set()).update(hashes)
        return cls(merged)

    @staticmethod
    def _build_key(os_build: str) -> str:
        # "10.0.22631.4317" and "10.0.22631" share an entry
        return ".".join((os_build or "").strip().split(".")[:3])

    def is_known_good(self, os_build: str, sha256: Optional[str]) -> bool:
        if not sha256:
            return False
        return sha256.lower() in self._table.get(self._build_key(os_build), frozenset())


@dataclass(frozen=True)
class SecuritySignature:
    kind: str   # "service" | "filter"
    name: str
    vendor: str
    builtin: bool = False


@dataclass(frozen=True)
class SecurityProductMatch:
    vendor: str
    kind: str
    name: str
    builtin: bool

    def to_dict(self) -> Dict[str, object]:
        return {"Vendor": self.vendor, "Source": self.kind, "Name": self.name, "BuiltIn": self.builtin}


_DEFAULT_SIGNATURES: Tuple[SecuritySignature, ...] = (
    SecuritySignature("service", "WinDefend", "Microsoft Defender Antivirus", builtin=True),
    SecuritySignature("filter", "WdFilter", "Microsoft Defender Antivirus", builtin=True),
    SecuritySignature("service", "Sense", "Microsoft Defender for Endpoint", builtin=True),
    SecuritySignature("service", "CSFalconService", "CrowdStrike Falcon"),
    SecuritySignature("filter", "CSAgent", "CrowdStrike Falcon"),
    SecuritySignature("service", "SentinelAgent", "SentinelOne"),
    SecuritySignature("filter", "SentinelMonitor", "SentinelOne"),
    SecuritySignature("service", "CbDefense", "VMware Carbon Black Cloud"),
    SecuritySignature("filter", "CbELAMFlt", "VMware Carbon Black Cloud"),
    SecuritySignature("service", "CylanceSvc", "BlackBerry Cylance"),
    SecuritySignature("service", "SepMasterService", "Symantec Endpoint Protection"),
    SecuritySignature("filter", "SymEFASI", "Symantec Endpoint Protection"),
    SecuritySignature("service", "McShield", "Trellix (McAfee) Endpoint Security"),
    SecuritySignature("filter", "mfehidk", "Trellix (McAfee) Endpoint Security"),
    SecuritySignature("service", "xagt", "Trellix (FireEye) HX Agent"),
    SecuritySignature("service", "ekrn", "ESET Endpoint Security"),
    SecuritySignature("filter", "eamonm", "ESET Endpoint Security"),
    SecuritySignature("service", "AVP", "Kaspersky Endpoint Security"),
    SecuritySignature("filter", "klif", "Kaspersky Endpoint Security"),
    SecuritySignature("service", "SophosHealth", "Sophos Endpoint"),
    SecuritySignature("filter", "SophosED", "Sophos Endpoint"),
    SecuritySignature("service", "ntrtscan", "Trend Micro Apex One"),
    SecuritySignature("filter", "tmevtmgr", "Trend Micro Apex One"),
    SecuritySignature("service", "CyveraService", "Palo Alto Cortex XDR"),
    SecuritySignature("filter", "cyvrfsfd", "Palo Alto Cortex XDR"),
    SecuritySignature("service", "MBAMService", "Malwarebytes"),
    SecuritySignature("filter", "mbamwatchdog", "Malwarebytes"),
    SecuritySignature("service", "avast! Antivirus", "Avast Antivirus"),
    SecuritySignature("filter", "aswSP", "Avast Antivirus"),
    SecuritySignature("service", "WRSVC", "Webroot SecureAnywhere"),
)


class SecuritySignatureTable:
    def __init__(self, signatures: Iterable[SecuritySignature]):
        self._by_key: Dict[Tuple[str, str], SecuritySignature] = {
            (s.kind, s.name.lower()): s for s in signatures
        }

    @classmethod
    def default(cls) -> "SecuritySignatureTable":
        return cls(_DEFAULT_SIGNATURES)

    def match(self, service_names: Iterable[str], filter_names: Iterable[str]) -> List[SecurityProductMatch]:
        """Matches in input order, de-duplicated per (kind, name)."""
        out: List[SecurityProductMatch] = []
        seen = set()
        for kind, names in (("service", service_names), ("filter", filter_names)):
            for n in names:
                key = (kind, str(n).lower())
                sig = self._by_key.get(key)
                if sig is None or key in seen:
                    continue
                seen.add(key)
                out.append(SecurityProductMatch(vendor=sig.vendor, kind=kind, name=str(n), builtin=sig.builtin))
        return out


def third_party(matches: Iterable[SecurityProductMatch]) -> List[SecurityProductMatch]:
    return [m for m in matches if not m.builtin]


def vendors(matches: Iterable[SecurityProductMatch]) -> List[str]:
    out: List[str] = []
    for m in matches:
        if m.vendor not in out:
            out.append(m.vendor)
    return out
