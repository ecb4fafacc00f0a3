# SPDX-License-Identifier: LGPL-3.0-or-later
"""
In-memory host used by the preflight tests.

FakeHost implements every provider protocol (filters, services, files,
registry, system, remediation actions) on one object so a test can
describe a machine with a few attribute assignments.
"""
from __future__ import annotations

from pathlib import Path

from tests.fakes.fake_logger import FakeLogger
from winbuildcheck.config.config_loader import PreflightSettings
from winbuildcheck.core.exceptions import ProbeError
from winbuildcheck.host.probes import DriverFileInfo, FilterEntry, ServiceState
from winbuildcheck.preflight.context import PreflightContext
from winbuildcheck.preflight.filter_evidence import INSTANCE_KEY

GB = 1024 ** 3

WIMMOUNT_ROW = FilterEntry("WimMount", 1, "180700", "0")
WDFILTER_ROW = FilterEntry("WdFilter", 10, "328010", "0")
GOOD_SHA = "ab" * 32


class FakeHost:
    def __init__(self):
        self.filters = [WDFILTER_ROW, WIMMOUNT_ROW]
        self.filters_error = None

        self.service = ServiceState("WIMMount", True, "Running", "Manual", "Win32_SystemDriver")
        self.service_error = None
        self.fallback_service = ServiceState("WIMMount", True, "Running", "Manual", "sc.exe")
        self.fallback_error = None
        self.service_names = ["WinDefend", "WIMMount", "EventLog"]
        self.services_error = None

        self.driver = DriverFileInfo(r"C:\Windows\System32\drivers\wimmount.sys", True, 53_248, GOOD_SHA)
        self.driver_error = None

        self.registry = {(INSTANCE_KEY, "Altitude"): "180700"}
        self.registry_error = None

        self.admin = True
        self.ps_version = "5.1.22621.2506"
        self.py_version = (3, 11, 4)
        self.feature_states = {"Microsoft-Hyper-V-All": "Enabled"}
        self.build = "10.0.22631.4317"
        self.win_dir = Path(r"C:\Windows")
        self.pf86 = Path(r"C:\Program Files (x86)")
        self.missing_paths = set()
        self.modules = {"Dism"}
        self.free = 500 * GB
        self.unreachable = set()
        self.exclusions = []
        self.exclusions_error = None

        self.actions = []
        self.action_errors = {}
        self.on_action = None
        self.calls = {}
        self.timeouts = []

        # every OS command takes `latency` seconds on `clock`, cut short by its timeout
        self.latency = 0.0
        self.clock = None

    def _count(self, name, timeout_s=None):
        self.calls[name] = self.calls.get(name, 0) + 1
        self.timeouts.append((name, timeout_s))
        if self.clock is None or not self.latency:
            return
        if timeout_s is not None and self.latency > timeout_s:
            self.clock.advance(timeout_s)
            raise ProbeError(code=1, msg=f"{name} timed out after {timeout_s}s")
        self.clock.advance(self.latency)

    # -- FilterListProvider -------------------------------------------------
    def list_filters(self, timeout_s=None):
        self._count("list_filters", timeout_s)
        if self.filters_error:
            raise self.filters_error
        return list(self.filters)

    # -- ServiceStateProvider -----------------------------------------------
    def query_service(self, name, timeout_s=None):
        self._count("query_service", timeout_s)
        if self.service_error:
            raise self.service_error
        return self.service

    def query_service_fallback(self, name, timeout_s=None):
        self._count("query_service_fallback", timeout_s)
        if self.fallback_error:
            raise self.fallback_error
        return self.fallback_service

    def list_services(self, timeout_s=None):
        self._count("list_services", timeout_s)
        if self.services_error:
            raise self.services_error
        return list(self.service_names)

    # -- FileIntegrityProvider ----------------------------------------------
    def inspect(self, path):
        if self.driver_error:
            raise self.driver_error
        return self.driver

    # -- RegistryProvider ---------------------------------------------------
    def read_value(self, key, value_name, timeout_s=None):
        self._count("read_value", timeout_s)
        if self.registry_error:
            raise self.registry_error
        return self.registry.get((key, value_name))

    # -- SystemProvider -----------------------------------------------------
    def is_admin(self):
        return self.admin

    def powershell_version(self):
        return self.ps_version

    def python_version(self):
        return self.py_version

    def optional_feature_state(self, feature):
        return self.feature_states.get(feature, "Disabled")

    def os_build(self):
        return self.build

    def windows_dir(self):
        return self.win_dir

    def program_files_x86(self):
        return self.pf86

    def path_exists(self, path):
        return str(path) not in self.missing_paths

    def powershell_module_available(self, module):
        return module in self.modules

    def free_bytes(self, path):
        return self.free

    def tcp_probe(self, host, port, timeout_s):
        if (host, port) in self.unreachable:
            raise OSError(f"connect to {host}:{port} timed out")

    def defender_exclusions(self):
        if self.exclusions_error:
            raise self.exclusions_error
        return list(self.exclusions)

    # -- RemediationActions -------------------------------------------------
    def _act(self, name, *args, timeout_s=None):
        self.actions.append((name,) + args)
        self._count(name, timeout_s)
        if name in self.action_errors:
            raise self.action_errors[name]
        if self.on_action is not None:
            self.on_action(self, name, args)

    def set_registry_value(self, key, value_name, value, timeout_s=None):
        self._act("set_registry_value", key, value_name, value, timeout_s=timeout_s)

    def set_service_start(self, name, start_type, timeout_s=None):
        self._act("set_service_start", name, start_type, timeout_s=timeout_s)

    def register_filter_driver(self, timeout_s=None):
        self._act("register_filter_driver", timeout_s=timeout_s)

    def load_filter(self, name, timeout_s=None):
        self._act("load_filter", name, timeout_s=timeout_s)

    def start_service(self, name, timeout_s=None):
        self._act("start_service", name, timeout_s=timeout_s)

    # -- scenarios ----------------------------------------------------------
    def slow(self, clock, latency):
        self.clock = clock
        self.latency = float(latency)
        return self

    def unload_wimmount(self):
        self.filters = [f for f in self.filters if f.name != "WimMount"]
        self.service = ServiceState("WIMMount", True, "Stopped", "Manual", "Win32_SystemDriver")
        return self


def repair_on_load(host, name, args):
    """on_action hook: `fltmc load WimMount` succeeds and the filter shows up."""
    if name == "load_filter" and WIMMOUNT_ROW not in host.filters:
        host.filters.append(WIMMOUNT_ROW)


def probe_error(msg="query failed"):
    return ProbeError(code=1, msg=msg)


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start=1000.0, tick=0.0):
        self.t = float(start)
        self.tick = float(tick)
        self.sleeps = []

    def now(self):
        self.t += self.tick
        return self.t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.t += seconds

    def advance(self, seconds):
        self.t += seconds


WALL_NOW = 1_700_000_000.0


def make_ctx(host=None, settings=None, clock=None, logger=None, **kw):
    host = host or FakeHost()
    clock = clock or FakeClock()
    return PreflightContext(
        filters=host,
        services=host,
        files=host,
        registry=host,
        system=host,
        actions=host,
        settings=settings or PreflightSettings(),
        logger=logger or FakeLogger(),
        sleep=clock.sleep,
        clock=clock.now,
        wall_clock=lambda: WALL_NOW,
        **kw,
    )
