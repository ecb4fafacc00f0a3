# SPDX-License-Identifier: LGPL-3.0-or-later
# winbuildcheck/preflight/context.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config.config_loader import PreflightSettings
from ..core.logger import LOGGER_NAME
from ..host.probes import (
    FileIntegrityProvider,
    FilterListProvider,
    RegistryProvider,
    RemediationActions,
    ServiceStateProvider,
    SystemProvider,
)
from .signatures import KnownGoodHashes, SecuritySignatureTable


@dataclass
class PreflightContext:
    """
    Everything a check may touch, passed in explicitly. Built once per
    preflight run; the lookup tables are read-only after construction.
    """

    filters: FilterListProvider
    services: ServiceStateProvider
    files: FileIntegrityProvider
    registry: RegistryProvider
    system: SystemProvider
    actions: RemediationActions
    settings: PreflightSettings = field(default_factory=PreflightSettings)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(LOGGER_NAME))
    known_hashes: Optional[KnownGoodHashes] = None
    security_signatures: SecuritySignatureTable = field(default_factory=SecuritySignatureTable.default)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    wall_clock: Callable[[], float] = time.time

    def __post_init__(self) -> None:
        if self.known_hashes is None:
            self.known_hashes = KnownGoodHashes.default(extra=self.settings.extra_known_good_hashes)

    @classmethod
    def for_host(
        cls,
        settings: Optional[PreflightSettings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "PreflightContext":
        from ..host.windows import windows_providers

        settings = settings or PreflightSettings()
        logger = logger or logging.getLogger(LOGGER_NAME)
        filters, services, files, registry, system, actions = windows_providers(logger, settings.command_timeout_s)
        return cls(
            filters=filters,
            services=services,
            files=files,
            registry=registry,
            system=system,
            actions=actions,
            settings=settings,
            logger=logger,
        )
