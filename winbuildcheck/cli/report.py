# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/cli/report.py
"""Human (rich tables) and machine (JSON) renderings of a PreflightReport."""
from __future__ import annotations

import sys
from typing import IO, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..core.utils import U
from ..preflight.models import CheckStatus, PreflightReport

_STATUS_STYLE = {
    CheckStatus.PASSED: "green",
    CheckStatus.WARNING: "yellow",
    CheckStatus.FAILED: "bold red",
    CheckStatus.SKIPPED: "dim",
}

_TIER_TITLES = {
    "Tier1": "Tier 1: critical",
    "Tier2": "Tier 2: build features",
    "Tier3": "Tier 3: advisory",
    "Tier4": "Tier 4: maintenance",
}


def render_report(report: PreflightReport, console: Optional[Console] = None) -> None:
    console = console or Console()

    for tier, results in report.tiers().items():
        if not results:
            continue
        table = Table(title=_TIER_TITLES.get(tier, tier), title_justify="left", expand=False)
        table.add_column("Check", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Message", overflow="fold")
        table.add_column("ms", justify="right")
        for r in results.values():
            table.add_row(
                r.check_name,
                Text(r.status.value, style=_STATUS_STYLE.get(r.status, "")),
                Text(r.message),
                str(r.duration_ms),
            )
        console.print(table)

    for e in report.errors:
        console.print(Text(f"ERROR  {e}", style="red"))
    for w in report.warnings:
        console.print(Text(f"WARN   {w}", style="yellow"))

    if report.remediation_steps:
        console.print(Text("Remediation", style="bold"))
        for steps in report.remediation_steps:
            console.print(Text(steps))
            console.print()

    if report.is_valid:
        verdict = Text(f"Ready to build ({report.validation_duration_ms} ms)", style="bold green")
        if report.has_warnings:
            verdict.append(f", with {len(report.warnings)} warning(s)", style="yellow")
    else:
        verdict = Text(f"Not ready: {len(report.errors)} blocking problem(s)", style="bold red")
    console.print(Panel(verdict, expand=False))


def write_json(report: PreflightReport, stream: Optional[IO[str]] = None) -> None:
    out = stream if stream is not None else sys.stdout
    out.write(U.json_dump(report.to_dict()) + "\n")
    out.flush()
