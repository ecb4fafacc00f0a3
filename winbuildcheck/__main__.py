# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# winbuildcheck/__main__.py
from __future__ import annotations

import logging
import sys
import traceback
from enum import IntEnum
from typing import List, Optional

from .cli.args import build_parser, load_conf, resolve_options
from .cli.report import render_report, write_json
from .config.config_loader import PreflightSettings
from .core.exceptions import ConfigError, format_exception_for_cli
from .core.logger import Log
from .preflight.context import PreflightContext
from .preflight.orchestrator import run_preflight


class ExitCode(IntEnum):
    OK = 0
    BLOCKING = 1
    USAGE = 2
    INTERNAL = 99
    INTERRUPTED = 130


def _make_context(settings: PreflightSettings, logger: logging.Logger) -> PreflightContext:
    return PreflightContext.for_host(settings, logger)


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = Log.setup(
        args.verbose,
        args.log_file,
        quiet=args.quiet,
        json_logs=args.json_logs,
    )

    # Phase 1: config + arguments
    try:
        opts = resolve_options(args, load_conf(args))
    except ConfigError as e:
        logger.error("%s", format_exception_for_cli(e, verbose=args.verbose))
        return ExitCode.USAGE

    # Phase 2: preflight
    try:
        ctx = _make_context(opts.settings, logger)
        report = run_preflight(
            opts.features,
            opts.build_path,
            opts.vhd_size_gb,
            opts.target_arch,
            opts.skip_cleanup,
            ctx=ctx,
            config_path=opts.config_path,
            attempt_remediation=opts.attempt_remediation,
            show_progress=False if args.json_output else None,
        )
    except ConfigError as e:
        logger.error("%s", format_exception_for_cli(e, verbose=args.verbose))
        return ExitCode.USAGE
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C).")
        return ExitCode.INTERRUPTED
    except Exception as e:
        logger.error("💥 UNHANDLED %s: %s", type(e).__name__, e)
        logger.debug("%s", traceback.format_exc())
        return ExitCode.INTERNAL

    if args.json_output:
        write_json(report, sys.stdout)
    else:
        render_report(report)

    return ExitCode.OK if report.is_valid else ExitCode.BLOCKING


def main(argv: Optional[List[str]] = None) -> None:
    raise SystemExit(int(run(argv)))


if __name__ == "__main__":
    main()
