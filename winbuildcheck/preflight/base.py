# SPDX-License-Identifier: LGPL-3.0-or-later
# winbuildcheck/preflight/base.py
from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..core.exceptions import one_line
from .models import CheckResult, CheckStatus, make_result, numbered_steps

if TYPE_CHECKING:  # pragma: no cover
    from .context import PreflightContext

CheckFunc = Callable[..., CheckResult]


def fault_result(check_name: str, exc: BaseException, status: CheckStatus) -> CheckResult:
    """An OS query blew up: report it as a result instead of raising."""
    msg = one_line(str(exc), limit=300) or type(exc).__name__
    return make_result(
        check_name,
        status,
        f"{check_name} check could not complete: {msg}",
        details={"Error": msg, "ErrorType": type(exc).__name__},
        remediation=numbered_steps([
            "Re-run preflight from an elevated PowerShell session.",
            f"If the {check_name} check keeps failing, run it with -vv and review the logged command output.",
        ]),
    )


def timed_check(check_name: str, *, on_error: CheckStatus = CheckStatus.FAILED) -> Callable[[CheckFunc], CheckFunc]:
    """
    Decorator for check functions taking the context first:
      - measures duration_ms with ctx.clock
      - turns any escaped exception into an `on_error` result
    Skipped results keep duration_ms = 0.
    """
    def deco(fn: CheckFunc) -> CheckFunc:
        @functools.wraps(fn)
        def wrapper(ctx: "PreflightContext", *args: Any, **kwargs: Any) -> CheckResult:
            t0 = ctx.clock()
            try:
                result = fn(ctx, *args, **kwargs)
            except Exception as e:
                ctx.logger.debug("%s check raised", check_name, exc_info=True)
                result = fault_result(check_name, e, on_error)
            if result.status is CheckStatus.SKIPPED:
                return result.with_duration(0)
            return result.with_duration(int(round((ctx.clock() - t0) * 1000)))

        wrapper.check_name = check_name  # type: ignore[attr-defined]
        return wrapper

    return deco


# Shortest timeout worth handing to a command; below this a query is skipped.
MIN_COMMAND_TIMEOUT_S = 0.25


class Deadline:
    """
    Absolute time limit measured with an injected monotonic clock.

    Commands run under a deadline get `timeout_for()` as their timeout, so
    a slow host costs at most the remaining time, never one full
    command timeout per query.
    """

    def __init__(self, clock: Callable[[], float], budget_s: float, *, expires_at: Optional[float] = None):
        self._clock = clock
        self.expires_at = clock() + max(0.0, float(budget_s)) if expires_at is None else expires_at

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() < MIN_COMMAND_TIMEOUT_S

    def within(self, budget_s: float) -> "Deadline":
        """A nested deadline that also ends no later than this one."""
        own = self._clock() + max(0.0, float(budget_s))
        return Deadline(self._clock, 0.0, expires_at=min(own, self.expires_at))

    def timeout_for(self, cap: float, *, reserve: float = 0.0) -> float:
        """
        Timeout for the next command: at most `cap`, and leaving `reserve`
        seconds before the deadline. 0.0 means there is no time for it.
        """
        t = min(float(cap), self.remaining() - reserve)
        return t if t >= MIN_COMMAND_TIMEOUT_S else 0.0
