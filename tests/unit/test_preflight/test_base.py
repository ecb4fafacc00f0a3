# SPDX-License-Identifier: LGPL-3.0-or-later
"""Check timing helpers: timed_check and Deadline."""
from __future__ import annotations

import pytest

from tests.fakes.fake_host import FakeClock, make_ctx
from winbuildcheck.preflight.base import MIN_COMMAND_TIMEOUT_S, Deadline, timed_check
from winbuildcheck.preflight.models import CheckStatus, make_result, skipped_result


@pytest.mark.unit
class TestDeadline:
    def test_remaining_counts_down(self):
        clock = FakeClock()
        d = Deadline(clock.now, 2.0)
        clock.advance(0.5)
        assert d.remaining() == 1.5
        clock.advance(5)
        assert d.remaining() == 0.0
        assert d.expired()

    def test_timeout_is_capped_and_keeps_reserve(self):
        clock = FakeClock()
        d = Deadline(clock.now, 10.0)
        assert d.timeout_for(2.0) == 2.0
        assert d.timeout_for(2.0, reserve=9.0) == 1.0
        assert d.timeout_for(2.0, reserve=10.0 - MIN_COMMAND_TIMEOUT_S / 2) == 0.0

    def test_nested_deadline_never_outlives_parent(self):
        clock = FakeClock()
        parent = Deadline(clock.now, 3.0)
        assert parent.within(2.0).remaining() == 2.0
        clock.advance(2.0)
        assert parent.within(2.0).remaining() == 1.0


@pytest.mark.unit
class TestTimedCheck:
    def test_duration_from_injected_clock(self, host):
        clock = FakeClock()

        @timed_check("Slow")
        def slow(ctx):
            clock.advance(0.25)
            return make_result("Slow", CheckStatus.PASSED, "ok")

        assert slow(make_ctx(host, clock=clock)).duration_ms == 250

    def test_exception_becomes_result(self, host):
        @timed_check("Broken", on_error=CheckStatus.WARNING)
        def broken(ctx):
            raise RuntimeError("no fltmc")

        r = broken(make_ctx(host))
        assert r.status is CheckStatus.WARNING
        assert r.details["ErrorType"] == "RuntimeError"
        assert "no fltmc" in r.message

    def test_skipped_has_zero_duration(self, host):
        clock = FakeClock(tick=1.0)

        @timed_check("Gated")
        def gated(ctx):
            return skipped_result("Gated", "feature not requested")

        assert gated(make_ctx(host, clock=clock)).duration_ms == 0
