# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the exception hierarchy and CLI formatting."""
from __future__ import annotations

import pytest

from winbuildcheck.core.exceptions import (
    ConfigError,
    ProbeError,
    WinBuildCheckError,
    format_exception_for_cli,
    one_line,
    wrap_probe,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    def test_base_exception_creation(self):
        err = WinBuildCheckError(code=1, msg="Test error")

        assert err.code == 1
        assert err.msg == "Test error"
        assert err.cause is None
        assert str(err) == "Test error"

    def test_subclasses(self):
        for cls in (ConfigError, ProbeError):
            err = cls(code=2, msg="boom")
            assert isinstance(err, WinBuildCheckError)
            assert isinstance(err, Exception)

    def test_code_is_clamped(self):
        assert WinBuildCheckError(code=-5, msg="x").code == 1
        assert WinBuildCheckError(code=999, msg="x").code == 255
        assert WinBuildCheckError(code="nope", msg="x").code == 1  # type: ignore[arg-type]

    def test_message_collapsed_to_one_line(self):
        err = ProbeError(code=1, msg="line one\n   line two\r\n")
        assert err.msg == "line one line two"

    def test_to_dict(self):
        cause = ValueError("bad")
        d = ConfigError(code=2, msg="broken", cause=cause, context={"k": 1}).to_dict(include_cause=True)
        assert d["type"] == "ConfigError"
        assert d["code"] == 2
        assert d["context"] == {"k": 1}
        assert d["cause"] == {"type": "ValueError", "message": "bad"}

    def test_wrap_probe(self):
        cause = OSError("denied")
        err = wrap_probe("sc.exe failed", cause, command="sc.exe")
        assert isinstance(err, ProbeError)
        assert err.cause is cause
        assert err.context == {"command": "sc.exe"}


@pytest.mark.unit
class TestFormatting:
    def test_one_line_truncates(self):
        s = one_line("x" * 50, limit=10)
        assert len(s) == 10
        assert s.endswith("...")

    def test_format_verbosity_levels(self):
        err = ProbeError(code=1, msg="query failed", cause=OSError("denied"), context={"command": "sc.exe"})
        assert format_exception_for_cli(err) == "query failed"
        assert "command='sc.exe'" in format_exception_for_cli(err, verbose=1)
        assert "cause: OSError: denied" in format_exception_for_cli(err, verbose=2)

    def test_format_foreign_exception(self):
        assert format_exception_for_cli(RuntimeError("oops")) == "oops"
        assert format_exception_for_cli(RuntimeError("oops"), verbose=2) == "RuntimeError: oops"
        assert format_exception_for_cli(RuntimeError()) == "RuntimeError"
