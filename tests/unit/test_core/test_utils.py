# SPDX-License-Identifier: LGPL-3.0-or-later
import hashlib
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from winbuildcheck.core.utils import U, is_tty


class TestUtilsHelpers(unittest.TestCase):
    """Test small formatting helpers."""

    def test_human_bytes(self):
        self.assertEqual(U.human_bytes(None), "unknown")
        self.assertEqual(U.human_bytes(512), "512 B")
        self.assertEqual(U.human_bytes(1024), "1.00 KiB")
        self.assertEqual(U.human_bytes(3 * 1024 ** 3), "3.00 GiB")

    def test_json_dump_handles_paths(self):
        out = U.json_dump({"p": Path("/tmp/x")})
        self.assertIn('"p": "/tmp/x"', out)

    def test_to_text(self):
        self.assertEqual(U.to_text(None), "")
        self.assertEqual(U.to_text(b"abc"), "abc")
        self.assertEqual(U.to_text(5), "5")

    def test_is_tty_false_for_broken_stream(self):
        stream = Mock()
        stream.isatty.side_effect = ValueError("closed")
        self.assertFalse(is_tty(stream))

    def test_checksum(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "wimmount.sys"
            p.write_bytes(b"driver-bytes")
            self.assertEqual(U.checksum(p), hashlib.sha256(b"driver-bytes").hexdigest())


class TestRunCmd(unittest.TestCase):
    """Test command execution wrapper."""

    def setUp(self):
        self.logger = Mock()

    @patch("winbuildcheck.core.utils.subprocess.run")
    def test_run_cmd_capture(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(["fltmc"], 0, stdout="ok", stderr="")

        cp = U.run_cmd(self.logger, ["fltmc", "filters"], check=False, capture=True, timeout=2)

        self.assertEqual(cp.stdout, "ok")
        _, kwargs = mock_run.call_args
        self.assertTrue(kwargs["capture_output"])
        self.assertEqual(kwargs["timeout"], 2)
        self.assertFalse(kwargs["check"])

    @patch("winbuildcheck.core.utils.subprocess.run")
    def test_run_cmd_failure_reraised(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(5, ["sc.exe"], output="", stderr="denied")

        with self.assertRaises(subprocess.CalledProcessError) as cm:
            U.run_cmd(self.logger, ["sc.exe", "query"])
        self.assertEqual(cm.exception.returncode, 5)

    @patch("winbuildcheck.core.utils.subprocess.run")
    def test_run_cmd_missing_binary_reraised(self, mock_run):
        mock_run.side_effect = FileNotFoundError("fltmc.exe")

        with self.assertRaises(FileNotFoundError):
            U.run_cmd(self.logger, ["fltmc.exe"])

    @patch("winbuildcheck.core.utils.subprocess.run")
    def test_run_cmd_timeout_reraised(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["fltmc"], 2)

        with self.assertRaises(subprocess.TimeoutExpired):
            U.run_cmd(self.logger, ["fltmc"], timeout=2)


if __name__ == "__main__":
    unittest.main()
