from __future__ import annotations

import logging
import os
import pathlib
import tempfile
import unittest
from unittest import mock

from agent_bundler.config import BundleLayout
from agent_bundler.errors import VerificationError
from agent_bundler.tree import make_tree_user_writable
from agent_bundler.verify import installed_executable_candidates, tool_argv, verify_snapshot
from tests._fakes import POSIX_ONLY, fake_tool, is_posix


def _running_as_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


class ExecutableCandidatesTest(unittest.TestCase):
    def test_posix_probe_order(self) -> None:
        prefix = pathlib.Path("/p")
        self.assertEqual(
            installed_executable_candidates(prefix, tool_name="tool", windows=False),
            [
                prefix / "bin" / "tool",
                prefix / "node_modules" / "tool" / "tool.mjs",
                prefix / "lib" / "node_modules" / "tool" / "tool.mjs",
                prefix / "node_modules" / ".bin" / "tool",
            ],
        )

    def test_windows_wrappers_come_first(self) -> None:
        candidates = installed_executable_candidates(pathlib.Path("/p"), tool_name="tool", windows=True)
        self.assertEqual([c.name for c in candidates[:2]], ["tool.cmd", "tool.exe"])

    def test_argv_by_entry_kind(self) -> None:
        runtime = pathlib.Path("/r/node")
        mjs = pathlib.Path("/p/tool.mjs")
        cmd = pathlib.Path("/p/tool.CMD")
        plain = pathlib.Path("/p/tool")
        self.assertEqual(tool_argv(mjs, runtime=runtime), [str(runtime), str(mjs)])
        self.assertEqual(tool_argv(cmd, runtime=runtime), ["cmd", "/C", str(cmd)])
        self.assertEqual(tool_argv(plain, runtime=runtime), [str(plain)])


@unittest.skipUnless(is_posix(), POSIX_ONLY)
@unittest.skipIf(_running_as_root(), "root ignores directory write permission")
class VerifyReadOnlySnapshotTest(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        root = pathlib.Path(self._td.name)
        self.layout = BundleLayout.for_bundle(root / "bundle", package_name="tool", windows=False)
        fake_tool(self.layout.prefix_dir / "bin" / "tool", version="1.4.0")
        pkg = self.layout.prefix_dir / "node_modules" / "tool"
        pkg.mkdir(parents=True)
        (pkg / "LICENSE").write_text("MIT", encoding="utf-8")
        (pkg / "LICENSE").chmod(0o444)
        pkg.chmod(0o555)
        self.temp_dir = root / "tmp"
        self.temp_dir.mkdir()
        self.logger = logging.getLogger("agent_bundler.tests")

    def tearDown(self) -> None:
        make_tree_user_writable(pathlib.Path(self._td.name))
        self._td.cleanup()

    def test_copy_is_removed_after_success(self) -> None:
        reported = verify_snapshot(layout=self.layout, temp_dir=self.temp_dir, tool_name="tool", logger=self.logger)

        self.assertEqual(reported, "1.4.0")
        self.assertFalse((self.temp_dir / "verify-prefix").exists())

    def test_failure_is_reported_and_copy_is_removed(self) -> None:
        with mock.patch.dict(os.environ, {"FAKE_TOOL_BROKEN": "1"}):
            with self.assertRaises(VerificationError):
                verify_snapshot(layout=self.layout, temp_dir=self.temp_dir, tool_name="tool", logger=self.logger)

        self.assertFalse((self.temp_dir / "verify-prefix").exists())

    def test_stale_read_only_copy_is_replaced(self) -> None:
        stale = self.temp_dir / "verify-prefix" / "old"
        stale.mkdir(parents=True)
        (stale / "f").write_text("x", encoding="utf-8")
        stale.chmod(0o555)

        verify_snapshot(layout=self.layout, temp_dir=self.temp_dir, tool_name="tool", logger=self.logger)

        self.assertFalse((self.temp_dir / "verify-prefix").exists())


if __name__ == "__main__":
    unittest.main()
