from __future__ import annotations

import os
import pathlib
import stat
import tempfile
import unittest

from agent_bundler.tree import make_tree_user_writable, remove_tree
from tests._fakes import POSIX_ONLY, is_posix


@unittest.skipUnless(is_posix(), POSIX_ONLY)
class MakeTreeUserWritableTest(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = pathlib.Path(self._td.name) / "tree"
        (self.root / "a").mkdir(parents=True)
        (self.root / "a" / "x").write_text("x", encoding="utf-8")
        (self.root / "b").write_text("b", encoding="utf-8")

    def tearDown(self) -> None:
        if self.root.exists():
            make_tree_user_writable(self.root)
        self._td.cleanup()

    def test_visits_depth_first_and_skips_symlinks(self) -> None:
        os.symlink(self.root / "b", self.root / "c")

        visited = make_tree_user_writable(self.root)

        self.assertEqual(
            visited,
            [self.root, self.root / "b", self.root / "a", self.root / "a" / "x"],
        )

    def test_adds_owner_write_bit(self) -> None:
        (self.root / "a" / "x").chmod(0o444)
        (self.root / "a").chmod(0o555)

        make_tree_user_writable(self.root)

        for path in (self.root / "a", self.root / "a" / "x"):
            self.assertTrue(path.stat().st_mode & stat.S_IWUSR)
        self.assertEqual(stat.S_IMODE((self.root / "a" / "x").stat().st_mode), 0o644)

    def test_remove_tree_handles_read_only_directories(self) -> None:
        (self.root / "a" / "x").chmod(0o444)
        (self.root / "a").chmod(0o555)

        remove_tree(self.root)

        self.assertFalse(self.root.exists())

    def test_remove_tree_leaves_link_targets_alone(self) -> None:
        link = pathlib.Path(self._td.name) / "link"
        os.symlink(self.root, link, target_is_directory=True)

        remove_tree(link)
        remove_tree(pathlib.Path(self._td.name) / "missing")

        self.assertFalse(link.is_symlink())
        self.assertTrue((self.root / "a" / "x").is_file())


if __name__ == "__main__":
    unittest.main()
